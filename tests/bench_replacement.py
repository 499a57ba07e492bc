# tests/bench_replacement.py
# Stress script, not collected by pytest:
#   python -m tests.bench_replacement
import datetime
import random
import time

from backend.duty_store import DutyRecordStore
from backend.load_rules import load_ruleset
from backend.models import CrewIdentity, DutyState
from backend.replacement import ReplacementRequest, find_replacements

DEPARTURE = datetime.datetime(2024, 12, 2, 10, 0, tzinfo=datetime.timezone.utc)


def build_store(n=300, seed=7):
    rnd = random.Random(seed)
    store = DutyRecordStore()
    for i in range(n):
        crew_id = f"B{i:05d}"
        store.add_member(CrewIdentity(
            crew_id=crew_id,
            position=rnd.choice(["CA", "FO"]),
            base="ORD",
            qualifications=["B738"] if rnd.random() < 0.8 else ["A320"],
        ))
        end = DEPARTURE - datetime.timedelta(hours=rnd.randint(2, 30))
        store.put(DutyState(
            crew_id=crew_id,
            state="RESERVE",
            window_start=end - datetime.timedelta(hours=12),
            window_end=end,
            current_location=rnd.choice(["ORD", "ORD", "ORD", "MSP", "DFW"]),
            duty_hours_cumulative=rnd.uniform(0, 120),
            flight_hours_28_day=rnd.uniform(0, 99),
            flight_hours_365_day=rnd.uniform(100, 990),
            consecutive_duty_days=rnd.randint(0, 6),
            callouts_28_day=rnd.randint(0, 4),
        ))
    return store


def run_stress(n=200):
    store = build_store()
    ruleset = load_ruleset()
    request = ReplacementRequest(
        flight_number="BENCH1", position="FO", departure=DEPARTURE, base="ORD", aircraft_type="B738", max_results=10,
    )
    start = time.time()
    partial = 0
    for _ in range(n):
        result = find_replacements(store, request, ruleset)
        partial += result.metadata.partial
    dur = time.time() - start
    print(f"Ran {n} searches over {len(store)} reserves in {dur:.2f}s "
          f"(avg {dur/n*1000:.2f} ms/search, {partial} partial)")


if __name__ == "__main__":
    run_stress()
