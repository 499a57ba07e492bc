# tests/conftest.py
# Ensure project root is on sys.path so `import backend` works reliably in pytest.
import datetime
import sys
from pathlib import Path

import pytest

# Resolve project root as the parent of the tests folder
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    # put project root at front so local packages take precedence
    sys.path.insert(0, str(ROOT))

from backend.duty_store import load_roster  # noqa: E402
from backend.load_rules import load_ruleset  # noqa: E402
from backend.models import DutyState, ProposedDutyPeriod  # noqa: E402

UTC = datetime.timezone.utc
D = datetime.datetime(2024, 12, 1, tzinfo=UTC)


def at(day: int, hour: int, minute: int = 0) -> datetime.datetime:
    """Instant on day D+day (D = 2024-12-01) in UTC."""
    return D + datetime.timedelta(days=day, hours=hour, minutes=minute)


def make_state(**overrides) -> DutyState:
    fields = dict(
        crew_id="90001",
        state="RESERVE",
        window_start=at(0, 8),
        window_end=at(0, 20),
        current_location="ORD",
        duty_hours_cumulative=30.0,
        flight_hours_28_day=40.0,
        flight_hours_365_day=500.0,
        consecutive_duty_days=2,
    )
    fields.update(overrides)
    if "window_end" in overrides and "window_start" not in overrides:
        fields["window_start"] = overrides["window_end"] - datetime.timedelta(hours=12)
    return DutyState(**fields)


def make_period(start, end, flight_hours=4.0, flight_number="AA100") -> ProposedDutyPeriod:
    segments = []
    if flight_hours:
        segments.append(dict(
            flight_number=flight_number,
            origin="ORD",
            destination="LGA",
            departure=start,
            arrival=end,
            flight_time_hours=flight_hours,
        ))
    return ProposedDutyPeriod(segments=segments, start=start, end=end)


@pytest.fixture
def ruleset():
    return load_ruleset()


@pytest.fixture
def store():
    return load_roster()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from backend.main import app

    # entering the client runs the lifespan: fresh rules and roster per test
    with TestClient(app) as c:
        yield c
