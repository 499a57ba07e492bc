# tests/test_swap.py
import threading

import pytest
from pydantic import ValidationError

from backend.errors import CrewNotFoundError, InvalidInputError, InvalidTransitionError
from backend.models import CrewIdentity, DutyStateType
from backend.swap import SwapRequest, execute_swap

from conftest import at, make_state

EFFECTIVE = "2024-12-01T15:00:00Z"


@pytest.fixture
def swap_store(store):
    # a captain reserve and a second on-duty captain next to the seed roster
    store.add_member(CrewIdentity(crew_id="10008", first_name="Ana", last_name="Ruiz", position="CA", base="ORD",
                                  qualifications=["B737", "B738"]))
    store.put(make_state(crew_id="10008", state="RESERVE", flight_hours_28_day=80.0, callouts_28_day=1))
    store.add_member(CrewIdentity(crew_id="10009", first_name="Lee", last_name="Park", position="CA", base="ORD",
                                  qualifications=["B738"]))
    store.put(make_state(crew_id="10009", state="ON_DUTY", assigned_flights=["AA77"]))
    return store


def swap(**overrides):
    fields = dict(
        flight_number="AA1234",
        position="CA",
        original_crew_id="10001",
        replacement_crew_id="10008",
        reason="sick call",
        effective_time=EFFECTIVE,
    )
    fields.update(overrides)
    return SwapRequest(**fields)


def test_swap_transitions_both_records(swap_store):
    result = execute_swap(swap_store, swap(), clock=lambda: at(0, 14))
    assert result.status == "completed"
    assert result.transaction_id.startswith("swap_")
    assert result.timestamp == at(0, 14)

    released = swap_store.get("10001")
    assert released.state == DutyStateType.RESERVE
    assert released.assigned_flights == ["AA1235"]
    assert released.window_start == released.window_end == at(0, 15)

    assigned = swap_store.get("10008")
    assert assigned.state == DutyStateType.ON_DUTY
    assert assigned.assigned_flights == ["AA1234"]
    assert assigned.report_time == at(0, 15)
    assert assigned.window_end == at(0, 21, 30)
    assert assigned.callouts_28_day == 2
    assert assigned.last_callout == at(0, 15)

    assert [(c.entity, c.action) for c in result.changes] == [
        ("crew_assignment", "delete"),
        ("crew_assignment", "create"),
        ("duty_state", "update"),
        ("duty_state", "update"),
    ]
    assert result.changes[2].before["state"] == "ON_DUTY"
    assert result.changes[2].after["state"] == "RESERVE"


def test_dry_run_leaves_store_untouched(swap_store):
    before = (swap_store.get("10001"), swap_store.get("10008"))
    result = execute_swap(swap_store, swap(dry_run=True))
    assert result.status == "pending"
    assert result.dry_run is True
    assert len(result.changes) == 4
    assert (swap_store.get("10001"), swap_store.get("10008")) == before


def test_release_to_off(swap_store):
    execute_swap(swap_store, swap(release_to="OFF"))
    assert swap_store.get("10001").state == DutyStateType.OFF


def test_cost_impact_reflects_overtime_rate(swap_store):
    result = execute_swap(swap_store, swap(dry_run=True))
    assert result.cost_impact.replacement_hourly_rate == 150.0
    assert result.cost_impact.additional_cost_usd == pytest.approx(325.0)


def test_original_must_be_on_duty(swap_store):
    with pytest.raises(InvalidTransitionError):
        execute_swap(swap_store, swap(original_crew_id="10003"))


def test_replacement_must_be_on_reserve(swap_store):
    with pytest.raises(InvalidTransitionError):
        execute_swap(swap_store, swap(replacement_crew_id="10009"))
    # nothing was written
    assert swap_store.get("10001").state == DutyStateType.ON_DUTY


def test_unknown_crew_does_not_grow_lock_map(swap_store):
    known = len(swap_store)
    for i in range(200):
        with pytest.raises(CrewNotFoundError):
            execute_swap(swap_store, swap(replacement_crew_id=f"ghost{i}"))
    assert len(swap_store._key_locks) <= known


def test_replacement_position_must_match(swap_store):
    with pytest.raises(InvalidInputError):
        execute_swap(swap_store, swap(replacement_crew_id="10002"))


def test_unknown_crew(swap_store):
    with pytest.raises(CrewNotFoundError):
        execute_swap(swap_store, swap(replacement_crew_id="55555"))


@pytest.mark.parametrize("overrides", [
    {"replacement_crew_id": "10001"},
    {"release_to": "SICK"},
    {"effective_time": "tomorrow"},
    {"expected_duty_hours": 0},
])
def test_request_validation(overrides):
    with pytest.raises(ValidationError):
        swap(**overrides)


def test_concurrent_swaps_for_one_reserve_serialise(swap_store):
    outcomes = []

    def run(original, flight):
        try:
            execute_swap(swap_store, swap(original_crew_id=original, flight_number=flight))
            outcomes.append(("ok", original))
        except InvalidTransitionError:
            outcomes.append(("refused", original))

    threads = [
        threading.Thread(target=run, args=("10001", "AA1234")),
        threading.Thread(target=run, args=("10009", "AA77")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(kind for kind, _ in outcomes) == ["ok", "refused"]
    assigned = swap_store.get("10008")
    assert assigned.state == DutyStateType.ON_DUTY
    assert len(assigned.assigned_flights) == 1
