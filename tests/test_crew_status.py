# tests/test_crew_status.py
from backend.crew_status import describe_status, reserve_pool_status, status_flags
from backend.load_rules import RuleLimits

from conftest import at, make_state


def test_flags():
    assert status_flags(make_state(state="SICK", duty_hours_cumulative=5.0), at(0, 9)) == [
        "UNAVAILABLE_SICK", "FRESH_CREW",
    ]
    tired = make_state(state="ON_DUTY", flight_hours_28_day=95.0, consecutive_duty_days=6, window_end=at(0, 10))
    assert status_flags(tired, at(0, 9)) == ["APPROACHING_TIMEOUT", "HIGH_28_DAY_HOURS", "FATIGUE_RISK"]


def test_flags_follow_rule_limits():
    state = make_state(state="ON_DUTY", flight_hours_28_day=85.0, consecutive_duty_days=4,
                       duty_hours_cumulative=15.0, window_end=at(0, 12))
    assert status_flags(state, at(0, 9)) == []
    strict = RuleLimits(
        fatigue_consecutive_days=4,
        status_approaching_timeout_hours=4.0,
        status_high_28_day_hours=80.0,
        status_fresh_duty_hours=20.0,
    )
    assert status_flags(state, at(0, 9), strict) == [
        "APPROACHING_TIMEOUT", "HIGH_28_DAY_HOURS", "FATIGUE_RISK", "FRESH_CREW",
    ]
    assert describe_status(state, at(0, 9), limits=strict).availability.check_in_status == "PENDING"


def test_status_is_relative_to_reference():
    state = make_state(window_end=at(0, 20))
    early = describe_status(state, at(0, 10))
    late = describe_status(state, at(0, 21))
    assert early.current_state.hours_remaining == 10.0
    assert early.availability.is_available is True
    assert early.availability.check_in_status == "OK"
    assert late.current_state.hours_remaining == 0.0
    assert late.availability.is_available is False
    assert late.availability.check_in_status == "PENDING"


def test_reserve_pool_next_available(store):
    pool = reserve_pool_status(store, "ORD", None, at(0, 17))
    assert pool.available_crew_ids == ["10002", "10004", "10005", "10007"]
    # 10001 is an ORD captain, currently flying out of DFW
    assert pool.next_available == at(0, 18)
    assert reserve_pool_status(store, "ORD", "CA", at(0, 17)).next_available == at(0, 18)
    assert reserve_pool_status(store, "ORD", "FO", at(0, 17)).next_available is None
    assert reserve_pool_status(store, "DFW", None, at(0, 17)).next_available is None
    assert reserve_pool_status(store, None, None, at(0, 19)).next_available is None
