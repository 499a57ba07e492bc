# backend/crew_status.py
"""
Read-only crew status views over the Duty Record Store.

Every derived quantity (hours remaining, availability, flags) is computed
against an explicit reference instant; the routes default it to now. Flag
thresholds come from the active RuleLimits.
"""

from typing import List, Optional
import datetime

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from .duty_store import DutyRecordStore
from .errors import CrewNotFoundError, InvalidInputError
from .load_rules import RuleLimits
from .models import CrewPosition, DutyState, DutyStateType, hours_between, parse_utc

router = APIRouter()


# ---------- Response Models ----------
class StateWindow(BaseModel):
    type: DutyStateType
    start: datetime.datetime
    end: datetime.datetime
    hours_remaining: float


class Availability(BaseModel):
    is_available: bool
    next_available: Optional[datetime.datetime] = None
    check_in_status: str  # OK | PENDING


class LimitCounters(BaseModel):
    duty_hours_cumulative: float
    flight_hours_28_day: float
    flight_hours_365_day: float
    consecutive_duty_days: int


class CrewStatus(BaseModel):
    crew_id: str
    name: Optional[str] = None
    position: Optional[CrewPosition] = None
    current_state: StateWindow
    location: str
    availability: Availability
    limits: LimitCounters
    assigned_flights: List[str] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)


class CrewStatusList(BaseModel):
    crew: List[CrewStatus]
    count: int
    reference: datetime.datetime


class ReservePoolStatus(BaseModel):
    base: Optional[str] = None
    position: Optional[CrewPosition] = None
    available_crew_ids: List[str]
    count: int
    next_available: Optional[datetime.datetime] = None
    reference: datetime.datetime


# ---------- Derivations ----------
def status_flags(
    state: DutyState,
    reference: datetime.datetime,
    limits: Optional[RuleLimits] = None,
) -> List[str]:
    limits = limits or RuleLimits()
    flags: List[str] = []
    if state.state == DutyStateType.SICK:
        flags.append("UNAVAILABLE_SICK")
    if state.state == DutyStateType.VACATION:
        flags.append("UNAVAILABLE_VACATION")
    remaining = hours_between(reference, state.window_end)
    if state.state == DutyStateType.ON_DUTY and remaining < limits.status_approaching_timeout_hours:
        flags.append("APPROACHING_TIMEOUT")
    if state.flight_hours_28_day > limits.status_high_28_day_hours:
        flags.append("HIGH_28_DAY_HOURS")
    if state.consecutive_duty_days >= limits.fatigue_consecutive_days:
        flags.append("FATIGUE_RISK")
    if state.duty_hours_cumulative < limits.status_fresh_duty_hours:
        flags.append("FRESH_CREW")
    return flags


def describe_status(
    state: DutyState,
    reference: datetime.datetime,
    store: Optional[DutyRecordStore] = None,
    limits: Optional[RuleLimits] = None,
) -> CrewStatus:
    limits = limits or RuleLimits()
    remaining = hours_between(reference, state.window_end)
    member = store.get_member(state.crew_id) if store is not None else None
    return CrewStatus(
        crew_id=state.crew_id,
        name=member.display_name if member else None,
        position=member.position if member else None,
        current_state=StateWindow(
            type=state.state,
            start=state.window_start,
            end=state.window_end,
            hours_remaining=round(max(0.0, remaining), 1),
        ),
        location=state.current_location,
        availability=Availability(
            is_available=state.state == DutyStateType.RESERVE and remaining > 0,
            next_available=state.window_end if state.state == DutyStateType.ON_DUTY else None,
            check_in_status="PENDING" if remaining < limits.status_approaching_timeout_hours else "OK",
        ),
        limits=LimitCounters(
            duty_hours_cumulative=state.duty_hours_cumulative,
            flight_hours_28_day=state.flight_hours_28_day,
            flight_hours_365_day=state.flight_hours_365_day,
            consecutive_duty_days=state.consecutive_duty_days,
        ),
        assigned_flights=list(state.assigned_flights),
        flags=status_flags(state, reference, limits),
    )


def _matches(store: DutyRecordStore, state: DutyState, base: Optional[str], position: Optional[CrewPosition]) -> bool:
    member = store.get_member(state.crew_id)
    if member is None:
        return False
    if base and member.base != base:
        return False
    if position and member.position != position:
        return False
    return True


def reserve_pool_status(
    store: DutyRecordStore,
    base: Optional[str],
    position: Optional[CrewPosition],
    reference: datetime.datetime,
) -> ReservePoolStatus:
    """Reserves whose window is still open at reference, optionally by base and position."""
    available = [
        s.crew_id
        for s in store.list_by_state(DutyStateType.RESERVE)
        if _matches(store, s, base, position) and s.window_end > reference
    ]

    # earliest release among on-duty crew of this base and position
    upcoming = [
        s.window_end
        for s in store.list_by_state(DutyStateType.ON_DUTY)
        if _matches(store, s, base, position) and s.window_end > reference
    ]
    return ReservePoolStatus(
        base=base,
        position=position,
        available_crew_ids=available,
        count=len(available),
        next_available=min(upcoming) if upcoming else None,
        reference=reference,
    )


def _reference(at: Optional[str]) -> datetime.datetime:
    if at is None:
        return datetime.datetime.now(datetime.timezone.utc)
    try:
        return parse_utc(at)
    except ValueError as e:
        raise InvalidInputError(f"Invalid 'at' timestamp: {e}") from e


# ---------- Endpoints ----------
@router.get("/crew/{crew_id}", response_model=CrewStatus)
def get_crew_status(crew_id: str, request: Request, at: Optional[str] = Query(default=None)):
    store = request.app.state.store
    state = store.get(crew_id)
    if state is None:
        raise CrewNotFoundError(crew_id)
    return describe_status(state, _reference(at), store, request.app.state.ruleset.limits)


@router.get("/crew", response_model=CrewStatusList)
def list_crew_status(
    request: Request,
    state: Optional[DutyStateType] = Query(default=None),
    location: Optional[str] = Query(default=None),
    at: Optional[str] = Query(default=None),
):
    store = request.app.state.store
    reference = _reference(at)
    if state is not None:
        records = store.list_by_state(state)
        if location:
            records = [r for r in records if r.current_location == location]
    elif location:
        records = store.list_by_location(location)
    else:
        raise InvalidInputError("Provide a 'state' or 'location' filter")
    limits = request.app.state.ruleset.limits
    crew = [describe_status(r, reference, store, limits) for r in records]
    return CrewStatusList(crew=crew, count=len(crew), reference=reference)


@router.get("/reserve-pool", response_model=ReservePoolStatus)
def get_reserve_pool(
    request: Request,
    base: Optional[str] = Query(default=None),
    position: Optional[CrewPosition] = Query(default=None),
    at: Optional[str] = Query(default=None),
):
    return reserve_pool_status(request.app.state.store, base, position, _reference(at))
