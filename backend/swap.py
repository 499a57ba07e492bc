# backend/swap.py
"""
Crew swap transaction.

execute_swap() releases the outgoing crew member from a flight (ON_DUTY ->
RESERVE or OFF) and puts the incoming reserve on it (RESERVE -> ON_DUTY).
Both records are rebuilt with model_copy(update=...) and written back whole
while the write locks of both ids are held, so two swaps naming the same crew
member serialise. dry_run validates and returns the change list without
writing anything.
"""

from typing import Any, Callable, Dict, List, Optional
import datetime
import logging
import uuid

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator, model_validator

from .costing import hourly_rate
from .duty_store import DutyRecordStore
from .errors import CrewNotFoundError, InvalidInputError, InvalidTransitionError
from .load_rules import CostingConfig
from .models import CrewPosition, DutyState, DutyStateType, parse_utc

log = logging.getLogger("uvicorn.error")
router = APIRouter()

DEFAULT_EXPECTED_DUTY_HOURS = 6.5

RELEASE_STATES = (DutyStateType.RESERVE, DutyStateType.OFF)


# ---------- Request / Response Models ----------
class SwapRequest(BaseModel):
    flight_number: str = Field(min_length=1)
    position: CrewPosition
    original_crew_id: str = Field(min_length=1)
    replacement_crew_id: str = Field(min_length=1)
    reason: str = ""
    effective_time: datetime.datetime
    release_to: DutyStateType = DutyStateType.RESERVE
    expected_duty_hours: float = Field(default=DEFAULT_EXPECTED_DUTY_HOURS, gt=0, le=24)
    dry_run: bool = False

    normalize_utc = field_validator("effective_time", mode="before")(parse_utc)

    @model_validator(mode="after")
    def _distinct_crew(self) -> "SwapRequest":
        if self.original_crew_id == self.replacement_crew_id:
            raise ValueError("original and replacement crew must differ")
        if self.release_to not in RELEASE_STATES:
            raise ValueError("release_to must be RESERVE or OFF")
        return self


class SwapChange(BaseModel):
    entity: str  # crew_assignment | duty_state
    entity_id: str
    action: str  # create | update | delete
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None


class SwapCostImpact(BaseModel):
    replacement_hourly_rate: float
    additional_cost_usd: float


class SwapResult(BaseModel):
    transaction_id: str
    timestamp: datetime.datetime
    status: str  # pending | completed
    dry_run: bool
    flight_number: str
    position: CrewPosition
    reason: str
    changes: List[SwapChange]
    cost_impact: SwapCostImpact
    message: str


# ---------- Transitions ----------
def new_transaction_id() -> str:
    return f"swap_{uuid.uuid4().hex}"


def _require(store: DutyRecordStore, crew_id: str) -> DutyState:
    state = store.get(crew_id)
    if state is None or store.get_member(crew_id) is None:
        raise CrewNotFoundError(crew_id)
    return state


def release_from_flight(state: DutyState, request: SwapRequest) -> DutyState:
    if state.state != DutyStateType.ON_DUTY:
        raise InvalidTransitionError(
            f"Crew member {state.crew_id} is {state.state.value}; only ON_DUTY crew can be swapped off a flight"
        )
    at = request.effective_time
    return state.model_copy(update={
        "state": request.release_to,
        "window_start": at,
        "window_end": at,
        "assigned_flights": [f for f in state.assigned_flights if f != request.flight_number],
        "report_time": None,
    })


def assign_to_flight(state: DutyState, request: SwapRequest) -> DutyState:
    if state.state != DutyStateType.RESERVE:
        raise InvalidTransitionError(
            f"Crew member {state.crew_id} is {state.state.value}; only RESERVE crew can be called out"
        )
    at = request.effective_time
    flights = list(state.assigned_flights)
    if request.flight_number not in flights:
        flights.append(request.flight_number)
    return state.model_copy(update={
        "state": DutyStateType.ON_DUTY,
        "window_start": at,
        "window_end": at + datetime.timedelta(hours=request.expected_duty_hours),
        "assigned_flights": flights,
        "report_time": at,
        "callouts_28_day": state.callouts_28_day + 1,
        "last_callout": at,
    })


def swap_cost_impact(replacement: DutyState, request: SwapRequest, config: CostingConfig) -> SwapCostImpact:
    rate = hourly_rate(replacement, config)
    extra = max(0.0, rate - config.pay_rate_usd) * request.expected_duty_hours
    return SwapCostImpact(replacement_hourly_rate=rate, additional_cost_usd=extra)


def _changes(
    request: SwapRequest,
    original: DutyState,
    released: DutyState,
    replacement: DutyState,
    assigned: DutyState,
) -> List[SwapChange]:
    assignment = {"flight_number": request.flight_number, "position": request.position.value}
    return [
        SwapChange(
            entity="crew_assignment",
            entity_id=f"{request.flight_number}-{original.crew_id}",
            action="delete",
            before={**assignment, "crew_id": original.crew_id},
        ),
        SwapChange(
            entity="crew_assignment",
            entity_id=f"{request.flight_number}-{replacement.crew_id}",
            action="create",
            after={**assignment, "crew_id": replacement.crew_id},
        ),
        SwapChange(
            entity="duty_state", entity_id=original.crew_id, action="update",
            before=original.model_dump(mode="json"), after=released.model_dump(mode="json"),
        ),
        SwapChange(
            entity="duty_state", entity_id=replacement.crew_id, action="update",
            before=replacement.model_dump(mode="json"), after=assigned.model_dump(mode="json"),
        ),
    ]


def execute_swap(
    store: DutyRecordStore,
    request: SwapRequest,
    config: Optional[CostingConfig] = None,
    clock: Optional[Callable[[], datetime.datetime]] = None,
) -> SwapResult:
    config = config or CostingConfig()
    now = (clock or (lambda: datetime.datetime.now(datetime.timezone.utc)))()
    transaction_id = new_transaction_id()

    with store.locked(request.original_crew_id, request.replacement_crew_id):
        original = _require(store, request.original_crew_id)
        replacement = _require(store, request.replacement_crew_id)

        for crew_id in (original.crew_id, replacement.crew_id):
            member = store.get_member(crew_id)
            if member.position != request.position:
                raise InvalidInputError(
                    f"Crew member {crew_id} holds position {member.position.value}, not {request.position.value}"
                )

        released = release_from_flight(original, request)
        assigned = assign_to_flight(replacement, request)
        changes = _changes(request, original, released, replacement, assigned)

        if not request.dry_run:
            store.put(released)
            store.put(assigned)

    if request.dry_run:
        status, message = "pending", "Dry run completed - no changes made"
    else:
        status, message = "completed", "Crew swap executed"
        log.info("Swap %s on %s/%s: %s -> %s (%s)", transaction_id, request.flight_number,
                 request.position.value, request.original_crew_id, request.replacement_crew_id, request.reason)

    return SwapResult(
        transaction_id=transaction_id,
        timestamp=now,
        status=status,
        dry_run=request.dry_run,
        flight_number=request.flight_number,
        position=request.position,
        reason=request.reason,
        changes=changes,
        cost_impact=swap_cost_impact(replacement, request, config),
        message=message,
    )


# ---------- /swap endpoint ----------
@router.post("/swap", response_model=SwapResult)
def swap_crew(payload: SwapRequest, request: Request):
    return execute_swap(request.app.state.store, payload, request.app.state.ruleset.costing)
