# backend/replacement.py
"""
Replacement search orchestrator.

find_replacements() filters the store to reserves matching base, position and
aircraft qualification, builds one proposed duty per survivor anchored at the
departure, evaluates it, drops illegal survivors, estimates cost/logistics,
ranks and truncates.

 - no eligible or legal candidate is not an error: the candidate list is empty.
 - any fault while handling one candidate (bad timestamp, estimator raising or returning a
   malformed shape, ...) excludes that candidate with a diagnostic and the
   search continues.
 - a wall-clock budget bounds the search; when exhausted the candidates
   evaluated so far are ranked and the result is flagged partial.
"""

from typing import Callable, List, Optional
import datetime
import logging
import time

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from .costing import (
    CostEstimator,
    DefaultCostEstimator,
    DefaultIndicatorEstimator,
    DefaultLogisticsEstimator,
    IndicatorEstimator,
    LogisticsEstimator,
    coerce,
)
from .duty_store import DutyRecordStore
from .legality import DEFAULT_CATEGORIES, evaluate
from .load_rules import RuleSet
from .models import (
    CostEstimate,
    CrewIdentity,
    CrewPosition,
    DutyState,
    DutyStateType,
    FatigueIndicators,
    FlightSegment,
    LogisticsEstimate,
    ProposedDutyPeriod,
    RankedCandidate,
    RankingInput,
    RankingStrategy,
    parse_utc,
)
from .ranking import rank

log = logging.getLogger("uvicorn.error")
router = APIRouter()

DEFAULT_BUDGET_SECONDS = 0.8

# Hypothetical duty built around the departure being covered
REPORT_BEFORE_DEPARTURE = datetime.timedelta(hours=1)
BLOCK_TIME = datetime.timedelta(hours=5)
RELEASE_AFTER_DEPARTURE = datetime.timedelta(hours=5, minutes=30)

HIGH_COST_USD = 1000.0


# ---------- Request / Response Models ----------
class ReplacementRequest(BaseModel):
    flight_number: str = Field(min_length=1)
    position: CrewPosition
    departure: datetime.datetime
    base: str = Field(min_length=1)
    aircraft_type: str = Field(min_length=1)
    destination: Optional[str] = None
    max_results: int = Field(default=5, ge=1, le=20)
    include_deadhead_options: bool = True
    strategy: RankingStrategy = RankingStrategy.FAIRNESS

    normalize_utc = field_validator("departure", mode="before")(parse_utc)


class RejectedCandidate(BaseModel):
    crew_id: str
    rules: List[str]


class ExcludedCandidate(BaseModel):
    crew_id: str
    reason: str


class SearchMetadata(BaseModel):
    searched_count: int = 0
    evaluated_count: int = 0
    legal_count: int = 0
    rejected: List[RejectedCandidate] = Field(default_factory=list)
    excluded: List[ExcludedCandidate] = Field(default_factory=list)
    partial: bool = False
    response_time_ms: float = 0.0
    bases_searched: List[str] = Field(default_factory=list)
    includes_deadheads: bool = True


class ReplacementSearchResult(BaseModel):
    flight_number: str
    position: CrewPosition
    departure: datetime.datetime
    candidates: List[RankedCandidate] = Field(default_factory=list)
    metadata: SearchMetadata = Field(default_factory=SearchMetadata)
    recommendations: List[str] = Field(default_factory=list)


# ---------- Steps ----------
def eligible_reserves(store: DutyRecordStore, request: ReplacementRequest) -> List[tuple]:
    """(identity, state) pairs for reserves matching base, position and aircraft type, by crew id."""
    out = []
    for state in store.list_by_state(DutyStateType.RESERVE):
        member = store.get_member(state.crew_id)
        if member is None:
            log.debug("Reserve %s has no crew identity; skipped", state.crew_id)
            continue
        if member.base != request.base or member.position != request.position:
            continue
        if request.aircraft_type not in member.qualifications:
            continue
        if not request.include_deadhead_options and state.current_location != request.base:
            continue
        out.append((member, state))
    return out


def build_proposed_period(request: ReplacementRequest) -> ProposedDutyPeriod:
    dep = request.departure
    report = dep - REPORT_BEFORE_DEPARTURE
    release = dep + RELEASE_AFTER_DEPARTURE
    segment = FlightSegment(
        flight_number=request.flight_number,
        origin=request.base,
        destination=request.destination or request.base,
        departure=dep,
        arrival=dep + BLOCK_TIME,
        flight_time_hours=BLOCK_TIME.total_seconds() / 3600.0,
    )
    return ProposedDutyPeriod(segments=[segment], start=report, end=release, report=report, release=release)


def overall_recommendations(candidates: List[RankedCandidate]) -> List[str]:
    if not candidates:
        return ["NO LEGAL CREW FOUND: Consider deadhead from another base or cancel flight"]
    out = []
    if len(candidates) < 3:
        out.append("LIMITED OPTIONS: Consider activating additional reserves")
    if all(c.cost.total_usd > HIGH_COST_USD for c in candidates):
        out.append("HIGH COST: All options involve premium pay or deadheads")
    fatigued = [c for c in candidates if c.legality.warnings]
    if len(fatigued) > len(candidates) / 2:
        out.append("FATIGUE RISK: Monitor crew closely during duty")
    return out or ["Multiple good options available"]


def _evaluate_candidate(
    member: CrewIdentity,
    state: DutyState,
    period: ProposedDutyPeriod,
    request: ReplacementRequest,
    ruleset: RuleSet,
    cost_estimator: CostEstimator,
    logistics_estimator: LogisticsEstimator,
    indicator_estimator: IndicatorEstimator,
):
    verdict = evaluate(state, period, [c.value for c in DEFAULT_CATEGORIES], ruleset.limits)
    if not verdict.is_legal:
        return verdict, None
    logistics = coerce(LogisticsEstimate, logistics_estimator(member, state, period, request.base))
    cost = coerce(CostEstimate, cost_estimator(member, state, period, logistics))
    indicators = coerce(FatigueIndicators, indicator_estimator(state, request.departure))
    return verdict, RankingInput(
        crew_id=member.crew_id,
        name=member.display_name,
        verdict=verdict,
        cost=cost,
        logistics=logistics,
        indicators=indicators,
    )


# ---------- Orchestrator ----------
def find_replacements(
    store: DutyRecordStore,
    request: ReplacementRequest,
    ruleset: Optional[RuleSet] = None,
    cost_estimator: Optional[CostEstimator] = None,
    logistics_estimator: Optional[LogisticsEstimator] = None,
    indicator_estimator: Optional[IndicatorEstimator] = None,
    budget_seconds: float = DEFAULT_BUDGET_SECONDS,
    clock: Callable[[], float] = time.monotonic,
) -> ReplacementSearchResult:
    ruleset = ruleset or RuleSet()
    cost_estimator = cost_estimator or DefaultCostEstimator(ruleset.costing)
    logistics_estimator = logistics_estimator or DefaultLogisticsEstimator(ruleset.costing)
    indicator_estimator = indicator_estimator or DefaultIndicatorEstimator(ruleset.costing)

    started = clock()
    meta = SearchMetadata(bases_searched=[request.base], includes_deadheads=request.include_deadhead_options)

    pool = eligible_reserves(store, request)
    meta.searched_count = len(pool)
    period = build_proposed_period(request)

    legal: List[RankingInput] = []
    for member, state in pool:
        if clock() - started > budget_seconds:
            meta.partial = True
            log.warning("Replacement search for %s hit its %.2fs budget after %d of %d candidates",
                        request.flight_number, budget_seconds, meta.evaluated_count, len(pool))
            break
        try:
            verdict, candidate = _evaluate_candidate(
                member, state, period, request, ruleset,
                cost_estimator, logistics_estimator, indicator_estimator,
            )
        except Exception as e:
            log.exception("Excluding candidate %s from search for %s", member.crew_id, request.flight_number)
            meta.excluded.append(ExcludedCandidate(crew_id=member.crew_id, reason=f"{type(e).__name__}: {e}"))
            continue

        meta.evaluated_count += 1
        if candidate is None:
            meta.rejected.append(RejectedCandidate(crew_id=member.crew_id, rules=[v.rule for v in verdict.violations]))
            continue
        legal.append(candidate)

    meta.legal_count = len(legal)
    ranked = rank(legal, request.strategy, request.max_results, ruleset.ranking)
    meta.response_time_ms = round((clock() - started) * 1000.0, 3)

    log.info("Replacement search %s/%s: %d searched, %d legal, %d returned%s",
             request.flight_number, request.position.value, meta.searched_count, meta.legal_count,
             len(ranked), " (partial)" if meta.partial else "")

    return ReplacementSearchResult(
        flight_number=request.flight_number,
        position=request.position,
        departure=request.departure,
        candidates=ranked,
        metadata=meta,
        recommendations=overall_recommendations(ranked),
    )


# ---------- /replacements endpoint ----------
@router.post("/replacements", response_model=ReplacementSearchResult)
def search_replacements(payload: ReplacementRequest, request: Request):
    return find_replacements(request.app.state.store, payload, request.app.state.ruleset)
