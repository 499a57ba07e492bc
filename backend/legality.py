# backend/legality.py
"""
Regulatory rule evaluator.

evaluate() checks a proposed duty period against a crew member's DutyState and
a RuleLimits table and returns a LegalityVerdict.

Rule groups:
 - regulatory-duty-limits (blocking): duty length, flight time, rest before
   duty, 28-day and 365-day flight-hour caps. Every check runs; one violation
   per failed check, carrying the observed and limit values.
 - fatigue-risk (never blocking): report inside the window of circadian low
   (warning), long consecutive-day runs and long duties (advisory), plus a
   scored FatigueRiskAssessment.

Notes:
 - evaluation is pure: the only inputs besides the arguments are the injected
   clock (verdict timestamp) and a fresh audit id per call.
 - the WOCL is a local time-of-day window; limits.wocl_timezone selects the
   zone and windows that cross midnight (e.g. 22:00-04:00) wrap.
 - rest is measured from the end of the current state window to the proposed
   duty start; a negative value means the assignment overlaps it.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo
import datetime
import logging
import uuid

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from .errors import CrewNotFoundError
from .load_rules import RuleLimits, clock_to_minutes
from .models import (
    DutyState,
    FatigueRiskAssessment,
    FatigueRiskFactor,
    LegalityVerdict,
    ProposedDutyPeriod,
    RuleCategory,
    Severity,
    Violation,
    hours_between,
    hours_to_hhmm,
)

log = logging.getLogger("uvicorn.error")
router = APIRouter()

Clock = Callable[[], datetime.datetime]

DEFAULT_CATEGORIES = [RuleCategory.REGULATORY_DUTY_LIMITS, RuleCategory.FATIGUE_RISK]

CATEGORY_ALIASES = {
    "regulatory-duty-limits": RuleCategory.REGULATORY_DUTY_LIMITS,
    "regulatory_duty_limits": RuleCategory.REGULATORY_DUTY_LIMITS,
    "part117": RuleCategory.REGULATORY_DUTY_LIMITS,
    "fatigue-risk": RuleCategory.FATIGUE_RISK,
    "fatigue_risk": RuleCategory.FATIGUE_RISK,
}

# Fatigue score weights (0-100 scale)
FATIGUE_POINTS_PER_CONSECUTIVE_DAY = 15
FATIGUE_UTILIZATION_POINTS = 30
FATIGUE_MONTHLY_DUTY_HOURS = 160.0
FATIGUE_RECENT_WOCL_POINTS = 20
FATIGUE_RECENT_WOCL_HOURS = 24.0
FATIGUE_WOCL_START_POINTS = 15
FATIGUE_LONG_DUTY_POINTS = 10


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_audit_id() -> str:
    return f"audit_{uuid.uuid4().hex}"


def resolve_categories(names: Optional[Iterable[str]]) -> List[RuleCategory]:
    """Map requested names onto known categories, canonical order, unknown names dropped."""
    if names is None:
        return list(DEFAULT_CATEGORIES)
    requested = set()
    for name in names:
        cat = CATEGORY_ALIASES.get(str(name).strip().lower())
        if cat is None:
            log.debug("Ignoring unknown rule category %r", name)
            continue
        requested.add(cat)
    return [c for c in DEFAULT_CATEGORIES if c in requested]


# ---------- WOCL helpers ----------
def in_time_of_day_window(instant: datetime.datetime, start: str, end: str, tz_name: str = "UTC") -> bool:
    """
    True when instant's local clock time lies in [start, end).
    A window whose start is later than its end wraps across midnight.
    """
    local = instant.astimezone(ZoneInfo(tz_name))
    minute = local.hour * 60 + local.minute
    lo, hi = clock_to_minutes(start), clock_to_minutes(end)
    if lo == hi:
        return False
    if lo < hi:
        return lo <= minute < hi
    return minute >= lo or minute < hi


# ---------- Regulatory duty limit checks ----------
def check_duty_length(period: ProposedDutyPeriod, limits: RuleLimits) -> Optional[Violation]:
    duty = period.total_duty_hours
    limit = limits.max_flight_duty_period_hours
    if duty <= limit:
        return None
    return Violation(
        category=RuleCategory.REGULATORY_DUTY_LIMITS,
        rule=limits.cite("duty_length"),
        description="Flight duty period exceeds maximum allowed",
        severity=Severity.BLOCKING,
        current_value=duty,
        limit_value=limit,
        recommendation=f"Reduce duty by {duty - limit:.1f} hours or assign different crew",
    )


def check_flight_time(period: ProposedDutyPeriod, limits: RuleLimits) -> Optional[Violation]:
    flight = period.total_flight_hours
    limit = limits.max_flight_time_hours
    if flight <= limit:
        return None
    return Violation(
        category=RuleCategory.REGULATORY_DUTY_LIMITS,
        rule=limits.cite("flight_time"),
        description="Flight time within duty period exceeds maximum",
        severity=Severity.BLOCKING,
        current_value=flight,
        limit_value=limit,
        recommendation=f"Reduce flight time by {flight - limit:.1f} hours",
    )


def required_rest_hours(state: DutyState, limits: RuleLimits) -> float:
    if state.consecutive_duty_days >= limits.extended_rest_after_consecutive_days:
        return limits.extended_rest_hours
    return limits.min_rest_hours


def check_rest(state: DutyState, period: ProposedDutyPeriod, limits: RuleLimits) -> Optional[Violation]:
    observed = hours_between(state.window_end, period.start)
    required = required_rest_hours(state, limits)
    if observed >= required:
        return None
    if observed < 0:
        description = (
            f"Proposed duty overlaps the current {state.state.value} window by {hours_to_hhmm(-observed)} (hh:mm)"
        )
    else:
        description = "Insufficient rest period between duties"
    return Violation(
        category=RuleCategory.REGULATORY_DUTY_LIMITS,
        rule=limits.cite("rest"),
        description=description,
        severity=Severity.BLOCKING,
        current_value=observed,
        limit_value=required,
        recommendation=f"Provide additional {required - observed:.1f} hours rest",
    )


def check_cumulative_limits(state: DutyState, period: ProposedDutyPeriod, limits: RuleLimits) -> List[Violation]:
    violations: List[Violation] = []
    flight = period.total_flight_hours

    projected_28 = state.flight_hours_28_day + flight
    if projected_28 > limits.max_flight_hours_28_day:
        remaining = max(0.0, limits.max_flight_hours_28_day - state.flight_hours_28_day)
        violations.append(
            Violation(
                category=RuleCategory.REGULATORY_DUTY_LIMITS,
                rule=limits.cite("cumulative_28_day"),
                description="28-day flight hour limit would be exceeded",
                severity=Severity.BLOCKING,
                current_value=projected_28,
                limit_value=limits.max_flight_hours_28_day,
                recommendation=f"Crew has only {remaining:.1f} hours remaining this period",
            )
        )

    projected_365 = state.flight_hours_365_day + flight
    if projected_365 > limits.max_flight_hours_365_day:
        remaining = max(0.0, limits.max_flight_hours_365_day - state.flight_hours_365_day)
        violations.append(
            Violation(
                category=RuleCategory.REGULATORY_DUTY_LIMITS,
                rule=limits.cite("cumulative_365_day"),
                description="365-day flight hour limit would be exceeded",
                severity=Severity.BLOCKING,
                current_value=projected_365,
                limit_value=limits.max_flight_hours_365_day,
                recommendation=f"Crew has only {remaining:.1f} hours remaining this year",
            )
        )
    return violations


# ---------- Fatigue risk ----------
def check_wocl_start(period: ProposedDutyPeriod, limits: RuleLimits) -> Optional[Violation]:
    if not in_time_of_day_window(period.start, limits.wocl_start, limits.wocl_end, limits.wocl_timezone):
        return None
    return Violation(
        category=RuleCategory.FATIGUE_RISK,
        rule=limits.cite("wocl"),
        description=f"Duty starts inside the Window of Circadian Low ({limits.wocl_start}-{limits.wocl_end} {limits.wocl_timezone})",
        severity=Severity.WARNING,
        recommendation="Consider additional rest or different crew with better circadian alignment",
    )


def check_consecutive_days(state: DutyState, limits: RuleLimits) -> Optional[Violation]:
    if state.consecutive_duty_days < limits.fatigue_consecutive_days:
        return None
    return Violation(
        category=RuleCategory.FATIGUE_RISK,
        rule=limits.cite("consecutive_duty"),
        description=f"Crew has worked {state.consecutive_duty_days} consecutive days",
        severity=Severity.ADVISORY,
        current_value=float(state.consecutive_duty_days),
        limit_value=float(limits.fatigue_consecutive_days),
        recommendation="Consider scheduling day off soon to prevent cumulative fatigue",
    )


def check_long_duty(period: ProposedDutyPeriod, limits: RuleLimits) -> Optional[Violation]:
    if period.total_duty_hours <= limits.fatigue_long_duty_hours:
        return None
    return Violation(
        category=RuleCategory.FATIGUE_RISK,
        rule=limits.cite("long_duty"),
        description=f"Duty period exceeds {limits.fatigue_long_duty_hours:g} hours",
        severity=Severity.ADVISORY,
        current_value=period.total_duty_hours,
        limit_value=limits.fatigue_long_duty_hours,
        recommendation="Monitor crew for signs of fatigue during duty",
    )


def _impact(points: float) -> str:
    if points >= 30:
        return "high"
    if points >= 15:
        return "medium"
    return "low"


def assess_fatigue_risk(state: DutyState, period: ProposedDutyPeriod, limits: RuleLimits) -> FatigueRiskAssessment:
    """
    Score cumulative and circadian fatigue for the proposed duty. The reference
    instant for "recent" exposure is the proposed start.
    """
    factors: List[FatigueRiskFactor] = []
    score = 0.0

    if state.consecutive_duty_days > 0:
        pts = state.consecutive_duty_days * FATIGUE_POINTS_PER_CONSECUTIVE_DAY
        score += pts
        factors.append(FatigueRiskFactor(
            factor="CONSECUTIVE_DUTY_DAYS",
            impact=_impact(pts),
            description=f"{state.consecutive_duty_days} consecutive duty days",
            mitigations=["Schedule a day off after this duty"],
        ))

    utilization_pts = min(1.0, state.duty_hours_cumulative / FATIGUE_MONTHLY_DUTY_HOURS) * FATIGUE_UTILIZATION_POINTS
    if utilization_pts > 0:
        score += utilization_pts
        factors.append(FatigueRiskFactor(
            factor="CUMULATIVE_DUTY",
            impact=_impact(utilization_pts),
            description=f"{state.duty_hours_cumulative:.1f} duty hours accumulated this period",
        ))

    if state.last_wocl_exposure is not None:
        since = hours_between(state.last_wocl_exposure, period.start)
        if 0 <= since < FATIGUE_RECENT_WOCL_HOURS:
            score += FATIGUE_RECENT_WOCL_POINTS
            factors.append(FatigueRiskFactor(
                factor="RECENT_WOCL_EXPOSURE",
                impact=_impact(FATIGUE_RECENT_WOCL_POINTS),
                description=f"Circadian-low exposure {since:.1f} hours before report",
                mitigations=["Prefer crew without night duty in the last 24 hours"],
            ))

    if in_time_of_day_window(period.start, limits.wocl_start, limits.wocl_end, limits.wocl_timezone):
        score += FATIGUE_WOCL_START_POINTS
        factors.append(FatigueRiskFactor(
            factor="WOCL_EXPOSURE",
            impact=_impact(FATIGUE_WOCL_START_POINTS),
            description="Duty starts inside the window of circadian low",
            mitigations=["Provide pre-duty rest opportunity", "Consider controlled rest on long sectors"],
        ))

    if period.total_duty_hours > limits.fatigue_long_duty_hours:
        score += FATIGUE_LONG_DUTY_POINTS
        factors.append(FatigueRiskFactor(
            factor="LONG_DUTY",
            impact=_impact(FATIGUE_LONG_DUTY_POINTS),
            description=f"{period.total_duty_hours:.1f} hour duty period",
        ))

    score = max(0.0, min(100.0, score))
    if score < 30:
        level, recommendation = "low", "No additional mitigation required"
    elif score < 60:
        level, recommendation = "medium", "Monitor crew alertness; brief fatigue mitigations"
    else:
        level, recommendation = "high", "Prefer a fresher crew member or add rest before this duty"
    return FatigueRiskAssessment(risk_level=level, score=score, factors=factors, recommendation=recommendation)


# ---------- Evaluator entry point ----------
def evaluate(
    state: DutyState,
    period: ProposedDutyPeriod,
    categories: Optional[Iterable[str]] = None,
    limits: Optional[RuleLimits] = None,
    clock: Optional[Clock] = None,
) -> LegalityVerdict:
    limits = limits or RuleLimits()
    checks = resolve_categories(categories)

    violations: List[Violation] = []
    warnings: List[Violation] = []
    fatigue = None

    if RuleCategory.REGULATORY_DUTY_LIMITS in checks:
        for found in (
            check_duty_length(period, limits),
            check_flight_time(period, limits),
            check_rest(state, period, limits),
        ):
            if found:
                violations.append(found)
        violations.extend(check_cumulative_limits(state, period, limits))

    if RuleCategory.FATIGUE_RISK in checks:
        for found in (
            check_wocl_start(period, limits),
            check_consecutive_days(state, limits),
            check_long_duty(period, limits),
        ):
            if found:
                warnings.append(found)
        fatigue = assess_fatigue_risk(state, period, limits)

    return LegalityVerdict(
        violations=violations,
        warnings=warnings,
        checks_performed=checks,
        timestamp=(clock or utc_now)(),
        audit_id=new_audit_id(),
        fatigue=fatigue,
    )


# ---------- Request / Response Models ----------
class CheckRequest(BaseModel):
    crew_id: str = Field(min_length=1)
    proposed_duty: ProposedDutyPeriod
    check_categories: Optional[List[str]] = None


class CheckResult(BaseModel):
    crew_id: str
    is_legal: bool
    verdict: LegalityVerdict
    crew_current_state: Dict[str, Any]
    proposed_duty_hours: float
    proposed_flight_hours: float


# ---------- /check endpoint ----------
@router.post("/check", response_model=CheckResult)
def check_legality(payload: CheckRequest, request: Request):
    store = request.app.state.store
    limits = request.app.state.ruleset.limits

    state = store.get(payload.crew_id)
    if state is None:
        raise CrewNotFoundError(payload.crew_id)

    verdict = evaluate(state, payload.proposed_duty, payload.check_categories, limits)
    log.info("Legality check %s for crew %s: legal=%s violations=%d warnings=%d",
             verdict.audit_id, payload.crew_id, verdict.is_legal, len(verdict.violations), len(verdict.warnings))

    return CheckResult(
        crew_id=payload.crew_id,
        is_legal=verdict.is_legal,
        verdict=verdict,
        crew_current_state={
            "state": state.state.value,
            "location": state.current_location,
            "duty_hours_cumulative": state.duty_hours_cumulative,
            "flight_hours_28_day": state.flight_hours_28_day,
            "consecutive_duty_days": state.consecutive_duty_days,
        },
        proposed_duty_hours=payload.proposed_duty.total_duty_hours,
        proposed_flight_hours=payload.proposed_duty.total_flight_hours,
    )
