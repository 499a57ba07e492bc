# backend/models.py
"""
Typed data model for the crew legality engine.

Everything that crosses a module boundary is a pydantic model:
 - reference data (CrewIdentity) and per-crew mutable state (DutyState, frozen
   and replaced wholesale on every transition),
 - the ephemeral ProposedDutyPeriod handed to the evaluator,
 - verdict objects (Violation, LegalityVerdict, FatigueRiskAssessment),
 - the typed shapes pluggable estimators must return (CostEstimate,
   LogisticsEstimate, FatigueIndicators) and the RankedCandidate output.

All instants are timezone-aware UTC datetimes. Strings are accepted on input
(ISO 8601 with offset or 'Z', naive strings are taken as UTC).
"""

import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil import parser as _du_parser
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


# ---------- Time helpers ----------
def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def parse_utc(value: Any) -> datetime.datetime:
    """
    Parse an ISO 8601 string (or datetime) into an aware UTC datetime.
    Raises ValueError on anything that is not a recognisable instant.
    """
    if isinstance(value, datetime.datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"not a timestamp: {value!r}")
    return ensure_utc(_du_parser.isoparse(value.strip()))


def hours_between(start: datetime.datetime, end: datetime.datetime) -> float:
    """Signed hours from start to end (negative when end precedes start)."""
    return (end - start).total_seconds() / 3600.0


def hours_to_hhmm(hours: Optional[float]) -> Optional[str]:
    """Convert float hours to a signed HH:MM string for human-readable output."""
    if hours is None:
        return None
    minutes = int(round(float(hours) * 60))
    sign = "-" if minutes < 0 else ""
    minutes = abs(minutes)
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _utc_validator(value: Any) -> Any:
    if value is None:
        return None
    return parse_utc(value)


# ---------- Enumerations ----------
class CrewPosition(str, Enum):
    CAPTAIN = "CA"
    FIRST_OFFICER = "FO"
    FLIGHT_ATTENDANT = "FA"


class DutyStateType(str, Enum):
    ON_DUTY = "ON_DUTY"
    RESTING = "RESTING"
    RESERVE = "RESERVE"
    OFF = "OFF"
    SICK = "SICK"
    VACATION = "VACATION"


class Severity(str, Enum):
    BLOCKING = "blocking"
    WARNING = "warning"
    ADVISORY = "advisory"


class RuleCategory(str, Enum):
    REGULATORY_DUTY_LIMITS = "regulatory-duty-limits"
    FATIGUE_RISK = "fatigue-risk"


class RankingStrategy(str, Enum):
    COST = "cost"
    FAIRNESS = "fairness"
    SENIORITY = "seniority"


# ---------- Crew reference data and state ----------
class CrewIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    crew_id: str = Field(min_length=1)
    first_name: str = ""
    last_name: str = ""
    position: CrewPosition
    base: str
    qualifications: List[str] = Field(default_factory=list)  # aircraft types / capability codes
    seniority: int = Field(default=0, ge=0)

    @property
    def display_name(self) -> str:
        if self.last_name and self.first_name:
            return f"{self.last_name}, {self.first_name}"
        return self.last_name or self.first_name or self.crew_id


class DutyState(BaseModel):
    """
    Per-crew duty record. Exactly one per CrewIdentity, never mutated in place:
    transitions build a new record (model_copy(update=...)) and put it back.
    """

    model_config = ConfigDict(frozen=True)

    crew_id: str = Field(min_length=1)
    state: DutyStateType
    window_start: datetime.datetime
    window_end: datetime.datetime
    current_location: str

    duty_hours_cumulative: float = Field(default=0.0, ge=0)
    rest_hours_cumulative: float = Field(default=0.0, ge=0)
    flight_hours_28_day: float = Field(default=0.0, ge=0)
    flight_hours_365_day: float = Field(default=0.0, ge=0)
    consecutive_duty_days: int = Field(default=0, ge=0)

    last_wocl_exposure: Optional[datetime.datetime] = None
    assigned_flights: List[str] = Field(default_factory=list)
    report_time: Optional[datetime.datetime] = None

    # reserve callout history, feeds the fairness strategy
    callouts_28_day: int = Field(default=0, ge=0)
    last_callout: Optional[datetime.datetime] = None

    normalize_utc = field_validator(
        "window_start", "window_end", "last_wocl_exposure", "report_time", "last_callout", mode="before"
    )(_utc_validator)

    @model_validator(mode="after")
    def _window_ordered(self) -> "DutyState":
        if self.window_end < self.window_start:
            raise ValueError(f"state window for {self.crew_id} ends before it starts")
        return self


# ---------- Proposed duty ----------
class FlightSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    flight_number: str
    origin: str
    destination: str
    departure: datetime.datetime
    arrival: datetime.datetime
    flight_time_hours: Optional[float] = Field(default=None, ge=0)

    normalize_utc = field_validator("departure", "arrival", mode="before")(_utc_validator)

    @model_validator(mode="after")
    def _block_ordered(self) -> "FlightSegment":
        if self.arrival <= self.departure:
            raise ValueError(f"segment {self.flight_number} arrives before it departs")
        return self

    @property
    def block_hours(self) -> float:
        if self.flight_time_hours is not None:
            return float(self.flight_time_hours)
        return hours_between(self.departure, self.arrival)


class ProposedDutyPeriod(BaseModel):
    """Ephemeral duty period under evaluation. Report/release default to start/end."""

    model_config = ConfigDict(frozen=True)

    segments: List[FlightSegment] = Field(default_factory=list)
    start: datetime.datetime
    end: datetime.datetime
    report: Optional[datetime.datetime] = None
    release: Optional[datetime.datetime] = None

    normalize_utc = field_validator("start", "end", "report", "release", mode="before")(_utc_validator)

    @model_validator(mode="after")
    def _times_ordered(self) -> "ProposedDutyPeriod":
        if self.end <= self.start:
            raise ValueError("duty period end must be after its start")
        if self.report is not None and self.report > self.start:
            raise ValueError("report time must not be after duty start")
        if self.release is not None and self.release < self.end:
            raise ValueError("release time must not be before duty end")
        departures = [s.departure for s in self.segments]
        if departures != sorted(departures):
            raise ValueError("flight segments must be ordered by departure")
        return self

    @computed_field
    @property
    def total_duty_hours(self) -> float:
        return hours_between(self.start, self.end)

    @computed_field
    @property
    def total_flight_hours(self) -> float:
        return sum(s.block_hours for s in self.segments)


# ---------- Verdict ----------
class Violation(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: RuleCategory
    rule: str
    description: str
    severity: Severity
    current_value: Optional[float] = None
    limit_value: Optional[float] = None
    recommendation: Optional[str] = None


class FatigueRiskFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor: str
    impact: str  # low | medium | high
    description: str
    mitigations: List[str] = Field(default_factory=list)


class FatigueRiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_level: str  # low | medium | high
    score: float = Field(ge=0, le=100)
    factors: List[FatigueRiskFactor] = Field(default_factory=list)
    recommendation: str


class LegalityVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    violations: List[Violation] = Field(default_factory=list)
    warnings: List[Violation] = Field(default_factory=list)
    checks_performed: List[RuleCategory] = Field(default_factory=list)
    timestamp: datetime.datetime
    audit_id: str
    fatigue: Optional[FatigueRiskAssessment] = None

    @computed_field
    @property
    def is_legal(self) -> bool:
        return not any(v.severity == Severity.BLOCKING for v in self.violations + self.warnings)


# ---------- Pluggable estimator outputs ----------
class CostEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    pay_credit: float = Field(ge=0)
    per_diem: float = Field(ge=0)
    deadhead_cost: float = Field(default=0.0, ge=0)
    hotel_cost: float = Field(default=0.0, ge=0)
    overtime_premium: float = Field(default=0.0, ge=0)
    total_usd: float = Field(ge=0)


class LogisticsEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_location: str
    positioning_required: bool = False
    positioning_flight: Optional[str] = None
    ready_time: datetime.datetime
    travel_minutes: int = Field(default=0, ge=0)

    normalize_utc = field_validator("ready_time", mode="before")(_utc_validator)


class FatigueIndicators(BaseModel):
    model_config = ConfigDict(frozen=True)

    duty_hours_cumulative: float = Field(default=0.0, ge=0)
    consecutive_duty_days: int = Field(default=0, ge=0)
    hourly_rate: float = Field(default=100.0, ge=0)
    utilization_percent: float = Field(default=0.0, ge=0)
    callouts_28_day: int = Field(default=0, ge=0)
    days_since_last_callout: Optional[float] = Field(default=None, ge=0)


# ---------- Ranking ----------
class RankingInput(BaseModel):
    """One legality-cleared candidate handed to the ranking engine."""

    model_config = ConfigDict(frozen=True)

    crew_id: str
    name: str
    verdict: LegalityVerdict
    cost: CostEstimate
    logistics: LogisticsEstimate
    indicators: FatigueIndicators


class ScoreContribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    points: float


class RankedCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    crew_id: str
    name: str
    legality: LegalityVerdict
    cost: CostEstimate
    logistics: LogisticsEstimate
    rank_score: float = Field(ge=0, le=100)
    score_breakdown: List[ScoreContribution] = Field(default_factory=list)
    recommendation: str = ""


# ---------- Generic error envelope ----------
class ErrorResponse(BaseModel):
    error: bool = True
    message: str
    details: Optional[Dict[str, Any]] = None
