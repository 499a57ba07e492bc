# backend/costing.py
"""
Default pluggable estimators used by the replacement search.

The search only relies on the output shapes (CostEstimate, LogisticsEstimate,
FatigueIndicators); any callable with the same signature can replace these.
Outputs are validated at the boundary with coerce(), so an estimator may also
return a plain dict.

All derived quantities take the reference instant (the departure being
covered) as an argument; nothing here reads the wall clock.
"""

from typing import Any, Callable, Optional, Type, TypeVar
import datetime

from pydantic import BaseModel

from .load_rules import CostingConfig
from .models import (
    CostEstimate,
    CrewIdentity,
    DutyState,
    FatigueIndicators,
    LogisticsEstimate,
    ProposedDutyPeriod,
    hours_between,
)

T = TypeVar("T", bound=BaseModel)

CostEstimator = Callable[[CrewIdentity, DutyState, ProposedDutyPeriod, LogisticsEstimate], Any]
LogisticsEstimator = Callable[[CrewIdentity, DutyState, ProposedDutyPeriod, str], Any]
IndicatorEstimator = Callable[[DutyState, datetime.datetime], Any]


def coerce(model: Type[T], value: Any) -> T:
    """Validate an estimator result into its typed shape (raises pydantic ValidationError)."""
    if isinstance(value, model):
        return value
    return model.model_validate(value)


def hourly_rate(state: DutyState, config: CostingConfig) -> float:
    if state.flight_hours_28_day > config.overtime_threshold_28_day_hours:
        return config.overtime_rate_usd
    return config.pay_rate_usd


class DefaultLogisticsEstimator:
    """Crew already at the departure station need no positioning; others deadhead in."""

    def __init__(self, config: Optional[CostingConfig] = None):
        self.config = config or CostingConfig()

    def __call__(self, member: CrewIdentity, state: DutyState, period: ProposedDutyPeriod, station: str) -> LogisticsEstimate:
        report = period.report or period.start
        if state.current_location == station:
            return LogisticsEstimate(current_location=state.current_location, ready_time=report)
        travel = self.config.deadhead_travel_minutes
        return LogisticsEstimate(
            current_location=state.current_location,
            positioning_required=True,
            positioning_flight=f"DH {state.current_location}-{station}",
            ready_time=report,
            travel_minutes=travel,
        )


class DefaultCostEstimator:
    """
    Pay credit is the block time; per diem accrues per duty hour; an overtime
    premium applies once the 28-day flight hours pass the overtime threshold.
    """

    def __init__(self, config: Optional[CostingConfig] = None):
        self.config = config or CostingConfig()

    def __call__(
        self,
        member: CrewIdentity,
        state: DutyState,
        period: ProposedDutyPeriod,
        logistics: LogisticsEstimate,
    ) -> CostEstimate:
        cfg = self.config
        pay_credit = period.total_flight_hours
        per_diem = period.total_duty_hours * cfg.per_diem_per_duty_hour
        overtime = 0.0
        if state.flight_hours_28_day > cfg.overtime_threshold_28_day_hours:
            overtime = pay_credit * cfg.overtime_premium_per_credit_hour
        deadhead = cfg.deadhead_cost_usd if logistics.positioning_required else 0.0
        hotel = cfg.hotel_cost_usd if logistics.positioning_required else 0.0
        total = pay_credit * cfg.pay_rate_usd + per_diem + overtime + deadhead + hotel
        return CostEstimate(
            pay_credit=pay_credit,
            per_diem=per_diem,
            deadhead_cost=deadhead,
            hotel_cost=hotel,
            overtime_premium=overtime,
            total_usd=total,
        )


class DefaultIndicatorEstimator:
    def __init__(self, config: Optional[CostingConfig] = None):
        self.config = config or CostingConfig()

    def __call__(self, state: DutyState, reference: datetime.datetime) -> FatigueIndicators:
        days_since = None
        if state.last_callout is not None:
            days_since = max(0.0, hours_between(state.last_callout, reference) / 24.0)
        return FatigueIndicators(
            duty_hours_cumulative=state.duty_hours_cumulative,
            consecutive_duty_days=state.consecutive_duty_days,
            hourly_rate=hourly_rate(state, self.config),
            utilization_percent=state.duty_hours_cumulative / self.config.monthly_duty_capacity_hours * 100.0,
            callouts_28_day=state.callouts_28_day,
            days_since_last_callout=days_since,
        )
