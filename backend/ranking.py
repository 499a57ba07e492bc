# backend/ranking.py
"""
Candidate ranking engine.

Scores legality-cleared candidates as a sum of named contributions on top of a
base score, clamps the sum to [0, 100] and orders by score (descending) then
crew id (ascending). Inputs are assumed legal; legality is not re-checked.

Contributions (weights from RankingConfig):
  warnings         -warning_penalty per warning on the verdict
  high_cost        -high_cost_penalty when total cost exceeds the threshold
  overtime         -overtime_penalty when an overtime premium applies
  fresh_crew       +fresh_bonus when cumulative duty hours are low
  low_consecutive  +low_consecutive_bonus when consecutive duty days are few
  strategy:<name>  strategy bias (cost / fairness / seniority)

The function is deterministic: no clock, no randomness.
"""

from typing import Callable, Dict, Iterable, List, Optional, Union

from .errors import InvalidInputError
from .load_rules import RankingConfig
from .models import (
    FatigueIndicators,
    RankedCandidate,
    RankingInput,
    RankingStrategy,
    ScoreContribution,
)

MIN_SCORE = 0.0
MAX_SCORE = 100.0


# ---------- Base contributions ----------
def warning_contribution(c: RankingInput, cfg: RankingConfig) -> float:
    return -cfg.warning_penalty * len(c.verdict.warnings)


def high_cost_contribution(c: RankingInput, cfg: RankingConfig) -> float:
    return -cfg.high_cost_penalty if c.cost.total_usd > cfg.high_cost_threshold_usd else 0.0


def overtime_contribution(c: RankingInput, cfg: RankingConfig) -> float:
    return -cfg.overtime_penalty if c.cost.overtime_premium > 0 else 0.0


def fresh_crew_contribution(c: RankingInput, cfg: RankingConfig) -> float:
    return cfg.fresh_bonus if c.indicators.duty_hours_cumulative < cfg.fresh_duty_hours else 0.0


def low_consecutive_contribution(c: RankingInput, cfg: RankingConfig) -> float:
    return cfg.low_consecutive_bonus if c.indicators.consecutive_duty_days < cfg.low_consecutive_days else 0.0


BASE_CONTRIBUTIONS: Dict[str, Callable[[RankingInput, RankingConfig], float]] = {
    "warnings": warning_contribution,
    "high_cost": high_cost_contribution,
    "overtime": overtime_contribution,
    "fresh_crew": fresh_crew_contribution,
    "low_consecutive": low_consecutive_contribution,
}


# ---------- Strategy bias ----------
def cost_bias(ind: FatigueIndicators, cfg: RankingConfig) -> float:
    """Penalise premium hourly rates and heavy utilisation."""
    rate_penalty = max(0.0, ind.hourly_rate - cfg.base_hourly_rate) / cfg.cost_rate_divisor
    return -rate_penalty - ind.utilization_percent / cfg.cost_utilization_divisor


def fairness_bias(ind: FatigueIndicators, cfg: RankingConfig) -> float:
    """Penalise recent callouts, reward time since the last one (never called = full wait)."""
    waited = cfg.fairness_wait_cap_days
    if ind.days_since_last_callout is not None:
        waited = min(ind.days_since_last_callout, cfg.fairness_wait_cap_days)
    return -cfg.fairness_callout_penalty * ind.callouts_28_day + cfg.fairness_wait_bonus_per_day * waited


def seniority_bias(ind: FatigueIndicators, cfg: RankingConfig) -> float:
    # lower recent utilisation stands in for seniority
    return cfg.seniority_bonus if ind.utilization_percent < cfg.seniority_utilization_threshold else 0.0


STRATEGY_BIAS: Dict[RankingStrategy, Callable[[FatigueIndicators, RankingConfig], float]] = {
    RankingStrategy.COST: cost_bias,
    RankingStrategy.FAIRNESS: fairness_bias,
    RankingStrategy.SENIORITY: seniority_bias,
}


def resolve_strategy(strategy: Union[str, RankingStrategy]) -> RankingStrategy:
    try:
        return RankingStrategy(strategy)
    except ValueError as e:
        allowed = ", ".join(s.value for s in RankingStrategy)
        raise InvalidInputError(f"Unknown ranking strategy {strategy!r} (expected one of: {allowed})") from e


def recommendation_for(score: float) -> str:
    if score >= 90:
        return "EXCELLENT: Optimal crew choice with no concerns"
    if score >= 75:
        return "GOOD: Suitable crew with minor considerations"
    if score >= 60:
        return "ACCEPTABLE: Legal but check warnings"
    return "USE WITH CAUTION: Legal but multiple concerns"


def score_candidate(
    candidate: RankingInput,
    strategy: RankingStrategy,
    config: RankingConfig,
) -> RankedCandidate:
    breakdown = [ScoreContribution(name="base", points=config.base_score)]
    for name, fn in BASE_CONTRIBUTIONS.items():
        breakdown.append(ScoreContribution(name=name, points=fn(candidate, config)))
    breakdown.append(ScoreContribution(
        name=f"strategy:{strategy.value}",
        points=STRATEGY_BIAS[strategy](candidate.indicators, config),
    ))

    raw = sum(b.points for b in breakdown)
    score = round(max(MIN_SCORE, min(MAX_SCORE, raw)), 2)
    return RankedCandidate(
        crew_id=candidate.crew_id,
        name=candidate.name,
        legality=candidate.verdict,
        cost=candidate.cost,
        logistics=candidate.logistics,
        rank_score=score,
        score_breakdown=breakdown,
        recommendation=recommendation_for(score),
    )


def rank(
    candidates: Iterable[RankingInput],
    strategy: Union[str, RankingStrategy] = RankingStrategy.FAIRNESS,
    max_results: Optional[int] = None,
    config: Optional[RankingConfig] = None,
) -> List[RankedCandidate]:
    """Score, order (score desc, crew id asc) and truncate to max_results."""
    if max_results is not None and max_results < 0:
        raise InvalidInputError("max_results must not be negative")
    strategy = resolve_strategy(strategy)
    config = config or RankingConfig()

    scored = [score_candidate(c, strategy, config) for c in candidates]
    scored.sort(key=lambda r: (-r.rank_score, r.crew_id))
    if max_results is not None:
        scored = scored[:max_results]
    return scored
