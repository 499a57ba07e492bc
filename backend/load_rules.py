# backend/load_rules.py
"""
Rule loader for jurisdiction rule JSON files.

Provides:
 - RuleSpec: validated rule object (id/title/logic envelope)
 - RuleLimits / RankingConfig / CostingConfig: frozen configuration models
 - load_rules_from_folder(): (valid rules, invalid reports, merged plain dict)
 - load_ruleset(): builds a RuleSet (limits + ranking + costing + provenance)

Rule files are read in sorted order and deep-merged, so a jurisdiction folder
can override a single limit by shipping a later file with the same logic type.
Invalid files are reported and skipped; missing values fall back to the
model defaults (the conservative Part 117 subset).
"""
from pathlib import Path
import datetime
import hashlib
import json
import logging
import os
from typing import List, Dict, Any, Tuple, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import RuleConfigurationError

log = logging.getLogger("rule_loader")
log.setLevel(logging.INFO)

RULES_DIR = Path(os.environ.get("CREW_RULES_DIR") or Path(__file__).resolve().parent / "rules")


# ---------------------------------------------------------
# RuleSpec Model
# ---------------------------------------------------------
class RuleSpec(BaseModel):
    id: str
    title: str
    logic: Dict[str, Any]
    reference: Optional[Any] = None
    enabled: bool = True
    version: Optional[str] = None
    notes: Optional[Any] = None

    @field_validator("id")
    @classmethod
    def _id_not_empty(cls, v):
        if not v or not isinstance(v, str) or v.strip() == "":
            raise ValueError("id must be non-empty string")
        return v

    @field_validator("logic")
    @classmethod
    def _logic_has_type(cls, v):
        if not isinstance(v.get("type"), str):
            raise ValueError("logic.type must be a string")
        return v


# ---------------------------------------------------------
# Clock-time helpers
# ---------------------------------------------------------
def clock_to_minutes(value: Any) -> int:
    """
    Convert a time-of-day like '02:00' or '2:30' into minutes after midnight.
    Raises ValueError for anything outside 00:00..24:00.
    """
    s = str(value).strip()
    if ":" in s:
        hh, mm = s.split(":", 1)
        minutes = int(hh) * 60 + int(mm)
    else:
        minutes = int(round(float(s) * 60))
    if not 0 <= minutes <= 24 * 60:
        raise ValueError(f"time of day out of range: {value!r}")
    return minutes


# ---------------------------------------------------------
# Configuration models
# ---------------------------------------------------------
DEFAULT_CITATIONS = {
    "duty_length": "117.25(d)",
    "flight_time": "117.11(a)",
    "rest": "117.25(b)",
    "cumulative_28_day": "117.23(b)",
    "cumulative_365_day": "117.23(b)",
    "wocl": "FRMS_WOCL",
    "consecutive_duty": "FRMS_CONSECUTIVE_DUTY",
    "long_duty": "FRMS_LONG_DUTY",
}


class RuleLimits(BaseModel):
    """Regulatory limit table. Hours unless noted; WOCL bounds are local clock times."""

    model_config = ConfigDict(frozen=True)

    max_flight_duty_period_hours: float = Field(default=13.0, gt=0)
    max_flight_time_hours: float = Field(default=9.0, gt=0)
    min_rest_hours: float = Field(default=10.0, ge=0)
    extended_rest_hours: float = Field(default=12.0, ge=0)
    extended_rest_after_consecutive_days: int = Field(default=3, ge=1)
    max_flight_hours_28_day: float = Field(default=100.0, gt=0)
    max_flight_hours_365_day: float = Field(default=1000.0, gt=0)
    wocl_start: str = "02:00"
    wocl_end: str = "06:00"
    wocl_timezone: str = "UTC"
    fatigue_consecutive_days: int = Field(default=5, ge=1)
    fatigue_long_duty_hours: float = Field(default=11.0, gt=0)
    # status view flags
    status_approaching_timeout_hours: float = Field(default=2.0, ge=0)
    status_high_28_day_hours: float = Field(default=90.0, gt=0)
    status_fresh_duty_hours: float = Field(default=10.0, ge=0)
    citations: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CITATIONS))

    @field_validator("wocl_start", "wocl_end")
    @classmethod
    def _clock_parses(cls, v):
        clock_to_minutes(v)
        return v

    @field_validator("wocl_timezone")
    @classmethod
    def _zone_exists(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone {v!r}") from e
        return v

    @field_validator("citations")
    @classmethod
    def _fill_citations(cls, v):
        merged = dict(DEFAULT_CITATIONS)
        merged.update(v or {})
        return merged

    def cite(self, key: str) -> str:
        return self.citations.get(key, key)


class RankingConfig(BaseModel):
    """Named score contribution weights for the candidate ranking engine."""

    model_config = ConfigDict(frozen=True)

    base_score: float = 100.0
    warning_penalty: float = 5.0
    high_cost_threshold_usd: float = 1000.0
    high_cost_penalty: float = 10.0
    overtime_penalty: float = 15.0
    fresh_duty_hours: float = 20.0
    fresh_bonus: float = 10.0
    low_consecutive_days: int = 3
    low_consecutive_bonus: float = 5.0
    # strategy bias
    base_hourly_rate: float = 100.0
    cost_rate_divisor: float = Field(default=2.0, gt=0)
    cost_utilization_divisor: float = Field(default=5.0, gt=0)
    fairness_callout_penalty: float = 10.0
    fairness_wait_bonus_per_day: float = 2.0
    fairness_wait_cap_days: float = 14.0
    seniority_utilization_threshold: float = 50.0
    seniority_bonus: float = 20.0


class CostingConfig(BaseModel):
    """Parameters for the default cost / logistics estimators."""

    model_config = ConfigDict(frozen=True)

    pay_rate_usd: float = 100.0
    overtime_rate_usd: float = 150.0
    overtime_threshold_28_day_hours: float = 75.0
    overtime_premium_per_credit_hour: float = 50.0
    per_diem_per_duty_hour: float = 2.5
    deadhead_cost_usd: float = 350.0
    deadhead_travel_minutes: int = 150
    hotel_cost_usd: float = 0.0
    monthly_duty_capacity_hours: float = 160.0


class RuleSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    limits: RuleLimits = Field(default_factory=RuleLimits)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    costing: CostingConfig = Field(default_factory=CostingConfig)
    rules: Dict[str, RuleSpec] = Field(default_factory=dict)
    invalid: List[Dict[str, Any]] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------
# Helper: Extract rule objects from mixed JSON formats
# ---------------------------------------------------------
def _iter_rule_objects_from_raw(raw: Any) -> List[Dict[str, Any]]:
    if raw is None:
        return []

    # List of rules
    if isinstance(raw, list):
        return raw

    if isinstance(raw, dict):
        # wrapper { "rules": [ ... ] }
        if "rules" in raw and isinstance(raw["rules"], list):
            return raw["rules"]
        # Single rule
        return [raw]

    return []


# ---------------------------------------------------------
# Deep-merge with array concat and dedupe
# ---------------------------------------------------------
def deep_merge_with_array_concat(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge dicts. When encountering lists on same key, concat and dedupe by
    canonical JSON. Scalars from b win.
    """
    out = dict(a)
    for k, v in (b or {}).items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = deep_merge_with_array_concat(out[k], v)
        elif k in out and isinstance(out[k], list) and isinstance(v, list):
            seen = set()
            dedup = []
            for item in out[k] + v:
                key = json.dumps(item, sort_keys=True, default=str)
                if key not in seen:
                    dedup.append(item)
                    seen.add(key)
            out[k] = dedup
        else:
            out[k] = v
    return out


# ---------------------------------------------------------
# Map a single rule object into the canonical merged structure
# ---------------------------------------------------------
_CANONICAL_KEYS = {
    "duty_limits": "duty_limits",
    "fatigue_thresholds": "duty_limits",
    "ranking_weights": "ranking",
    "cost_parameters": "costing",
}


def map_rule_to_merged(merged: Dict[str, Any], rule: RuleSpec, source_file: str) -> None:
    """
    Map a rule's logic block into the canonical key the engine reads.
    Mutates 'merged' in place.
    """
    meta = merged.setdefault("meta", {})
    meta.setdefault("source_files", [])
    if source_file not in meta["source_files"]:
        meta["source_files"].append(source_file)

    ltype = rule.logic.get("type")
    params = {k: v for k, v in rule.logic.items() if k != "type"}
    canonical = _CANONICAL_KEYS.get(ltype)
    if canonical is None:
        log.warning("Rule %s from %s has unknown logic type %r; kept in index only", rule.id, source_file, ltype)
    else:
        merged[canonical] = deep_merge_with_array_concat(merged.get(canonical, {}), params)
    merged.setdefault("rules_index", {})[rule.id] = {"file": source_file, "type": ltype, "reference": rule.reference}


# ---------------------------------------------------------
# Provenance
# ---------------------------------------------------------
def compute_ruleset_provenance(merged: Dict[str, Any]) -> Dict[str, Any]:
    """Deterministic hash and version of the merged rule content plus load time."""
    content = {k: v for k, v in merged.items() if k != "meta"}
    serial = json.dumps(content, sort_keys=True, default=str)
    meta = merged.get("meta", {})
    return {
        "ruleset_hash_sha256": hashlib.sha256(serial.encode("utf-8")).hexdigest(),
        "ruleset_version": meta.get("version"),
        "source_files": list(meta.get("source_files", [])),
        "loaded_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }


# ---------------------------------------------------------
# Main Loader
# ---------------------------------------------------------
def load_rules_from_folder(folder: Path) -> Tuple[Dict[str, RuleSpec], List[Dict[str, Any]], Dict[str, Any]]:
    """
    Loads all rule JSON files from folder.
    Returns (VALID_RULES, INVALID_REPORTS, MERGED_RULES).
    """
    valid: Dict[str, RuleSpec] = {}
    invalid: List[Dict[str, Any]] = []
    merged: Dict[str, Any] = {}

    folder = Path(folder)
    if not folder.is_dir():
        log.warning("Rules folder does not exist: %s", folder)
        return valid, invalid, merged

    # Load *.json files deterministically
    for f in sorted(folder.glob("*.json")):
        fname = f.name
        try:
            parsed = json.loads(f.read_text(encoding="utf-8"))
        except OSError as e:
            invalid.append({"file": fname, "error": f"read_error: {e}"})
            log.error("Failed to read %s: %s", fname, e)
            continue
        except json.JSONDecodeError as e:
            invalid.append({"file": fname, "error": f"json_parse_error: {e}"})
            log.error("JSON parse error in %s: %s", fname, e)
            continue

        for idx, raw_rule in enumerate(_iter_rule_objects_from_raw(parsed)):
            try:
                rule = RuleSpec.model_validate(raw_rule)
            except ValidationError as e:
                invalid.append({"file": fname, "index": idx, "error": f"validation_error: {e}"})
                continue

            if not rule.enabled:
                log.info("Skipping disabled rule %s from %s", rule.id, fname)
                continue
            if rule.id in valid:
                invalid.append({"file": fname, "index": idx, "error": f"duplicate rule id: {rule.id}"})
                log.error("Duplicate rule id %s in %s", rule.id, fname)
                continue

            valid[rule.id] = rule
            if rule.version and "version" not in merged.get("meta", {}):
                merged.setdefault("meta", {})["version"] = rule.version
            map_rule_to_merged(merged, rule, fname)
            log.info("Loaded rule %s from %s", rule.id, fname)

    log.info("Rule loader summary: %d valid rules, %d invalid", len(valid), len(invalid))
    return valid, invalid, merged


def _build_section(model, params: Dict[str, Any], section: str, invalid: List[Dict[str, Any]]):
    known = {k: v for k, v in (params or {}).items() if k in model.model_fields}
    unknown = sorted(set(params or {}) - set(known))
    if unknown:
        log.warning("Ignoring unknown %s parameters: %s", section, ", ".join(unknown))
    try:
        return model.model_validate(known)
    except ValidationError as e:
        invalid.append({"stage": "build", "section": section, "error": str(e)})
        log.error("Invalid %s parameters, using defaults: %s", section, e)
        return model()


def load_ruleset(folder: Optional[Path] = None, strict: bool = False) -> RuleSet:
    """
    Load a folder into a frozen RuleSet. Missing sections use the defaults.
    With strict=True any invalid file or parameter raises RuleConfigurationError.
    """
    valid, invalid, merged = load_rules_from_folder(folder or RULES_DIR)
    limits = _build_section(RuleLimits, merged.get("duty_limits"), "duty_limits", invalid)
    ranking = _build_section(RankingConfig, merged.get("ranking"), "ranking", invalid)
    costing = _build_section(CostingConfig, merged.get("costing"), "costing", invalid)
    if "duty_limits" not in merged:
        log.warning("No duty_limits rule found in %s; using built-in defaults", folder or RULES_DIR)
    if strict and invalid:
        raise RuleConfigurationError(f"{len(invalid)} invalid rule entries in {folder or RULES_DIR}: {invalid}")
    return RuleSet(
        limits=limits,
        ranking=ranking,
        costing=costing,
        rules=valid,
        invalid=invalid,
        meta=compute_ruleset_provenance(merged),
    )


__all__ = [
    "RuleSpec",
    "RuleLimits",
    "RankingConfig",
    "CostingConfig",
    "RuleSet",
    "RULES_DIR",
    "clock_to_minutes",
    "load_rules_from_folder",
    "load_ruleset",
]
