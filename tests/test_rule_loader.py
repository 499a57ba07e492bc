# tests/test_rule_loader.py
import json

import pytest
from pydantic import ValidationError

from backend.errors import RuleConfigurationError
from backend.load_rules import (
    RuleLimits,
    clock_to_minutes,
    deep_merge_with_array_concat,
    load_rules_from_folder,
    load_ruleset,
)
from backend.validate_rules import main as validate_main


def write_rule(folder, name, payload):
    (folder / name).write_text(json.dumps(payload), encoding="utf-8")


def test_bundled_rules_load(ruleset):
    assert set(ruleset.rules) == {
        "FRMS_FATIGUE_THRESHOLDS",
        "PART117_DUTY_LIMITS",
        "RESERVE_COST_PARAMETERS",
        "RESERVE_RANKING_WEIGHTS",
    }
    assert ruleset.invalid == []
    assert ruleset.limits == RuleLimits()
    assert ruleset.limits.cite("rest") == "117.25(b)"
    assert ruleset.meta["ruleset_version"] == "part117-2024.1"
    assert len(ruleset.meta["ruleset_hash_sha256"]) == 64


def test_later_file_overrides_single_limit(tmp_path):
    write_rule(tmp_path, "a_base.json", {"id": "BASE", "title": "base", "logic": {"type": "duty_limits", "min_rest_hours": 10}})
    write_rule(tmp_path, "b_override.json", {"id": "LOCAL", "title": "local", "logic": {
        "type": "duty_limits", "min_rest_hours": 11, "citations": {"rest": "LOCAL-REST"}}})
    ruleset = load_ruleset(tmp_path)
    assert ruleset.limits.min_rest_hours == 11
    assert ruleset.limits.cite("rest") == "LOCAL-REST"
    # untouched citations keep their defaults
    assert ruleset.limits.cite("duty_length") == "117.25(d)"


def test_invalid_files_are_reported_not_fatal(tmp_path):
    (tmp_path / "broken.json").write_text("{oops", encoding="utf-8")
    write_rule(tmp_path, "no_type.json", {"id": "X", "title": "x", "logic": {}})
    write_rule(tmp_path, "ok.json", {"id": "OK", "title": "ok", "logic": {"type": "duty_limits", "max_flight_time_hours": 8}})
    valid, invalid, merged = load_rules_from_folder(tmp_path)
    assert list(valid) == ["OK"]
    assert {entry["file"] for entry in invalid} == {"broken.json", "no_type.json"}
    assert merged["duty_limits"]["max_flight_time_hours"] == 8


def test_bad_parameter_values_fall_back_to_defaults(tmp_path):
    write_rule(tmp_path, "bad.json", {"id": "BAD", "title": "bad", "logic": {"type": "duty_limits", "wocl_start": "25:99"}})
    ruleset = load_ruleset(tmp_path)
    assert ruleset.limits == RuleLimits()
    assert ruleset.invalid[0]["section"] == "duty_limits"
    with pytest.raises(RuleConfigurationError):
        load_ruleset(tmp_path, strict=True)


def test_unknown_wocl_timezone_is_rejected(tmp_path):
    with pytest.raises(ValidationError):
        RuleLimits(wocl_timezone="Mars/Olympus")
    write_rule(tmp_path, "frms.json", {"id": "FRMS", "title": "frms", "logic": {
        "type": "fatigue_thresholds", "wocl_timezone": "Mars/Olympus"}})
    ruleset = load_ruleset(tmp_path)
    assert ruleset.limits == RuleLimits()
    assert ruleset.invalid[0]["section"] == "duty_limits"
    assert "Mars/Olympus" in ruleset.invalid[0]["error"]
    with pytest.raises(RuleConfigurationError):
        load_ruleset(tmp_path, strict=True)
    assert validate_main([str(tmp_path)]) == 2


def test_named_wocl_timezone_is_accepted(tmp_path):
    write_rule(tmp_path, "frms.json", {"id": "FRMS", "title": "frms", "logic": {
        "type": "fatigue_thresholds", "wocl_timezone": "America/Chicago"}})
    ruleset = load_ruleset(tmp_path, strict=True)
    assert ruleset.limits.wocl_timezone == "America/Chicago"


def test_disabled_and_duplicate_rules(tmp_path):
    write_rule(tmp_path, "a.json", {"rules": [
        {"id": "A", "title": "a", "logic": {"type": "ranking_weights", "warning_penalty": 7}},
        {"id": "A", "title": "dup", "logic": {"type": "ranking_weights", "warning_penalty": 9}},
        {"id": "B", "title": "off", "enabled": False, "logic": {"type": "ranking_weights", "warning_penalty": 1}},
    ]})
    ruleset = load_ruleset(tmp_path)
    assert list(ruleset.rules) == ["A"]
    assert ruleset.ranking.warning_penalty == 7
    assert "duplicate" in ruleset.invalid[0]["error"]


def test_missing_folder_uses_defaults(tmp_path):
    ruleset = load_ruleset(tmp_path / "nowhere")
    assert ruleset.rules == {}
    assert ruleset.limits == RuleLimits()


def test_deep_merge_concats_lists_and_overrides_scalars():
    merged = deep_merge_with_array_concat({"a": 1, "l": [1, 2], "d": {"x": 1}}, {"a": 2, "l": [2, 3], "d": {"y": 2}})
    assert merged == {"a": 2, "l": [1, 2, 3], "d": {"x": 1, "y": 2}}


@pytest.mark.parametrize("value,minutes", [("02:00", 120), ("2:30", 150), ("00:00", 0), ("24:00", 1440), (6, 360)])
def test_clock_to_minutes(value, minutes):
    assert clock_to_minutes(value) == minutes


def test_clock_to_minutes_rejects_out_of_range():
    with pytest.raises(ValueError):
        clock_to_minutes("25:00")


def test_validate_rules_script(tmp_path, capsys):
    assert validate_main([]) == 0
    assert "Summary: 3 OK, 0 INVALID" in capsys.readouterr().out

    (tmp_path / "broken.json").write_text('{\n  "id": "X",\n  "title": \n}\n', encoding="utf-8")
    assert validate_main([str(tmp_path)]) == 2
    out = capsys.readouterr().out
    assert "JSON parse error" in out
    assert ">>" in out
