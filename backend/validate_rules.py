# backend/validate_rules.py
# Run from the project root:
#   python -m backend.validate_rules [rules_dir]
# Validates every .json in the rules folder: JSON syntax (with line/col context),
# the rule envelope, and the limits / ranking / costing parameters they build.

import json
from pathlib import Path
import sys
from typing import List, Optional

from pydantic import ValidationError

from .errors import RuleConfigurationError
from .load_rules import RULES_DIR, RuleSpec, _iter_rule_objects_from_raw, load_ruleset


def _print_context(txt: str, lineno: int) -> None:
    lines = txt.splitlines()
    ln = lineno - 1
    start = max(0, ln - 2)
    end = min(len(lines), ln + 2)
    print("---- context ----")
    for i in range(start, end):
        marker = ">>" if i == ln else "  "
        print(f"{marker} {i+1:4d}: {lines[i]}")
    print("-----------------")


def validate_json_file(p: Path) -> bool:
    try:
        txt = p.read_text(encoding="utf-8")
    except OSError as e:
        print(f"{p.name}: ERROR reading file: {e}")
        return False
    try:
        raw = json.loads(txt)
    except json.JSONDecodeError as e:
        print(f"{p.name}: JSON parse error: {e.msg} (line {e.lineno}, col {e.colno})")
        _print_context(txt, e.lineno)
        return False

    rules = _iter_rule_objects_from_raw(raw)
    if not rules:
        print(f"{p.name}: no rule objects found")
        return False
    ok = True
    for idx, rule in enumerate(rules):
        try:
            spec = RuleSpec.model_validate(rule)
        except ValidationError as e:
            print(f"{p.name}[{idx}]: invalid rule: {e}")
            ok = False
            continue
        print(f"{p.name}[{idx}]: OK {spec.id} ({spec.logic['type']})")
    return ok


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    rules_dir = Path(argv[0]) if argv else RULES_DIR
    if not rules_dir.exists():
        print("Rules folder not found:", rules_dir.resolve())
        return 1
    files = sorted(rules_dir.glob("*.json"))
    if not files:
        print("No .json files found in:", rules_dir.resolve())
        return 0

    ok_count = 0
    bad_count = 0
    for f in files:
        if validate_json_file(f):
            ok_count += 1
        else:
            bad_count += 1
    print(f"\nSummary: {ok_count} OK, {bad_count} INVALID ({len(files)} files checked)")
    if bad_count:
        return 2

    # Parameters are only checked once the files merge cleanly
    try:
        ruleset = load_ruleset(rules_dir, strict=True)
    except RuleConfigurationError as e:
        print(f"Ruleset build failed: {e}")
        return 2
    print(f"Ruleset {ruleset.meta.get('ruleset_version')} sha256={ruleset.meta.get('ruleset_hash_sha256')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
