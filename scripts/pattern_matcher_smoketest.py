import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import json
from pattern_matcher import (
    calculate_confidence,
    clean_text,
    find_all_matches,
    first_match,
    is_safe_text,
    matches_any,
    round_score,
)


def _assert(cond, msg):
    if not cond:
        raise AssertionError(msg)


def test_confidence_scales_with_coverage():
    _assert(calculate_confidence("hello there!", r"^hello") == 0.9, "Partial match should score 0.9")
    _assert(calculate_confidence("hello", r"^hello") == 1.0, "Full match should score 1.0")
    _assert(calculate_confidence("goodbye", r"^hello") == 0.0, "No match must score 0.0")
    _assert(calculate_confidence("", r"^hello") == 0.0, "Empty text must score 0.0")


def test_half_up_rounding():
    _assert(round_score(0.25, 1) == 0.3, "0.25 should round up to 0.3")
    _assert(round_score(72.5, 0) == 73, "72.5 should round up to 73")


def test_safety_blocklist():
    _assert(not is_safe_text("<script>alert(1)</script>"), "Script tag passed the filter")
    _assert(not is_safe_text("click javascript:void(0)"), "javascript: URI passed the filter")
    _assert(not is_safe_text('<img src=x onerror="x()">'), "Event handler passed the filter")
    _assert(is_safe_text("I love onboarding new engineers"), "Plain word flagged as unsafe")
    _assert(is_safe_text(""), "Empty text is safe")


def test_match_helpers():
    patterns = [r"\bsalary\b", r"\bbenefits\b"]
    _assert(matches_any("what is the salary?", patterns), "matches_any missed")
    _assert(first_match("benefits and salary", patterns).pattern == r"\bsalary\b", "first_match should honour list order")
    _assert(find_all_matches("salary, salary and benefits", patterns) == ["salary", "salary", "benefits"], "find_all_matches")
    _assert(clean_text("  Hello  ") == "hello", "clean_text should trim and lowercase")
    _assert(clean_text(None) == "", "clean_text should coerce non-strings")


if __name__ == "__main__":
    test_confidence_scales_with_coverage()
    test_half_up_rounding()
    test_safety_blocklist()
    test_match_helpers()
    print(json.dumps({"ok": True}))
