import math
import re
from typing import Iterable, List, Pattern, Union

PatternLike = Union[str, Pattern]

# Hard blocklist for script and URI injection. Always applied, not configurable.
UNSAFE_PATTERNS = [
    re.compile(r"<\s*script\b", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"data\s*:\s*text/html", re.IGNORECASE),
    re.compile(r"vbscript\s*:", re.IGNORECASE),
    re.compile(r"\bon(?:load|click|error|mouseover|focus|blur|submit)\s*=", re.IGNORECASE),
]


def compile_pattern(pattern: PatternLike) -> Pattern:
    if isinstance(pattern, str):
        return re.compile(pattern, re.IGNORECASE)
    return pattern


def compile_patterns(patterns: Iterable[PatternLike]) -> List[Pattern]:
    return [compile_pattern(p) for p in patterns]


def clean_text(text) -> str:
    if not isinstance(text, str):
        return ""
    return text.strip().lower()


def escape(text: str) -> str:
    return re.escape(text or "")


def matches_any(text: str, patterns: Iterable[PatternLike]) -> bool:
    if not text:
        return False
    return any(compile_pattern(p).search(text) for p in patterns)


def first_match(text: str, patterns: Iterable[PatternLike]):
    """Return the first pattern that matches ``text`` (or None)."""
    if not text:
        return None
    for p in patterns:
        compiled = compile_pattern(p)
        if compiled.search(text):
            return compiled
    return None


def find_all_matches(text: str, patterns: Iterable[PatternLike]) -> List[str]:
    found = []
    if not text:
        return found
    for p in patterns:
        for m in compile_pattern(p).finditer(text):
            if m.group(0):
                found.append(m.group(0))
    return found


def is_safe_text(text: str) -> bool:
    if not text:
        return True
    return not any(p.search(text) for p in UNSAFE_PATTERNS)


def round_score(value: float, digits: int = 1) -> float:
    # Half-up rounding; round() is banker's rounding.
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def calculate_confidence(text: str, pattern: PatternLike, base: float = 0.8) -> float:
    """Score a match by how much of the text it covers.

    Returns 0.0 when nothing matches, otherwise ``base`` plus up to 0.2
    for the match-to-text length ratio, clamped to 1.0 and rounded to
    one decimal.
    """
    if not text:
        return 0.0
    m = compile_pattern(pattern).search(text)
    if not m:
        return 0.0
    ratio = len(m.group(0)) / len(text)
    score = min(1.0, max(0.0, base + ratio * 0.2))
    return min(1.0, round_score(score, 1))
