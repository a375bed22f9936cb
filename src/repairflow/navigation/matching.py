"""Resolve a free-form categorization answer to one of the real options.

The categorization service is asked to echo one option verbatim, but answers
arrive numbered, quoted, re-cased, padded with extra words or garbled. The
resolution chain tries, in order:

1. exact match
2. case-insensitive exact match
3. substring containment, either direction
4. token-overlap scoring (2 per shared word, 1 per partial containment)

The first option that satisfies a step wins; token-overlap ties go to the
option encountered first. A zero token-overlap score means no resolution.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from enum import Enum

_NUMBER_PREFIX = re.compile(r"^\d+\.\s*")
_SURROUNDING_QUOTES = re.compile(r"^[\"']|[\"']$")
_BULLET_PREFIX = re.compile(r"^[-*]\s*")
_HOURS_SUFFIX = re.compile(r"\s*\([\d.]+h.*\)$")

NO_ADD_ONS_ANSWER = "NONE"


class MatchMethod(str, Enum):
    """Which step of the resolution chain produced the match."""

    EXACT = "exact"
    CASE_INSENSITIVE = "case-insensitive"
    SUBSTRING = "substring"
    TOKEN_OVERLAP = "token-overlap"


def clean_answer(answer: str) -> str:
    """Strip whitespace, a leading ``N.`` number and surrounding quotes."""
    cleaned = _NUMBER_PREFIX.sub("", answer.strip())
    return _SURROUNDING_QUOTES.sub("", cleaned)


def strip_hours_suffix(label: str) -> str:
    """Drop a trailing ``(1.2h, $150)`` annotation from a procedure label."""
    return _HOURS_SUFFIX.sub("", label).strip()


def token_overlap_score(target: str, candidate: str) -> int:
    """Score shared words: 2 for an exact word, 1 for partial containment."""
    score = 0
    candidate_words = candidate.lower().split()
    for tw in target.lower().split():
        for cw in candidate_words:
            if tw == cw:
                score += 2
            elif tw in cw or cw in tw:
                score += 1
    return score


def find_closest_match(target: str, candidates: Sequence[str]) -> str | None:
    """Return the candidate with the highest token-overlap score.

    Ties are broken by encounter order. Returns None when no candidate
    shares anything with ``target``.
    """
    best_score = 0
    best: str | None = None
    for candidate in candidates:
        score = token_overlap_score(target, candidate)
        if score > best_score:
            best_score = score
            best = candidate
    return best


def resolve_option(
    answer: str, options: Sequence[str]
) -> tuple[str, MatchMethod] | None:
    """Resolve ``answer`` to one of ``options``.

    Args:
        answer: Raw categorization answer; cleaned before matching.
        options: Option labels in display order.

    Returns:
        ``(label, method)`` for the resolved option, or None.
    """
    cleaned = clean_answer(answer)
    if not cleaned or not options:
        return None

    if cleaned in options:
        return cleaned, MatchMethod.EXACT

    lower = cleaned.lower()
    for option in options:
        if option.lower() == lower:
            return option, MatchMethod.CASE_INSENSITIVE

    for option in options:
        option_lower = option.lower()
        if lower in option_lower or option_lower in lower:
            return option, MatchMethod.SUBSTRING

    closest = find_closest_match(cleaned, options)
    if closest is not None:
        return closest, MatchMethod.TOKEN_OVERLAP
    return None


def parse_add_on_answer(answer: str | None) -> list[str]:
    """Split a multi-select answer into individual picks.

    One pick per line; numbering and bullets are stripped. ``NONE`` (any
    case) or an empty answer means no add-ons apply.
    """
    if not answer or answer.strip().upper() == NO_ADD_ONS_ANSWER:
        return []
    picks = []
    for line in answer.splitlines():
        pick = _BULLET_PREFIX.sub("", _NUMBER_PREFIX.sub("", line.strip()))
        if pick:
            picks.append(pick)
    return picks


def resolve_many(picks: Sequence[str], options: Sequence[str]) -> list[str]:
    """Resolve each pick against ``options``, dropping misses and duplicates."""
    resolved: list[str] = []
    for pick in picks:
        match = resolve_option(pick, options)
        if match is not None and match[0] not in resolved:
            resolved.append(match[0])
    return resolved


__all__ = [
    "MatchMethod",
    "NO_ADD_ONS_ANSWER",
    "clean_answer",
    "find_closest_match",
    "parse_add_on_answer",
    "resolve_many",
    "resolve_option",
    "strip_hours_suffix",
    "token_overlap_score",
]
