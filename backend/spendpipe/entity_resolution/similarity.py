"""Deterministic string similarity helpers for organisation names."""

from __future__ import annotations

import re
from collections import Counter


_NON_ALNUM_RE = re.compile(r"[^A-Z0-9\s]")
_MULTISPACE_RE = re.compile(r"\s+")
_LEGAL_SUFFIXES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bPUBLIC LIMITED COMPANY\b"), "PLC"),
    (re.compile(r"\bLIMITED LIABILITY PARTNERSHIP\b"), "LLP"),
    (re.compile(r"\bLIMITED\b"), "LTD"),
    (re.compile(r"\bCOMPANY\b"), "CO"),
    (re.compile(r"\bCORPORATION\b"), "CORP"),
    (re.compile(r"\bINCORPORATED\b"), "INC"),
)


def normalize_org_name(value: str) -> str:
    """Normalize an organisation name into the shared comparison key space."""

    upper = _MULTISPACE_RE.sub(" ", value.strip().upper()).replace("&", " AND ")
    cleaned = _MULTISPACE_RE.sub(" ", _NON_ALNUM_RE.sub(" ", upper)).strip()
    for pattern, replacement in _LEGAL_SUFFIXES:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned


def dice_coefficient(left: str, right: str) -> float:
    """Sorensen-Dice similarity over character bigrams, whitespace ignored."""

    first = _MULTISPACE_RE.sub("", left)
    second = _MULTISPACE_RE.sub("", right)
    if first == second:
        return 1.0 if first else 0.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams = Counter(first[i : i + 2] for i in range(len(first) - 1))
    intersection = 0
    for i in range(len(second) - 1):
        bigram = second[i : i + 2]
        if first_bigrams[bigram] > 0:
            first_bigrams[bigram] -= 1
            intersection += 1
    return (2.0 * intersection) / (len(first) + len(second) - 2)


def name_similarity(left: str, right: str) -> float:
    """Dice similarity of two names after normalization."""

    norm_left = normalize_org_name(left)
    norm_right = normalize_org_name(right)
    if not norm_left or not norm_right:
        return 0.0
    return dice_coefficient(norm_left, norm_right)
