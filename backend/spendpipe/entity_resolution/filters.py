"""Cheap name heuristics applied before any registry call."""

from __future__ import annotations

import re


_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")
_TITLE_PREFIX_RE = re.compile(r"^(DR|MR|MRS|MS|MISS|PROF|REV|DOCTOR|MISTER|PROFESSOR)\s+", re.IGNORECASE)
_COMPANY_SUFFIX_RE = re.compile(r"\b(LTD|LIMITED|PLC|LLP|INC|CORP|CORPORATION)\b", re.IGNORECASE)
_GENERIC_LABEL_RE = re.compile(
    r"^(SALARY|SALARIES|REFUNDS?|PETTY CASH|CASH|SUNDRY|MISC(ELLANEOUS)?|VARIOUS|TRANSFER|PAYMENT|PAYROLL"
    r"|REDACTED|CONFIDENTIAL|WITHHELD|N/A|NOT APPLICABLE|UNKNOWN|TBC|TBA)$",
    re.IGNORECASE,
)
_VOWEL_RE = re.compile(r"[aeiou]", re.IGNORECASE)
_LETTER_RE = re.compile(r"[a-z]", re.IGNORECASE)

_NHS_PRODUCT_KEYWORDS: tuple[str, ...] = (
    "wound care",
    "products",
    "devices",
    "consumables",
    "equipment",
    "solutions",
    "lot ",
    "services 20",
    "systems",
    "lancets",
    "implants",
    "pumps",
    "monitoring",
    "hygiene",
    "packs",
    "testing",
    "orthopaedic",
    "ppe",
    "surgical",
    "sutures",
    "catheters",
    "diagnostics",
    "maintenance",
    "repair",
)
_NHS_INTERNAL_KEYWORDS: tuple[str, ...] = (
    "ACS ",
    "CORPORATE ESTATES",
    "DIGITAL SERVICES",
    "INPATIENTS",
    "LOCALITY",
    "FINANCE",
    "MEDICAL",
    "ADMINISTRATION",
)
_NHS_INDICATORS: tuple[str, ...] = (
    "nhs",
    "hospital",
    "trust",
    " icb",
    " ccg",
    "healthcare",
    "integrated care board",
    "foundation trust",
)


def is_numeric_name(name: str) -> bool:
    return bool(_NUMERIC_RE.match(name.strip()))


def is_likely_not_an_organisation(name: str) -> str | None:
    """Return a reason when the name is unlikely to be a company, council or department."""

    trimmed = name.strip()
    if trimmed.isdigit():
        return "purely numeric"
    if len(trimmed) < 2:
        return "too short"
    if _TITLE_PREFIX_RE.match(trimmed) and not _COMPANY_SUFFIX_RE.search(trimmed):
        return "matches non-company pattern (individual or generic term)"
    if _GENERIC_LABEL_RE.match(trimmed):
        return "matches non-company pattern (individual or generic term)"

    if " " not in trimmed:
        digits = sum(1 for char in trimmed if char.isdigit())
        if len(trimmed) > 6 and digits / len(trimmed) > 0.6:
            return "likely a random ID or reference number (high digit density)"
        if len(trimmed) > 8 and not _VOWEL_RE.search(trimmed) and _LETTER_RE.search(trimmed):
            return "likely a random ID (no vowels)"
    return None


def is_likely_nhs_organisation(name: str) -> bool:
    """Heuristic gate deciding whether a buyer name is worth an ODS lookup."""

    if is_numeric_name(name):
        return False
    lower_name = name.lower()
    if any(keyword in lower_name for keyword in _NHS_PRODUCT_KEYWORDS):
        return False
    if any(keyword in name for keyword in _NHS_INTERNAL_KEYWORDS):
        return False
    return any(indicator in lower_name for indicator in _NHS_INDICATORS)


_COUNCIL_RE = re.compile(
    r"\b(COUNCIL|BOROUGH|COUNTY|DISTRICT|CITY OF|LOCAL AUTHORITY|COMBINED AUTHORITY)\b",
    re.IGNORECASE,
)
_GOVERNMENT_RE = re.compile(
    r"\b(DEPARTMENT (FOR|OF)|MINISTRY OF|HM |HIS MAJESTY|CABINET OFFICE|HOME OFFICE|FOREIGN|TREASURY|GOVERNMENT)",
    re.IGNORECASE,
)


def is_likely_council(name: str) -> bool:
    return bool(_COUNCIL_RE.search(name)) and not _COMPANY_SUFFIX_RE.search(name)


def is_likely_government_department(name: str) -> bool:
    return bool(_GOVERNMENT_RE.search(name)) and not _COMPANY_SUFFIX_RE.search(name)
