"""Controlled vocabularies for entities, buyers and pipeline runs."""

from __future__ import annotations


ENTITY_TYPE_VALUES: tuple[str, ...] = (
    "company",
    "nhs_trust",
    "nhs_icb",
    "nhs_practice",
    "council",
    "government_department",
    "other",
)
ENTITY_TYPE_SET = set(ENTITY_TYPE_VALUES)
HEALTH_ENTITY_TYPES: tuple[str, ...] = ("nhs_trust", "nhs_icb", "nhs_practice")

ORG_TYPE_VALUES: tuple[str, ...] = ("nhs", "council", "government_department")
MATCH_STATUS_VALUES: tuple[str, ...] = ("pending", "matched", "no_match", "skipped", "pending_review")
RUN_STATUS_VALUES: tuple[str, ...] = ("queued", "running", "succeeded", "failed", "cancelled", "deleted")
STAGE_STATUS_VALUES: tuple[str, ...] = ("queued", "running", "succeeded", "failed", "skipped")
ACTIVE_RUN_STATUSES: tuple[str, ...] = ("queued", "running")

_ORG_TYPE_SYNONYMS: dict[str, str] = {
    "nhs": "nhs",
    "health": "nhs",
    "trust": "nhs",
    "council": "council",
    "councils": "council",
    "local_authority": "council",
    "gov": "government_department",
    "government": "government_department",
    "department": "government_department",
    "government_department": "government_department",
}

# ODS primary role codes.
_ODS_ROLE_ENTITY_TYPES: dict[str, str] = {
    "RO197": "nhs_trust",
    "RO57": "nhs_trust",
    "RO261": "nhs_icb",
    "RO98": "nhs_icb",
    "RO177": "nhs_practice",
    "RO76": "nhs_practice",
}


def normalize_org_type(raw_type: str | None) -> str | None:
    """Map a run's org-type hint to the controlled list, or None when unknown."""

    cleaned = _clean_text(raw_type)
    if not cleaned:
        return None
    return _ORG_TYPE_SYNONYMS.get(cleaned.lower().replace(" ", "_").replace("-", "_"))


def entity_type_for_ods_role(role_id: str | None, role_description: str | None = None) -> str:
    """Choose the health entity type for an ODS primary role."""

    mapped = _ODS_ROLE_ENTITY_TYPES.get((role_id or "").upper())
    if mapped:
        return mapped
    description = (role_description or "").lower()
    if "integrated care board" in description or "commissioning" in description:
        return "nhs_icb"
    if "prescribing" in description or "practice" in description:
        return "nhs_practice"
    return "nhs_trust"


def _clean_text(value: str | None) -> str:
    if value is None:
        return ""
    return " ".join(value.split()).strip()
