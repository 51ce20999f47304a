"""Controlled vocabularies."""

from spendpipe.schema.entity_types import (
    ENTITY_TYPE_VALUES,
    HEALTH_ENTITY_TYPES,
    MATCH_STATUS_VALUES,
    ORG_TYPE_VALUES,
    RUN_STATUS_VALUES,
    STAGE_STATUS_VALUES,
    entity_type_for_ods_role,
    normalize_org_type,
)

__all__ = [
    "ENTITY_TYPE_VALUES",
    "HEALTH_ENTITY_TYPES",
    "MATCH_STATUS_VALUES",
    "ORG_TYPE_VALUES",
    "RUN_STATUS_VALUES",
    "STAGE_STATUS_VALUES",
    "entity_type_for_ods_role",
    "normalize_org_type",
]
