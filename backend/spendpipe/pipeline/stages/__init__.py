"""Pipeline stages and the per-org-type stage list."""

from __future__ import annotations

import logging
from typing import Any

from spendpipe.config import Settings, get_settings
from spendpipe.entity_resolution.adapters import CouncilRegistry, GovernmentRegistry, HealthRegistry
from spendpipe.entity_resolution.types import OrganisationRegistry
from spendpipe.pipeline.source_types import get_source_type
from spendpipe.pipeline.stages.enrich_locations import EnrichLocationsStage
from spendpipe.pipeline.stages.match_suppliers import MatchSuppliersStage, classify_match
from spendpipe.pipeline.stages.refresh_totals import RefreshSpendTotalsStage
from spendpipe.pipeline.stages.spend_import import SpendImportStage
from spendpipe.pipeline.types import PipelineStage
from spendpipe.registries.companies_house import build_companies_house_client
from spendpipe.registries.council_geography import build_council_geography
from spendpipe.registries.gov_uk import build_gov_uk_client
from spendpipe.registries.nhs_ods import build_nhs_ods_client
from spendpipe.registries.postcodes_io import build_postcodes_io_client
from spendpipe.storage.object_storage import ObjectStorageClient, ObjectStorageConfigError, build_object_storage_client

logger = logging.getLogger(__name__)

__all__ = [
    "EnrichLocationsStage",
    "MatchSuppliersStage",
    "RefreshSpendTotalsStage",
    "SpendImportStage",
    "build_public_registries",
    "build_stages",
    "classify_match",
    "default_stage_input",
    "stage_ids_for",
]


def build_public_registries(settings: Settings | None = None) -> dict[str, OrganisationRegistry]:
    settings = settings or get_settings()
    return {
        "nhs": HealthRegistry(build_nhs_ods_client(settings)),
        "council": CouncilRegistry(build_council_geography(settings)),
        "government_department": GovernmentRegistry(build_gov_uk_client(settings)),
    }


def build_match_stage(
    settings: Settings | None = None,
    public_registries: dict[str, OrganisationRegistry] | None = None,
) -> MatchSuppliersStage:
    settings = settings or get_settings()
    return MatchSuppliersStage(
        build_companies_house_client(settings),
        public_registries=public_registries if public_registries is not None else build_public_registries(settings),
        cooldown_seconds=settings.match_rate_limit_cooldown_seconds,
    )


def build_stages(org_type: str, settings: Settings | None = None) -> list[PipelineStage]:
    """Import, match, refresh totals, enrich locations, wired to configured clients."""

    settings = settings or get_settings()
    source = get_source_type(org_type)
    storage: ObjectStorageClient | None
    try:
        storage = build_object_storage_client(settings)
    except ObjectStorageConfigError as exc:
        logger.warning("pipeline.object_storage_unconfigured detail=%s", exc)
        storage = None
    public_registries = build_public_registries(settings)
    return [
        SpendImportStage(source, storage=storage, registry=public_registries[source.org_type]),
        build_match_stage(settings, public_registries),
        RefreshSpendTotalsStage(),
        EnrichLocationsStage(build_postcodes_io_client(settings)),
    ]


def default_stage_input(
    asset_id: int | None,
    params: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Stage input shared by every stage of a run; run params override the defaults."""

    settings = settings or get_settings()
    return {
        "asset_id": asset_id,
        "limit": settings.match_limit,
        "auto_match_threshold": settings.auto_match_threshold,
        "min_similarity_threshold": settings.min_similarity_threshold,
        **(params or {}),
    }


def stage_ids_for(org_type: str) -> list[str]:
    """Stage ids in execution order, without building any client."""

    source = get_source_type(org_type)
    return [
        source.import_stage_id,
        MatchSuppliersStage.id,
        RefreshSpendTotalsStage.id,
        EnrichLocationsStage.id,
    ]
