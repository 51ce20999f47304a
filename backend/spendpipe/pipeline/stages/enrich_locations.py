"""Postcode geocoding sweep over canonical entities."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from spendpipe.models.entity import Entity
from spendpipe.pipeline.run_logger import PipelineLogger
from spendpipe.pipeline.types import (
    DryRunMetrics,
    LocationEnrichmentMetrics,
    PipelineContext,
    PipelineError,
    PipelineStage,
    StageInput,
    StageResult,
    require_positive_int,
)
from spendpipe.registries.postcodes_io import POSTCODES_IO_BULK_LIMIT, PostcodesIoClient, normalize_uk_postcode

DEFAULT_MAX_ENTITIES = 5000
LOCATION_SOURCE = "postcodes.io"


def enrich_entity_locations(
    db: Session,
    client: PostcodesIoClient,
    *,
    max_entities: int = DEFAULT_MAX_ENTITIES,
    max_distinct_postcodes: int = POSTCODES_IO_BULK_LIMIT,
    entity_ids: list[int] | None = None,
    log: PipelineLogger | None = None,
) -> LocationEnrichmentMetrics:
    """Fill coordinates and region for entities that have a postcode but no location yet."""

    stmt = select(Entity.id, Entity.postal_code).where(
        Entity.postal_code.is_not(None),
        or_(
            Entity.latitude.is_(None),
            Entity.longitude.is_(None),
            Entity.uk_region.is_(None),
            Entity.uk_country.is_(None),
        ),
    )
    if entity_ids:
        stmt = stmt.where(Entity.id.in_(entity_ids))
    rows = db.execute(stmt.order_by(Entity.id.asc()).limit(max_entities)).all()

    ids_by_postcode: dict[str, list[int]] = {}
    for entity_id, postal_code in rows:
        postcode = normalize_uk_postcode(postal_code)
        if postcode:
            ids_by_postcode.setdefault(postcode, []).append(entity_id)
    postcodes = list(ids_by_postcode)[:max_distinct_postcodes]

    metrics = LocationEnrichmentMetrics(scanned_entities=len(rows), distinct_postcodes=len(postcodes))
    if log is not None:
        log.info(
            "Entity location enrichment: starting postcode batch",
            {
                "scanned_entities": len(rows),
                "distinct_postcodes": len(postcodes),
                "max_entities": max_entities,
                "max_distinct_postcodes": max_distinct_postcodes,
            },
        )
    if not postcodes:
        return metrics

    lookup = client.bulk_lookup(postcodes)
    now = datetime.now(timezone.utc)
    for postcode in postcodes:
        location = lookup.get(postcode)
        if location is None:
            metrics.failed_postcodes += 1
            continue
        ids = ids_by_postcode[postcode]
        db.execute(
            update(Entity)
            .where(Entity.id.in_(ids))
            .values(
                postal_code=postcode,
                latitude=location.latitude,
                longitude=location.longitude,
                uk_country=location.country,
                uk_region=location.uk_region,
                location_source=LOCATION_SOURCE,
                location_updated_at=now,
            )
        )
        metrics.updated_postcodes += 1
        metrics.updated_entities += len(ids)

    if log is not None:
        log.info(
            "Entity location enrichment: completed postcode batch",
            {
                "updated_entities": metrics.updated_entities,
                "updated_postcodes": metrics.updated_postcodes,
                "failed_postcodes": metrics.failed_postcodes,
            },
        )
    return metrics


class EnrichLocationsStage(PipelineStage):
    id = "enrich_locations"
    title = "Enrich entities with UK region and coordinates from postcode"

    def __init__(self, client: PostcodesIoClient | None) -> None:
        self._client = client

    def validate(self, stage_input: StageInput) -> None:
        if stage_input.get("enrich_max_entities") is not None:
            require_positive_int(stage_input, "enrich_max_entities")
        if stage_input.get("enrich_max_distinct_postcodes") is not None:
            value = require_positive_int(stage_input, "enrich_max_distinct_postcodes")
            if value > POSTCODES_IO_BULK_LIMIT:
                raise PipelineError(
                    "invalid_input",
                    f"enrich_max_distinct_postcodes must be a positive integer <= {POSTCODES_IO_BULK_LIMIT}",
                    {"enrich_max_distinct_postcodes": value},
                )

    def run(self, ctx: PipelineContext, stage_input: StageInput) -> StageResult:
        if ctx.dry_run:
            return StageResult("skipped", DryRunMetrics())
        if self._client is None:
            return StageResult("skipped", warnings=["Postcode lookup is not configured"])

        try:
            metrics = enrich_entity_locations(
                ctx.db,
                self._client,
                max_entities=stage_input.get("enrich_max_entities") or DEFAULT_MAX_ENTITIES,
                max_distinct_postcodes=stage_input.get("enrich_max_distinct_postcodes") or POSTCODES_IO_BULK_LIMIT,
                log=ctx.log,
            )
            ctx.db.commit()
        except Exception:
            ctx.db.rollback()
            raise
        return StageResult("succeeded", metrics)
