"""Recompute cached spend totals for the entities an asset touches."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from time import perf_counter

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from spendpipe.models.buyer import Buyer
from spendpipe.models.entity import Entity
from spendpipe.models.spend_entry import SpendEntry
from spendpipe.models.supplier import Supplier
from spendpipe.pipeline.types import (
    DryRunMetrics,
    PipelineContext,
    PipelineStage,
    StageInput,
    StageResult,
    TotalsRefreshMetrics,
    require_positive_int,
)


def entities_touched_by_asset(db: Session, asset_id: int) -> tuple[set[int], set[int]]:
    """Return (buyer entity ids, supplier entity ids) linked to the asset's spend entries."""

    buyer_ids = db.scalars(
        select(Buyer.entity_id)
        .join(SpendEntry, SpendEntry.buyer_id == Buyer.id)
        .where(SpendEntry.asset_id == asset_id, Buyer.entity_id.is_not(None))
        .distinct()
    ).all()
    supplier_ids = db.scalars(
        select(Supplier.entity_id)
        .join(SpendEntry, SpendEntry.supplier_id == Supplier.id)
        .where(SpendEntry.asset_id == asset_id, Supplier.entity_id.is_not(None))
        .distinct()
    ).all()
    return set(buyer_ids), set(supplier_ids)


def refresh_entity_totals(db: Session, entity_ids: Iterable[int]) -> int:
    """Zero then recompute buyer and supplier totals for exactly these entities."""

    ids = sorted(set(entity_ids))
    if not ids:
        return 0
    now = datetime.now(timezone.utc)
    db.execute(
        update(Entity)
        .where(Entity.id.in_(ids))
        .values(buyer_total_spend=Decimal("0"), supplier_total_received=Decimal("0"), spend_totals_updated_at=now)
    )

    buyer_totals = db.execute(
        select(Buyer.entity_id, func.sum(SpendEntry.amount))
        .join(SpendEntry, SpendEntry.buyer_id == Buyer.id)
        .where(Buyer.entity_id.in_(ids))
        .group_by(Buyer.entity_id)
    ).all()
    if buyer_totals:
        db.execute(
            update(Entity),
            [{"id": entity_id, "buyer_total_spend": total or Decimal("0")} for entity_id, total in buyer_totals],
        )

    supplier_totals = db.execute(
        select(Supplier.entity_id, func.sum(SpendEntry.amount))
        .join(SpendEntry, SpendEntry.supplier_id == Supplier.id)
        .where(Supplier.entity_id.in_(ids))
        .group_by(Supplier.entity_id)
    ).all()
    if supplier_totals:
        db.execute(
            update(Entity),
            [{"id": entity_id, "supplier_total_received": total or Decimal("0")} for entity_id, total in supplier_totals],
        )
    return len(ids)


class RefreshSpendTotalsStage(PipelineStage):
    id = "refresh_spend_totals"
    title = "Refresh cached entity spend totals"

    def validate(self, stage_input: StageInput) -> None:
        require_positive_int(stage_input, "asset_id")

    def run(self, ctx: PipelineContext, stage_input: StageInput) -> StageResult:
        asset_id = int(stage_input["asset_id"])
        if ctx.dry_run:
            ctx.log.info("Dry run: skipping entity spend totals refresh", {"asset_id": asset_id})
            return StageResult("skipped", DryRunMetrics())

        started = perf_counter()
        db = ctx.db
        buyer_ids, supplier_ids = entities_touched_by_asset(db, asset_id)
        if not buyer_ids and not supplier_ids:
            ctx.log.info("No entity totals to refresh for asset", {"asset_id": asset_id})
            return StageResult("succeeded", TotalsRefreshMetrics())

        try:
            refreshed = refresh_entity_totals(db, buyer_ids | supplier_ids)
            db.commit()
        except Exception:
            db.rollback()
            raise

        metrics = TotalsRefreshMetrics(
            refreshed_entities=refreshed,
            buyer_entities=len(buyer_ids),
            supplier_entities=len(supplier_ids),
            duration_ms=round((perf_counter() - started) * 1000.0, 2),
        )
        ctx.log.info("Entity spend totals refreshed", {"asset_id": asset_id, **metrics.as_dict()})
        return StageResult("succeeded", metrics)
