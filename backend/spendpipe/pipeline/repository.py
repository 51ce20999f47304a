"""Persistence helpers for runs, stages, logs and import diagnostics."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spendpipe.models.pipeline_asset import PipelineAsset
from spendpipe.models.pipeline_run import PipelineRun
from spendpipe.models.pipeline_run_log import PipelineRunLog
from spendpipe.models.pipeline_run_stage import PipelineRunStage
from spendpipe.models.pipeline_skipped_row import PipelineSkippedRow
from spendpipe.models.spend_entry import SpendEntry
from spendpipe.models.supplier import Supplier
from spendpipe.pipeline.source_types import SOURCE_TYPES

_TERMINAL_STATUSES = {"succeeded", "failed", "skipped", "cancelled", "deleted"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_pipeline_run(
    db: Session,
    *,
    asset_id: int | None,
    org_type: str,
    dry_run: bool = False,
    from_stage_id: str | None = None,
    to_stage_id: str | None = None,
    params: dict[str, Any] | None = None,
    trigger: str = "web",
    created_by: str | None = None,
) -> PipelineRun:
    run = PipelineRun(
        asset_id=asset_id,
        org_type=org_type,
        dry_run=dry_run,
        from_stage_id=from_stage_id,
        to_stage_id=to_stage_id,
        params_json=dict(params or {}),
        trigger=trigger,
        created_by=created_by,
        status="queued",
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def set_pipeline_run_status(db: Session, run_id: int, status: str, *, error: str | None = None) -> None:
    run = db.get(PipelineRun, run_id)
    if run is None:
        return
    run.status = status
    if status == "running" and run.started_at is None:
        run.started_at = _now()
    if status in _TERMINAL_STATUSES:
        run.finished_at = _now()
    if error is not None:
        run.error = error[:4000]
    db.commit()


def ensure_run_stage_row(db: Session, run_id: int, stage_id: str) -> PipelineRunStage:
    row = db.scalar(
        select(PipelineRunStage).where(PipelineRunStage.run_id == run_id, PipelineRunStage.stage_id == stage_id)
    )
    if row is None:
        row = PipelineRunStage(run_id=run_id, stage_id=stage_id, status="queued", warnings_json=[])
        db.add(row)
        db.commit()
    return row


def set_run_stage_status(
    db: Session,
    run_id: int,
    stage_id: str,
    status: str,
    *,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
    error: str | None = None,
) -> None:
    row = ensure_run_stage_row(db, run_id, stage_id)
    row.status = status
    if status == "running":
        row.started_at = _now()
        row.finished_at = None
    if status in _TERMINAL_STATUSES:
        row.finished_at = _now()
    if metrics is not None:
        row.metrics_json = metrics
    if warnings is not None:
        row.warnings_json = list(warnings)
    if error is not None:
        row.error = error
    db.commit()


def append_run_log(
    db: Session,
    run_id: int,
    level: str,
    message: str,
    meta: dict[str, Any] | None = None,
) -> PipelineRunLog:
    row = PipelineRunLog(run_id=run_id, ts=_now(), level=level, message=message, meta_json=meta)
    db.add(row)
    db.commit()
    return row


def get_asset(db: Session, asset_id: int) -> PipelineAsset | None:
    return db.get(PipelineAsset, asset_id)


def get_run(db: Session, run_id: int) -> PipelineRun | None:
    return db.get(PipelineRun, run_id)


def get_latest_import_run_id(db: Session, asset_id: int) -> int | None:
    """Newest live, non-dry run whose import stage loaded the asset's spend entries."""

    import_stage_ids = [source.import_stage_id for source in SOURCE_TYPES.values()]
    stmt = (
        select(PipelineRun.id)
        .join(PipelineRunStage, PipelineRunStage.run_id == PipelineRun.id)
        .where(
            PipelineRun.asset_id == asset_id,
            PipelineRun.dry_run.is_(False),
            PipelineRun.status != "deleted",
            PipelineRunStage.stage_id.in_(import_stage_ids),
            PipelineRunStage.status == "succeeded",
        )
        .order_by(PipelineRun.id.desc())
        .limit(1)
    )
    return db.scalar(stmt)


def get_run_stages(db: Session, run_id: int) -> list[PipelineRunStage]:
    stmt = select(PipelineRunStage).where(PipelineRunStage.run_id == run_id).order_by(PipelineRunStage.id.asc())
    return list(db.scalars(stmt).all())


def get_run_logs(db: Session, run_id: int, limit: int = 500) -> list[PipelineRunLog]:
    """Most recent ``limit`` log rows, oldest first."""

    stmt = (
        select(PipelineRunLog)
        .where(PipelineRunLog.run_id == run_id)
        .order_by(PipelineRunLog.id.desc())
        .limit(limit)
    )
    return list(reversed(db.scalars(stmt).all()))


def get_skipped_rows(db: Session, run_id: int, *, limit: int = 100, offset: int = 0) -> list[PipelineSkippedRow]:
    stmt = (
        select(PipelineSkippedRow)
        .where(PipelineSkippedRow.run_id == run_id)
        .order_by(PipelineSkippedRow.id.asc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt).all())


def count_skipped_rows(db: Session, run_id: int) -> int:
    return db.scalar(select(func.count(PipelineSkippedRow.id)).where(PipelineSkippedRow.run_id == run_id)) or 0


def get_run_suppliers(db: Session, asset_id: int, *, limit: int = 100, offset: int = 0) -> list[Supplier]:
    supplier_ids = select(SpendEntry.supplier_id).where(SpendEntry.asset_id == asset_id).distinct()
    stmt = (
        select(Supplier)
        .where(Supplier.id.in_(supplier_ids))
        .order_by(Supplier.name.asc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt).all())


def count_run_suppliers(db: Session, asset_id: int) -> int:
    stmt = select(func.count(func.distinct(SpendEntry.supplier_id))).where(SpendEntry.asset_id == asset_id)
    return db.scalar(stmt) or 0


def get_run_date_range(db: Session, asset_id: int) -> tuple[date | None, date | None]:
    stmt = select(func.min(SpendEntry.payment_date), func.max(SpendEntry.payment_date)).where(
        SpendEntry.asset_id == asset_id
    )
    earliest, latest = db.execute(stmt).one()
    return earliest, latest
