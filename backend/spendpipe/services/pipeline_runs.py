"""Run lifecycle: create, list, inspect and delete pipeline runs."""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from spendpipe.models.pipeline_asset import PipelineAsset
from spendpipe.models.pipeline_run import PipelineRun
from spendpipe.models.spend_entry import SpendEntry
from spendpipe.pipeline.repository import (
    count_run_suppliers,
    count_skipped_rows,
    create_pipeline_run,
    get_asset,
    get_run,
    get_latest_import_run_id,
    get_run_date_range,
    get_run_logs,
    get_run_stages,
    get_run_suppliers,
    get_skipped_rows,
)
from spendpipe.pipeline.runner import resolve_stage_id_range
from spendpipe.pipeline.stages import stage_ids_for
from spendpipe.pipeline.stages.refresh_totals import entities_touched_by_asset, refresh_entity_totals
from spendpipe.pipeline.types import PipelineError
from spendpipe.schema.entity_types import ACTIVE_RUN_STATUSES, normalize_org_type
from spendpipe.schemas.pipeline import (
    PipelineAssetRead,
    PipelineRunCreate,
    PipelineRunDeleted,
    PipelineRunDetail,
    PipelineRunListItem,
    PipelineRunLogRead,
    PipelineRunRead,
    PipelineRunsListResponse,
    PipelineRunStageRead,
    PipelineRunSummary,
    RunSupplierItem,
    SkippedRowRead,
    SkippedRowsResponse,
)
from spendpipe.services.audit import record_audit

logger = logging.getLogger(__name__)

MAX_RUN_PAGE_SIZE = 100
RUN_DETAIL_LOG_LIMIT = 500


def create_run(
    db: Session,
    payload: PipelineRunCreate,
    *,
    enqueue: Callable[[int], None],
    trigger: str = "web",
) -> PipelineRun:
    """Validate, persist as queued, and hand the run to the worker."""

    org_type = normalize_org_type(payload.org_type)
    if org_type is None:
        raise PipelineError("invalid_input", f"Unknown org type '{payload.org_type}'")
    if payload.asset_id is not None:
        if payload.asset_id <= 0:
            raise PipelineError("invalid_input", "asset_id must be a positive integer", {"asset_id": payload.asset_id})
        if get_asset(db, payload.asset_id) is None:
            raise PipelineError("asset_not_found", f"Asset {payload.asset_id} not found", {"asset_id": payload.asset_id})
    resolve_stage_id_range(stage_ids_for(org_type), payload.from_stage_id, payload.to_stage_id)

    run = create_pipeline_run(
        db,
        asset_id=payload.asset_id,
        org_type=org_type,
        dry_run=payload.dry_run,
        from_stage_id=payload.from_stage_id,
        to_stage_id=payload.to_stage_id,
        params=payload.params,
        trigger=trigger,
        created_by=payload.created_by,
    )
    logger.info("pipeline.run_created run_id=%s org_type=%s asset_id=%s dry_run=%s", run.id, org_type, run.asset_id, run.dry_run)
    enqueue(run.id)
    return run


def list_runs(
    db: Session,
    *,
    limit: int = 20,
    offset: int = 0,
    asset_id: int | None = None,
) -> PipelineRunsListResponse:
    if limit < 1 or limit > MAX_RUN_PAGE_SIZE:
        raise PipelineError("invalid_input", f"limit must be between 1 and {MAX_RUN_PAGE_SIZE}", {"limit": limit})
    if offset < 0:
        raise PipelineError("invalid_input", "offset must be >= 0", {"offset": offset})

    filters = [PipelineRun.asset_id == asset_id] if asset_id is not None else []
    total = db.scalar(select(func.count(PipelineRun.id)).where(*filters)) or 0
    rows = db.execute(
        select(PipelineRun, PipelineAsset.original_name)
        .outerjoin(PipelineAsset, PipelineAsset.id == PipelineRun.asset_id)
        .where(*filters)
        .order_by(PipelineRun.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()
    items = [
        PipelineRunListItem.model_validate(run).model_copy(update={"asset_original_name": original_name})
        for run, original_name in rows
    ]
    return PipelineRunsListResponse(items=items, total=total, limit=limit, offset=offset)


def _require_run(db: Session, run_id: int) -> PipelineRun:
    run = get_run(db, run_id)
    if run is None:
        raise PipelineError("run_not_found", f"Run {run_id} not found", {"run_id": run_id})
    return run


def get_run_detail(db: Session, run_id: int) -> PipelineRunDetail:
    run = _require_run(db, run_id)
    asset = get_asset(db, run.asset_id) if run.asset_id is not None else None
    return PipelineRunDetail(
        run=PipelineRunRead.model_validate(run),
        asset=PipelineAssetRead.model_validate(asset) if asset is not None else None,
        stages=[PipelineRunStageRead.model_validate(stage) for stage in get_run_stages(db, run_id)],
        logs=[PipelineRunLogRead.model_validate(row) for row in get_run_logs(db, run_id, RUN_DETAIL_LOG_LIMIT)],
    )


def list_skipped_rows(db: Session, run_id: int, *, limit: int = 100, offset: int = 0) -> SkippedRowsResponse:
    _require_run(db, run_id)
    return SkippedRowsResponse(
        items=[SkippedRowRead.model_validate(row) for row in get_skipped_rows(db, run_id, limit=limit, offset=offset)],
        total=count_skipped_rows(db, run_id),
        limit=limit,
        offset=offset,
    )


def get_run_summary(db: Session, run_id: int, *, limit: int = 100, offset: int = 0) -> PipelineRunSummary:
    run = _require_run(db, run_id)
    if run.asset_id is None:
        return PipelineRunSummary(
            run_id=run.id,
            asset_id=None,
            supplier_count=0,
            suppliers=[],
            earliest_payment_date=None,
            latest_payment_date=None,
        )
    earliest, latest = get_run_date_range(db, run.asset_id)
    return PipelineRunSummary(
        run_id=run.id,
        asset_id=run.asset_id,
        supplier_count=count_run_suppliers(db, run.asset_id),
        suppliers=[
            RunSupplierItem.model_validate(supplier)
            for supplier in get_run_suppliers(db, run.asset_id, limit=limit, offset=offset)
        ],
        earliest_payment_date=earliest,
        latest_payment_date=latest,
    )


def delete_run(db: Session, run_id: int, *, actor_id: str | None = None) -> PipelineRunDeleted:
    """Remove the spend data a run imported and mark the run deleted.

    Refuses while the run is queued or running; an in-flight stage is never
    interrupted. Spend entries are only removed when this run is the newest
    non-dry run whose import stage succeeded for the asset; dry runs and runs
    superseded by a later import leave the data alone.
    """

    run = _require_run(db, run_id)
    if run.status in ACTIVE_RUN_STATUSES:
        raise PipelineError(
            "run_in_progress",
            f"Run {run_id} is {run.status} and cannot be deleted",
            {"run_id": run_id, "status": run.status},
        )
    if run.status == "deleted":
        return PipelineRunDeleted(run_id=run.id, status=run.status, spend_entries_deleted=0)

    previous_status = run.status
    deleted = 0
    try:
        if run.asset_id is not None and get_latest_import_run_id(db, run.asset_id) == run.id:
            buyer_entities, supplier_entities = entities_touched_by_asset(db, run.asset_id)
            result = db.execute(delete(SpendEntry).where(SpendEntry.asset_id == run.asset_id))
            deleted = result.rowcount or 0
            refresh_entity_totals(db, buyer_entities | supplier_entities)
        run.status = "deleted"
        record_audit(
            db,
            actor_type="user",
            actor_id=actor_id,
            run_id=run.id,
            table_name="pipeline_runs",
            record_pk=run.id,
            action="delete",
            before={"status": previous_status},
            after={"status": "deleted", "spend_entries_deleted": deleted},
            reason="run deleted",
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("pipeline.run_delete_failed run_id=%s", run_id)
        raise

    logger.info("pipeline.run_deleted run_id=%s asset_id=%s spend_entries_deleted=%d", run_id, run.asset_id, deleted)
    return PipelineRunDeleted(run_id=run.id, status="deleted", spend_entries_deleted=deleted)
