"""Pipeline asset and run lifecycle routes."""

from __future__ import annotations

import json
import queue
from collections.abc import Iterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from spendpipe.db.dependencies import get_db
from spendpipe.pipeline.broadcaster import LogBroadcaster, LogEntry, get_broadcaster
from spendpipe.pipeline.repository import get_run, get_run_logs
from spendpipe.pipeline.types import PipelineError
from spendpipe.pipeline.worker import PipelineWorker, get_worker
from spendpipe.schema.entity_types import ACTIVE_RUN_STATUSES
from spendpipe.schemas.common import ApiResponse, PipelineErrorDetail
from spendpipe.schemas.pipeline import (
    AssetDownloadResponse,
    AssetPresignRequest,
    AssetPresignResponse,
    PipelineAssetRead,
    PipelineRunCreate,
    PipelineRunDeleted,
    PipelineRunDetail,
    PipelineRunRead,
    PipelineRunsListResponse,
    PipelineRunSummary,
    SkippedRowsResponse,
)
from spendpipe.services.assets import get_asset_download_url, register_asset
from spendpipe.services.pipeline_runs import (
    create_run,
    delete_run,
    get_run_detail,
    get_run_summary,
    list_runs,
    list_skipped_rows,
)
from spendpipe.storage.object_storage import ObjectStorageClient, ObjectStorageConfigError, build_object_storage_client

RunIdParam = Path(..., ge=1)
LimitParam = Query(default=20, ge=1, le=100)
OffsetParam = Query(default=0, ge=0)
SSE_PING_SECONDS = 15.0
_TERMINAL_LOG_MESSAGES = {"Pipeline run succeeded": "succeeded", "Pipeline run failed": "failed"}
_STATUS_BY_CODE = {
    "run_not_found": 404,
    "asset_not_found": 404,
    "run_in_progress": 409,
    "duplicate_checksum": 409,
}

router = APIRouter(prefix="/pipeline")


def get_object_storage() -> ObjectStorageClient:
    try:
        return build_object_storage_client()
    except ObjectStorageConfigError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _http_error(exc: PipelineError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(exc.code, 400),
        detail=PipelineErrorDetail(error=exc.code, message=str(exc), **exc.meta).model_dump(),
    )


@router.post("/assets/presign", response_model=ApiResponse[AssetPresignResponse])
def presign_asset_upload(
    payload: AssetPresignRequest,
    db: Session = Depends(get_db),
    storage: ObjectStorageClient = Depends(get_object_storage),
) -> ApiResponse[AssetPresignResponse]:
    """Register an upload and return a presigned PUT URL."""

    try:
        registered = register_asset(
            db,
            storage,
            original_name=payload.original_name,
            size_bytes=payload.size_bytes,
            content_type=payload.content_type,
            checksum=payload.checksum,
            force=payload.force,
        )
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(
        data=AssetPresignResponse(
            asset=PipelineAssetRead.model_validate(registered.asset),
            upload_url=registered.upload_url,
            expires_in=registered.expires_in,
        )
    )


@router.get("/assets/{asset_id}/download", response_model=ApiResponse[AssetDownloadResponse])
def get_asset_download(
    asset_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    storage: ObjectStorageClient = Depends(get_object_storage),
) -> ApiResponse[AssetDownloadResponse]:
    try:
        url, expires_in = get_asset_download_url(db, storage, asset_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=AssetDownloadResponse(url=url, expires_in=expires_in))


@router.post("/runs", response_model=ApiResponse[PipelineRunRead])
def post_run(
    payload: PipelineRunCreate,
    db: Session = Depends(get_db),
    worker: PipelineWorker = Depends(get_worker),
) -> ApiResponse[PipelineRunRead]:
    """Queue a pipeline run for an uploaded asset."""

    try:
        run = create_run(db, payload, enqueue=worker.enqueue)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=PipelineRunRead.model_validate(run))


@router.get("/runs", response_model=ApiResponse[PipelineRunsListResponse])
def get_runs(
    limit: int = LimitParam,
    offset: int = OffsetParam,
    asset_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[PipelineRunsListResponse]:
    """List runs, most recent first."""

    return ApiResponse(data=list_runs(db, limit=limit, offset=offset, asset_id=asset_id))


@router.get("/runs/{run_id}", response_model=ApiResponse[PipelineRunDetail])
def get_run_by_id(run_id: int = RunIdParam, db: Session = Depends(get_db)) -> ApiResponse[PipelineRunDetail]:
    try:
        return ApiResponse(data=get_run_detail(db, run_id))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@router.get("/runs/{run_id}/skipped-rows", response_model=ApiResponse[SkippedRowsResponse])
def get_run_skipped_rows(
    run_id: int = RunIdParam,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = OffsetParam,
    db: Session = Depends(get_db),
) -> ApiResponse[SkippedRowsResponse]:
    try:
        return ApiResponse(data=list_skipped_rows(db, run_id, limit=limit, offset=offset))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@router.get("/runs/{run_id}/summary", response_model=ApiResponse[PipelineRunSummary])
def get_run_summary_by_id(
    run_id: int = RunIdParam,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = OffsetParam,
    db: Session = Depends(get_db),
) -> ApiResponse[PipelineRunSummary]:
    try:
        return ApiResponse(data=get_run_summary(db, run_id, limit=limit, offset=offset))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@router.delete("/runs/{run_id}", response_model=ApiResponse[PipelineRunDeleted])
def delete_run_by_id(run_id: int = RunIdParam, db: Session = Depends(get_db)) -> ApiResponse[PipelineRunDeleted]:
    """Delete a finished run's imported spend data."""

    try:
        return ApiResponse(data=delete_run(db, run_id))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@router.get("/runs/{run_id}/logs/stream")
def stream_run_logs(
    run_id: int = RunIdParam,
    db: Session = Depends(get_db),
    broadcaster: LogBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    """Server-sent events: buffered replay, then live log entries until the run completes."""

    run = get_run(db, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    status = run.status
    stored: list[dict[str, Any]] = []
    if status not in ACTIVE_RUN_STATUSES:
        stored = [
            LogEntry(
                run_id=run_id,
                level=row.level,
                message=row.message,
                timestamp=row.ts.isoformat(),
                meta=row.meta_json,
            ).as_dict()
            for row in get_run_logs(db, run_id, 500)
        ]
    return StreamingResponse(
        iter_run_log_events(run_id, status, stored, broadcaster),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


def iter_run_log_events(
    run_id: int,
    status: str,
    stored_logs: list[dict[str, Any]],
    broadcaster: LogBroadcaster,
    *,
    ping_seconds: float = SSE_PING_SECONDS,
) -> Iterator[str]:
    yield _sse("connected", {"run_id": run_id})
    if status not in ACTIVE_RUN_STATUSES:
        for entry in stored_logs:
            yield _sse("log", entry)
        yield _sse("complete", {"status": status})
        return

    inbox: queue.Queue[LogEntry] = queue.Queue()
    unsubscribe = broadcaster.subscribe(run_id, inbox.put)
    seen: set[tuple[str, str]] = set()
    try:
        for entry in broadcaster.get_buffered_logs(run_id):
            seen.add((entry.timestamp, entry.message))
            yield _sse("log", entry.as_dict())
            if entry.message in _TERMINAL_LOG_MESSAGES:
                yield _sse("complete", {"status": _TERMINAL_LOG_MESSAGES[entry.message]})
                return
        while True:
            try:
                entry = inbox.get(timeout=ping_seconds)
            except queue.Empty:
                yield ": ping\n\n"
                continue
            key = (entry.timestamp, entry.message)
            if key in seen:
                continue
            seen.add(key)
            yield _sse("log", entry.as_dict())
            if entry.message in _TERMINAL_LOG_MESSAGES:
                yield _sse("complete", {"status": _TERMINAL_LOG_MESSAGES[entry.message]})
                return
    finally:
        unsubscribe()


def _sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"
