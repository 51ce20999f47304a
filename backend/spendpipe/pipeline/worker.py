"""In-process FIFO run queue drained by a single worker thread."""

from __future__ import annotations

import logging
import queue
import threading
import traceback
from collections.abc import Callable
from functools import lru_cache
from time import perf_counter

from sqlalchemy.orm import Session

from spendpipe.config import Settings, get_settings
from spendpipe.db.session import SessionLocal
from spendpipe.pipeline.broadcaster import LogBroadcaster, get_broadcaster
from spendpipe.pipeline.repository import (
    ensure_run_stage_row,
    get_run,
    set_pipeline_run_status,
    set_run_stage_status,
)
from spendpipe.pipeline.run_logger import DatabaseRunLogStore, PipelineLogger, RunLogStore
from spendpipe.pipeline.runner import StageHooks, run_pipeline
from spendpipe.pipeline.stages import build_match_stage, build_stages, default_stage_input
from spendpipe.pipeline.stages.match_suppliers import count_pending_suppliers
from spendpipe.pipeline.types import PipelineContext, PipelineStage, StageResult, metrics_to_dict

logger = logging.getLogger(__name__)

StageFactory = Callable[[str, Settings], list[PipelineStage]]


class PipelineWorker:
    """Runs queued pipeline runs one at a time, in submission order.

    Cancellation is checked when a run is dequeued; an in-flight run is never
    interrupted.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        stage_factory: StageFactory = build_stages,
        log_store: RunLogStore | None = None,
        broadcaster: LogBroadcaster | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._stage_factory = stage_factory
        self._log_store = log_store if log_store is not None else DatabaseRunLogStore(session_factory)
        self._broadcaster = broadcaster or get_broadcaster()
        self._settings = settings or get_settings()
        self._queue: queue.Queue[int | None] = queue.Queue()
        self._cancelled: set[int] = set()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.run_lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._loop, name="pipeline-worker", daemon=True)
            self._thread.start()
        logger.info("pipeline.worker_started")

    def stop(self, timeout: float | None = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._queue.put(None)
        thread.join(timeout)
        self._thread = None

    def enqueue(self, run_id: int) -> None:
        with self._lock:
            self._cancelled.discard(run_id)
        self._queue.put(run_id)
        logger.info("pipeline.run_enqueued run_id=%s queue_size=%d", run_id, self._queue.qsize())

    def cancel(self, run_id: int) -> None:
        with self._lock:
            self._cancelled.add(run_id)

    def is_idle(self) -> bool:
        return self._queue.empty() and not self.run_lock.locked()

    def join(self) -> None:
        """Block until every enqueued run has been processed."""

        self._queue.join()

    def _loop(self) -> None:
        while True:
            run_id = self._queue.get()
            try:
                if run_id is None:
                    return
                with self._lock:
                    cancelled = run_id in self._cancelled
                    self._cancelled.discard(run_id)
                if cancelled:
                    logger.info("pipeline.run_cancelled run_id=%s", run_id)
                    continue
                self.run_one(run_id)
            except Exception:
                logger.exception("pipeline.worker_run_crashed run_id=%s", run_id)
            finally:
                self._queue.task_done()

    def run_one(self, run_id: int) -> str | None:
        """Execute one run to a terminal status and return that status."""

        with self.run_lock:
            db = self._session_factory()
            try:
                return self._execute(db, run_id)
            finally:
                db.close()

    def _execute(self, db: Session, run_id: int) -> str | None:
        run = get_run(db, run_id)
        if run is None or run.status != "queued":
            logger.warning("pipeline.run_not_runnable run_id=%s status=%s", run_id, run.status if run else None)
            return None

        org_type = run.org_type
        asset_id = run.asset_id
        dry_run = run.dry_run
        params = dict(run.params_json or {})
        from_stage_id = run.from_stage_id
        to_stage_id = run.to_stage_id

        log = PipelineLogger(run_id, self._log_store, broadcaster=self._broadcaster)
        started = perf_counter()
        log.info("Pipeline run started", {"run_id": run_id, "asset_id": asset_id, "dry_run": dry_run})
        set_pipeline_run_status(db, run_id, "running")

        status = "succeeded"
        try:
            stages = self._stage_factory(org_type, self._settings)
            log.debug(
                f"Initializing {len(stages)} pipeline stage(s)",
                {"stage_ids": [stage.id for stage in stages], "org_type": org_type},
            )
            for stage in stages:
                ensure_run_stage_row(db, run_id, stage.id)
            run_pipeline(
                stages,
                db=db,
                run_id=run_id,
                dry_run=dry_run,
                log=log,
                stage_input=default_stage_input(asset_id, params, self._settings),
                from_stage_id=from_stage_id,
                to_stage_id=to_stage_id,
                hooks=self._hooks(db, run_id),
            )
        except Exception as exc:
            db.rollback()
            status = "failed"
            log.error(
                "Pipeline run failed",
                {
                    "run_id": run_id,
                    "duration_ms": round((perf_counter() - started) * 1000.0, 2),
                    "error": str(exc),
                    "code": getattr(exc, "code", None),
                    "stack": traceback.format_exc(),
                },
            )
            set_pipeline_run_status(db, run_id, "failed", error=str(exc))
        else:
            log.info(
                "Pipeline run succeeded",
                {"run_id": run_id, "duration_ms": round((perf_counter() - started) * 1000.0, 2)},
            )
            set_pipeline_run_status(db, run_id, "succeeded")

        logger.info(
            "pipeline.run_finished run_id=%s status=%s duration_ms=%.2f",
            run_id,
            status,
            (perf_counter() - started) * 1000.0,
        )
        self._broadcaster.schedule_clear(run_id, self._settings.log_buffer_clear_delay_seconds)
        return status

    def _hooks(self, db: Session, run_id: int) -> StageHooks:
        def on_stage_start(stage_id: str) -> None:
            set_run_stage_status(db, run_id, stage_id, "running")

        def on_stage_finish(stage_id: str, result: StageResult) -> None:
            set_run_stage_status(
                db,
                run_id,
                stage_id,
                result.status,
                metrics=metrics_to_dict(result.metrics),
                warnings=result.warnings,
                error=result.error,
            )

        def on_stage_error(stage_id: str, exc: BaseException) -> None:
            db.rollback()
            set_run_stage_status(db, run_id, stage_id, "failed", error=str(exc))

        return StageHooks(on_stage_start=on_stage_start, on_stage_finish=on_stage_finish, on_stage_error=on_stage_error)


class BackgroundMatcher:
    """Periodically matches a small batch of pending suppliers while the worker is idle."""

    def __init__(
        self,
        worker: PipelineWorker,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        stage_factory: Callable[[], PipelineStage] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._worker = worker
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._stage_factory = stage_factory or (lambda: build_match_stage(self._settings))
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="background-matcher", daemon=True)
        self._thread.start()
        logger.info(
            "background_matcher.started limit=%d interval_s=%.1f",
            self._settings.background_matcher_limit,
            self._settings.background_matcher_interval_seconds,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_batch()
            except Exception:
                logger.exception("background_matcher.batch_failed")
            self._stop.wait(self._settings.background_matcher_interval_seconds)

    def run_batch(self) -> StageResult | None:
        """Run one matching batch unless a pipeline run holds the worker."""

        if not self._worker.is_idle() or not self._worker.run_lock.acquire(blocking=False):
            return None
        db = self._session_factory()
        try:
            remaining = count_pending_suppliers(db)
            if remaining == 0:
                return None
            logger.info(
                "background_matcher.batch remaining=%d limit=%d",
                remaining,
                self._settings.background_matcher_limit,
            )
            stage = self._stage_factory()
            stage_input = {
                "limit": self._settings.background_matcher_limit,
                "auto_match_threshold": self._settings.auto_match_threshold,
                "min_similarity_threshold": self._settings.min_similarity_threshold,
            }
            stage.validate(stage_input)
            log = PipelineLogger(0, None, broadcaster=LogBroadcaster(max_buffer_size=1), stage_id=stage.id)
            ctx = PipelineContext(db=db, run_id=0, stage_id=stage.id, dry_run=False, log=log)
            return stage.run(ctx, stage_input)
        finally:
            db.close()
            self._worker.run_lock.release()


@lru_cache
def get_worker() -> PipelineWorker:
    """Return the process-wide worker."""

    return PipelineWorker()
