"""Per-run structured logger: stdlib logging, durable rows and live broadcast."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy.orm import Session

from spendpipe.models.pipeline_run_log import PipelineRunLog
from spendpipe.pipeline.broadcaster import LogBroadcaster, LogEntry, get_broadcaster

logger = logging.getLogger(__name__)
run_logger = logging.getLogger("spendpipe.pipeline.run")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class RunLogStore(Protocol):
    def append(self, run_id: int, level: str, message: str, meta: dict[str, Any] | None, ts: datetime) -> None:
        """Persist one log line for a run."""


class DatabaseRunLogStore:
    """Writes each log line in its own short session so it survives stage rollbacks."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def append(self, run_id: int, level: str, message: str, meta: dict[str, Any] | None, ts: datetime) -> None:
        db = self._session_factory()
        try:
            db.add(PipelineRunLog(run_id=run_id, ts=ts, level=level, message=message, meta_json=meta))
            db.commit()
        finally:
            db.close()


class PipelineLogger:
    def __init__(
        self,
        run_id: int,
        store: RunLogStore | None,
        *,
        broadcaster: LogBroadcaster | None = None,
        stage_id: str | None = None,
    ) -> None:
        self.run_id = run_id
        self.stage_id = stage_id
        self._store = store
        self._broadcaster = broadcaster or get_broadcaster()

    def for_stage(self, stage_id: str) -> "PipelineLogger":
        return PipelineLogger(self.run_id, self._store, broadcaster=self._broadcaster, stage_id=stage_id)

    def debug(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self.log("debug", message, meta)

    def info(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self.log("info", message, meta)

    def warning(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self.log("warn", message, meta)

    def error(self, message: str, meta: Mapping[str, Any] | None = None) -> None:
        self.log("error", message, meta)

    def log(self, level: str, message: str, meta: Mapping[str, Any] | None = None) -> None:
        payload = dict(meta or {})
        if self.stage_id and "stage_id" not in payload:
            payload["stage_id"] = self.stage_id
        ts = datetime.now(timezone.utc)
        run_logger.log(_LEVELS.get(level, logging.INFO), "run_id=%s %s %s", self.run_id, message, payload or "")

        if self._store is not None:
            try:
                self._store.append(self.run_id, level, message, payload or None, ts)
            except Exception:
                logger.exception("pipeline.run_log_write_failed run_id=%s", self.run_id)

        self._broadcaster.broadcast(
            LogEntry(
                run_id=self.run_id,
                level=level,
                message=message,
                timestamp=ts.isoformat(),
                meta=payload or None,
            )
        )
