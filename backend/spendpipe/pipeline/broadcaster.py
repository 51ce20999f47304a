"""In-process fan-out of run log entries to live subscribers."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from functools import lru_cache
from typing import Any

from spendpipe.config import get_settings

logger = logging.getLogger(__name__)

LogSubscriber = Callable[["LogEntry"], None]


@dataclass(slots=True)
class LogEntry:
    run_id: int
    level: str
    message: str
    timestamp: str
    meta: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class LogBroadcaster:
    """Per-run subscriber registry with a bounded, time-limited replay buffer.

    Late or reconnecting subscribers read ``get_buffered_logs`` before
    switching to live delivery. A subscriber that raises is ignored.
    """

    def __init__(
        self,
        *,
        max_buffer_size: int = 500,
        buffer_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_buffer_size = max_buffer_size
        self.buffer_ttl_seconds = buffer_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._subscribers: dict[int, list[LogSubscriber]] = {}
        self._buffers: dict[int, deque[tuple[float, LogEntry]]] = {}
        self._timers: dict[int, threading.Timer] = {}

    def subscribe(self, run_id: int, callback: LogSubscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(run_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(run_id)
                if not callbacks:
                    return
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[run_id]

        return unsubscribe

    def broadcast(self, entry: LogEntry) -> None:
        now = self._clock()
        with self._lock:
            self._prune(now)
            buffer = self._buffers.get(entry.run_id)
            if buffer is None:
                buffer = deque(maxlen=self.max_buffer_size)
                self._buffers[entry.run_id] = buffer
            buffer.append((now, entry))
            callbacks = list(self._subscribers.get(entry.run_id, ()))
        for callback in callbacks:
            try:
                callback(entry)
            except Exception:
                logger.debug("broadcaster.subscriber_failed run_id=%s", entry.run_id, exc_info=True)

    def get_buffered_logs(self, run_id: int) -> list[LogEntry]:
        with self._lock:
            self._prune(self._clock())
            return [entry for _, entry in self._buffers.get(run_id, ())]

    def has_subscribers(self, run_id: int) -> bool:
        with self._lock:
            return bool(self._subscribers.get(run_id))

    def clear_buffer(self, run_id: int) -> None:
        with self._lock:
            self._buffers.pop(run_id, None)
            timer = self._timers.pop(run_id, None)
        if timer is not None:
            timer.cancel()

    def schedule_clear(self, run_id: int, delay_seconds: float) -> None:
        """Drop the run's buffer after a grace period for late subscribers."""

        timer = threading.Timer(delay_seconds, self.clear_buffer, args=(run_id,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(run_id, None)
            self._timers[run_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _prune(self, now: float) -> None:
        cutoff = now - self.buffer_ttl_seconds
        for run_id in list(self._buffers):
            buffer = self._buffers[run_id]
            while buffer and buffer[0][0] < cutoff:
                buffer.popleft()
            if not buffer:
                del self._buffers[run_id]


@lru_cache
def get_broadcaster() -> LogBroadcaster:
    """Return the process-wide broadcaster."""

    settings = get_settings()
    return LogBroadcaster(
        max_buffer_size=settings.log_buffer_size,
        buffer_ttl_seconds=settings.log_buffer_ttl_seconds,
    )
