"""Rate-limited JSON-over-HTTP client shared by the registry clients."""

from __future__ import annotations

import json
import logging
import socket
import time
from collections.abc import Callable, Mapping
from typing import Any
from urllib import error as urllib_error
from urllib import request as urllib_request

logger = logging.getLogger(__name__)

_RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class RegistryError(RuntimeError):
    """Raised when an external registry cannot answer a request."""

    def __init__(self, message: str, *, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class RegistryRateLimitedError(RegistryError):
    """Raised when a registry keeps answering HTTP 429 after all retries."""

    def __init__(self, message: str, *, url: str | None = None, retry_after_seconds: float | None = None) -> None:
        super().__init__(message, url=url, status=429)
        self.retry_after_seconds = retry_after_seconds


class RateLimitedJsonClient:
    """JSON client with a minimum request interval and bounded exponential backoff.

    The interval is enforced against a monotonic watermark of the last request.
    Retries cover HTTP 429, 5xx, timeouts and connection errors; a numeric
    ``Retry-After`` header replaces the computed backoff delay. A 404 is a
    definitive miss and returns ``None``.
    """

    def __init__(
        self,
        *,
        min_interval_ms: int = 0,
        timeout_seconds: float = 25.0,
        max_retries: int = 3,
        backoff_base_ms: int = 500,
        backoff_max_ms: int = 30_000,
        default_headers: Mapping[str, str] | None = None,
        opener: Callable[..., Any] = urllib_request.urlopen,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_interval_ms = min_interval_ms
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self.default_headers = {"Accept": "application/json", "User-Agent": "spendpipe/0.1"}
        self.default_headers.update(default_headers or {})
        self._opener = opener
        self._sleep = sleep
        self._clock = clock
        self._last_request_at: float | None = None

    def get_json(self, url: str, *, headers: Mapping[str, str] | None = None) -> Any | None:
        return self._request("GET", url, body=None, headers=headers)

    def post_json(self, url: str, payload: Any, *, headers: Mapping[str, str] | None = None) -> Any | None:
        body = json.dumps(payload).encode("utf-8")
        merged = {"Content-Type": "application/json"}
        merged.update(headers or {})
        return self._request("POST", url, body=body, headers=merged)

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""

        delay_ms = min(self.backoff_max_ms, self.backoff_base_ms * (2 ** (attempt - 1)))
        return delay_ms / 1000.0

    def _wait_for_slot(self) -> None:
        if self.min_interval_ms > 0 and self._last_request_at is not None:
            elapsed_ms = (self._clock() - self._last_request_at) * 1000.0
            if elapsed_ms < self.min_interval_ms:
                self._sleep((self.min_interval_ms - elapsed_ms) / 1000.0)
        self._last_request_at = self._clock()

    def _request(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None,
        headers: Mapping[str, str] | None,
    ) -> Any | None:
        merged_headers = dict(self.default_headers)
        merged_headers.update(headers or {})
        attempt = 0
        while True:
            attempt += 1
            self._wait_for_slot()
            req = urllib_request.Request(url=url, data=body, method=method, headers=merged_headers)
            try:
                with self._opener(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read().decode("utf-8")
            except urllib_error.HTTPError as exc:
                if exc.code == 404:
                    return None
                retry_after = _parse_retry_after(exc.headers.get("Retry-After") if exc.headers else None)
                if exc.code not in _RETRYABLE_STATUSES:
                    raise RegistryError(f"HTTP {exc.code} from {url}", url=url, status=exc.code) from exc
                if attempt > self.max_retries:
                    if exc.code == 429:
                        raise RegistryRateLimitedError(
                            f"Rate limited by {url} after {attempt} attempts",
                            url=url,
                            retry_after_seconds=retry_after,
                        ) from exc
                    raise RegistryError(
                        f"HTTP {exc.code} from {url} after {attempt} attempts",
                        url=url,
                        status=exc.code,
                    ) from exc
                delay = retry_after if retry_after is not None else self.backoff_seconds(attempt)
                logger.warning(
                    "registry.retry method=%s url=%s status=%d attempt=%d delay_s=%.2f",
                    method,
                    url,
                    exc.code,
                    attempt,
                    delay,
                )
                self._sleep(delay)
                continue
            except (urllib_error.URLError, socket.timeout, TimeoutError, ConnectionError) as exc:
                if attempt > self.max_retries:
                    reason = getattr(exc, "reason", exc)
                    raise RegistryError(f"Request to {url} failed: {reason}", url=url) from exc
                delay = self.backoff_seconds(attempt)
                logger.warning(
                    "registry.retry method=%s url=%s error=%s attempt=%d delay_s=%.2f",
                    method,
                    url,
                    exc,
                    attempt,
                    delay,
                )
                self._sleep(delay)
                continue

            if not raw.strip():
                return None
            try:
                return json.loads(raw)
            except json.JSONDecodeError as exc:
                raise RegistryError(f"Invalid JSON from {url}", url=url) from exc


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
