"""postcodes.io bulk postcode lookup."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from spendpipe.config import Settings, get_settings
from spendpipe.registries.http import RateLimitedJsonClient

logger = logging.getLogger(__name__)

POSTCODES_IO_BULK_LIMIT = 100
_DEVOLVED_NATIONS = ("Wales", "Scotland", "Northern Ireland")


@dataclass(slots=True)
class PostcodeLocation:
    postcode: str
    latitude: float | None
    longitude: float | None
    country: str | None
    region: str | None

    @property
    def uk_region(self) -> str | None:
        return derive_uk_region(self.country, self.region)


def normalize_uk_postcode(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = " ".join(str(value).upper().split())
    return normalized or None


def derive_uk_region(country: str | None, region: str | None) -> str | None:
    """Prefer the English region; devolved nations use the country name."""

    if region and region.strip():
        return region
    if not country:
        return None
    stripped = country.strip()
    if stripped in _DEVOLVED_NATIONS:
        return stripped
    if stripped == "England":
        return None
    return stripped


class PostcodesIoClient:
    def __init__(
        self,
        *,
        base_url: str,
        http: RateLimitedJsonClient,
        batch_delay_ms: int = 300,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.batch_delay_ms = batch_delay_ms
        self._http = http
        self._sleep = sleep

    def bulk_lookup(self, postcodes: Iterable[str]) -> dict[str, PostcodeLocation | None]:
        """Look up postcodes in batches of at most 100; unknown postcodes map to None."""

        unique = list(dict.fromkeys(p for p in (normalize_uk_postcode(code) for code in postcodes) if p))
        results: dict[str, PostcodeLocation | None] = {}
        for offset in range(0, len(unique), POSTCODES_IO_BULK_LIMIT):
            if offset and self.batch_delay_ms > 0:
                self._sleep(self.batch_delay_ms / 1000.0)
            batch = unique[offset : offset + POSTCODES_IO_BULK_LIMIT]
            payload = self._http.post_json(f"{self.base_url}/postcodes", {"postcodes": batch})
            for postcode in batch:
                results[postcode] = None
            if not isinstance(payload, dict):
                continue
            for item in payload.get("result") or []:
                query = normalize_uk_postcode(item.get("query"))
                found = item.get("result")
                if query is None or not isinstance(found, dict):
                    continue
                results[query] = PostcodeLocation(
                    postcode=str(found.get("postcode") or query),
                    latitude=found.get("latitude"),
                    longitude=found.get("longitude"),
                    country=found.get("country"),
                    region=found.get("region"),
                )
        logger.debug("postcodes_io.bulk_lookup requested=%d resolved=%d", len(unique), sum(1 for v in results.values() if v))
        return results


def build_postcodes_io_client(settings: Settings | None = None) -> PostcodesIoClient:
    settings = settings or get_settings()
    return PostcodesIoClient(
        base_url=settings.postcodes_io_base_url,
        batch_delay_ms=settings.postcodes_io_batch_delay_ms,
        http=RateLimitedJsonClient(
            timeout_seconds=settings.registry_timeout_seconds,
            max_retries=settings.registry_max_retries,
            backoff_base_ms=settings.registry_backoff_base_ms,
            backoff_max_ms=settings.registry_backoff_max_ms,
        ),
    )
