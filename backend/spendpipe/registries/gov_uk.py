"""GOV.UK organisation search client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlencode

from spendpipe.config import Settings, get_settings
from spendpipe.registries.http import RateLimitedJsonClient

_ORGANISATION_PATH_PREFIX = "/government/organisations/"


@dataclass(slots=True)
class GovUkOrganisation:
    """Organisation record from the GOV.UK search or organisations API."""

    title: str
    slug: str
    link: str
    acronym: str | None = None
    organisation_type: str | None = None
    organisation_state: str | None = None
    web_url: str | None = None
    parent_organisations: list[str] = field(default_factory=list)

    @property
    def official_website(self) -> str:
        return self.web_url or f"https://www.gov.uk{self.link}"


class GovUkClient:
    def __init__(self, *, base_url: str, http: RateLimitedJsonClient) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http

    def search_organisations(self, query: str, *, count: int = 10) -> list[GovUkOrganisation]:
        params = urlencode({"filter_format": "organisation", "q": query, "count": count})
        payload = self._http.get_json(f"{self.base_url}/api/search.json?{params}")
        if not isinstance(payload, dict):
            return []
        organisations: list[GovUkOrganisation] = []
        seen: set[str] = set()
        for result in payload.get("results") or []:
            nested = result.get("organisations") or []
            record = nested[0] if nested and isinstance(nested[0], dict) else result
            organisation = _organisation_from_payload(record, fallback=result)
            if organisation is None or organisation.slug in seen:
                continue
            seen.add(organisation.slug)
            organisations.append(organisation)
        return organisations

    def get_organisation(self, slug: str) -> GovUkOrganisation | None:
        payload = self._http.get_json(f"{self.base_url}/api/organisations/{quote(slug, safe='')}")
        if not isinstance(payload, dict):
            return None
        details = payload.get("details") or {}
        parents = [
            str(parent.get("id", "")).rstrip("/").rsplit("/", 1)[-1]
            for parent in payload.get("parent_organisations") or []
            if isinstance(parent, dict)
        ]
        return GovUkOrganisation(
            title=str(payload.get("title") or slug),
            slug=details.get("slug") or slug,
            link=f"{_ORGANISATION_PATH_PREFIX}{slug}",
            acronym=details.get("abbreviation"),
            organisation_type=details.get("organisation_type"),
            organisation_state=details.get("govuk_status"),
            web_url=payload.get("web_url"),
            parent_organisations=[parent for parent in parents if parent],
        )


def _organisation_from_payload(record: dict[str, Any], *, fallback: dict[str, Any]) -> GovUkOrganisation | None:
    link = str(record.get("link") or fallback.get("link") or "")
    slug = record.get("slug") or fallback.get("slug")
    if not slug and link.startswith(_ORGANISATION_PATH_PREFIX):
        slug = link[len(_ORGANISATION_PATH_PREFIX) :]
    title = record.get("title") or fallback.get("title")
    if not slug or not title:
        return None
    if not link:
        link = f"{_ORGANISATION_PATH_PREFIX}{slug}"
    return GovUkOrganisation(
        title=str(title),
        slug=str(slug),
        link=link,
        acronym=record.get("acronym"),
        organisation_type=record.get("organisation_type") or fallback.get("organisation_type"),
        organisation_state=record.get("organisation_state") or fallback.get("organisation_state"),
        parent_organisations=[str(parent) for parent in record.get("parent_organisations") or []],
    )


def build_gov_uk_client(settings: Settings | None = None) -> GovUkClient:
    settings = settings or get_settings()
    return GovUkClient(
        base_url=settings.gov_uk_base_url,
        http=RateLimitedJsonClient(
            min_interval_ms=settings.gov_uk_min_interval_ms,
            timeout_seconds=settings.registry_timeout_seconds,
            max_retries=settings.registry_max_retries,
            backoff_base_ms=settings.registry_backoff_base_ms,
            backoff_max_ms=settings.registry_backoff_max_ms,
        ),
    )
