"""Companies House search and profile client."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlencode

from spendpipe.config import Settings, get_settings
from spendpipe.registries.http import RateLimitedJsonClient


@dataclass(slots=True)
class CompanySearchResult:
    """One hit from the company name search."""

    company_number: str
    title: str
    company_status: str | None = None
    company_type: str | None = None
    date_of_creation: str | None = None
    address_snippet: str | None = None
    postal_code: str | None = None


@dataclass(slots=True)
class CompanyProfile:
    """Registered company profile."""

    company_number: str
    company_name: str
    company_status: str | None = None
    company_type: str | None = None
    date_of_creation: str | None = None
    jurisdiction: str | None = None
    sic_codes: list[str] = field(default_factory=list)
    previous_names: list[dict[str, Any]] = field(default_factory=list)
    address_line_1: str | None = None
    address_line_2: str | None = None
    locality: str | None = None
    postal_code: str | None = None
    country: str | None = None
    etag: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class CompaniesHouseClient:
    """Thin client over the public Companies House API (HTTP basic auth, key as username)."""

    def __init__(self, api_key: str, *, base_url: str, http: RateLimitedJsonClient) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http
        token = base64.b64encode(f"{api_key}:".encode("utf-8")).decode("ascii")
        self._headers = {"Authorization": f"Basic {token}"}

    def search_companies(self, query: str, *, items_per_page: int = 5) -> list[CompanySearchResult]:
        params = urlencode({"q": query, "items_per_page": items_per_page})
        payload = self._http.get_json(f"{self.base_url}/search/companies?{params}", headers=self._headers)
        if not isinstance(payload, dict):
            return []
        results: list[CompanySearchResult] = []
        for item in payload.get("items") or []:
            number = item.get("company_number")
            title = item.get("title")
            if not number or not title:
                continue
            address = item.get("address") or {}
            results.append(
                CompanySearchResult(
                    company_number=str(number),
                    title=str(title),
                    company_status=item.get("company_status"),
                    company_type=item.get("company_type"),
                    date_of_creation=item.get("date_of_creation"),
                    address_snippet=item.get("address_snippet"),
                    postal_code=address.get("postal_code"),
                )
            )
        return results

    def get_company_profile(self, company_number: str) -> CompanyProfile | None:
        payload = self._http.get_json(
            f"{self.base_url}/company/{quote(company_number, safe='')}",
            headers=self._headers,
        )
        if not isinstance(payload, dict) or not payload.get("company_number"):
            return None
        address = payload.get("registered_office_address") or {}
        return CompanyProfile(
            company_number=str(payload["company_number"]),
            company_name=str(payload.get("company_name") or ""),
            company_status=payload.get("company_status"),
            company_type=payload.get("type"),
            date_of_creation=payload.get("date_of_creation"),
            jurisdiction=payload.get("jurisdiction"),
            sic_codes=[str(code) for code in payload.get("sic_codes") or []],
            previous_names=list(payload.get("previous_company_names") or []),
            address_line_1=address.get("address_line_1"),
            address_line_2=address.get("address_line_2"),
            locality=address.get("locality"),
            postal_code=address.get("postal_code"),
            country=address.get("country"),
            etag=payload.get("etag"),
            raw=payload,
        )


def build_companies_house_client(settings: Settings | None = None) -> CompaniesHouseClient | None:
    """Return a configured client, or None when no API key is set."""

    settings = settings or get_settings()
    if not settings.companies_house_api_key:
        return None
    return CompaniesHouseClient(
        settings.companies_house_api_key,
        base_url=settings.companies_house_base_url,
        http=RateLimitedJsonClient(
            min_interval_ms=settings.companies_house_rate_limit_ms,
            timeout_seconds=settings.registry_timeout_seconds,
            max_retries=settings.registry_max_retries,
            backoff_base_ms=settings.registry_backoff_base_ms,
            backoff_max_ms=settings.registry_backoff_max_ms,
        ),
    )
