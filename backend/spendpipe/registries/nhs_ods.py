"""NHS Organisation Data Service (ODS) directory client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

from spendpipe.config import Settings, get_settings
from spendpipe.registries.http import RateLimitedJsonClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OdsOrganisation:
    """Search hit from the ODS ORD API."""

    name: str
    org_id: str
    status: str | None = None
    post_code: str | None = None
    primary_role_id: str | None = None
    primary_role_description: str | None = None


def ods_name_variants(name: str) -> list[str]:
    """Alternative spellings tried against ODS, original first."""

    cleaned = " ".join(name.split())
    variants = [cleaned]
    if "&" in cleaned:
        variants.append(" ".join(cleaned.replace("&", " and ").split()))
    words = cleaned.split(" ")
    if "ICB" in words:
        variants.append(" ".join("Integrated Care Board" if word == "ICB" else word for word in words))
    return list(dict.fromkeys(variants))


class NhsOdsClient:
    def __init__(self, *, base_url: str, http: RateLimitedJsonClient) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http

    def search_organisations(self, name: str) -> list[OdsOrganisation]:
        """Search active organisations by name, merging all variants and deduping by ODS code."""

        seen: set[str] = set()
        results: list[OdsOrganisation] = []
        for variant in ods_name_variants(name):
            params = urlencode({"Name": variant, "Status": "Active"})
            payload = self._http.get_json(f"{self.base_url}/organisations?{params}")
            if not isinstance(payload, dict):
                continue
            for item in payload.get("Organisations") or []:
                org_id = item.get("OrgId")
                if not org_id or org_id in seen:
                    continue
                seen.add(org_id)
                results.append(
                    OdsOrganisation(
                        name=str(item.get("Name") or ""),
                        org_id=str(org_id),
                        status=item.get("Status"),
                        post_code=item.get("PostCode"),
                        primary_role_id=item.get("PrimaryRoleId"),
                        primary_role_description=item.get("PrimaryRoleDescription"),
                    )
                )
        logger.debug("ods.search name=%r results=%d", name, len(results))
        return results


def build_nhs_ods_client(settings: Settings | None = None) -> NhsOdsClient:
    settings = settings or get_settings()
    return NhsOdsClient(
        base_url=settings.nhs_ods_base_url,
        http=RateLimitedJsonClient(
            timeout_seconds=settings.registry_timeout_seconds,
            max_retries=settings.registry_max_retries,
            backoff_base_ms=settings.registry_backoff_base_ms,
            backoff_max_ms=settings.registry_backoff_max_ms,
        ),
    )
