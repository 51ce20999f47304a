"""Local authority lookup: local LAD boundaries CSV first, GOV.UK enrichment second."""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from spendpipe.config import Settings, get_settings
from spendpipe.entity_resolution.similarity import dice_coefficient
from spendpipe.registries.gov_uk import GovUkClient, GovUkOrganisation, build_gov_uk_client
from spendpipe.registries.http import RegistryError

logger = logging.getLogger(__name__)

LOCAL_MATCH_THRESHOLD = 0.7
_COUNCIL_SUFFIX_RE = re.compile(
    r"\b(District|Borough|City|County|Metropolitan|London Borough)?\s*Council\b",
    re.IGNORECASE,
)
_AUTHORITY_RE = re.compile(r"\b(National Park|Authority)\b", re.IGNORECASE)
_EXCLUDED_GOV_UK_TERMS = ("national park", "police", "fire", "committee", "commission")
_NATIONS = {"E": "England", "W": "Wales", "S": "Scotland", "N": "Northern Ireland"}


@dataclass(slots=True)
class LocalAuthorityRecord:
    gss_code: str
    name: str
    latitude: float | None = None
    longitude: float | None = None


@dataclass(slots=True)
class CouncilMetadata:
    """Resolved attributes for one council."""

    name: str
    official_name: str
    gss_code: str
    council_type: str
    nation: str
    ons_code: str | None = None
    tier: str | None = None
    homepage_url: str | None = None
    region: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    similarity: float = 0.0


def infer_council_type(name: str) -> str:
    lowered = name.lower()
    if "city of" in lowered or "city council" in lowered:
        return "city"
    if "london borough" in lowered:
        return "london_borough"
    if "metropolitan borough" in lowered:
        return "metropolitan"
    if "district council" in lowered:
        return "district"
    if "county council" in lowered:
        return "county"
    return "unitary"


def infer_tier(council_type: str) -> str:
    if "county" in council_type:
        return "tier1"
    if "district" in council_type:
        return "tier2"
    return "unitary"


def infer_nation(gss_code: str) -> str:
    return _NATIONS.get(gss_code[:1].upper(), "England")


def load_local_authorities(path: str | Path) -> list[LocalAuthorityRecord]:
    """Read LAD23CD/LAD23NM/LAT/LONG rows from the boundaries CSV."""

    csv_path = Path(path)
    if not csv_path.exists():
        logger.warning("council_geography.csv_missing path=%s", csv_path)
        return []
    records: list[LocalAuthorityRecord] = []
    with csv_path.open(newline="", encoding="utf-8-sig") as handle:
        for row in csv.DictReader(handle):
            code = (row.get("LAD23CD") or "").strip()
            name = (row.get("LAD23NM") or "").strip()
            if not code or not name:
                continue
            records.append(
                LocalAuthorityRecord(
                    gss_code=code,
                    name=name,
                    latitude=_optional_float(row.get("LAT")),
                    longitude=_optional_float(row.get("LONG")),
                )
            )
    return records


class CouncilGeography:
    """Council metadata search over the local LAD list plus optional GOV.UK details."""

    def __init__(self, records: list[LocalAuthorityRecord], *, gov_uk: GovUkClient | None = None) -> None:
        self._records = records
        self._gov_uk = gov_uk

    def lookup_local(self, name: str) -> CouncilMetadata | None:
        normalized = " ".join(name.split())
        clean = _AUTHORITY_RE.sub("", _COUNCIL_SUFFIX_RE.sub("", normalized)).strip()
        best: tuple[float, LocalAuthorityRecord] | None = None
        for record in self._records:
            official = record.name.lower()
            if "national park" in official or "authority" in official:
                continue
            score = max(
                dice_coefficient(normalized.lower(), official),
                dice_coefficient(clean.lower(), official) if clean else 0.0,
            )
            if best is None or score > best[0]:
                best = (score, record)
        if best is None or best[0] <= LOCAL_MATCH_THRESHOLD:
            return None
        score, record = best
        council_type = infer_council_type(record.name)
        return CouncilMetadata(
            name=normalized,
            official_name=record.name,
            gss_code=record.gss_code,
            ons_code=record.gss_code,
            council_type=council_type,
            tier=infer_tier(council_type),
            nation=infer_nation(record.gss_code),
            latitude=record.latitude,
            longitude=record.longitude,
            similarity=score,
        )

    def search_council_metadata(self, name: str) -> CouncilMetadata | None:
        """Local match, then best-effort GOV.UK enrichment of homepage and tier."""

        metadata = self.lookup_local(name)
        if metadata is None or self._gov_uk is None:
            return metadata
        try:
            organisation = self._find_gov_uk_council(metadata.official_name)
        except RegistryError:
            logger.warning("council_geography.gov_uk_enrichment_failed name=%r", metadata.official_name)
            return metadata
        if organisation is not None:
            metadata.homepage_url = organisation.web_url or organisation.official_website
            if organisation.organisation_type:
                metadata.tier = infer_tier(organisation.organisation_type)
        return metadata

    def _find_gov_uk_council(self, official_name: str) -> GovUkOrganisation | None:
        for candidate in self._gov_uk.search_organisations(official_name):
            title = candidate.title.lower()
            if any(term in title for term in _EXCLUDED_GOV_UK_TERMS):
                continue
            if (candidate.organisation_type or "").lower() == "local_authority" or "council" in title:
                return self._gov_uk.get_organisation(candidate.slug) or candidate
        return None


def build_council_geography(settings: Settings | None = None) -> CouncilGeography:
    settings = settings or get_settings()
    return CouncilGeography(
        load_local_authorities(settings.council_geography_csv_path),
        gov_uk=build_gov_uk_client(settings),
    )


def _optional_float(value: str | None) -> float | None:
    if value is None or not str(value).strip():
        return None
    try:
        return float(value)
    except ValueError:
        return None
