"""Registry strategies used by the resolver, one per organisation family."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from spendpipe.entity_resolution.filters import is_likely_nhs_organisation
from spendpipe.entity_resolution.persistence import (
    upsert_company,
    upsert_council,
    upsert_government_department,
    upsert_health_organisation,
)
from spendpipe.entity_resolution.types import RegistryCandidate
from spendpipe.models.entity import Entity
from spendpipe.registries.companies_house import CompaniesHouseClient, CompanySearchResult
from spendpipe.registries.council_geography import CouncilGeography, CouncilMetadata, infer_nation
from spendpipe.registries.gov_uk import GovUkClient, GovUkOrganisation
from spendpipe.registries.nhs_ods import NhsOdsClient
from spendpipe.schema.entity_types import HEALTH_ENTITY_TYPES, entity_type_for_ods_role

logger = logging.getLogger(__name__)


class HealthRegistry:
    """NHS ODS directory, keyed by ODS code."""

    scope = "nhs"
    entity_types = HEALTH_ENTITY_TYPES
    placeholder_entity_type = "nhs_trust"

    def __init__(self, client: NhsOdsClient | None) -> None:
        self._client = client

    def search(self, name: str) -> list[RegistryCandidate]:
        if self._client is None or not is_likely_nhs_organisation(name):
            return []
        return [
            RegistryCandidate(
                registry_id=org.org_id,
                name=org.name,
                entity_type=entity_type_for_ods_role(org.primary_role_id, org.primary_role_description),
                status=org.status,
                postal_code=org.post_code,
                role_code=org.primary_role_id,
                payload=org,
            )
            for org in self._client.search_organisations(name)
        ]

    def persist(self, db: Session, candidate: RegistryCandidate) -> tuple[Entity, bool]:
        sub_type = None
        payload = candidate.payload
        if payload is not None:
            sub_type = getattr(payload, "primary_role_description", None) or getattr(payload, "org_sub_type", None)
        return upsert_health_organisation(
            db,
            entity_type=candidate.entity_type,
            ods_code=candidate.registry_id,
            name=candidate.name,
            status=candidate.status,
            postal_code=candidate.postal_code,
            role_code=candidate.role_code,
            org_sub_type=sub_type,
            official_website=candidate.website,
        )


class CouncilRegistry:
    """Local authority geography, keyed by GSS code."""

    scope = "council"
    entity_types = ("council",)
    placeholder_entity_type = "council"

    def __init__(self, geography: CouncilGeography | None) -> None:
        self._geography = geography

    def search(self, name: str) -> list[RegistryCandidate]:
        if self._geography is None:
            return []
        metadata = self._geography.search_council_metadata(name)
        if metadata is None:
            return []
        return [
            RegistryCandidate(
                registry_id=metadata.gss_code,
                name=metadata.official_name,
                entity_type="council",
                status="active",
                website=metadata.homepage_url,
                similarity=metadata.similarity,
                payload=metadata,
            )
        ]

    def persist(self, db: Session, candidate: RegistryCandidate) -> tuple[Entity, bool]:
        metadata = candidate.payload
        if not isinstance(metadata, CouncilMetadata):
            metadata = CouncilMetadata(
                name=candidate.name,
                official_name=candidate.name,
                gss_code=candidate.registry_id,
                council_type="unknown",
                nation=infer_nation(candidate.registry_id),
                homepage_url=candidate.website,
            )
        return upsert_council(db, metadata)


class GovernmentRegistry:
    """GOV.UK organisations, keyed by slug."""

    scope = "government_department"
    entity_types = ("government_department",)
    placeholder_entity_type = "government_department"

    def __init__(self, client: GovUkClient | None) -> None:
        self._client = client

    def search(self, name: str) -> list[RegistryCandidate]:
        if self._client is None:
            return []
        return [
            RegistryCandidate(
                registry_id=organisation.slug,
                name=organisation.title,
                entity_type="government_department",
                status=organisation.organisation_state,
                website=organisation.official_website,
                payload=organisation,
            )
            for organisation in self._client.search_organisations(name)
        ]

    def persist(self, db: Session, candidate: RegistryCandidate) -> tuple[Entity, bool]:
        organisation = candidate.payload
        if not isinstance(organisation, GovUkOrganisation):
            organisation = GovUkOrganisation(
                title=candidate.name,
                slug=candidate.registry_id,
                link=f"/government/organisations/{candidate.registry_id}",
                organisation_state=candidate.status,
            )
        return upsert_government_department(db, organisation)


class CompanyRegistry:
    """Companies House, keyed by company number."""

    scope = "company"
    entity_types = ("company",)
    placeholder_entity_type = "company"

    def __init__(self, client: CompaniesHouseClient | None) -> None:
        self._client = client

    def search(self, name: str) -> list[RegistryCandidate]:
        if self._client is None:
            return []
        return [
            RegistryCandidate(
                registry_id=result.company_number,
                name=result.title,
                entity_type="company",
                status=result.company_status,
                postal_code=result.postal_code,
                payload=result,
            )
            for result in self._client.search_companies(name)
        ]

    def persist(self, db: Session, candidate: RegistryCandidate) -> tuple[Entity, bool]:
        result = candidate.payload
        if not isinstance(result, CompanySearchResult):
            result = CompanySearchResult(
                company_number=candidate.registry_id,
                title=candidate.name,
                company_status=candidate.status,
                postal_code=candidate.postal_code,
            )
        profile = self._client.get_company_profile(result.company_number) if self._client is not None else None
        return upsert_company(db, result, profile)
