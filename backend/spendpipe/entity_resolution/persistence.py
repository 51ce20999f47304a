"""Canonical entity and type-detail persistence."""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendpipe.models.company import Company
from spendpipe.models.council import Council
from spendpipe.models.entity import Entity
from spendpipe.models.government_department import GovernmentDepartment
from spendpipe.models.health_organisation import HealthOrganisation
from spendpipe.registries.companies_house import CompanyProfile, CompanySearchResult
from spendpipe.registries.council_geography import CouncilMetadata
from spendpipe.registries.gov_uk import GovUkOrganisation

PLACEHOLDER_PREFIX = "UNKNOWN_"


def make_placeholder_registry_id() -> str:
    return f"{PLACEHOLDER_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def is_placeholder_registry_id(registry_id: str | None) -> bool:
    return bool(registry_id) and registry_id.startswith(PLACEHOLDER_PREFIX)


def get_entity(db: Session, entity_type: str, registry_id: str) -> Entity | None:
    return db.scalar(select(Entity).where(Entity.entity_type == entity_type, Entity.registry_id == registry_id))


def get_or_create_entity(
    db: Session,
    *,
    entity_type: str,
    registry_id: str,
    name: str,
    status: str | None = None,
    postal_code: str | None = None,
) -> tuple[Entity, bool]:
    """Return the entity keyed by (entity_type, registry_id), creating it if absent.

    Existing entities are updated in place with any non-empty attributes.
    """

    existing = get_entity(db, entity_type, registry_id)
    if existing is not None:
        if name and existing.name != name:
            existing.name = name
        if status:
            existing.status = status
        if postal_code and not existing.postal_code:
            existing.postal_code = postal_code
        return existing, False

    entity = Entity(
        entity_type=entity_type,
        registry_id=registry_id,
        name=name,
        status=status,
        postal_code=postal_code,
        country="United Kingdom",
    )
    db.add(entity)
    db.flush()
    return entity, True


def upsert_health_organisation(
    db: Session,
    *,
    entity_type: str,
    ods_code: str,
    name: str,
    status: str | None = None,
    postal_code: str | None = None,
    role_code: str | None = None,
    org_sub_type: str | None = None,
    parent_ods_code: str | None = None,
    official_website: str | None = None,
) -> tuple[Entity, bool]:
    entity, created = get_or_create_entity(
        db,
        entity_type=entity_type,
        registry_id=ods_code,
        name=name,
        status=status,
        postal_code=postal_code,
    )
    detail = db.scalar(select(HealthOrganisation).where(HealthOrganisation.entity_id == entity.id))
    if detail is None:
        detail = HealthOrganisation(entity_id=entity.id, ods_code=ods_code, org_type=entity_type)
        db.add(detail)
    detail.org_type = entity_type
    detail.role_code = role_code or detail.role_code
    detail.org_sub_type = org_sub_type or detail.org_sub_type
    detail.parent_ods_code = parent_ods_code or detail.parent_ods_code
    detail.official_website = official_website or detail.official_website
    detail.is_active = (status or "active").lower() == "active"
    db.flush()
    return entity, created


def upsert_company(
    db: Session,
    result: CompanySearchResult,
    profile: CompanyProfile | None = None,
) -> tuple[Entity, bool]:
    """Persist a company from its profile, falling back to the search hit."""

    name = profile.company_name if profile and profile.company_name else result.title
    entity, created = get_or_create_entity(
        db,
        entity_type="company",
        registry_id=result.company_number,
        name=name,
        status=(profile.company_status if profile else None) or result.company_status,
        postal_code=(profile.postal_code if profile else None) or result.postal_code,
    )
    if profile is not None:
        entity.address_line_1 = profile.address_line_1 or entity.address_line_1
        entity.address_line_2 = profile.address_line_2 or entity.address_line_2
        entity.locality = profile.locality or entity.locality
        entity.country = profile.country or entity.country

    detail = db.scalar(select(Company).where(Company.entity_id == entity.id))
    if detail is None:
        detail = Company(entity_id=entity.id, company_number=result.company_number, company_name=name)
        db.add(detail)
    detail.company_name = name
    detail.company_status = entity.status
    detail.company_type = (profile.company_type if profile else None) or result.company_type
    detail.date_of_creation = (profile.date_of_creation if profile else None) or result.date_of_creation
    if profile is not None:
        detail.jurisdiction = profile.jurisdiction
        detail.sic_codes_json = list(profile.sic_codes)
        detail.previous_names_json = list(profile.previous_names)
        detail.raw_profile_json = dict(profile.raw)
        detail.fetched_at = datetime.now(timezone.utc)
    db.flush()
    return entity, created


def upsert_council(
    db: Session,
    metadata: CouncilMetadata,
    *,
    parent_entity_id: int | None = None,
) -> tuple[Entity, bool]:
    entity, created = get_or_create_entity(
        db,
        entity_type="council",
        registry_id=metadata.gss_code,
        name=metadata.official_name,
        status="active",
    )
    if metadata.latitude is not None and entity.latitude is None:
        entity.latitude = metadata.latitude
        entity.longitude = metadata.longitude
    if metadata.nation and not entity.uk_country:
        entity.uk_country = metadata.nation

    detail = db.scalar(select(Council).where(Council.entity_id == entity.id))
    if detail is None:
        detail = Council(entity_id=entity.id, gss_code=metadata.gss_code, council_type=metadata.council_type)
        db.add(detail)
    detail.ons_code = metadata.ons_code or detail.ons_code
    detail.council_type = metadata.council_type
    detail.tier = metadata.tier or detail.tier
    detail.homepage_url = metadata.homepage_url or detail.homepage_url
    detail.region = metadata.region or detail.region
    detail.nation = metadata.nation
    if parent_entity_id is not None:
        detail.parent_entity_id = parent_entity_id
    db.flush()
    return entity, created


def upsert_government_department(db: Session, organisation: GovUkOrganisation) -> tuple[Entity, bool]:
    entity, created = get_or_create_entity(
        db,
        entity_type="government_department",
        registry_id=organisation.slug,
        name=organisation.title,
        status=organisation.organisation_state,
    )
    detail = db.scalar(select(GovernmentDepartment).where(GovernmentDepartment.entity_id == entity.id))
    if detail is None:
        detail = GovernmentDepartment(entity_id=entity.id, slug=organisation.slug)
        db.add(detail)
    detail.acronym = organisation.acronym or detail.acronym
    detail.organisation_type = organisation.organisation_type or detail.organisation_type
    detail.organisation_state = organisation.organisation_state or detail.organisation_state
    detail.link = organisation.link or detail.link
    if organisation.parent_organisations:
        detail.parent_slugs_json = list(organisation.parent_organisations)
    db.flush()
    return entity, created
