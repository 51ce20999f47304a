"""Per-source-type parameters for the generic spreadsheet import stage."""

from __future__ import annotations

from dataclasses import dataclass, field

from spendpipe.pipeline.types import PipelineError


@dataclass(frozen=True, slots=True)
class SourceType:
    """Everything that differs between health, council and government imports."""

    org_type: str
    import_stage_id: str
    title: str
    organisation_label: str
    header_labels: tuple[str, ...]
    ignored_names: tuple[str, ...] = ()
    excluded_sheet_names: tuple[str, ...] = ()
    metadata_sheet_name: str | None = None
    metadata_columns: dict[str, str] = field(default_factory=dict)
    entity_types: tuple[str, ...] = ()

    def header_matches(self, header_cell: str) -> bool:
        lowered = header_cell.strip().lower()
        return any(label in lowered for label in self.header_labels)

    def is_ignored_name(self, name: str) -> bool:
        return name.strip().lower() in self.ignored_names


HEALTH = SourceType(
    org_type="nhs",
    import_stage_id="import_spend_health",
    title="Import NHS spend workbook",
    organisation_label="trust",
    header_labels=("trust", "org code desc", "nhs", "icb", "health", "organisation", "buyer"),
    ignored_names=("org code desc", "trust", "trust name", "organisation"),
    excluded_sheet_names=("trusts",),
    metadata_sheet_name="trusts",
    metadata_columns={
        "name": "trust name",
        "sub_type": "trust type",
        "registry_code": "ods code",
        "postal_code": "post code",
        "official_website": "official website",
        "spending_data_url": "spending data url",
        "missing_data_note": "missing data",
        "verified_via": "verified via",
    },
    entity_types=("nhs_trust", "nhs_icb", "nhs_practice"),
)

COUNCIL = SourceType(
    org_type="council",
    import_stage_id="import_spend_council",
    title="Import council spend workbook",
    organisation_label="council",
    header_labels=("council", "authority", "organisation", "buyer", "body"),
    ignored_names=("council", "council name", "organisation", "authority"),
    excluded_sheet_names=("trusts", "councils", "metadata"),
    entity_types=("council",),
)

GOVERNMENT_DEPARTMENT = SourceType(
    org_type="government_department",
    import_stage_id="import_spend_government",
    title="Import government department spend workbook",
    organisation_label="department",
    header_labels=("department", "organisation", "entity", "buyer", "body"),
    ignored_names=("department", "department name", "organisation", "entity"),
    excluded_sheet_names=("metadata", "departments"),
    entity_types=("government_department",),
)

SOURCE_TYPES: dict[str, SourceType] = {
    source.org_type: source for source in (HEALTH, COUNCIL, GOVERNMENT_DEPARTMENT)
}


def get_source_type(org_type: str) -> SourceType:
    source = SOURCE_TYPES.get(org_type)
    if source is None:
        raise PipelineError("invalid_input", f"Unknown org type '{org_type}'", {"org_types": sorted(SOURCE_TYPES)})
    return source
