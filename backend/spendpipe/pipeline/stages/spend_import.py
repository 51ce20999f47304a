"""Generic spreadsheet import stage, parameterised by source type."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from time import perf_counter
from typing import Any, Protocol

from sqlalchemy import delete, insert, select, update
from sqlalchemy.orm import Session

from spendpipe.entity_resolution.filters import is_numeric_name
from spendpipe.entity_resolution.resolver import FUZZY_MATCH_THRESHOLD, EntityResolver
from spendpipe.entity_resolution.similarity import normalize_org_name
from spendpipe.entity_resolution.types import OrganisationRegistry, RegistryCandidate, ResolutionContext
from spendpipe.models.buyer import Buyer
from spendpipe.models.council import Council
from spendpipe.models.entity import Entity
from spendpipe.models.government_department import GovernmentDepartment
from spendpipe.models.health_organisation import HealthOrganisation
from spendpipe.models.pipeline_skipped_row import PipelineSkippedRow
from spendpipe.models.spend_entry import SpendEntry
from spendpipe.models.supplier import Supplier
from spendpipe.pipeline.repository import get_asset
from spendpipe.pipeline.source_types import SourceType
from spendpipe.pipeline.types import (
    ImportDryRunMetrics,
    ImportMetrics,
    PipelineContext,
    PipelineError,
    PipelineStage,
    StageInput,
    StageResult,
    require_positive_int,
)
from spendpipe.pipeline.workbook import (
    Sheet,
    Workbook,
    WorkbookError,
    clean_cell,
    is_blank_row,
    load_workbook_bytes,
    parse_amount,
    parse_payment_date,
    raw_cell,
)
from spendpipe.storage.object_storage import ObjectStorageError

SPEND_BATCH_SIZE = 1000
SKIPPED_BATCH_SIZE = 500
SUPPLIER_BATCH_SIZE = 100
MAX_WARNINGS = 25
# Resolver outcomes that a later matching sweep cannot improve on.
UNMATCHABLE_METHODS = frozenset({"empty_name", "filtered"})

_DETAIL_MODELS = {
    "nhs": HealthOrganisation,
    "council": Council,
    "government_department": GovernmentDepartment,
}


class ObjectReader(Protocol):
    def download(self, object_key: str) -> bytes:
        """Return the object's bytes."""


@dataclass(slots=True)
class OrganisationMetadata:
    """One row of a workbook's organisation metadata sheet."""

    name: str
    registry_code: str | None = None
    org_sub_type: str | None = None
    postal_code: str | None = None
    official_website: str | None = None
    spending_data_url: str | None = None
    missing_data_note: str | None = None
    verified_via: str | None = None


class _Warnings:
    def __init__(self, limit: int = MAX_WARNINGS) -> None:
        self.items: list[str] = []
        self.dropped = 0
        self._limit = limit

    def add(self, message: str) -> None:
        if len(self.items) < self._limit:
            self.items.append(message)
        else:
            self.dropped += 1


class SpendImportStage(PipelineStage):
    """Download, validate, resolve and insert one spend workbook.

    Buyer and supplier resolution and all row inserts share one transaction;
    any exception rolls the whole import back.
    """

    def __init__(
        self,
        source: SourceType,
        *,
        storage: ObjectReader | None,
        registry: OrganisationRegistry,
        workbook_loader: Callable[[bytes], Workbook] = load_workbook_bytes,
        fuzzy_threshold: float = FUZZY_MATCH_THRESHOLD,
    ) -> None:
        self.source = source
        self.id = source.import_stage_id
        self.title = source.title
        self._storage = storage
        self._registry = registry
        self._load_workbook = workbook_loader
        self._fuzzy_threshold = fuzzy_threshold

    def validate(self, stage_input: StageInput) -> None:
        require_positive_int(stage_input, "asset_id")

    def run(self, ctx: PipelineContext, stage_input: StageInput) -> StageResult:
        started = perf_counter()
        asset_id = int(stage_input["asset_id"])
        truncate_all = bool(stage_input.get("truncate_all", False))

        asset = get_asset(ctx.db, asset_id)
        if asset is None:
            return StageResult("failed", error=f"Asset {asset_id} not found")
        if self._storage is None:
            return StageResult("failed", error="Object storage is not configured")

        ctx.log.info("Downloading workbook", {"asset_id": asset_id, "object_key": asset.object_key})
        try:
            workbook = self._load_workbook(self._storage.download(asset.object_key))
        except (ObjectStorageError, WorkbookError) as exc:
            return StageResult("failed", error=str(exc))

        warnings = _Warnings()
        metadata = self._parse_metadata(workbook, warnings)
        data_sheets = self._data_sheets(workbook)
        if not data_sheets:
            ctx.log.warning("No data sheets found", {"sheets": [sheet.name for sheet in workbook.sheets]})
            return StageResult("skipped", warnings=["No data sheets found in workbook"])
        self._check_headers(data_sheets)

        buyer_names, supplier_names = self._discover_names(data_sheets, metadata)
        ctx.log.info(
            "Discovered organisations and suppliers",
            {
                "sheets": len(data_sheets),
                "organisations_metadata": len(metadata),
                "organisations": len(buyer_names),
                "suppliers": len(supplier_names),
            },
        )

        if ctx.dry_run:
            return StageResult(
                "succeeded",
                ImportDryRunMetrics(
                    sheets_processed=len(data_sheets),
                    organisations_metadata=len(metadata),
                    organisations_discovered=len(buyer_names),
                    suppliers_discovered=len(supplier_names),
                ),
            )

        metrics = ImportMetrics(truncated=truncate_all)
        db = ctx.db
        try:
            if truncate_all:
                self._truncate(db)
                ctx.log.warning("Truncated existing data for source type", {"org_type": self.source.org_type})
            else:
                db.execute(delete(SpendEntry).where(SpendEntry.asset_id == asset_id))

            buyer_ids = self._sync_buyers(ctx, buyer_names, metadata, metrics, warnings)
            supplier_ids = self._sync_suppliers(db, supplier_names, metrics)
            db.flush()
            ctx.log.info(
                "Organisations and suppliers synced",
                {
                    "organisations_inserted": metrics.organisations_inserted,
                    "organisations_updated": metrics.organisations_updated,
                    "suppliers_inserted": metrics.suppliers_inserted,
                },
            )

            self._insert_rows(ctx, asset_id, data_sheets, buyer_ids, supplier_ids, metrics, warnings)
            db.commit()
        except Exception:
            db.rollback()
            raise

        if warnings.dropped:
            warnings.items.append(f"... and {warnings.dropped} more warnings")
        metrics.duration_ms = round((perf_counter() - started) * 1000.0, 2)
        return StageResult("succeeded", metrics, warnings.items)

    def _parse_metadata(self, workbook: Workbook, warnings: _Warnings) -> dict[str, OrganisationMetadata]:
        if not self.source.metadata_sheet_name:
            return {}
        sheet = workbook.sheet(self.source.metadata_sheet_name)
        if sheet is None or not sheet.rows:
            return {}
        header = [clean_cell(cell).lower() for cell in sheet.header]
        columns: dict[str, int] = {}
        for field_name, needle in self.source.metadata_columns.items():
            for index, label in enumerate(header):
                if needle in label:
                    columns[field_name] = index
                    break
        if "name" not in columns:
            warnings.add(f"Metadata sheet '{sheet.name}' has no '{self.source.metadata_columns.get('name')}' column")
            return {}

        def cell(row: list[object], field_name: str) -> str | None:
            index = columns.get(field_name)
            if index is None or index >= len(row):
                return None
            return clean_cell(row[index]) or None

        parsed: dict[str, OrganisationMetadata] = {}
        for row in sheet.rows[1:]:
            name = cell(row, "name")
            if not name:
                continue
            key = normalize_org_name(name)
            if not key or key in parsed:
                continue
            parsed[key] = OrganisationMetadata(
                name=name,
                registry_code=(cell(row, "registry_code") or "").upper() or None,
                org_sub_type=cell(row, "sub_type"),
                postal_code=cell(row, "postal_code"),
                official_website=cell(row, "official_website"),
                spending_data_url=cell(row, "spending_data_url"),
                missing_data_note=cell(row, "missing_data_note"),
                verified_via=cell(row, "verified_via"),
            )
        return parsed

    def _data_sheets(self, workbook: Workbook) -> list[Sheet]:
        excluded = set(self.source.excluded_sheet_names)
        if self.source.metadata_sheet_name:
            excluded.add(self.source.metadata_sheet_name)
        return [
            sheet
            for sheet in workbook.sheets
            if sheet.name.strip().lower() not in excluded and any(not is_blank_row(row) for row in sheet.rows)
        ]

    def _check_headers(self, sheets: list[Sheet]) -> None:
        for sheet in sheets:
            first = clean_cell(sheet.header[0]) if sheet.header else ""
            if not self.source.header_matches(first):
                raise PipelineError(
                    "invalid_sheet_header",
                    (
                        f"Sheet '{sheet.name}' does not appear to be a {self.source.organisation_label} spend sheet: "
                        f"first column header is '{first}', expected one of {list(self.source.header_labels)}"
                    ),
                    {"sheet": sheet.name, "header": first, "org_type": self.source.org_type},
                )

    def _discover_names(
        self,
        sheets: list[Sheet],
        metadata: dict[str, OrganisationMetadata],
    ) -> tuple[dict[str, str], dict[str, str]]:
        """Normalized key to first-seen display name, for buyers and suppliers."""

        buyers: dict[str, str] = {key: item.name for key, item in metadata.items()}
        suppliers: dict[str, str] = {}
        for sheet in sheets:
            for row in sheet.rows[1:]:
                buyer = clean_cell(row[0]) if len(row) > 0 else ""
                supplier = clean_cell(row[2]) if len(row) > 2 else ""
                if buyer and not is_numeric_name(buyer) and not self.source.is_ignored_name(buyer):
                    key = normalize_org_name(buyer)
                    if key:
                        buyers.setdefault(key, buyer)
                if supplier:
                    key = normalize_org_name(supplier)
                    if key:
                        suppliers.setdefault(key, supplier)
        return buyers, suppliers

    def _truncate(self, db: Session) -> None:
        org_type = self.source.org_type
        buyer_ids = select(Buyer.id).where(Buyer.org_type == org_type)
        entity_ids = select(Entity.id).where(Entity.entity_type.in_(self.source.entity_types))
        detail_model = _DETAIL_MODELS[org_type]
        db.execute(delete(SpendEntry).where(SpendEntry.buyer_id.in_(buyer_ids)))
        db.execute(delete(Buyer).where(Buyer.org_type == org_type))
        db.execute(
            update(Supplier)
            .where(Supplier.entity_id.in_(entity_ids))
            .values(entity_id=None, match_status="pending", match_confidence=None)
        )
        db.execute(delete(detail_model).where(detail_model.entity_id.in_(entity_ids)))
        db.execute(delete(Entity).where(Entity.entity_type.in_(self.source.entity_types)))

    def _sync_buyers(
        self,
        ctx: PipelineContext,
        buyer_names: dict[str, str],
        metadata: dict[str, OrganisationMetadata],
        metrics: ImportMetrics,
        warnings: _Warnings,
    ) -> dict[str, int]:
        db = ctx.db
        existing: dict[str, Buyer] = {}
        for buyer in db.scalars(
            select(Buyer).where(Buyer.name_key.in_(list(buyer_names))).order_by(Buyer.id.asc())
        ):
            existing.setdefault(buyer.name_key, buyer)
        resolver = EntityResolver(
            db,
            self._registry,
            context=ResolutionContext(),
            fuzzy_threshold=self._fuzzy_threshold,
        )
        now = datetime.now(timezone.utc)
        buyer_ids: dict[str, int] = {}

        for key, name in buyer_names.items():
            meta = metadata.get(key)
            buyer = existing.get(key)
            if buyer is not None and meta is None and buyer.entity_id is not None and buyer.match_status == "matched":
                buyer_ids[key] = buyer.id
                continue

            candidate = None
            if meta is not None:
                candidate = RegistryCandidate(
                    registry_id=meta.registry_code or "",
                    name=meta.name,
                    entity_type=self._registry.placeholder_entity_type,
                    postal_code=meta.postal_code,
                    website=meta.official_website,
                    payload=meta,
                )
            outcome = resolver.resolve(
                name,
                registry_code=meta.registry_code if meta else None,
                metadata=candidate,
                allow_placeholder=meta is not None,
            )
            if outcome.created:
                metrics.organisations_inserted += 1
                if meta is None:
                    metrics.organisations_created_without_metadata += 1
            elif outcome.matched:
                metrics.organisations_updated += 1
            else:
                metrics.organisations_unmatched += 1
                warnings.add(f"No registry match for {self.source.organisation_label} '{name}'")

            if buyer is None:
                buyer = Buyer(name=name, name_key=key, org_type=self.source.org_type)
                db.add(buyer)
            buyer.entity_id = outcome.entity_id
            if outcome.matched:
                buyer.match_status = "matched"
            elif outcome.method in UNMATCHABLE_METHODS:
                buyer.match_status = "no_match"
            else:
                buyer.match_status = "pending"
            buyer.match_confidence = Decimal(str(round(outcome.confidence, 2))) if outcome.matched else None
            buyer.match_attempted_at = now
            if meta is not None:
                buyer.official_website = meta.official_website or buyer.official_website
                buyer.spending_data_url = meta.spending_data_url or buyer.spending_data_url
                buyer.missing_data_note = meta.missing_data_note or buyer.missing_data_note
                buyer.verified_via = meta.verified_via or buyer.verified_via
                buyer.manually_verified = True
            elif outcome.matched and candidate is None:
                website = self._entity_website(db, outcome.entity_id)
                buyer.official_website = buyer.official_website or website
            db.flush()
            buyer_ids[key] = buyer.id
            ctx.log.debug(
                "Resolved organisation",
                {"name": name, "entity_id": outcome.entity_id, "method": outcome.method, "created": outcome.created},
            )
        return buyer_ids

    def _entity_website(self, db: Session, entity_id: int | None) -> str | None:
        if entity_id is None or self.source.org_type != "government_department":
            return None
        link = db.scalar(select(GovernmentDepartment.link).where(GovernmentDepartment.entity_id == entity_id))
        return f"https://www.gov.uk{link}" if link else None

    def _sync_suppliers(self, db: Session, supplier_names: dict[str, str], metrics: ImportMetrics) -> dict[str, int]:
        keys = list(supplier_names)
        by_key: dict[str, int] = {}
        for offset in range(0, len(keys), SKIPPED_BATCH_SIZE):
            chunk = keys[offset : offset + SKIPPED_BATCH_SIZE]
            rows = db.execute(
                select(Supplier.id, Supplier.name_key).where(Supplier.name_key.in_(chunk)).order_by(Supplier.id.asc())
            )
            for supplier_id, key in rows:
                by_key.setdefault(key, supplier_id)

        missing = [key for key in keys if key not in by_key]
        for offset in range(0, len(missing), SUPPLIER_BATCH_SIZE):
            batch = [
                Supplier(name=supplier_names[key], name_key=key, match_status="pending")
                for key in missing[offset : offset + SUPPLIER_BATCH_SIZE]
            ]
            db.add_all(batch)
            db.flush()
            for supplier in batch:
                by_key[supplier.name_key] = supplier.id
            metrics.suppliers_inserted += len(batch)

        return by_key

    def _insert_rows(
        self,
        ctx: PipelineContext,
        asset_id: int,
        sheets: list[Sheet],
        buyer_ids: dict[str, int],
        supplier_ids: dict[str, int],
        metrics: ImportMetrics,
        warnings: _Warnings,
    ) -> None:
        db = ctx.db
        label = self.source.organisation_label
        entries: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []

        for sheet in sheets:
            metrics.sheets_processed += 1
            for row_number, row in enumerate(sheet.rows[1:], start=2):
                if is_blank_row(row):
                    continue
                cells = list(row) + [None] * max(0, 4 - len(row))
                buyer_name = clean_cell(cells[0])
                supplier_name = clean_cell(cells[2])
                if buyer_name and self.source.is_ignored_name(buyer_name):
                    continue

                amount = parse_amount(cells[3])
                payment_date = parse_payment_date(cells[1])
                reason = None
                if not buyer_name:
                    reason = f"missing {label} name"
                elif is_numeric_name(buyer_name):
                    reason = "numeric placeholder name"
                elif normalize_org_name(buyer_name) not in buyer_ids:
                    reason = f"unknown {label} '{buyer_name}'"
                elif not supplier_name or not normalize_org_name(supplier_name):
                    reason = "missing supplier"
                elif amount is None:
                    reason = f"invalid amount '{clean_cell(cells[3])}'"
                elif payment_date is None:
                    reason = f"invalid payment date '{clean_cell(cells[1])}'"

                if reason is not None:
                    bucket = reason.split(" '", 1)[0]
                    metrics.payments_skipped += 1
                    metrics.skipped_reasons[bucket] = metrics.skipped_reasons.get(bucket, 0) + 1
                    warnings.add(f"{sheet.name} row {row_number}: {reason}")
                    skipped.append(
                        {
                            "run_id": ctx.run_id,
                            "stage_id": self.id,
                            "sheet_name": sheet.name,
                            "row_number": row_number,
                            "reason": reason,
                            "raw_data_json": [_json_cell(value) for value in row],
                        }
                    )
                    if len(skipped) >= SKIPPED_BATCH_SIZE:
                        db.execute(insert(PipelineSkippedRow), skipped)
                        skipped = []
                    continue

                entries.append(
                    {
                        "asset_id": asset_id,
                        "raw_buyer": buyer_name,
                        "raw_supplier": supplier_name,
                        "buyer_id": buyer_ids[normalize_org_name(buyer_name)],
                        "supplier_id": supplier_ids.get(normalize_org_name(supplier_name)),
                        "amount": amount,
                        "payment_date": payment_date,
                        "raw_amount": raw_cell(cells[3]),
                        "payment_date_raw": raw_cell(cells[1]),
                        "source_sheet": sheet.name,
                        "source_row_number": row_number,
                    }
                )
                if len(entries) >= SPEND_BATCH_SIZE:
                    db.execute(insert(SpendEntry), entries)
                    metrics.payments_inserted += len(entries)
                    entries = []
                    ctx.log.debug("Inserted payment batch", {"payments_inserted": metrics.payments_inserted})

        if entries:
            db.execute(insert(SpendEntry), entries)
            metrics.payments_inserted += len(entries)
        if skipped:
            db.execute(insert(PipelineSkippedRow), skipped)
        ctx.log.info(
            "Payments imported",
            {
                "payments_inserted": metrics.payments_inserted,
                "payments_skipped": metrics.payments_skipped,
                "skipped_reasons": dict(metrics.skipped_reasons),
            },
        )


def _json_cell(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
