"""Run lifecycle services and cached spend totals."""

from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spendpipe.models import AuditLog, Buyer, Entity, PipelineAsset, PipelineRun, PipelineSkippedRow, SpendEntry, Supplier
from spendpipe.models.base import Base
from spendpipe.pipeline.repository import create_pipeline_run, set_run_stage_status
from spendpipe.pipeline.stages.refresh_totals import entities_touched_by_asset, refresh_entity_totals
from spendpipe.pipeline.types import PipelineError
from spendpipe.schemas.pipeline import PipelineRunCreate
from spendpipe.services.pipeline_runs import (
    create_run,
    delete_run,
    get_run_detail,
    get_run_summary,
    list_runs,
    list_skipped_rows,
)


class PipelineRunServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        for table in reversed(Base.metadata.sorted_tables):
            self.db.execute(table.delete())
        self.db.commit()
        self._seed()

    def tearDown(self) -> None:
        self.db.close()

    def _seed(self) -> None:
        db = self.db
        self.asset = PipelineAsset(object_key="uploads/2026-10-17/a-march.xlsx", original_name="march.xlsx", size_bytes=10)
        self.other_asset = PipelineAsset(object_key="uploads/2026-10-17/b-april.xlsx", original_name="april.xlsx", size_bytes=10)
        self.trust = Entity(entity_type="nhs_trust", registry_id="RR8", name="LEEDS TEACHING HOSPITALS NHS TRUST")
        self.company = Entity(entity_type="company", registry_id="01234567", name="ACME SUPPLIES LIMITED")
        db.add_all([self.asset, self.other_asset, self.trust, self.company])
        db.flush()
        self.buyer = Buyer(name="Leeds Teaching Hospitals NHS Trust", org_type="nhs", entity_id=self.trust.id, match_status="matched")
        self.supplier = Supplier(name="Acme Supplies Ltd", entity_id=self.company.id, match_status="matched")
        self.unmatched = Supplier(name="Beta Services Limited", match_status="pending")
        db.add_all([self.buyer, self.supplier, self.unmatched])
        db.flush()
        db.add_all(
            [
                self._entry(self.asset.id, self.supplier, Decimal("100.00"), date(2023, 3, 1), 2),
                self._entry(self.asset.id, self.supplier, Decimal("250.50"), date(2023, 3, 20), 3),
                self._entry(self.asset.id, self.unmatched, Decimal("75.00"), date(2023, 3, 10), 4),
                self._entry(self.other_asset.id, self.supplier, Decimal("40.00"), date(2023, 4, 2), 2),
            ]
        )
        db.commit()
        self.run = self._finished_run(self.asset.id)

    def _finished_run(self, asset_id: int, *, dry_run: bool = False) -> PipelineRun:
        run = create_pipeline_run(self.db, asset_id=asset_id, org_type="nhs", dry_run=dry_run)
        set_run_stage_status(self.db, run.id, "import_spend_health", "succeeded")
        run.status = "succeeded"
        self.db.commit()
        return run

    def _entry(self, asset_id: int, supplier: Supplier, amount: Decimal, paid: date, row: int) -> SpendEntry:
        return SpendEntry(
            asset_id=asset_id,
            raw_buyer=self.buyer.name,
            raw_supplier=supplier.name,
            buyer_id=self.buyer.id,
            supplier_id=supplier.id,
            amount=amount,
            payment_date=paid,
            source_sheet="Spend",
            source_row_number=row,
        )

    def _entity(self, entity_id: int) -> Entity:
        self.db.expire_all()
        return self.db.get(Entity, entity_id)

    def test_refresh_recomputes_only_requested_entities(self) -> None:
        self.assertEqual(entities_touched_by_asset(self.db, self.asset.id), ({self.trust.id}, {self.company.id}))

        refreshed = refresh_entity_totals(self.db, [self.trust.id, self.company.id, self.trust.id])
        self.db.commit()

        self.assertEqual(refreshed, 2)
        self.assertEqual(self._entity(self.trust.id).buyer_total_spend, Decimal("465.50"))
        company = self._entity(self.company.id)
        self.assertEqual(company.supplier_total_received, Decimal("390.50"))
        self.assertEqual(company.buyer_total_spend, Decimal("0.00"))
        self.assertIsNotNone(company.spend_totals_updated_at)
        self.assertEqual(refresh_entity_totals(self.db, []), 0)

    def test_delete_run_removes_entries_and_refreshes_totals(self) -> None:
        refresh_entity_totals(self.db, [self.trust.id, self.company.id])
        self.db.commit()

        deleted = delete_run(self.db, self.run.id, actor_id="ops@example.org")

        self.assertEqual(deleted.status, "deleted")
        self.assertEqual(deleted.spend_entries_deleted, 3)
        self.assertEqual(self.db.scalar(select(func.count(SpendEntry.id))), 1)
        self.assertEqual(self._entity(self.trust.id).buyer_total_spend, Decimal("40.00"))
        self.assertEqual(self._entity(self.company.id).supplier_total_received, Decimal("40.00"))
        self.assertEqual(self.db.get(PipelineRun, self.run.id).status, "deleted")
        audit = self.db.scalar(select(AuditLog).where(AuditLog.table_name == "pipeline_runs"))
        self.assertEqual(audit.action, "delete")
        self.assertEqual(audit.before_json, {"status": "succeeded"})
        self.assertEqual(audit.actor_id, "ops@example.org")

        again = delete_run(self.db, self.run.id)
        self.assertEqual(again.spend_entries_deleted, 0)
        self.assertEqual(self.db.scalar(select(func.count(AuditLog.id))), 1)

    def test_delete_refuses_active_and_unknown_runs(self) -> None:
        queued = create_pipeline_run(self.db, asset_id=self.other_asset.id, org_type="nhs")

        with self.assertRaises(PipelineError) as ctx:
            delete_run(self.db, queued.id)
        self.assertEqual(ctx.exception.code, "run_in_progress")
        self.assertEqual(self.db.scalar(select(func.count(SpendEntry.id))), 4)

        with self.assertRaises(PipelineError) as ctx:
            delete_run(self.db, 9999)
        self.assertEqual(ctx.exception.code, "run_not_found")

    def test_deleting_dry_run_keeps_imported_entries(self) -> None:
        dry = self._finished_run(self.asset.id, dry_run=True)

        deleted = delete_run(self.db, dry.id)

        self.assertEqual(deleted.status, "deleted")
        self.assertEqual(deleted.spend_entries_deleted, 0)
        self.assertEqual(self.db.scalar(select(func.count(SpendEntry.id))), 4)

    def test_deleting_run_without_successful_import_keeps_entries(self) -> None:
        failed = create_pipeline_run(self.db, asset_id=self.asset.id, org_type="nhs")
        set_run_stage_status(self.db, failed.id, "import_spend_health", "failed", error="bad header")
        failed.status = "failed"
        self.db.commit()

        self.assertEqual(delete_run(self.db, failed.id).spend_entries_deleted, 0)
        self.assertEqual(self.db.scalar(select(func.count(SpendEntry.id))), 4)

    def test_superseded_run_leaves_newer_import_in_place(self) -> None:
        newer = self._finished_run(self.asset.id)

        self.assertEqual(delete_run(self.db, self.run.id).spend_entries_deleted, 0)
        self.assertEqual(self.db.scalar(select(func.count(SpendEntry.id))), 4)

        self.assertEqual(delete_run(self.db, newer.id).spend_entries_deleted, 3)
        self.assertEqual(self.db.scalar(select(func.count(SpendEntry.id))), 1)

    def test_create_run_validates_and_enqueues(self) -> None:
        enqueued: list[int] = []

        run = create_run(
            self.db,
            PipelineRunCreate(asset_id=self.asset.id, org_type="nhs", to_stage_id="match_suppliers", params={"limit": 5}),
            enqueue=enqueued.append,
        )

        self.assertEqual(enqueued, [run.id])
        self.assertEqual(run.status, "queued")
        self.assertEqual(run.params_json, {"limit": 5})

        cases = [
            (PipelineRunCreate(asset_id=9999), "asset_not_found"),
            (PipelineRunCreate(asset_id=self.asset.id, from_stage_id="bogus"), "invalid_from_stage"),
            (
                PipelineRunCreate(
                    asset_id=self.asset.id,
                    from_stage_id="refresh_spend_totals",
                    to_stage_id="import_spend_health",
                ),
                "invalid_stage_range",
            ),
        ]
        for payload, code in cases:
            with self.subTest(code=code):
                with self.assertRaises(PipelineError) as ctx:
                    create_run(self.db, payload, enqueue=enqueued.append)
                self.assertEqual(ctx.exception.code, code)
        self.assertEqual(len(enqueued), 1)

    def test_list_runs_pages_newest_first_with_asset_name(self) -> None:
        second = create_pipeline_run(self.db, asset_id=self.other_asset.id, org_type="council")
        third = create_pipeline_run(self.db, asset_id=None, org_type="nhs")

        page = list_runs(self.db, limit=2)

        self.assertEqual(page.total, 3)
        self.assertEqual([item.id for item in page.items], [third.id, second.id])
        self.assertIsNone(page.items[0].asset_original_name)
        self.assertEqual(page.items[1].asset_original_name, "april.xlsx")

        filtered = list_runs(self.db, asset_id=self.asset.id)
        self.assertEqual([item.id for item in filtered.items], [self.run.id])

        for kwargs in ({"limit": 0}, {"limit": 101}, {"offset": -1}):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(PipelineError):
                    list_runs(self.db, **kwargs)

    def test_summary_and_detail(self) -> None:
        summary = get_run_summary(self.db, self.run.id)

        self.assertEqual(summary.supplier_count, 2)
        self.assertEqual([item.name for item in summary.suppliers], ["Acme Supplies Ltd", "Beta Services Limited"])
        self.assertEqual(summary.earliest_payment_date, date(2023, 3, 1))
        self.assertEqual(summary.latest_payment_date, date(2023, 3, 20))

        detail = get_run_detail(self.db, self.run.id)
        self.assertEqual(detail.run.id, self.run.id)
        self.assertEqual(detail.asset.original_name, "march.xlsx")
        self.assertEqual([stage.stage_id for stage in detail.stages], ["import_spend_health"])

    def test_skipped_rows_are_paged_per_run(self) -> None:
        self.db.add_all(
            [
                PipelineSkippedRow(
                    run_id=self.run.id,
                    stage_id="import_spend_health",
                    sheet_name="Spend",
                    row_number=row,
                    reason="invalid amount 'abc'",
                    raw_data_json=["Leeds", "15/03/2023", "Acme", "abc"],
                )
                for row in (5, 6, 7)
            ]
        )
        self.db.commit()

        page = list_skipped_rows(self.db, self.run.id, limit=2, offset=1)

        self.assertEqual(page.total, 3)
        self.assertEqual([item.row_number for item in page.items], [6, 7])
        with self.assertRaises(PipelineError) as ctx:
            list_skipped_rows(self.db, 9999)
        self.assertEqual(ctx.exception.code, "run_not_found")


if __name__ == "__main__":
    unittest.main()
