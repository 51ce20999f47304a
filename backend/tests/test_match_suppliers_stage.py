"""Supplier backlog matching against a stubbed Companies House client."""

from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spendpipe.entity_resolution.persistence import get_or_create_entity
from spendpipe.entity_resolution.types import RegistryCandidate
from spendpipe.models import AuditLog, Buyer, Company, Entity, PipelineAsset, Supplier
from spendpipe.models.base import Base
from spendpipe.pipeline.broadcaster import LogBroadcaster
from spendpipe.pipeline.repository import create_pipeline_run
from spendpipe.pipeline.run_logger import PipelineLogger
from spendpipe.pipeline.stages.match_suppliers import MatchSuppliersStage, count_pending_suppliers
from spendpipe.pipeline.types import PipelineContext, PipelineError
from spendpipe.registries.companies_house import CompanySearchResult
from spendpipe.registries.http import RegistryRateLimitedError


def _company(number: str, title: str) -> CompanySearchResult:
    return CompanySearchResult(company_number=number, title=title, company_status="active", postal_code="LS1 4AP")


class _StubCompaniesHouse:
    def __init__(self, results: dict[str, list[CompanySearchResult]], *, rate_limited: int = 0) -> None:
        self.results = results
        self.rate_limited = rate_limited
        self.searches: list[str] = []

    def search_companies(self, query: str) -> list[CompanySearchResult]:
        self.searches.append(query)
        if self.rate_limited > 0:
            self.rate_limited -= 1
            raise RegistryRateLimitedError("rate limited", retry_after_seconds=30.0)
        return list(self.results.get(query, []))

    def get_company_profile(self, company_number: str):
        return None


class _StubCouncilRegistry:
    scope = "council"
    entity_types = ("council",)
    placeholder_entity_type = "council"

    def __init__(self) -> None:
        self.searches: list[str] = []

    def search(self, name: str) -> list[RegistryCandidate]:
        self.searches.append(name)
        if "leeds" not in name.lower():
            return []
        return [RegistryCandidate(registry_id="E08000035", name="Leeds", entity_type="council", similarity=1.0)]

    def persist(self, db: Session, candidate: RegistryCandidate) -> tuple[Entity, bool]:
        return get_or_create_entity(
            db,
            entity_type=candidate.entity_type,
            registry_id=candidate.registry_id,
            name=candidate.name,
        )


class _StubGovernmentRegistry:
    scope = "government_department"
    entity_types = ("government_department",)
    placeholder_entity_type = "government_department"

    def __init__(self, titles: dict[str, str]) -> None:
        self.titles = titles

    def search(self, name: str) -> list[RegistryCandidate]:
        title = self.titles.get(name)
        if title is None:
            return []
        slug = title.lower().replace(" ", "-")
        return [RegistryCandidate(registry_id=slug, name=title, entity_type="government_department")]

    def persist(self, db: Session, candidate: RegistryCandidate) -> tuple[Entity, bool]:
        return get_or_create_entity(
            db,
            entity_type=candidate.entity_type,
            registry_id=candidate.registry_id,
            name=candidate.name,
        )


class MatchSuppliersStageTests(unittest.TestCase):
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
        asset = PipelineAsset(object_key="uploads/2026-10-17/x-spend.xlsx", original_name="spend.xlsx", size_bytes=1)
        self.db.add(asset)
        self.db.commit()
        self.run_id = create_pipeline_run(self.db, asset_id=asset.id, org_type="nhs").id
        self.sleeps: list[float] = []
        self.companies = _StubCompaniesHouse(
            {
                "Acme Supplies Ltd": [_company("01234567", "ACME SUPPLIES LIMITED"), _company("07654321", "ACME HOLDINGS PLC")],
                "Beta Services Ltd": [_company("09999999", "Beta Service Group Ltd")],
                "Gamma Widgets Ltd": [_company("08888888", "Totally Different Engineering Plc")],
            }
        )

    def tearDown(self) -> None:
        self.db.close()

    def _stage(self, companies=None, **kwargs) -> MatchSuppliersStage:
        return MatchSuppliersStage(
            companies if companies is not None else self.companies,
            cooldown_seconds=5.0,
            sleep=self.sleeps.append,
            **kwargs,
        )

    def _ctx(self, stage: MatchSuppliersStage, *, dry_run: bool = False) -> PipelineContext:
        log = PipelineLogger(self.run_id, None, broadcaster=LogBroadcaster(), stage_id=stage.id)
        return PipelineContext(db=self.db, run_id=self.run_id, stage_id=stage.id, dry_run=dry_run, log=log)

    def _add_suppliers(self, *names: str) -> None:
        self.db.add_all([Supplier(name=name, match_status="pending") for name in names])
        self.db.commit()

    def _supplier(self, name: str) -> Supplier:
        self.db.expire_all()
        return self.db.scalar(select(Supplier).where(Supplier.name == name))

    def test_suppliers_are_classified_by_best_similarity(self) -> None:
        self._add_suppliers("Acme Supplies Ltd", "Beta Services Ltd", "Gamma Widgets Ltd", "Delta Unknown Ltd")
        stage = self._stage()

        result = stage.run(self._ctx(stage), {})

        self.assertEqual(result.status, "succeeded")
        metrics = result.metrics
        self.assertEqual(metrics.total_processed, 4)
        self.assertEqual(metrics.matched_count, 1)
        self.assertEqual(metrics.review_count, 1)
        self.assertEqual(metrics.no_match_count, 2)

        acme = self._supplier("Acme Supplies Ltd")
        self.assertEqual(acme.match_status, "matched")
        self.assertEqual(acme.match_confidence, Decimal("1.00"))
        self.assertIsNotNone(acme.match_attempted_at)
        entity = self.db.get(Entity, acme.entity_id)
        self.assertEqual(entity.entity_type, "company")
        self.assertEqual(entity.registry_id, "01234567")
        company = self.db.scalar(select(Company).where(Company.entity_id == entity.id))
        self.assertEqual(company.company_number, "01234567")

        beta = self._supplier("Beta Services Ltd")
        self.assertEqual(beta.match_status, "pending_review")
        self.assertEqual(beta.match_confidence, Decimal("0.75"))
        self.assertIsNone(beta.entity_id)

        self.assertEqual(self._supplier("Gamma Widgets Ltd").match_status, "no_match")
        self.assertEqual(self._supplier("Delta Unknown Ltd").match_status, "no_match")

    def test_auto_match_writes_link_audit_row(self) -> None:
        self._add_suppliers("Acme Supplies Ltd")
        stage = self._stage()

        stage.run(self._ctx(stage), {})

        audit = self.db.scalar(select(AuditLog))
        acme = self._supplier("Acme Supplies Ltd")
        self.assertEqual(audit.action, "link")
        self.assertEqual(audit.table_name, "suppliers")
        self.assertEqual(audit.record_pk, str(acme.id))
        self.assertEqual(audit.run_id, self.run_id)
        self.assertEqual(audit.actor_id, f"run:{self.run_id}")
        self.assertEqual(audit.before_json["match_status"], "pending")
        self.assertEqual(audit.after_json["entity_id"], acme.entity_id)

    def test_numeric_and_generic_names_skip_the_registry(self) -> None:
        self._add_suppliers("12345", "Salary")
        stage = self._stage()

        result = stage.run(self._ctx(stage), {})

        self.assertEqual(result.metrics.no_match_count, 2)
        self.assertEqual(self.companies.searches, [])
        numeric = self._supplier("12345")
        self.assertEqual(numeric.match_status, "no_match")
        self.assertTrue(numeric.manually_verified)
        self.assertFalse(self._supplier("Salary").manually_verified)

    def test_limit_bounds_the_batch(self) -> None:
        self._add_suppliers("Acme Supplies Ltd", "Beta Services Ltd", "Gamma Widgets Ltd")
        stage = self._stage()

        result = stage.run(self._ctx(stage), {"limit": 2})

        self.assertEqual(result.metrics.total_processed, 2)
        self.assertEqual(self._supplier("Gamma Widgets Ltd").match_status, "pending")

    def test_rate_limited_supplier_is_requeued_once(self) -> None:
        self._add_suppliers("Acme Supplies Ltd", "Beta Services Ltd")
        self.companies.rate_limited = 1
        stage = self._stage()

        result = stage.run(self._ctx(stage), {})

        self.assertEqual(self.sleeps, [5.0])
        self.assertEqual(self.companies.searches, ["Acme Supplies Ltd", "Beta Services Ltd", "Acme Supplies Ltd"])
        self.assertEqual(result.metrics.total_processed, 2)
        self.assertEqual(result.metrics.skipped_count, 0)
        self.assertEqual(self._supplier("Acme Supplies Ltd").match_status, "matched")

    def test_persistent_rate_limit_skips_the_supplier(self) -> None:
        self._add_suppliers("Acme Supplies Ltd")
        self.companies.rate_limited = 10
        stage = self._stage()

        result = stage.run(self._ctx(stage), {})

        self.assertEqual(self.sleeps, [5.0, 5.0])
        self.assertEqual(result.metrics.skipped_count, 1)
        self.assertEqual(result.metrics.total_processed, 1)
        self.assertEqual(self._supplier("Acme Supplies Ltd").match_status, "pending")

    def test_public_bodies_and_pending_buyers_use_public_registries(self) -> None:
        self._add_suppliers("Leeds City Council")
        self.db.add(Buyer(name="Leeds City Council", org_type="council", match_status="pending"))
        self.db.commit()
        councils = _StubCouncilRegistry()
        stage = self._stage(public_registries={"council": councils})

        result = stage.run(self._ctx(stage), {})

        self.assertEqual(result.metrics.matched_count, 1)
        self.assertEqual(result.metrics.buyers_processed, 1)
        self.assertEqual(result.metrics.buyers_matched, 1)
        self.assertEqual(self.companies.searches, [])
        self.assertEqual(councils.searches, ["Leeds City Council"])
        supplier = self._supplier("Leeds City Council")
        buyer = self.db.scalar(select(Buyer))
        self.assertEqual(supplier.entity_id, buyer.entity_id)
        self.assertEqual(self.db.get(Entity, buyer.entity_id).registry_id, "E08000035")

    def test_dissimilar_public_body_hit_falls_through_to_companies_house(self) -> None:
        self._add_suppliers("HM Courts Catering Services")
        departments = _StubGovernmentRegistry({"HM Courts Catering Services": "HM Treasury"})
        stage = self._stage(public_registries={"government_department": departments})

        result = stage.run(self._ctx(stage), {})

        self.assertEqual(result.metrics.matched_count, 0)
        self.assertEqual(result.metrics.no_match_count, 1)
        self.assertEqual(self.companies.searches, ["HM Courts Catering Services"])
        supplier = self._supplier("HM Courts Catering Services")
        self.assertEqual(supplier.match_status, "no_match")
        self.assertIsNone(supplier.entity_id)
        self.assertIsNone(self.db.scalar(select(Entity).where(Entity.entity_type == "government_department")))

    def test_moderate_public_body_hit_is_held_for_review(self) -> None:
        self._add_suppliers("HM Courts Service")
        departments = _StubGovernmentRegistry({"HM Courts Service": "HM Courts and Tribunals Service"})
        stage = self._stage(public_registries={"government_department": departments})

        result = stage.run(self._ctx(stage), {})

        self.assertEqual(result.metrics.review_count, 1)
        self.assertEqual(self.companies.searches, [])
        supplier = self._supplier("HM Courts Service")
        self.assertEqual(supplier.match_status, "pending_review")
        self.assertEqual(supplier.match_confidence, Decimal("0.70"))
        self.assertIsNone(supplier.entity_id)
        self.assertIsNone(self.db.scalar(select(Entity)))

    def test_dry_run_counts_pending_suppliers(self) -> None:
        self._add_suppliers("Acme Supplies Ltd", "Beta Services Ltd")
        stage = self._stage()

        result = stage.run(self._ctx(stage, dry_run=True), {})

        self.assertEqual(result.metrics.kind, "dry_run")
        self.assertEqual(result.metrics.pending_items, 2)
        self.assertEqual(self.companies.searches, [])
        self.assertEqual(count_pending_suppliers(self.db), 2)

    def test_validate_checks_thresholds_and_configuration(self) -> None:
        stage = self._stage()
        stage.validate({"limit": 10, "auto_match_threshold": 0.95, "min_similarity_threshold": 0.6})

        for bad in (
            {"limit": 0},
            {"auto_match_threshold": 1.5},
            {"auto_match_threshold": 0.6, "min_similarity_threshold": 0.7},
        ):
            with self.subTest(stage_input=bad):
                with self.assertRaises(PipelineError) as ctx:
                    stage.validate(bad)
                self.assertEqual(ctx.exception.code, "invalid_input")

        unconfigured = MatchSuppliersStage(None)
        with self.assertRaises(PipelineError) as ctx:
            unconfigured.validate({})
        self.assertEqual(ctx.exception.code, "missing_configuration")


if __name__ == "__main__":
    unittest.main()
