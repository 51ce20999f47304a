"""Backlog matching of pending suppliers (and pending buyers) against registries."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spendpipe.entity_resolution.adapters import CompanyRegistry
from spendpipe.entity_resolution.filters import (
    is_likely_council,
    is_likely_government_department,
    is_likely_not_an_organisation,
    is_numeric_name,
)
from spendpipe.entity_resolution.resolver import EntityResolver
from spendpipe.entity_resolution.similarity import name_similarity
from spendpipe.entity_resolution.types import OrganisationRegistry, RegistryCandidate, ResolutionContext
from spendpipe.models.buyer import Buyer
from spendpipe.models.supplier import Supplier
from spendpipe.pipeline.types import (
    DryRunMetrics,
    MatchMetrics,
    PipelineContext,
    PipelineError,
    PipelineStage,
    StageInput,
    StageResult,
    require_positive_int,
    require_threshold,
)
from spendpipe.registries.companies_house import CompaniesHouseClient
from spendpipe.registries.http import RegistryError, RegistryRateLimitedError
from spendpipe.services.audit import match_snapshot, record_audit

logger = logging.getLogger(__name__)

AUTO_MATCH_THRESHOLD = 0.9
MIN_SIMILARITY_THRESHOLD = 0.5
PROGRESS_EVERY = 50


def classify_match(score: float, auto_match_threshold: float, min_similarity_threshold: float) -> str:
    """Map a best-candidate similarity to a match status.

    ``score >= auto`` is matched, ``score < minimum`` is no_match, anything
    between waits for review.
    """

    if score >= auto_match_threshold:
        return "matched"
    if score < min_similarity_threshold:
        return "no_match"
    return "pending_review"


class MatchSuppliersStage(PipelineStage):
    id = "match_suppliers"
    title = "Match suppliers with Companies House"

    def __init__(
        self,
        companies: CompaniesHouseClient | None,
        *,
        public_registries: Mapping[str, OrganisationRegistry] | None = None,
        cooldown_seconds: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._companies = companies
        self._company_registry = CompanyRegistry(companies)
        self._public_registries = dict(public_registries or {})
        self._cooldown_seconds = cooldown_seconds
        self._sleep = sleep

    def validate(self, stage_input: StageInput) -> None:
        if stage_input.get("limit") is not None:
            require_positive_int(stage_input, "limit")
        auto = require_threshold(stage_input, "auto_match_threshold", AUTO_MATCH_THRESHOLD)
        minimum = require_threshold(stage_input, "min_similarity_threshold", MIN_SIMILARITY_THRESHOLD)
        if minimum > auto:
            raise PipelineError(
                "invalid_input",
                "min_similarity_threshold must not exceed auto_match_threshold",
                {"auto_match_threshold": auto, "min_similarity_threshold": minimum},
            )
        if self._companies is None:
            raise PipelineError("missing_configuration", "COMPANIES_HOUSE_API_KEY is not set")

    def run(self, ctx: PipelineContext, stage_input: StageInput) -> StageResult:
        limit = stage_input.get("limit")
        auto = require_threshold(stage_input, "auto_match_threshold", AUTO_MATCH_THRESHOLD)
        minimum = require_threshold(stage_input, "min_similarity_threshold", MIN_SIMILARITY_THRESHOLD)
        db = ctx.db

        if ctx.dry_run:
            pending = count_pending_suppliers(db)
            ctx.log.info("Dry run: counting pending suppliers only", {"pending_suppliers": pending})
            return StageResult("succeeded", DryRunMetrics(pending_items=pending))

        ctx.log.info(
            "Starting supplier matching",
            {"limit": limit, "auto_match_threshold": auto, "min_similarity_threshold": minimum},
        )
        stmt = select(Supplier.id).where(Supplier.match_status == "pending").order_by(Supplier.id.asc())
        if limit:
            stmt = stmt.limit(limit)
        supplier_ids = list(db.scalars(stmt).all())
        ctx.log.info(f"Found {len(supplier_ids)} pending suppliers to match")

        metrics = MatchMetrics()
        resolution = ResolutionContext()
        queue = deque(supplier_ids)
        requeued: set[int] = set()
        while queue:
            supplier_id = queue.popleft()
            supplier = db.get(Supplier, supplier_id)
            if supplier is None or supplier.match_status != "pending":
                continue
            if supplier_id not in requeued:
                metrics.total_processed += 1
            if metrics.total_processed % PROGRESS_EVERY == 0:
                ctx.log.info(
                    f"Progress: {metrics.total_processed}/{len(supplier_ids)} suppliers processed",
                    {"matched": metrics.matched_count, "no_match": metrics.no_match_count},
                )
            name = supplier.name
            try:
                self._match_supplier(ctx, supplier, resolution, auto, minimum, metrics)
                db.commit()
            except RegistryRateLimitedError as exc:
                db.rollback()
                ctx.log.warning(
                    f"Rate limit hit, waiting {self._cooldown_seconds:.0f}s",
                    {"supplier_id": supplier_id, "retry_after_seconds": exc.retry_after_seconds},
                )
                self._sleep(self._cooldown_seconds)
                if supplier_id in requeued:
                    metrics.skipped_count += 1
                else:
                    requeued.add(supplier_id)
                    queue.append(supplier_id)
            except (PipelineError, RegistryError):
                db.rollback()
                raise
            except Exception as exc:
                db.rollback()
                logger.exception("pipeline.match_supplier_failed supplier_id=%s", supplier_id)
                ctx.log.error(f"Unexpected error for {name}: {exc}", {"supplier_id": supplier_id})
                metrics.error_count += 1

        self._match_pending_buyers(ctx, resolution, limit, auto, minimum, metrics)
        ctx.log.info("Supplier matching finished", metrics.as_dict())
        return StageResult("succeeded", metrics)

    def _match_supplier(
        self,
        ctx: PipelineContext,
        supplier: Supplier,
        resolution: ResolutionContext,
        auto: float,
        minimum: float,
        metrics: MatchMetrics,
    ) -> None:
        db = ctx.db
        name = supplier.name.strip()
        supplier.match_attempted_at = datetime.now(timezone.utc)

        if is_numeric_name(name):
            ctx.log.info(f"Skipping numeric supplier name: {name}", {"supplier_id": supplier.id})
            supplier.match_status = "no_match"
            supplier.manually_verified = True
            metrics.no_match_count += 1
            return
        reason = is_likely_not_an_organisation(name)
        if reason is not None:
            ctx.log.info(f"Skipping non-company supplier name: {name}", {"supplier_id": supplier.id, "reason": reason})
            supplier.match_status = "no_match"
            metrics.no_match_count += 1
            return

        review: tuple[float, str] | None = None
        for registry in self._public_registries_for(name):
            outcome = self._resolver(db, registry, resolution, auto).resolve(name)
            status = classify_match(outcome.confidence, auto, minimum)
            if outcome.matched and status == "matched":
                self._link(ctx, supplier, "suppliers", outcome.entity_id, outcome.confidence, via=registry.scope)
                ctx.log.info(
                    f"Matched public body: {name}",
                    {"supplier_id": supplier.id, "entity_id": outcome.entity_id, "registry": registry.scope},
                )
                metrics.matched_count += 1
                return
            if status == "pending_review" and (review is None or outcome.confidence > review[0]):
                review = (outcome.confidence, registry.scope)
        if review is not None:
            ctx.log.info(
                f"Moderate public body match, pending review: {name} ({review[0] * 100:.1f}%)",
                {"supplier_id": supplier.id, "registry": review[1], "similarity": review[0]},
            )
            supplier.match_status = "pending_review"
            supplier.match_confidence = _confidence(review[0])
            metrics.review_count += 1
            return

        results = self._companies.search_companies(name) if self._companies is not None else []
        if not results:
            ctx.log.info(f"No results found for: {name}", {"supplier_id": supplier.id})
            supplier.match_status = "no_match"
            metrics.no_match_count += 1
            return

        score, best = max(((name_similarity(name, result.title), result) for result in results), key=lambda pair: pair[0])
        status = classify_match(score, auto, minimum)
        meta = {"supplier_id": supplier.id, "best_match": best.title, "similarity": round(score, 4)}
        if status == "matched":
            entity, _ = self._company_registry.persist(
                db,
                RegistryCandidate(
                    registry_id=best.company_number,
                    name=best.title,
                    entity_type="company",
                    status=best.company_status,
                    postal_code=best.postal_code,
                    payload=best,
                ),
            )
            self._link(ctx, supplier, "suppliers", entity.id, score, via="companies_house")
            ctx.log.info(f"Auto-matched: {name} -> {entity.name} ({score * 100:.1f}%)", meta)
            metrics.matched_count += 1
        elif status == "no_match":
            ctx.log.info(f"No confident match for: {name} (best match: {best.title} at {score * 100:.1f}%)", meta)
            supplier.match_status = "no_match"
            metrics.no_match_count += 1
        else:
            ctx.log.info(f"Moderate match, pending review: {name} (best match: {best.title} at {score * 100:.1f}%)", meta)
            supplier.match_status = "pending_review"
            supplier.match_confidence = _confidence(score)
            metrics.review_count += 1

    def _match_pending_buyers(
        self,
        ctx: PipelineContext,
        resolution: ResolutionContext,
        limit: int | None,
        auto: float,
        minimum: float,
        metrics: MatchMetrics,
    ) -> None:
        db = ctx.db
        stmt = select(Buyer.id).where(Buyer.match_status == "pending").order_by(Buyer.id.asc())
        if limit:
            stmt = stmt.limit(limit)
        for buyer_id in list(db.scalars(stmt).all()):
            buyer = db.get(Buyer, buyer_id)
            registry = self._public_registries.get(buyer.org_type or "") if buyer is not None else None
            if buyer is None or registry is None:
                continue
            metrics.buyers_processed += 1
            try:
                buyer.match_attempted_at = datetime.now(timezone.utc)
                outcome = self._resolver(db, registry, resolution, auto).resolve(buyer.name)
                status = classify_match(outcome.confidence, auto, minimum)
                if outcome.matched and status == "matched":
                    self._link(ctx, buyer, "buyers", outcome.entity_id, outcome.confidence, via=registry.scope)
                    metrics.buyers_matched += 1
                elif status == "pending_review":
                    buyer.match_status = "pending_review"
                    buyer.match_confidence = _confidence(outcome.confidence)
                else:
                    buyer.match_status = "no_match"
                db.commit()
            except RegistryRateLimitedError:
                db.rollback()
                ctx.log.warning("Rate limit hit while matching buyer", {"buyer_id": buyer_id})
                self._sleep(self._cooldown_seconds)
                metrics.skipped_count += 1
            except (PipelineError, RegistryError):
                db.rollback()
                raise
            except Exception as exc:
                db.rollback()
                logger.exception("pipeline.match_buyer_failed buyer_id=%s", buyer_id)
                ctx.log.error(f"Unexpected error for buyer {buyer_id}: {exc}", {"buyer_id": buyer_id})
                metrics.error_count += 1

    def _resolver(
        self,
        db: Session,
        registry: OrganisationRegistry,
        resolution: ResolutionContext,
        auto: float,
    ) -> EntityResolver:
        return EntityResolver(db, registry, context=resolution, fuzzy_threshold=auto, min_confidence=auto)

    def _public_registries_for(self, name: str) -> list[OrganisationRegistry]:
        registries: list[OrganisationRegistry] = []
        if is_likely_council(name) and "council" in self._public_registries:
            registries.append(self._public_registries["council"])
        if is_likely_government_department(name) and "government_department" in self._public_registries:
            registries.append(self._public_registries["government_department"])
        return registries

    def _link(
        self,
        ctx: PipelineContext,
        record: Supplier | Buyer,
        table_name: str,
        entity_id: int | None,
        score: float,
        *,
        via: str,
    ) -> None:
        before = match_snapshot(record.entity_id, record.match_status, record.match_confidence)
        record.entity_id = entity_id
        record.match_status = "matched"
        record.match_confidence = _confidence(score)
        record.manually_verified = False
        record_audit(
            ctx.db,
            actor_type="pipeline",
            actor_id=f"run:{ctx.run_id}" if ctx.run_id else "background_matcher",
            run_id=ctx.run_id,
            stage_id=self.id,
            table_name=table_name,
            record_pk=record.id,
            action="link",
            before=before,
            after=match_snapshot(entity_id, "matched", record.match_confidence),
            reason=f"auto-matched via {via}",
        )


def count_pending_suppliers(db: Session) -> int:
    return db.scalar(select(func.count(Supplier.id)).where(Supplier.match_status == "pending")) or 0


def _confidence(score: float) -> Decimal:
    return Decimal(str(round(score, 2)))
