"""Name to canonical entity resolution with a run-scoped cache."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendpipe.entity_resolution.filters import is_likely_not_an_organisation
from spendpipe.entity_resolution.persistence import is_placeholder_registry_id, make_placeholder_registry_id
from spendpipe.entity_resolution.similarity import name_similarity, normalize_org_name
from spendpipe.entity_resolution.types import (
    OrganisationRegistry,
    RegistryCandidate,
    ResolutionContext,
    ResolutionOutcome,
)
from spendpipe.models.entity import Entity

logger = logging.getLogger(__name__)

RESOLVER_VERSION = "spend-v1"
FUZZY_MATCH_THRESHOLD = 0.9


class EntityResolver:
    """Resolve raw organisation names for one registry family.

    Order, first hit wins: run cache, explicit registry code, exact normalized
    name among local entities, non-organisation filter, registry search, fuzzy
    match against local names, then placeholder (metadata rows) or no match.
    A registry candidate scoring below ``min_confidence`` is not persisted;
    its score is reported on an unmatched outcome instead.
    Every successful path persists through the registry strategy inside the
    caller's session and transaction.
    """

    def __init__(
        self,
        db: Session,
        registry: OrganisationRegistry,
        *,
        context: ResolutionContext | None = None,
        fuzzy_threshold: float = FUZZY_MATCH_THRESHOLD,
        min_confidence: float = 0.0,
    ) -> None:
        self.db = db
        self.registry = registry
        self.context = context or ResolutionContext()
        self.fuzzy_threshold = fuzzy_threshold
        self.min_confidence = min_confidence

    def resolve(
        self,
        name: str,
        *,
        registry_code: str | None = None,
        metadata: RegistryCandidate | None = None,
        allow_placeholder: bool = False,
    ) -> ResolutionOutcome:
        key = normalize_org_name(name)
        if not key:
            return ResolutionOutcome(entity_id=None, confidence=0.0, created=False, method="empty_name")
        scope = self.registry.scope

        cached = self.context.lookup(scope, key)
        if cached is not None:
            entity_id, registry_id = cached
            return ResolutionOutcome(entity_id, 1.0, False, "cache", registry_id)

        if registry_code:
            candidate = metadata or RegistryCandidate(
                registry_id=registry_code,
                name=name,
                entity_type=self.registry.placeholder_entity_type,
            )
            candidate.registry_id = registry_code
            return self._persist(key, candidate, confidence=1.0, method="registry_code")

        local = self._local_exact(key)
        if local is not None:
            self.context.remember(scope, key, local[0], local[1])
            return ResolutionOutcome(local[0], 1.0, False, "local", local[1])

        filtered_reason = is_likely_not_an_organisation(name)
        if filtered_reason is not None:
            logger.debug("resolver.filtered name=%r reason=%s", name, filtered_reason)
            return ResolutionOutcome(entity_id=None, confidence=0.0, created=False, method="filtered")

        self.context.registry_calls += 1
        candidates = self.registry.search(name)
        chosen = self.choose_candidate(name, candidates)
        weak: ResolutionOutcome | None = None
        if chosen is not None:
            if metadata is not None:
                chosen.website = chosen.website or metadata.website
            confidence = self.candidate_confidence(name, key, chosen)
            if confidence >= self.min_confidence:
                return self._persist(key, chosen, confidence=round(confidence, 2), method="registry")
            logger.debug(
                "resolver.weak_candidate name=%r candidate=%r confidence=%.2f",
                name,
                chosen.name,
                confidence,
            )
            weak = ResolutionOutcome(None, round(confidence, 2), False, "weak_candidate", chosen.registry_id)

        fuzzy = self._local_fuzzy(key)
        if fuzzy is not None:
            entity_id, registry_id, score = fuzzy
            self.context.remember(scope, key, entity_id, registry_id)
            return ResolutionOutcome(entity_id, round(score, 2), False, "fuzzy", registry_id)

        if allow_placeholder:
            candidate = metadata or RegistryCandidate(
                registry_id="",
                name=name,
                entity_type=self.registry.placeholder_entity_type,
            )
            candidate.registry_id = make_placeholder_registry_id()
            return self._persist(key, candidate, confidence=1.0, method="placeholder")

        if weak is not None:
            return weak
        return ResolutionOutcome(entity_id=None, confidence=0.0, created=False, method="no_match")

    def choose_candidate(self, name: str, candidates: list[RegistryCandidate]) -> RegistryCandidate | None:
        """Prefer an exact name with a matching type, then the first matching type, then the first hit."""

        if not candidates:
            return None
        wanted = name.strip().lower()
        typed = [c for c in candidates if c.entity_type in self.registry.entity_types]
        for candidate in typed:
            if candidate.name.strip().lower() == wanted:
                return candidate
        if typed:
            return typed[0]
        return candidates[0]

    def candidate_confidence(self, name: str, key: str, candidate: RegistryCandidate) -> float:
        if normalize_org_name(candidate.name) == key:
            return 1.0
        if candidate.similarity is not None:
            return candidate.similarity
        return name_similarity(name, candidate.name)

    def _persist(self, key: str, candidate: RegistryCandidate, *, confidence: float, method: str) -> ResolutionOutcome:
        entity, created = self.registry.persist(self.db, candidate)
        self.context.remember(
            self.registry.scope,
            key,
            entity.id,
            entity.registry_id,
            searchable=not is_placeholder_registry_id(entity.registry_id),
        )
        if created:
            logger.info(
                "resolver.entity_created entity_id=%s entity_type=%s registry_id=%s method=%s",
                entity.id,
                entity.entity_type,
                entity.registry_id,
                method,
            )
        return ResolutionOutcome(entity.id, confidence, created, method, entity.registry_id)

    def _local_names(self) -> list[tuple[str, int, str]]:
        scope = self.registry.scope
        names = self.context.local_names.get(scope)
        if names is None:
            rows = self.db.execute(
                select(Entity.id, Entity.name, Entity.registry_id).where(
                    Entity.entity_type.in_(self.registry.entity_types)
                )
            ).all()
            names = [
                (normalize_org_name(row_name), entity_id, registry_id)
                for entity_id, row_name, registry_id in rows
                if not is_placeholder_registry_id(registry_id)
            ]
            self.context.local_names[scope] = names
        return names

    def _local_exact(self, key: str) -> tuple[int, str] | None:
        for normalized, entity_id, registry_id in self._local_names():
            if normalized == key:
                return entity_id, registry_id
        return None

    def _local_fuzzy(self, key: str) -> tuple[int, str, float] | None:
        best: tuple[int, str, float] | None = None
        for normalized, entity_id, registry_id in self._local_names():
            score = name_similarity(key, normalized)
            if score >= self.fuzzy_threshold and (best is None or score > best[2]):
                best = (entity_id, registry_id, score)
        return best
