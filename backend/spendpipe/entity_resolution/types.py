"""Typed resolution inputs and outputs independent of persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.orm import Session

from spendpipe.models.entity import Entity


@dataclass(slots=True)
class RegistryCandidate:
    """One registry (or workbook metadata) record that can become a canonical entity."""

    registry_id: str
    name: str
    entity_type: str
    status: str | None = None
    postal_code: str | None = None
    role_code: str | None = None
    website: str | None = None
    similarity: float | None = None
    payload: object | None = None


@dataclass(slots=True)
class ResolutionOutcome:
    """Result of resolving one raw name."""

    entity_id: int | None
    confidence: float
    created: bool
    method: str
    registry_id: str | None = None

    @property
    def matched(self) -> bool:
        return self.entity_id is not None


@dataclass(slots=True)
class ResolutionContext:
    """Run-scoped name to entity cache, owned by the stage that created it."""

    resolved: dict[tuple[str, str], tuple[int, str]] = field(default_factory=dict)
    local_names: dict[str, list[tuple[str, int, str]]] = field(default_factory=dict)
    registry_calls: int = 0

    def lookup(self, scope: str, normalized_name: str) -> tuple[int, str] | None:
        return self.resolved.get((scope, normalized_name))

    def remember(
        self,
        scope: str,
        normalized_name: str,
        entity_id: int,
        registry_id: str,
        *,
        searchable: bool = True,
    ) -> None:
        self.resolved[(scope, normalized_name)] = (entity_id, registry_id)
        names = self.local_names.get(scope)
        entry = (normalized_name, entity_id, registry_id)
        if searchable and names is not None and entry not in names:
            names.append(entry)


class OrganisationRegistry(Protocol):
    """Strategy that searches one external directory and persists its records."""

    scope: str
    entity_types: tuple[str, ...]
    placeholder_entity_type: str

    def search(self, name: str) -> list[RegistryCandidate]:
        """Return candidates for a raw name, best first where the registry ranks them."""

    def persist(self, db: Session, candidate: RegistryCandidate) -> tuple[Entity, bool]:
        """Create or update the canonical entity and its detail row."""
