"""Stage contracts, results and per-stage metrics."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Literal

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from spendpipe.pipeline.run_logger import PipelineLogger

StageStatus = Literal["queued", "running", "succeeded", "failed", "skipped"]
StageInput = Mapping[str, Any]


class PipelineError(RuntimeError):
    """Pipeline failure with a machine-stable code."""

    def __init__(self, code: str, message: str, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.meta = dict(meta or {})


@dataclass(slots=True)
class StageMetrics:
    """Base for the per-stage metrics variants."""

    kind: ClassVar[str] = "generic"

    def as_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(slots=True)
class DryRunMetrics(StageMetrics):
    kind: ClassVar[str] = "dry_run"

    dry_run: bool = True
    pending_items: int = 0


@dataclass(slots=True)
class ImportDryRunMetrics(StageMetrics):
    kind: ClassVar[str] = "import_dry_run"

    dry_run: bool = True
    sheets_processed: int = 0
    organisations_metadata: int = 0
    organisations_discovered: int = 0
    suppliers_discovered: int = 0


@dataclass(slots=True)
class ImportMetrics(StageMetrics):
    kind: ClassVar[str] = "import"

    sheets_processed: int = 0
    organisations_inserted: int = 0
    organisations_updated: int = 0
    organisations_created_without_metadata: int = 0
    organisations_unmatched: int = 0
    suppliers_inserted: int = 0
    payments_inserted: int = 0
    payments_skipped: int = 0
    skipped_reasons: dict[str, int] = field(default_factory=dict)
    truncated: bool = False
    duration_ms: float = 0.0


@dataclass(slots=True)
class MatchMetrics(StageMetrics):
    kind: ClassVar[str] = "match"

    total_processed: int = 0
    matched_count: int = 0
    no_match_count: int = 0
    review_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    buyers_processed: int = 0
    buyers_matched: int = 0


@dataclass(slots=True)
class TotalsRefreshMetrics(StageMetrics):
    kind: ClassVar[str] = "totals_refresh"

    refreshed_entities: int = 0
    buyer_entities: int = 0
    supplier_entities: int = 0
    duration_ms: float = 0.0


@dataclass(slots=True)
class LocationEnrichmentMetrics(StageMetrics):
    kind: ClassVar[str] = "location_enrichment"

    scanned_entities: int = 0
    distinct_postcodes: int = 0
    updated_entities: int = 0
    updated_postcodes: int = 0
    failed_postcodes: int = 0


def metrics_to_dict(metrics: StageMetrics | None) -> dict[str, Any] | None:
    """Render stage metrics as a generic key/value mapping for storage and display."""

    return metrics.as_dict() if metrics is not None else None


@dataclass(slots=True)
class StageResult:
    status: StageStatus
    metrics: StageMetrics | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class PipelineContext:
    """What a stage receives besides its input."""

    db: Session
    run_id: int
    stage_id: str
    dry_run: bool
    log: "PipelineLogger"


class PipelineStage(ABC):
    """One step of a run's fixed stage list."""

    id: str
    title: str

    def validate(self, stage_input: StageInput) -> None:
        """Raise PipelineError on malformed input; called before any side effect."""

    @abstractmethod
    def run(self, ctx: PipelineContext, stage_input: StageInput) -> StageResult:
        """Execute the stage and report its status and metrics."""


def require_positive_int(stage_input: StageInput, key: str) -> int:
    value = stage_input.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise PipelineError("invalid_input", f"{key} must be a positive integer", {key: value})
    return value


def require_threshold(stage_input: StageInput, key: str, default: float) -> float:
    value = stage_input.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= float(value) <= 1.0:
        raise PipelineError("invalid_input", f"{key} must be a number between 0 and 1", {key: value})
    return float(value)
