"""Sequential stage orchestrator with inclusive stage-range support."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from time import perf_counter

from sqlalchemy.orm import Session

from spendpipe.pipeline.run_logger import PipelineLogger
from spendpipe.pipeline.types import (
    PipelineContext,
    PipelineError,
    PipelineStage,
    StageInput,
    StageResult,
    metrics_to_dict,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StageHooks:
    on_stage_start: Callable[[str], None] | None = None
    on_stage_finish: Callable[[str, StageResult], None] | None = None
    on_stage_error: Callable[[str, BaseException], None] | None = None


def resolve_stage_range(
    stages: Sequence[PipelineStage],
    from_stage_id: str | None = None,
    to_stage_id: str | None = None,
) -> tuple[int, int]:
    """Return inclusive (from, to) indexes, validating both bounds."""

    return resolve_stage_id_range([stage.id for stage in stages], from_stage_id, to_stage_id)


def resolve_stage_id_range(
    ids: Sequence[str],
    from_stage_id: str | None = None,
    to_stage_id: str | None = None,
) -> tuple[int, int]:
    if not ids:
        raise PipelineError("no_stages", "Pipeline has no stages")
    ids = list(ids)
    start = 0
    end = len(ids) - 1
    if from_stage_id is not None:
        if from_stage_id not in ids:
            raise PipelineError("invalid_from_stage", f"Unknown from_stage_id '{from_stage_id}'", {"stage_ids": ids})
        start = ids.index(from_stage_id)
    if to_stage_id is not None:
        if to_stage_id not in ids:
            raise PipelineError("invalid_to_stage", f"Unknown to_stage_id '{to_stage_id}'", {"stage_ids": ids})
        end = ids.index(to_stage_id)
    if start > end:
        raise PipelineError(
            "invalid_stage_range",
            f"from_stage_id '{ids[start]}' comes after to_stage_id '{ids[end]}'",
            {"from_stage_id": ids[start], "to_stage_id": ids[end]},
        )
    return start, end


def run_pipeline(
    stages: Sequence[PipelineStage],
    *,
    db: Session,
    run_id: int,
    dry_run: bool,
    log: PipelineLogger,
    stage_input: StageInput,
    from_stage_id: str | None = None,
    to_stage_id: str | None = None,
    hooks: StageHooks | None = None,
) -> dict[str, StageResult]:
    """Run in-range stages in order; a failed stage or an exception aborts the rest.

    Stages outside the range fire no hooks. The runner holds no transaction;
    each stage commits or rolls back its own work.
    """

    hooks = hooks or StageHooks()
    start, end = resolve_stage_range(stages, from_stage_id, to_stage_id)
    results: dict[str, StageResult] = {}

    for index, stage in enumerate(stages):
        if index < start or index > end:
            continue
        stage_log = log.for_stage(stage.id)
        started = perf_counter()
        try:
            stage.validate(stage_input)
            stage_log.info(f"Stage started: {stage.title}", {"dry_run": dry_run})
            if hooks.on_stage_start:
                hooks.on_stage_start(stage.id)

            ctx = PipelineContext(db=db, run_id=run_id, stage_id=stage.id, dry_run=dry_run, log=stage_log)
            result = stage.run(ctx, stage_input)
            duration_ms = (perf_counter() - started) * 1000.0
            stage_log.info(
                f"Stage finished: {stage.title}",
                {
                    "status": result.status,
                    "duration_ms": round(duration_ms, 2),
                    "metrics": metrics_to_dict(result.metrics),
                    "warnings": result.warnings[:25],
                },
            )
            if hooks.on_stage_finish:
                hooks.on_stage_finish(stage.id, result)
            results[stage.id] = result

            if result.status == "failed":
                raise PipelineError(
                    "stage_failed",
                    result.error or f"Stage '{stage.id}' failed",
                    {"stage_id": stage.id, "warnings": result.warnings[:25]},
                )
        except Exception as exc:
            logger.exception(
                "pipeline.stage_failed run_id=%s stage_id=%s elapsed_ms=%.2f",
                run_id,
                stage.id,
                (perf_counter() - started) * 1000.0,
            )
            stage_log.error(f"Stage error: {stage.title}", {"error": str(exc)})
            if hooks.on_stage_error:
                hooks.on_stage_error(stage.id, exc)
            raise

    return results
