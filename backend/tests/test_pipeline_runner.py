"""Tests for stage-range resolution and sequential stage execution."""

from __future__ import annotations

import unittest

from spendpipe.pipeline.broadcaster import LogBroadcaster
from spendpipe.pipeline.run_logger import PipelineLogger
from spendpipe.pipeline.runner import StageHooks, resolve_stage_id_range, resolve_stage_range, run_pipeline
from spendpipe.pipeline.types import (
    PipelineContext,
    PipelineError,
    PipelineStage,
    StageInput,
    StageResult,
    TotalsRefreshMetrics,
)


class _RecordingStage(PipelineStage):
    def __init__(self, stage_id: str, calls: list[str], *, status: str = "succeeded", error: Exception | None = None):
        self.id = stage_id
        self.title = f"Stage {stage_id}"
        self._calls = calls
        self._status = status
        self._error = error

    def run(self, ctx: PipelineContext, stage_input: StageInput) -> StageResult:
        self._calls.append(self.id)
        if self._error is not None:
            raise self._error
        return StageResult(self._status, TotalsRefreshMetrics(refreshed_entities=1), error="boom" if self._status == "failed" else None)


class _InvalidInputStage(_RecordingStage):
    def validate(self, stage_input: StageInput) -> None:
        raise PipelineError("invalid_input", "asset_id must be a positive integer")


def _logger(broadcaster: LogBroadcaster) -> PipelineLogger:
    return PipelineLogger(7, None, broadcaster=broadcaster)


class ResolveStageRangeTests(unittest.TestCase):
    def setUp(self) -> None:
        calls: list[str] = []
        self.stages = [_RecordingStage(stage_id, calls) for stage_id in ("a", "b", "c")]

    def test_full_range_by_default(self) -> None:
        self.assertEqual(resolve_stage_range(self.stages), (0, 2))

    def test_partial_ranges_are_inclusive(self) -> None:
        self.assertEqual(resolve_stage_range(self.stages, "b"), (1, 2))
        self.assertEqual(resolve_stage_range(self.stages, None, "b"), (0, 1))
        self.assertEqual(resolve_stage_range(self.stages, "b", "b"), (1, 1))

    def test_error_codes(self) -> None:
        cases = [
            ((), None, None, "no_stages"),
            (("a", "b"), "x", None, "invalid_from_stage"),
            (("a", "b"), None, "x", "invalid_to_stage"),
            (("a", "b"), "b", "a", "invalid_stage_range"),
        ]
        for ids, from_stage, to_stage, code in cases:
            with self.subTest(code=code):
                with self.assertRaises(PipelineError) as ctx:
                    resolve_stage_id_range(list(ids), from_stage, to_stage)
                self.assertEqual(ctx.exception.code, code)


class RunPipelineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.broadcaster = LogBroadcaster()
        self.calls: list[str] = []
        self.events: list[tuple[str, str]] = []
        self.hooks = StageHooks(
            on_stage_start=lambda stage_id: self.events.append(("start", stage_id)),
            on_stage_finish=lambda stage_id, result: self.events.append(("finish", stage_id)),
            on_stage_error=lambda stage_id, exc: self.events.append(("error", stage_id)),
        )

    def _run(self, stages: list[PipelineStage], **kwargs) -> dict[str, StageResult]:
        return run_pipeline(
            stages,
            db=None,
            run_id=7,
            dry_run=False,
            log=_logger(self.broadcaster),
            stage_input={"asset_id": 1},
            hooks=self.hooks,
            **kwargs,
        )

    def test_only_in_range_stages_run_and_fire_hooks(self) -> None:
        stages = [_RecordingStage(stage_id, self.calls) for stage_id in ("a", "b", "c")]

        results = self._run(stages, from_stage_id="b", to_stage_id="b")

        self.assertEqual(self.calls, ["b"])
        self.assertEqual(list(results), ["b"])
        self.assertEqual(self.events, [("start", "b"), ("finish", "b")])
        messages = [entry.message for entry in self.broadcaster.get_buffered_logs(7)]
        self.assertEqual(messages, ["Stage started: Stage b", "Stage finished: Stage b"])
        finished = self.broadcaster.get_buffered_logs(7)[-1]
        self.assertEqual(finished.meta["stage_id"], "b")
        self.assertEqual(finished.meta["metrics"]["kind"], "totals_refresh")

    def test_failed_result_stops_later_stages(self) -> None:
        stages = [
            _RecordingStage("a", self.calls),
            _RecordingStage("b", self.calls, status="failed"),
            _RecordingStage("c", self.calls),
        ]

        with self.assertRaises(PipelineError) as ctx:
            self._run(stages)

        self.assertEqual(ctx.exception.code, "stage_failed")
        self.assertEqual(str(ctx.exception), "boom")
        self.assertEqual(self.calls, ["a", "b"])
        self.assertIn(("error", "b"), self.events)
        self.assertNotIn(("start", "c"), self.events)

    def test_exception_propagates_after_error_hook(self) -> None:
        stages = [_RecordingStage("a", self.calls, error=RuntimeError("registry down")), _RecordingStage("b", self.calls)]

        with self.assertRaises(RuntimeError):
            self._run(stages)

        self.assertEqual(self.events, [("start", "a"), ("error", "a")])
        levels = [entry.level for entry in self.broadcaster.get_buffered_logs(7)]
        self.assertEqual(levels[-1], "error")

    def test_validation_failure_happens_before_start_hook(self) -> None:
        stages = [_InvalidInputStage("a", self.calls), _RecordingStage("b", self.calls)]

        with self.assertRaises(PipelineError) as ctx:
            self._run(stages)

        self.assertEqual(ctx.exception.code, "invalid_input")
        self.assertEqual(self.calls, [])
        self.assertEqual(self.events, [("error", "a")])

    def test_invalid_range_raises_before_any_stage(self) -> None:
        stages = [_RecordingStage(stage_id, self.calls) for stage_id in ("a", "b")]

        with self.assertRaises(PipelineError) as ctx:
            self._run(stages, from_stage_id="b", to_stage_id="a")

        self.assertEqual(ctx.exception.code, "invalid_stage_range")
        self.assertEqual(self.calls, [])
        self.assertEqual(self.events, [])


if __name__ == "__main__":
    unittest.main()
