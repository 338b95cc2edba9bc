from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

import pytest

from stencil.anchors import Anchor
from stencil.checkpoint import Checkpoint, RecordingCheckpointer
from stencil.errors import IOFailureError, RecipeError
from stencil.operations import CreateOrOverwrite, Insert, OperationContext, OperationResult, Replace
from stencil.runner import FailurePolicy, Step, StepRunner, StepStatus
from stencil.store import FileStore, OverlayFileStore


@dataclass(frozen=True, slots=True)
class InterruptingWrite:
    """Writes a file and then simulates Ctrl-C."""

    path: str

    @property
    def touched(self) -> Tuple[Path, ...]:
        return (Path(self.path),)

    def describe(self) -> str:
        return f"interrupt after writing {self.path}"

    def apply(self, context: OperationContext) -> OperationResult:
        context.store.write(self.path, "half-written\n")
        raise KeyboardInterrupt


class FailingCheckpointer:
    def __init__(self) -> None:
        self.calls: List[str] = []

    def prepare(self) -> None:
        return None

    def checkpoint(self, checkpoint: Checkpoint) -> str | None:
        self.calls.append(checkpoint.step_name)
        raise IOFailureError("disk full")


def _two_operation_step() -> Step:
    return Step(
        "edit",
        (
            Replace("app.cfg", Anchor.literal("X = nil"), "X = 5"),
            Insert("app.cfg", Anchor.literal("MISSING"), "never\n"),
        ),
    )


def test_empty_step_succeeds_without_changes(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("X = nil\n", encoding="utf-8")
    store = FileStore(tmp_path)
    before = store.snapshot()

    report = StepRunner(store).run([Step("noop")])

    assert report.succeeded
    assert report.steps[0].status is StepStatus.SUCCEEDED
    assert report.steps[0].operations == []
    assert store.snapshot().same_tree(before)


def test_failed_step_keeps_applied_operations_by_default(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("X = nil\n", encoding="utf-8")

    report = StepRunner(FileStore(tmp_path)).run([_two_operation_step()])

    record = report.steps[0]
    assert record.status is StepStatus.FAILED
    assert record.error is not None
    assert record.error.kind == "not_found"
    assert record.error.operation_index == 1
    assert record.error.operation == "insert into app.cfg after 'MISSING'"
    assert [result.changed for result in record.operations] == [True]
    assert not record.rolled_back
    assert (tmp_path / "app.cfg").read_text(encoding="utf-8") == "X = 5\n"
    assert report.failed_step is record
    assert report.exit_code == 1


def test_rollback_policy_restores_step_files(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("X = nil\n", encoding="utf-8")
    step = Step(
        "edit",
        (
            CreateOrOverwrite("created.cfg", "new\n"),
            *_two_operation_step().operations,
        ),
    )

    report = StepRunner(FileStore(tmp_path), failure_policy=FailurePolicy.ROLLBACK).run([step])

    record = report.steps[0]
    assert record.status is StepStatus.FAILED
    assert record.rolled_back
    assert (tmp_path / "app.cfg").read_text(encoding="utf-8") == "X = nil\n"
    assert not (tmp_path / "created.cfg").exists()


def test_run_halts_and_leaves_later_steps_pending(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("X = nil\n", encoding="utf-8")
    checkpointer = RecordingCheckpointer()
    steps = [
        Step("first", (CreateOrOverwrite("one.txt", "1\n"),)),
        _two_operation_step(),
        Step("last", (CreateOrOverwrite("three.txt", "3\n"),)),
    ]

    report = StepRunner(FileStore(tmp_path), checkpointer=checkpointer).run(steps)

    assert [record.status for record in report.steps] == [
        StepStatus.SUCCEEDED,
        StepStatus.FAILED,
        StepStatus.PENDING,
    ]
    assert checkpointer.step_names == ["first"]
    assert not (tmp_path / "three.txt").exists()

    payload = report.to_dict()
    assert payload["outcome"] == "failed"
    assert payload["failed_step"] == "edit"
    assert payload["steps"][1]["error"]["kind"] == "not_found"

    summary = report.format_summary()
    assert "- first: succeeded (1 changed, 0 unchanged)" in summary
    assert "- edit: failed (1 changed, 0 unchanged)" in summary
    assert "! operation #2 insert into app.cfg after 'MISSING': not_found" in summary
    assert "- last: pending" in summary
    assert summary.endswith("Outcome: failed at step 'edit'")


def test_checkpoints_follow_succeeded_steps_in_order(tmp_path: Path) -> None:
    checkpointer = RecordingCheckpointer()
    steps = [
        Step("first", (CreateOrOverwrite("one.txt", "1\n"),)),
        Step("second", (CreateOrOverwrite("two.txt", "2\n"),)),
    ]

    report = StepRunner(FileStore(tmp_path), checkpointer=checkpointer).run(steps)

    assert report.succeeded
    assert checkpointer.step_names == ["first", "second"]
    first_snapshot = checkpointer.entries[0][1]
    second_snapshot = checkpointer.entries[1][1]
    assert first_snapshot.paths() == ("one.txt",)
    assert second_snapshot.paths() == ("one.txt", "two.txt")


def test_checkpoint_failure_is_recorded_but_not_fatal(tmp_path: Path) -> None:
    checkpointer = FailingCheckpointer()
    steps = [
        Step("first", (CreateOrOverwrite("one.txt", "1\n"),)),
        Step("second", (CreateOrOverwrite("two.txt", "2\n"),)),
    ]

    report = StepRunner(FileStore(tmp_path), checkpointer=checkpointer).run(steps)

    assert report.succeeded
    assert checkpointer.calls == ["first", "second"]
    assert report.steps[0].checkpoint_error == "disk full"
    assert "checkpoint failed: disk full" in report.format_summary()


def test_interrupt_rolls_back_running_step_and_propagates(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("X = nil\n", encoding="utf-8")
    runner = StepRunner(FileStore(tmp_path))
    steps = [
        Step("first", (CreateOrOverwrite("one.txt", "1\n"),)),
        Step("interrupted", (Replace("app.cfg", Anchor.literal("X = nil"), "X = 5"), InterruptingWrite("new.txt"))),
        Step("never", ()),
    ]

    with pytest.raises(KeyboardInterrupt):
        runner.run(steps)

    assert (tmp_path / "one.txt").read_text(encoding="utf-8") == "1\n"
    assert (tmp_path / "app.cfg").read_text(encoding="utf-8") == "X = nil\n"
    assert not (tmp_path / "new.txt").exists()

    report = runner.build_report(steps)
    record = report.steps[1]
    assert record.status is StepStatus.FAILED
    assert record.rolled_back
    assert record.error is not None
    assert record.error.kind == "interrupted"
    assert record.error.operation_index == 1
    assert report.steps[2].status is StepStatus.PENDING


def test_duplicate_step_names_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(RecipeError):
        StepRunner(FileStore(tmp_path)).run([Step("same"), Step("same")])


def test_dry_run_leaves_disk_untouched_and_skips_checkpoints(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("X = nil\n", encoding="utf-8")
    checkpointer = RecordingCheckpointer()
    store = OverlayFileStore(tmp_path)

    report = StepRunner(store, checkpointer=checkpointer).run(
        [Step("edit", (Replace("app.cfg", Anchor.literal("X = nil"), "X = 5"),))]
    )

    assert report.succeeded
    assert report.dry_run
    assert checkpointer.entries == []
    assert (tmp_path / "app.cfg").read_text(encoding="utf-8") == "X = nil\n"
    assert "+X = 5" in store.diff()


def test_runner_emits_telemetry_events(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="stencil.telemetry")

    StepRunner(FileStore(tmp_path)).run([Step("create", (CreateOrOverwrite("one.txt", "1\n"),))])

    events = [
        json.loads(record.getMessage())
        for record in caplog.records
        if record.name == "stencil.telemetry"
    ]
    names = [event["event"] for event in events]
    assert names == ["run_started", "step_started", "operation_applied", "step_finished", "run_finished"]
    assert events[3]["status"] == "succeeded"
    assert events[2]["changed"] is True
