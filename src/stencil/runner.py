"""Execute named steps of patch operations in order.

Each step moves ``pending -> running -> succeeded | failed``. The first failing
operation aborts its step and the run halts; later steps stay ``pending`` in the
report. Nothing is retried.

When a step fails, the :class:`FailurePolicy` decides what happens to the
operations it already applied: ``keep`` leaves them in place and lists them
in the step record, ``rollback`` restores every file the step touched.
An interrupt (or any unexpected exception) always rolls the running step back
before propagating, so the tree holds a prefix of fully applied steps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

from .checkpoint import Checkpoint, Checkpointer, NullCheckpointer
from .errors import RecipeError, StencilError
from .operations import Operation, OperationContext, OperationResult, apply_operation
from .store import FileImage, FileStore, OverlayFileStore
from .telemetry import emit_event, utc_now
from .tools.external import DEFAULT_TOOL_TIMEOUT

LOGGER = logging.getLogger(__name__)

__all__ = [
    "FailurePolicy",
    "RunReport",
    "Step",
    "StepError",
    "StepLog",
    "StepRecord",
    "StepRunner",
    "StepStatus",
]


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailurePolicy(str, Enum):
    KEEP = "keep"
    ROLLBACK = "rollback"


@dataclass(frozen=True, slots=True)
class Step:
    """Named, ordered group of operations with an optional checkpoint message."""

    name: str
    operations: Tuple[Operation, ...] = ()
    message: str | None = None

    @property
    def checkpoint_message(self) -> str:
        return self.message or self.name


@dataclass(slots=True)
class StepError:
    """Failure attached to a step record."""

    kind: str
    message: str
    operation_index: int | None = None
    operation: str | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        *,
        operation_index: int | None = None,
        operation: str | None = None,
    ) -> "StepError":
        if isinstance(error, StencilError):
            return cls(
                kind=error.kind,
                message=str(error),
                operation_index=operation_index,
                operation=operation,
                details=dict(error.details),
            )
        kind = "interrupted" if isinstance(error, KeyboardInterrupt) else "internal"
        return cls(
            kind=kind,
            message=str(error) or type(error).__name__,
            operation_index=operation_index,
            operation=operation,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "operation_index": self.operation_index,
            "operation": self.operation,
            "details": dict(self.details),
        }


@dataclass(slots=True)
class StepRecord:
    """Progress and outcome of one step."""

    name: str
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    operations: List[OperationResult] = field(default_factory=list)
    error: StepError | None = None
    rolled_back: bool = False
    checkpoint_ref: str | None = None
    checkpoint_error: str | None = None

    @property
    def changed(self) -> int:
        return sum(1 for result in self.operations if result.changed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "operations": [result.to_dict() for result in self.operations],
            "error": self.error.to_dict() if self.error else None,
            "rolled_back": self.rolled_back,
            "checkpoint_ref": self.checkpoint_ref,
            "checkpoint_error": self.checkpoint_error,
        }


class StepLog:
    """Append-only record of the steps a runner has started."""

    def __init__(self) -> None:
        self._records: List[StepRecord] = []

    def append(self, record: StepRecord) -> None:
        self._records.append(record)

    def get(self, name: str) -> StepRecord | None:
        for record in self._records:
            if record.name == name:
                return record
        return None

    def __iter__(self) -> Iterator[StepRecord]:
        return iter(tuple(self._records))

    def __len__(self) -> int:
        return len(self._records)


@dataclass(slots=True)
class RunReport:
    """Ordered outcome of a run, suitable for display or JSON export."""

    root: Path
    steps: List[StepRecord]
    dry_run: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return all(record.status is StepStatus.SUCCEEDED for record in self.steps)

    @property
    def failed_step(self) -> StepRecord | None:
        for record in self.steps:
            if record.status is StepStatus.FAILED:
                return record
        return None

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def to_dict(self) -> dict[str, Any]:
        failed = self.failed_step
        return {
            "root": self.root.as_posix(),
            "dry_run": self.dry_run,
            "outcome": "succeeded" if self.succeeded else "failed",
            "failed_step": failed.name if failed else None,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "steps": [record.to_dict() for record in self.steps],
        }

    def format_summary(self) -> str:
        return format_report(self.to_dict())


def format_report(payload: Mapping[str, Any]) -> str:
    """Render a report dictionary as human-readable lines."""
    lines: List[str] = []
    for step in payload.get("steps") or []:
        operations = step.get("operations") or []
        changed = sum(1 for entry in operations if entry.get("changed"))
        status = step.get("status", "pending")
        if status == "pending":
            lines.append(f"- {step.get('name')}: pending")
            continue
        lines.append(f"- {step.get('name')}: {status} ({changed} changed, {len(operations) - changed} unchanged)")
        error = step.get("error")
        if error:
            index = error.get("operation_index")
            where = f"operation #{index + 1} {error.get('operation')}: " if index is not None else ""
            lines.append(f"    ! {where}{error.get('kind')}: {error.get('message')}")
        if step.get("rolled_back"):
            lines.append("    rolled back")
        if step.get("checkpoint_error"):
            lines.append(f"    checkpoint failed: {step['checkpoint_error']}")
        elif step.get("checkpoint_ref"):
            lines.append(f"    checkpoint: {str(step['checkpoint_ref'])[:7]}")
    failed_step = payload.get("failed_step")
    if failed_step:
        lines.append(f"Outcome: failed at step '{failed_step}'")
    else:
        lines.append("Outcome: succeeded")
    return "\n".join(lines)


class StepRunner:
    """Run steps sequentially against a file store."""

    def __init__(
        self,
        store: FileStore,
        *,
        checkpointer: Checkpointer | None = None,
        failure_policy: FailurePolicy | str = FailurePolicy.KEEP,
        tool_timeout: float | None = DEFAULT_TOOL_TIMEOUT,
        run_tools: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.store = store
        self.checkpointer: Checkpointer = checkpointer or NullCheckpointer()
        self.failure_policy = FailurePolicy(failure_policy)
        self.dry_run = isinstance(store, OverlayFileStore)
        self.context = OperationContext(
            store=store,
            tool_timeout=tool_timeout,
            run_tools=run_tools and not self.dry_run,
            env=dict(env or {}),
        )
        self.log = StepLog()
        self._started_at: datetime | None = None

    # ------------------------------------------------------------------ steps
    def run_step(self, step: Step) -> StepRecord:
        """Apply one step and return its record."""
        record = StepRecord(name=step.name)
        self.log.append(record)
        record.status = StepStatus.RUNNING
        record.started_at = utc_now()
        emit_event("step_started", step=step.name, operations=len(step.operations))
        LOGGER.info("Step %s: %d operation(s)", step.name, len(step.operations))

        journal: Dict[Path, FileImage] = {}
        index = -1
        operation: Operation | None = None
        try:
            for index, operation in enumerate(step.operations):
                try:
                    self._capture(operation, journal)
                    result = apply_operation(operation, self.context)
                except StencilError as error:
                    record.error = StepError.from_exception(
                        error,
                        operation_index=index,
                        operation=operation.describe(),
                    )
                    break
                record.operations.append(result)
                emit_event(
                    "operation_applied",
                    step=step.name,
                    index=index,
                    operation=result.description,
                    changed=result.changed,
                )
        except BaseException as error:
            record.error = StepError.from_exception(
                error,
                operation_index=index if index >= 0 else None,
                operation=operation.describe() if operation is not None else None,
            )
            self._finish_failed(step, record, journal, force_rollback=True)
            raise

        if record.error is not None:
            self._finish_failed(step, record, journal, force_rollback=False)
            return record

        record.status = StepStatus.SUCCEEDED
        record.finished_at = utc_now()
        emit_event("step_finished", step=step.name, status=record.status, changed=record.changed)
        if not self.dry_run:
            self._checkpoint(step, record)
        return record

    def _capture(self, operation: Operation, journal: Dict[Path, FileImage]) -> None:
        for path in operation.touched:
            key = self.store.relative(path)
            if key not in journal:
                journal[key] = self.store.capture(key)

    def _finish_failed(
        self,
        step: Step,
        record: StepRecord,
        journal: Mapping[Path, FileImage],
        *,
        force_rollback: bool,
    ) -> None:
        record.status = StepStatus.FAILED
        if journal and (force_rollback or self.failure_policy is FailurePolicy.ROLLBACK):
            try:
                self._rollback(journal.values())
                record.rolled_back = True
            except StencilError as rollback_error:
                LOGGER.error("Rollback of step %s failed: %s", step.name, rollback_error)
                if record.error is not None:
                    record.error.details["rollback_error"] = str(rollback_error)
        record.finished_at = utc_now()
        error = record.error
        LOGGER.error(
            "Step %s failed at operation #%s: %s",
            step.name,
            (error.operation_index + 1) if error and error.operation_index is not None else "?",
            error.message if error else "unknown error",
        )
        emit_event(
            "step_finished",
            step=step.name,
            status=record.status,
            error=error.to_dict() if error else None,
            rolled_back=record.rolled_back,
        )

    def _rollback(self, images: Iterable[FileImage]) -> None:
        for image in images:
            self.store.restore(image)

    def _checkpoint(self, step: Step, record: StepRecord) -> None:
        checkpoint = Checkpoint(step_name=step.name, message=step.checkpoint_message, store=self.store)
        try:
            record.checkpoint_ref = self.checkpointer.checkpoint(checkpoint)
        except (StencilError, OSError) as error:
            record.checkpoint_error = str(error)
            LOGGER.warning("Checkpoint after step %s failed: %s", step.name, error)
            emit_event("checkpoint_failed", step=step.name, error=str(error))

    # -------------------------------------------------------------------- run
    def run(self, steps: Sequence[Step]) -> RunReport:
        """Run ``steps`` in order, halting at the first failure."""
        _ensure_unique_names(steps)
        self._started_at = utc_now()
        emit_event("run_started", root=self.store.root, steps=[step.name for step in steps], dry_run=self.dry_run)
        if not self.dry_run:
            try:
                self.checkpointer.prepare()
            except (StencilError, OSError) as error:
                LOGGER.warning("Checkpointer could not be prepared: %s", error)
                emit_event("checkpoint_failed", step=None, error=str(error))
        for step in steps:
            record = self.run_step(step)
            if record.status is StepStatus.FAILED:
                break
        report = self.build_report(steps)
        emit_event("run_finished", outcome="succeeded" if report.succeeded else "failed")
        return report

    def build_report(self, steps: Sequence[Step]) -> RunReport:
        """Combine the log with the declared steps; unstarted steps stay pending."""
        records: List[StepRecord] = []
        for step in steps:
            record = self.log.get(step.name)
            records.append(record if record is not None else StepRecord(name=step.name))
        return RunReport(
            root=self.store.root,
            steps=records,
            dry_run=self.dry_run,
            started_at=self._started_at,
            finished_at=utc_now(),
        )


def _ensure_unique_names(steps: Sequence[Step]) -> None:
    seen: set[str] = set()
    for step in steps:
        if step.name in seen:
            raise RecipeError(f"Duplicate step name: {step.name}", details={"step": step.name})
        seen.add(step.name)
