"""Patch operations applied to a :class:`~stencil.store.FileStore`.

Each operation is an immutable value. Applying it reads the current store
state, computes the new content and writes it back in a single atomic write,
so a failing operation never leaves a partially written file behind.

Replays are safe: an insert whose text already sits next to its anchor, an
append whose text is already present, a create with identical content and a
remove of an absent file all report ``changed=False`` instead of editing the
file again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Tuple, Union

from .anchors import Anchor, AnchorKind, locate
from .errors import AlreadyExistsError, NotFoundError
from .store import FileStore, WriteMode
from .tools.external import DEFAULT_TOOL_TIMEOUT, run_tool

LOGGER = logging.getLogger(__name__)

__all__ = [
    "Append",
    "CreateOrOverwrite",
    "Insert",
    "Operation",
    "OperationContext",
    "OperationResult",
    "PatchOperation",
    "Position",
    "Remove",
    "Replace",
    "ToolCall",
    "apply_operation",
]


class Position(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(slots=True)
class OperationContext:
    """Everything an operation needs besides its own parameters."""

    store: FileStore
    tool_timeout: float | None = DEFAULT_TOOL_TIMEOUT
    run_tools: bool = True
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of a single applied operation."""

    description: str
    changed: bool
    paths: Tuple[Path, ...] = ()
    detail: str | None = None
    output: str | None = None

    def to_dict(self) -> dict:
        payload = {
            "description": self.description,
            "changed": self.changed,
            "paths": [path.as_posix() for path in self.paths],
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.output:
            payload["output"] = self.output
        return payload


@dataclass(frozen=True, slots=True)
class Insert:
    """Splice ``text`` immediately before or after an anchor."""

    path: str
    anchor: Anchor
    text: str
    position: Position = Position.AFTER

    @property
    def touched(self) -> Tuple[Path, ...]:
        return (Path(self.path),)

    def describe(self) -> str:
        return f"insert into {self.path} {Position(self.position).value} {self.anchor.describe()}"

    def apply(self, context: OperationContext) -> OperationResult:
        content = context.store.read(self.path)
        span = locate(content, self.anchor)
        text = self.text
        if Position(self.position) is Position.AFTER:
            index = span.end
            if self.anchor.kind is AnchorKind.LINE and not span.text(content).endswith("\n"):
                text = "\n" + text
            present = content.startswith(self.text, index) or content.startswith(text, index)
        else:
            index = span.start
            present = content[:index].endswith(text)
        if present:
            return OperationResult(self.describe(), False, self.touched, detail="text already present")
        context.store.write(self.path, content[:index] + text + content[index:])
        return OperationResult(self.describe(), True, self.touched)


@dataclass(frozen=True, slots=True)
class Replace:
    """Replace exactly the span matched by ``anchor``.

    A missing anchor is an error, except on replay: when the anchor is gone
    and ``replacement`` occurs exactly once, the result is unchanged with
    detail ``"replacement already applied"``.
    """

    path: str
    anchor: Anchor
    replacement: str

    @property
    def touched(self) -> Tuple[Path, ...]:
        return (Path(self.path),)

    def describe(self) -> str:
        return f"replace {self.anchor.describe()} in {self.path}"

    def apply(self, context: OperationContext) -> OperationResult:
        content = context.store.read(self.path)
        try:
            span = locate(content, self.anchor)
        except NotFoundError:
            if self.replacement and content.count(self.replacement) == 1:
                return OperationResult(self.describe(), False, self.touched, detail="replacement already applied")
            raise
        updated = content[: span.start] + self.replacement + content[span.end :]
        if updated == content:
            return OperationResult(self.describe(), False, self.touched, detail="replacement identical")
        context.store.write(self.path, updated)
        return OperationResult(self.describe(), True, self.touched)


@dataclass(frozen=True, slots=True)
class CreateOrOverwrite:
    """Create ``path`` with ``content``; overwrite only when ``force`` is set."""

    path: str
    content: str
    force: bool = False
    executable: bool = False

    @property
    def touched(self) -> Tuple[Path, ...]:
        return (Path(self.path),)

    def describe(self) -> str:
        verb = "overwrite" if self.force else "create"
        return f"{verb} {self.path}"

    def apply(self, context: OperationContext) -> OperationResult:
        store = context.store
        current = store.read_optional(self.path)
        if current is not None:
            mode_ok = not self.executable or store.is_executable(self.path)
            if current == self.content and mode_ok:
                return OperationResult(self.describe(), False, self.touched, detail="identical")
            if current != self.content and not self.force:
                raise AlreadyExistsError(
                    f"{self.path} already exists with different content",
                    details={"path": self.path},
                )
        store.write(self.path, self.content, WriteMode.OVERWRITE, executable=True if self.executable else None)
        return OperationResult(self.describe(), True, self.touched)


@dataclass(frozen=True, slots=True)
class Remove:
    """Delete ``path``; absent files are not an error."""

    path: str

    @property
    def touched(self) -> Tuple[Path, ...]:
        return (Path(self.path),)

    def describe(self) -> str:
        return f"remove {self.path}"

    def apply(self, context: OperationContext) -> OperationResult:
        removed = context.store.delete(self.path)
        return OperationResult(self.describe(), removed, self.touched, detail=None if removed else "already absent")


@dataclass(frozen=True, slots=True)
class Append:
    """Append ``text`` to ``path``, creating the file when missing.

    A file that does not end with a newline gets one before ``text``. With
    ``once`` set the append is skipped when the file already contains
    ``text`` anywhere.
    """

    path: str
    text: str
    once: bool = True

    @property
    def touched(self) -> Tuple[Path, ...]:
        return (Path(self.path),)

    def describe(self) -> str:
        return f"append to {self.path}"

    def apply(self, context: OperationContext) -> OperationResult:
        current = context.store.read_optional(self.path)
        if self.once and current is not None and self.text in current:
            return OperationResult(self.describe(), False, self.touched, detail="text already present")
        text = self.text
        if current and not current.endswith("\n"):
            text = "\n" + text
        context.store.write(self.path, text, WriteMode.APPEND)
        return OperationResult(self.describe(), True, self.touched)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """Run an external command inside the project root."""

    command: str
    args: Tuple[str, ...] = ()
    cwd: str | None = None
    timeout: float | None = None
    env: Tuple[Tuple[str, str], ...] = ()

    @property
    def touched(self) -> Tuple[Path, ...]:
        return ()

    def describe(self) -> str:
        return "run " + " ".join((self.command, *self.args))

    def apply(self, context: OperationContext) -> OperationResult:
        if not context.run_tools:
            return OperationResult(self.describe(), False, detail="skipped")
        store = context.store
        workdir = store.root if self.cwd in (None, "", ".") else store.resolve(self.cwd)
        env = dict(context.env)
        env.update(dict(self.env))
        result = run_tool(
            self.command,
            self.args,
            cwd=workdir,
            timeout=self.timeout if self.timeout is not None else context.tool_timeout,
            env=env,
        )
        return OperationResult(self.describe(), True, detail=f"exit {result.exit_code}", output=result.stdout)


PatchOperation = Union[Insert, Replace, CreateOrOverwrite, Remove, Append]
Operation = Union[PatchOperation, ToolCall]


def apply_operation(operation: Operation, context: OperationContext) -> OperationResult:
    """Apply ``operation`` against ``context`` and log the outcome."""
    result = operation.apply(context)
    if result.changed:
        LOGGER.info("%s", result.description)
    else:
        LOGGER.debug("%s (%s)", result.description, result.detail or "unchanged")
    if result.output:
        LOGGER.debug("%s output:\n%s", result.description, result.output.rstrip())
    return result
