"""Stencil: ordered, idempotent edits to a tree of text files.

Steps of patch operations run against a :class:`~stencil.store.FileStore`,
with an explicit failure policy, dry-run previews and a checkpoint (usually a
git commit) after each successful step.
"""

from .anchors import Anchor, AnchorKind, locate
from .checkpoint import GitCheckpointer, NullCheckpointer, RecordingCheckpointer
from .errors import (
    AlreadyExistsError,
    AmbiguousError,
    IOFailureError,
    NotFoundError,
    RecipeError,
    StencilError,
    ToolFailureError,
    ToolTimeoutError,
)
from .operations import Append, CreateOrOverwrite, Insert, Position, Remove, Replace, ToolCall
from .runner import FailurePolicy, RunReport, Step, StepRunner, StepStatus
from .store import FileStore, OverlayFileStore, WriteMode

__all__ = [
    "AlreadyExistsError",
    "AmbiguousError",
    "Anchor",
    "AnchorKind",
    "Append",
    "CreateOrOverwrite",
    "FailurePolicy",
    "FileStore",
    "GitCheckpointer",
    "IOFailureError",
    "Insert",
    "NotFoundError",
    "NullCheckpointer",
    "OverlayFileStore",
    "Position",
    "RecipeError",
    "RecordingCheckpointer",
    "Remove",
    "Replace",
    "RunReport",
    "StencilError",
    "Step",
    "StepRunner",
    "StepStatus",
    "ToolCall",
    "ToolFailureError",
    "ToolTimeoutError",
    "WriteMode",
    "locate",
]
