"""Hooks invoked after every successful step.

The runner calls :meth:`Checkpointer.checkpoint` exactly once per succeeded
step, in order. A failing checkpoint is recorded on the step but never turns
the step into a failure.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List, Protocol, Tuple

from .store import StoreSnapshot
from .tools.vcs import GitRepository

if TYPE_CHECKING:
    from .store import FileStore

LOGGER = logging.getLogger(__name__)

__all__ = [
    "Checkpoint",
    "Checkpointer",
    "GitCheckpointer",
    "NullCheckpointer",
    "RecordingCheckpointer",
]


class Checkpoint:
    """Step that just succeeded, with a lazily computed store snapshot."""

    def __init__(self, step_name: str, message: str, store: "FileStore") -> None:
        self.step_name = step_name
        self.message = message
        self.store = store
        self._snapshot: StoreSnapshot | None = None

    @property
    def snapshot(self) -> StoreSnapshot:
        if self._snapshot is None:
            self._snapshot = self.store.snapshot()
        return self._snapshot


class Checkpointer(Protocol):
    def prepare(self) -> None:
        """Called once before the first step runs."""

    def checkpoint(self, checkpoint: Checkpoint) -> str | None:
        """Record ``checkpoint``; may return a reference such as a commit id."""


class NullCheckpointer:
    """Checkpointer that records nothing."""

    def prepare(self) -> None:
        return None

    def checkpoint(self, checkpoint: Checkpoint) -> str | None:
        return None


class RecordingCheckpointer:
    """Keep ``(step name, snapshot)`` pairs in memory."""

    def __init__(self) -> None:
        self.entries: List[Tuple[str, StoreSnapshot]] = []

    @property
    def step_names(self) -> List[str]:
        return [name for name, _ in self.entries]

    def prepare(self) -> None:
        return None

    def checkpoint(self, checkpoint: Checkpoint) -> str | None:
        self.entries.append((checkpoint.step_name, checkpoint.snapshot))
        return None


class GitCheckpointer:
    """Commit the whole working tree after each step."""

    def __init__(
        self,
        root: Path | str,
        *,
        author_name: str = "Stencil",
        author_email: str = "stencil@example.com",
        initial_message: str | None = "Initial commit",
    ) -> None:
        self.root = Path(root).resolve()
        self.author_name = author_name
        self.author_email = author_email
        self.initial_message = initial_message
        self._repo: GitRepository | None = None

    @property
    def repository(self) -> GitRepository:
        """Open (or initialise) the repository on first use."""
        if self._repo is None:
            self._repo = GitRepository.ensure(
                self.root,
                author_name=self.author_name,
                author_email=self.author_email,
                initial_message=self.initial_message,
                exclude=(".stencil/",),
            )
        return self._repo

    def prepare(self) -> None:
        """Make sure the repository and its first commit exist before any step edits files."""
        self._repo = self.repository

    def checkpoint(self, checkpoint: Checkpoint) -> str | None:
        sha = self.repository.commit_all(checkpoint.message)
        if sha is None:
            LOGGER.info("Step %s left nothing to commit", checkpoint.step_name)
        else:
            LOGGER.info("Committed step %s as %s", checkpoint.step_name, sha[:7])
        return sha
