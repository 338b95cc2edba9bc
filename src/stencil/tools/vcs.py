"""Minimal git helpers
Just enough structure to initialise a repository in a project root, inspect
pending changes, and record a commit after each completed step.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import subprocess

from ..errors import StencilError


class GitError(StencilError):
    """Raised when a git command fails or the repository cannot be used."""

    kind = "vcs"


def _run(args: Sequence[str], *, cwd: Path, check: bool = True) -> subprocess.CompletedProcess[str]:
    command = ["git", *args]
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=False,
            check=False,
        )
    except OSError as error:
        raise GitError(f"Unable to run git: {error}") from error
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}", details={"args": list(args)})
    return result


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def ensure(
        cls,
        root: Path | str,
        *,
        author_name: str = "Stencil",
        author_email: str = "stencil@example.com",
        initial_message: str | None = "Initial commit",
        exclude: Sequence[str] = (),
    ) -> "GitRepository":
        """Open the repository at ``root``, initialising it when missing.

        The repository gets a local identity unless one is configured. When it
        has no commits yet (a fresh ``git init`` or the empty repository that
        ``rails new`` leaves behind) and ``initial_message`` is set, the
        current tree is committed first. ``exclude`` patterns are registered
        before that commit.
        """

        path = Path(root).resolve()
        if not (path / ".git").exists():
            _run(["init"], cwd=path)

        def _ensure_config(key: str, value: str) -> None:
            current = _run(["config", "--get", key], cwd=path, check=False)
            if current.returncode != 0 or not current.stdout.strip():
                _run(["config", key, value], cwd=path)

        _ensure_config("user.email", author_email)
        _ensure_config("user.name", author_name)

        repo = cls(path)
        for pattern in exclude:
            repo.exclude(pattern)
        if initial_message and repo.head() is None:
            repo.commit_all(initial_message, allow_empty=True)
        return repo

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return _run(list(args), cwd=self.root, check=check)

    def exclude(self, pattern: str) -> bool:
        """Add ``pattern`` to ``.git/info/exclude``; returns ``False`` if present."""

        exclude_path = self.root / ".git" / "info" / "exclude"
        existing = exclude_path.read_text(encoding="utf-8") if exclude_path.exists() else ""
        if pattern in existing.splitlines():
            return False
        exclude_path.parent.mkdir(parents=True, exist_ok=True)
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        exclude_path.write_text(f"{existing}{prefix}{pattern}\n", encoding="utf-8")
        return True

    # ------------------------------------------------------------- repo status
    def working_tree_changes(self) -> List[Path]:
        """Return paths with pending modifications, untracked files included."""

        result = self.git("status", "--porcelain")
        paths: set[Path] = set()
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            paths.add(Path(raw_path.strip().strip('"')))
        return sorted(paths, key=lambda item: item.as_posix())

    def is_clean(self) -> bool:
        return not self.working_tree_changes()

    def head(self) -> str | None:
        result = self.git("rev-parse", "--verify", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def commit_messages(self, limit: int | None = None) -> List[str]:
        """Return commit subjects, newest first."""

        if self.head() is None:
            return []
        args: List[str] = ["log", "--format=%s"]
        if limit is not None:
            args.append(f"-{limit}")
        result = self.git(*args)
        return [line for line in result.stdout.splitlines() if line]

    def commit_all(self, message: str, *, allow_empty: bool = False) -> str | None:
        """Add all changes to the index and create a commit.

        Returns the new commit SHA when a commit was created.  Returns ``None`` when
        there were no changes to commit (and ``allow_empty`` is ``False``).
        """

        self.git("add", "--all")

        commit_args: List[str] = ["commit", "-m", message]
        if allow_empty:
            commit_args.append("--allow-empty")

        commit = self.git(*commit_args, check=False)
        if commit.returncode != 0:
            output = f"{commit.stdout}\n{commit.stderr}".strip()
            if "nothing to commit" in output.lower() or "nothing added to commit" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")

        return self.head()


__all__ = ["GitError", "GitRepository"]
