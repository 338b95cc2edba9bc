"""File store rooted at a project directory.

Every mutation performed by the engine goes through :class:`FileStore`. Writes
are atomic (temporary file in the target directory followed by
``os.replace``), so an interrupted write leaves either the old or the new
content on disk, never a truncated file.

:class:`OverlayFileStore` honours the same contract but keeps writes in memory;
it backs dry runs and renders the pending edits as a unified diff.
"""

from __future__ import annotations

import difflib
import hashlib
import os
import stat
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Tuple

from .errors import AlreadyExistsError, IOFailureError, NotFoundError

__all__ = [
    "FileChange",
    "FileImage",
    "FileStore",
    "OverlayFileStore",
    "StoreSnapshot",
    "WriteMode",
]

_EXCLUDED_DIRS = frozenset({".git", ".hg", ".svn", ".stencil"})
_DEFAULT_FILE_MODE = 0o644
_EXECUTABLE_FILE_MODE = 0o755


class WriteMode(str, Enum):
    """How :meth:`FileStore.write` treats an existing file."""

    CREATE_ONLY = "create_only"
    OVERWRITE = "overwrite"
    APPEND = "append"


@dataclass(frozen=True, slots=True)
class FileImage:
    """Content and mode of a file captured before a step touched it."""

    path: Path
    content: str | None
    executable: bool = False

    @property
    def existed(self) -> bool:
        return self.content is not None


@dataclass(frozen=True, slots=True)
class StoreSnapshot:
    """Digest of every file under the project root at a point in time."""

    root: Path
    digests: Mapping[str, str]

    def paths(self) -> Tuple[str, ...]:
        return tuple(sorted(self.digests))

    def same_tree(self, other: "StoreSnapshot") -> bool:
        """Return ``True`` when both snapshots hold identical files."""
        return dict(self.digests) == dict(other.digests)

    def changed_paths(self, other: "StoreSnapshot") -> List[str]:
        """Return paths whose content differs between the two snapshots."""
        keys = set(self.digests) | set(other.digests)
        return sorted(key for key in keys if self.digests.get(key) != other.digests.get(key))


@dataclass(frozen=True, slots=True)
class FileChange:
    """Pending change recorded by :class:`OverlayFileStore`."""

    path: Path
    before: str | None
    after: str | None

    @property
    def status(self) -> str:
        if self.before is None:
            return "added"
        if self.after is None:
            return "deleted"
        return "modified"


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FileStore:
    """Read and write text files relative to a project root."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise NotFoundError(
                f"Project root does not exist: {self.root}",
                details={"path": self.root.as_posix()},
            )

    # ------------------------------------------------------------ path helpers
    def resolve(self, path: Path | str) -> Path:
        """Return the absolute path for ``path``, refusing escapes from the root."""
        candidate = Path(path)
        resolved = candidate.resolve() if candidate.is_absolute() else (self.root / candidate).resolve()
        try:
            relative = resolved.relative_to(self.root)
        except ValueError as error:
            raise IOFailureError(
                f"Refusing to touch a path outside the project root: {path}",
                details={"path": str(path), "root": self.root.as_posix()},
            ) from error
        if not relative.parts:
            raise IOFailureError("Path must name a file inside the project root.", details={"path": str(path)})
        return resolved

    def relative(self, path: Path | str) -> Path:
        return self.resolve(path).relative_to(self.root)

    # -------------------------------------------------------------- primitives
    def _load(self, target: Path) -> str | None:
        if not target.exists():
            return None
        if not target.is_file():
            raise IOFailureError(f"Not a regular file: {self._label(target)}", details={"path": self._label(target)})
        try:
            return target.read_bytes().decode("utf-8")
        except UnicodeDecodeError as error:
            raise IOFailureError(
                f"File is not valid UTF-8: {self._label(target)}",
                details={"path": self._label(target)},
            ) from error
        except OSError as error:
            raise IOFailureError(f"Unable to read {self._label(target)}: {error}") from error

    def _is_executable(self, target: Path) -> bool:
        try:
            return bool(target.stat().st_mode & stat.S_IXUSR)
        except FileNotFoundError:
            return False

    def _store(self, target: Path, content: str, executable: bool | None) -> None:
        if executable is None:
            if target.exists():
                file_mode = stat.S_IMODE(target.stat().st_mode)
            else:
                file_mode = _DEFAULT_FILE_MODE
        else:
            file_mode = _EXECUTABLE_FILE_MODE if executable else _DEFAULT_FILE_MODE

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            handle_fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        except OSError as error:
            raise IOFailureError(f"Unable to prepare a write to {self._label(target)}: {error}") from error
        temp_path = Path(temp_name)
        try:
            with os.fdopen(handle_fd, "wb") as handle:
                handle.write(content.encode("utf-8"))
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(temp_path, file_mode)
            os.replace(temp_path, target)
        except BaseException as error:
            temp_path.unlink(missing_ok=True)
            if isinstance(error, OSError):
                raise IOFailureError(f"Unable to write {self._label(target)}: {error}") from error
            raise

    def _unlink(self, target: Path) -> None:
        if target.is_dir() and not target.is_symlink():
            raise IOFailureError(f"Refusing to delete a directory: {self._label(target)}")
        try:
            target.unlink(missing_ok=True)
        except OSError as error:
            raise IOFailureError(f"Unable to delete {self._label(target)}: {error}") from error

    def _label(self, target: Path) -> str:
        try:
            return target.relative_to(self.root).as_posix()
        except ValueError:
            return target.as_posix()

    # ----------------------------------------------------------------- public
    def exists(self, path: Path | str) -> bool:
        return self._load(self.resolve(path)) is not None

    def read(self, path: Path | str) -> str:
        target = self.resolve(path)
        content = self._load(target)
        if content is None:
            raise NotFoundError(f"File not found: {self._label(target)}", details={"path": self._label(target)})
        return content

    def read_optional(self, path: Path | str) -> str | None:
        return self._load(self.resolve(path))

    def is_executable(self, path: Path | str) -> bool:
        return self._is_executable(self.resolve(path))

    def write(
        self,
        path: Path | str,
        content: str,
        mode: WriteMode | str = WriteMode.OVERWRITE,
        *,
        executable: bool | None = None,
    ) -> None:
        """Write ``content`` to ``path`` according to ``mode``."""
        write_mode = WriteMode(mode)
        target = self.resolve(path)
        current = self._load(target)
        if write_mode is WriteMode.CREATE_ONLY and current is not None:
            raise AlreadyExistsError(
                f"File already exists: {self._label(target)}",
                details={"path": self._label(target)},
            )
        if write_mode is WriteMode.APPEND and current is not None:
            content = current + content
        self._store(target, content, executable)

    def delete(self, path: Path | str) -> bool:
        """Delete ``path``; returns ``False`` when it was already absent."""
        target = self.resolve(path)
        if self._load(target) is None:
            return False
        self._unlink(target)
        return True

    def capture(self, path: Path | str) -> FileImage:
        target = self.resolve(path)
        content = self._load(target)
        return FileImage(
            path=target.relative_to(self.root),
            content=content,
            executable=self._is_executable(target) if content is not None else False,
        )

    def restore(self, image: FileImage) -> None:
        """Put ``image`` back in place, deleting the file if it did not exist."""
        target = self.resolve(image.path)
        if image.content is None:
            if self._load(target) is not None:
                self._unlink(target)
            return
        self._store(target, image.content, image.executable)

    def iter_files(self) -> Iterator[Path]:
        """Yield every regular file under the root, skipping VCS metadata."""
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(name for name in dirnames if name not in _EXCLUDED_DIRS)
            base = Path(dirpath)
            for name in sorted(filenames):
                yield (base / name).relative_to(self.root)

    def snapshot(self) -> StoreSnapshot:
        digests: Dict[str, str] = {}
        for relative in self.iter_files():
            try:
                digests[relative.as_posix()] = _digest((self.root / relative).read_bytes())
            except OSError as error:
                raise IOFailureError(f"Unable to read {relative.as_posix()}: {error}") from error
        return StoreSnapshot(root=self.root, digests=digests)


@dataclass(slots=True)
class _PendingFile:
    content: str | None
    executable: bool


class OverlayFileStore(FileStore):
    """File store that records writes in memory instead of touching disk."""

    def __init__(self, root: Path | str) -> None:
        super().__init__(root)
        self._pending: Dict[Path, _PendingFile] = {}

    def _load(self, target: Path) -> str | None:
        pending = self._pending.get(target)
        if pending is not None:
            return pending.content
        return super()._load(target)

    def _is_executable(self, target: Path) -> bool:
        pending = self._pending.get(target)
        if pending is not None:
            return pending.executable
        return super()._is_executable(target)

    def _store(self, target: Path, content: str, executable: bool | None) -> None:
        if executable is None:
            executable = self._is_executable(target)
        self._pending[target] = _PendingFile(content=content, executable=executable)

    def _unlink(self, target: Path) -> None:
        if target.is_dir() and not target.is_symlink():
            raise IOFailureError(f"Refusing to delete a directory: {self._label(target)}")
        self._pending[target] = _PendingFile(content=None, executable=False)

    def changes(self) -> List[FileChange]:
        """Return the pending edits that differ from the on-disk state."""
        results: List[FileChange] = []
        for target in sorted(self._pending):
            pending = self._pending[target]
            before = FileStore._load(self, target)
            if before == pending.content and FileStore._is_executable(self, target) == pending.executable:
                continue
            results.append(FileChange(path=target.relative_to(self.root), before=before, after=pending.content))
        return results

    def diff(self) -> str:
        """Render pending edits as a unified diff."""
        chunks: List[str] = []
        for change in self.changes():
            label = change.path.as_posix()
            before_lines = (change.before or "").splitlines(keepends=True)
            after_lines = (change.after or "").splitlines(keepends=True)
            lines = difflib.unified_diff(
                before_lines,
                after_lines,
                fromfile="/dev/null" if change.before is None else f"a/{label}",
                tofile="/dev/null" if change.after is None else f"b/{label}",
            )
            for line in lines:
                chunks.append(line if line.endswith("\n") else line + "\n")
        return "".join(chunks)

    def snapshot(self) -> StoreSnapshot:
        base = super().snapshot()
        digests = dict(base.digests)
        for target, pending in self._pending.items():
            key = target.relative_to(self.root).as_posix()
            if pending.content is None:
                digests.pop(key, None)
            else:
                digests[key] = _digest(pending.content.encode("utf-8"))
        return StoreSnapshot(root=self.root, digests=digests)
