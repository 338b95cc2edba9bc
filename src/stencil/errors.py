"""Error taxonomy shared by the file store, anchors, operations and runner."""

from __future__ import annotations

from typing import Any, Mapping


class StencilError(RuntimeError):
    """Base class for failures raised while mutating a project tree."""

    kind = "error"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": str(self)}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class NotFoundError(StencilError):
    """Raised when a file or anchor does not exist."""

    kind = "not_found"


class AmbiguousError(StencilError):
    """Raised when an anchor matches more than one location."""

    kind = "ambiguous"


class AlreadyExistsError(StencilError):
    """Raised when a create would clobber a file with different content."""

    kind = "already_exists"


class ToolTimeoutError(StencilError):
    """Raised when an external tool exceeds its timeout."""

    kind = "tool_timeout"


class ToolFailureError(StencilError):
    """Raised when an external tool exits with a non-zero status."""

    kind = "tool_failure"

    def __init__(
        self,
        message: str,
        *,
        exit_code: int,
        stderr: str = "",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        merged = {"exit_code": exit_code, "stderr": stderr}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.exit_code = exit_code
        self.stderr = stderr


class IOFailureError(StencilError):
    """Raised when the filesystem rejects a read or write."""

    kind = "io_failure"


class RecipeError(StencilError):
    """Raised when a recipe or configuration file cannot be used."""

    kind = "recipe"


__all__ = [
    "AlreadyExistsError",
    "AmbiguousError",
    "IOFailureError",
    "NotFoundError",
    "RecipeError",
    "StencilError",
    "ToolFailureError",
    "ToolTimeoutError",
]
