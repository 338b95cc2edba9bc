"""Synchronous external tool invocation with a timeout."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Sequence

from ..errors import ToolFailureError, ToolTimeoutError

LOGGER = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT = 600.0
_MISSING_EXECUTABLE_EXIT_CODE = 127


@dataclass(slots=True)
class ToolResult:
    """Outcome of an external command."""

    command: tuple[str, ...]
    cwd: Path
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _merge_env(extra: Mapping[str, str] | None) -> Dict[str, str]:
    env: Dict[str, str] = os.environ.copy()
    if extra:
        env.update({str(key): str(value) for key, value in extra.items()})
    return env


def _decode(payload: bytes | str | None) -> str:
    if not payload:
        return ""
    if isinstance(payload, str):
        return payload
    return payload.decode("utf-8", errors="replace")


def _executable_available(command: str, workdir: Path, env: Mapping[str, str] | None) -> bool:
    if os.sep in command or (os.altsep and os.altsep in command):
        candidate = Path(command)
        if not candidate.is_absolute():
            candidate = workdir / candidate
        return candidate.is_file()
    return shutil.which(command, path=_merge_env(env).get("PATH")) is not None


def run_tool(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: Path | str,
    timeout: float | None = DEFAULT_TOOL_TIMEOUT,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> ToolResult:
    """Run ``command`` with ``args`` inside ``cwd`` and capture its output.

    Raises :class:`ToolTimeoutError` when the process outlives ``timeout`` and,
    when ``check`` is set, :class:`ToolFailureError` on a non-zero exit.
    """
    workdir = Path(cwd)
    argv = (command, *[str(arg) for arg in args])
    label = " ".join(argv)

    if not _executable_available(command, workdir, env):
        raise ToolFailureError(
            f"Executable not available: {command}",
            exit_code=_MISSING_EXECUTABLE_EXIT_CODE,
            stderr=f"{command}: command not found",
            details={"command": list(argv), "cwd": workdir.as_posix()},
        )

    LOGGER.debug("Running %s in %s (timeout=%s)", label, workdir, timeout)
    try:
        process = subprocess.run(  # noqa: S603 - argv comes from the recipe author
            list(argv),
            cwd=workdir,
            env=_merge_env(env),
            capture_output=True,
            text=False,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as error:
        raise ToolTimeoutError(
            f"{label} timed out after {timeout} seconds",
            details={
                "command": list(argv),
                "cwd": workdir.as_posix(),
                "timeout": timeout,
                "stdout": _decode(error.stdout),
                "stderr": _decode(error.stderr),
            },
        ) from error
    except OSError as error:
        raise ToolFailureError(
            f"Unable to start {label}: {error}",
            exit_code=_MISSING_EXECUTABLE_EXIT_CODE,
            stderr=str(error),
            details={"command": list(argv), "cwd": workdir.as_posix()},
        ) from error

    result = ToolResult(
        command=argv,
        cwd=workdir,
        exit_code=process.returncode,
        stdout=_decode(process.stdout),
        stderr=_decode(process.stderr),
    )
    if check and not result.ok:
        message = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
        raise ToolFailureError(
            f"{label} failed: {message.splitlines()[-1]}",
            exit_code=result.exit_code,
            stderr=result.stderr,
            details={"command": list(argv), "cwd": workdir.as_posix()},
        )
    return result


__all__ = ["DEFAULT_TOOL_TIMEOUT", "ToolResult", "run_tool"]
