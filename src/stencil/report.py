"""Persist run reports as JSON artifacts and load them back for display."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping

from .errors import RecipeError
from .runner import RunReport, format_report
from .utils import slugify

__all__ = ["RunReportEntry", "load_run_report", "write_run_report"]


@dataclass(slots=True)
class RunReportEntry:
    """In-memory representation of a stored run report."""

    path: Path
    payload: Mapping[str, Any]

    @property
    def outcome(self) -> str:
        return str(self.payload.get("outcome") or "unknown")

    @property
    def failed_step(self) -> str | None:
        candidate = self.payload.get("failed_step")
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
        return None

    @property
    def exit_code(self) -> int:
        value = self.payload.get("exit_code")
        return value if isinstance(value, int) else 1

    @property
    def step_names(self) -> List[str]:
        steps = self.payload.get("steps")
        if not isinstance(steps, list):
            return []
        return [str(step.get("name")) for step in steps if isinstance(step, Mapping)]

    def format_summary(self) -> str:
        return format_report(self.payload)


def write_run_report(report: RunReport, logs_dir: Path, *, label: str | None = None) -> Path:
    """Write ``report`` under ``logs_dir`` and return the artifact path."""
    logs_dir.mkdir(parents=True, exist_ok=True)
    stamp_source = report.finished_at or report.started_at
    stamp = stamp_source.strftime("%Y%m%dT%H%M%S%f") if stamp_source else "unknown"
    outcome = "ok" if report.succeeded else "failed"
    name = f"run-{stamp}-{slugify(label, fallback='steps', max_length=60)}-{outcome}.json"
    artifact_path = logs_dir / name
    artifact_path.write_text(json.dumps(report.to_dict(), indent=2, sort_keys=False) + "\n", encoding="utf-8")
    return artifact_path


def load_run_report(path: Path | str) -> RunReportEntry:
    """Load a stored run report from disk."""
    report_path = Path(path).resolve()
    try:
        with report_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as error:
        raise RecipeError(f"Run report not found: {report_path}") from error
    except json.JSONDecodeError as error:
        raise RecipeError(f"Run report is not valid JSON: {report_path}: {error}") from error
    if not isinstance(payload, dict):
        raise RecipeError(f"Run report must be a JSON object: {report_path}")
    return RunReportEntry(path=report_path, payload=payload)
