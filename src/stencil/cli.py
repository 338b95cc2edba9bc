"""CLI commands for running Stencil recipes against a project tree."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import typer

from .checkpoint import Checkpointer, GitCheckpointer
from .config import DEFAULT_CONFIG_NAME, StencilConfig, copy_config_template, load_config, write_config
from .errors import StencilError
from .recipe import load_recipe
from .recipes.rails import RailsOptions, app_name_from, build_rails_steps
from .report import load_run_report, write_run_report
from .runner import FailurePolicy, RunReport, Step, StepRunner
from .store import FileStore, OverlayFileStore

APP_HELP = "Apply ordered, idempotent edits to a project tree."
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
INTERRUPTED_EXIT_CODE = 130

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Configure logging before any command runs."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level: {log_level}", param_hint="--log-level")
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _load_settings(config: Optional[str]) -> Tuple[StencilConfig, Path]:
    """Return the validated config and the directory relative paths resolve against."""
    if config is None:
        default_path = Path(DEFAULT_CONFIG_NAME)
        config_path = default_path if default_path.exists() else None
    else:
        config_path = Path(config)
    try:
        settings = load_config(config_path)
    except StencilError as error:
        typer.echo(str(error))
        for entry in error.details.get("errors", []):
            typer.echo(f"  - {entry}")
        raise typer.Exit(code=1) from error
    base_dir = config_path.resolve().parent if config_path is not None else Path.cwd()
    return settings, base_dir


def _resolve_root(settings: StencilConfig, base_dir: Path, root: Optional[str]) -> Path:
    if root:
        return Path(root).resolve()
    return settings.project_root(base_dir)


def _parse_assignments(values: Sequence[str] | None) -> Dict[str, Any]:
    parsed: Dict[str, Any] = {}
    for item in values or []:
        key, separator, value = item.partition("=")
        if not separator or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--set")
        parsed[key.strip()] = value
    return parsed


def _build_checkpointer(settings: StencilConfig, root: Path, enabled: bool) -> Checkpointer | None:
    if not enabled or not settings.checkpoint.enabled:
        return None
    return GitCheckpointer(
        root,
        author_name=settings.checkpoint.author_name,
        author_email=settings.checkpoint.author_email,
        initial_message=settings.checkpoint.initial_message,
    )


def _render_report(report: RunReport, store: FileStore, settings: StencilConfig, label: str) -> None:
    typer.echo(report.format_summary())
    if isinstance(store, OverlayFileStore):
        diff = store.diff()
        typer.echo("Dry run; pending changes:" if diff else "Dry run; no changes.")
        if diff:
            typer.echo(diff, nl=False)
        return
    try:
        artifact = write_run_report(report, settings.logs_dir(report.root), label=label)
    except OSError as error:
        typer.echo(f"Warning: failed to write run report: {error}")
        return
    typer.echo(f"Report: {artifact.as_posix()}")


def _execute(
    steps: Sequence[Step],
    *,
    root: Path,
    settings: StencilConfig,
    label: str,
    dry_run: bool,
    failure_policy: Optional[FailurePolicy],
    commit: bool,
    run_tools: bool,
) -> None:
    """Run ``steps`` against ``root`` and exit with the run's status."""
    try:
        store = OverlayFileStore(root) if dry_run else FileStore(root)
    except StencilError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error

    runner = StepRunner(
        store,
        checkpointer=_build_checkpointer(settings, root, commit),
        failure_policy=failure_policy or settings.run.failure_policy,
        tool_timeout=settings.run.tool_timeout,
        run_tools=run_tools,
    )
    try:
        report = runner.run(steps)
    except KeyboardInterrupt:
        report = runner.build_report(steps)
        _render_report(report, store, settings, label)
        typer.echo("Interrupted; the running step was rolled back.")
        raise typer.Exit(code=INTERRUPTED_EXIT_CODE)
    except StencilError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error

    _render_report(report, store, settings, label)
    if not report.succeeded:
        raise typer.Exit(code=report.exit_code)


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path of the configuration file to create.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; pass --force to overwrite it.")
        raise typer.Exit(code=1)
    write_config(config_path, copy_config_template())
    typer.echo(f"Wrote {config_path.as_posix()}.")


@app.command()
def run(
    recipe: str = typer.Argument(..., help="YAML recipe describing the steps to apply."),
    root: Optional[str] = typer.Option(None, "--root", "-r", help="Project root (defaults to project.root)."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to stencil.yaml."),
    assignments: List[str] = typer.Option(
        None,
        "--set",
        "-s",
        help="Override a recipe context value as KEY=VALUE (repeatable).",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the diff instead of writing files."),
    failure_policy: Optional[FailurePolicy] = typer.Option(
        None,
        "--failure-policy",
        help="Keep or roll back the edits of a failed step.",
    ),
    no_commit: bool = typer.Option(False, "--no-commit", help="Skip the git commit after each step."),
    skip_tools: bool = typer.Option(False, "--skip-tools", help="Do not run external tools."),
) -> None:
    """Apply the steps of a YAML recipe."""
    settings, base_dir = _load_settings(config)
    project_root = _resolve_root(settings, base_dir, root)
    recipe_path = Path(recipe).resolve()
    try:
        steps = load_recipe(recipe_path).build_steps(
            base_dir=recipe_path.parent,
            context=_parse_assignments(assignments),
        )
    except StencilError as error:
        typer.echo(str(error))
        for entry in error.details.get("errors", []):
            typer.echo(f"  - {entry}")
        raise typer.Exit(code=1) from error

    _execute(
        steps,
        root=project_root,
        settings=settings,
        label=recipe_path.stem,
        dry_run=dry_run or settings.run.dry_run,
        failure_policy=failure_policy,
        commit=not no_commit,
        run_tools=not skip_tools,
    )


@app.command()
def rails(
    root: Optional[str] = typer.Option(None, "--root", "-r", help="Rails application root."),
    app_name: Optional[str] = typer.Option(None, "--app-name", help="Application name used in database names."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to stencil.yaml."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the diff instead of writing files."),
    failure_policy: Optional[FailurePolicy] = typer.Option(
        None,
        "--failure-policy",
        help="Keep or roll back the edits of a failed step.",
    ),
    no_commit: bool = typer.Option(False, "--no-commit", help="Skip the git commit after each step."),
    docker: bool = typer.Option(False, "--docker", help="Add Docker files."),
    no_devise: bool = typer.Option(False, "--no-devise", help="Skip devise and the user specs."),
    skip_tools: bool = typer.Option(False, "--skip-tools", help="Do not run bundle or rails generators."),
) -> None:
    """Bootstrap a freshly generated Rails application."""
    settings, base_dir = _load_settings(config)
    project_root = _resolve_root(settings, base_dir, root)
    run_tools = settings.rails.run_tools and not skip_tools
    options = RailsOptions(
        app_name=app_name or settings.project.app_name or app_name_from(project_root),
        run_tools=run_tools,
        docker=settings.rails.docker or docker,
        devise=settings.rails.devise and not no_devise,
    )
    try:
        steps = build_rails_steps(options)
    except StencilError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error

    _execute(
        steps,
        root=project_root,
        settings=settings,
        label="rails",
        dry_run=dry_run or settings.run.dry_run,
        failure_policy=failure_policy,
        commit=not no_commit,
        run_tools=run_tools,
    )


@app.command()
def report(
    path: str = typer.Argument(..., help="Run report JSON written by a previous run."),
) -> None:
    """Print a saved run report."""
    try:
        entry = load_run_report(path)
    except StencilError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    typer.echo(f"Report {entry.path.name}: {entry.outcome}")
    typer.echo(entry.format_summary())


if __name__ == "__main__":
    app()
