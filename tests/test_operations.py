from __future__ import annotations

from pathlib import Path

import pytest

from stencil.anchors import Anchor, locate
from stencil.errors import AlreadyExistsError, AmbiguousError, NotFoundError
from stencil.operations import (
    Append,
    CreateOrOverwrite,
    Insert,
    OperationContext,
    Position,
    Remove,
    Replace,
    ToolCall,
    apply_operation,
)
from stencil.store import FileStore


def _context(root: Path, **kwargs) -> OperationContext:
    return OperationContext(store=FileStore(root), **kwargs)


def test_replace_changes_only_the_matched_line(tmp_path: Path) -> None:
    config = tmp_path / "config" / "app.cfg"
    config.parent.mkdir()
    config.write_text("A = 1\nX = nil\nB = 2\n", encoding="utf-8")

    result = apply_operation(Replace("config/app.cfg", Anchor.literal("X = nil"), "X = 5"), _context(tmp_path))

    assert result.changed
    assert config.read_text(encoding="utf-8") == "A = 1\nX = 5\nB = 2\n"


def test_replace_replay_reports_replacement_already_applied(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("X = nil\n", encoding="utf-8")
    context = _context(tmp_path)
    operation = Replace("app.cfg", Anchor.literal("X = nil"), "X = 5")

    apply_operation(operation, context)
    result = apply_operation(operation, context)

    assert not result.changed
    assert result.detail == "replacement already applied"
    assert (tmp_path / "app.cfg").read_text(encoding="utf-8") == "X = 5\n"


def test_replace_with_missing_anchor_raises_not_found(tmp_path: Path) -> None:
    (tmp_path / "app.cfg").write_text("Y = 1\n", encoding="utf-8")

    with pytest.raises(NotFoundError):
        apply_operation(Replace("app.cfg", Anchor.literal("X = nil"), "X = 5"), _context(tmp_path))

    assert (tmp_path / "app.cfg").read_text(encoding="utf-8") == "Y = 1\n"


def test_insert_after_anchor(tmp_path: Path) -> None:
    (tmp_path / "file.txt").write_text("START\n", encoding="utf-8")

    result = apply_operation(Insert("file.txt", Anchor.literal("START\n"), "added\n"), _context(tmp_path))

    assert result.changed
    assert (tmp_path / "file.txt").read_text(encoding="utf-8") == "START\nadded\n"


def test_insert_before_anchor_preserves_anchor(tmp_path: Path) -> None:
    (tmp_path / "routes.rb").write_text("Rails.application.routes.draw do\nend\n", encoding="utf-8")
    operation = Insert(
        "routes.rb",
        Anchor.literal("Rails.application.routes.draw do"),
        "require 'sidekiq/web'\n\n",
        position=Position.BEFORE,
    )

    apply_operation(operation, _context(tmp_path))

    assert (tmp_path / "routes.rb").read_text(encoding="utf-8") == (
        "require 'sidekiq/web'\n\nRails.application.routes.draw do\nend\n"
    )


def test_insert_is_a_no_op_when_text_already_sits_at_anchor(tmp_path: Path) -> None:
    (tmp_path / "file.txt").write_text("START\n", encoding="utf-8")
    context = _context(tmp_path)
    operation = Insert("file.txt", Anchor.literal("START\n"), "added\n")

    apply_operation(operation, context)
    result = apply_operation(operation, context)

    assert not result.changed
    assert (tmp_path / "file.txt").read_text(encoding="utf-8") == "START\nadded\n"


def test_insert_reproducing_its_anchor_makes_the_anchor_ambiguous(tmp_path: Path) -> None:
    (tmp_path / "file.txt").write_text("START\n", encoding="utf-8")
    context = _context(tmp_path)
    operation = Insert("file.txt", Anchor.literal("START\n"), "START\n")

    apply_operation(operation, context)
    content = (tmp_path / "file.txt").read_text(encoding="utf-8")

    assert content == "START\nSTART\n"
    with pytest.raises(AmbiguousError):
        locate(content, operation.anchor)
    with pytest.raises(AmbiguousError):
        apply_operation(operation, context)


def test_insert_after_marker_line_without_trailing_newline(tmp_path: Path) -> None:
    (tmp_path / "file.txt").write_text("head\nMARKER", encoding="utf-8")
    context = _context(tmp_path)
    operation = Insert("file.txt", Anchor.line("MARKER"), "tail\n")

    apply_operation(operation, context)
    replay = apply_operation(operation, context)

    assert (tmp_path / "file.txt").read_text(encoding="utf-8") == "head\nMARKER\ntail\n"
    assert not replay.changed


def test_insert_into_missing_file_raises_not_found(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        apply_operation(Insert("absent.rb", Anchor.literal("x"), "y"), _context(tmp_path))


def test_create_with_identical_content_is_idempotent(tmp_path: Path) -> None:
    context = _context(tmp_path)
    operation = CreateOrOverwrite("config/initializers/sidekiq.rb", "Sidekiq.configure_server {}\n")

    first = apply_operation(operation, context)
    second = apply_operation(operation, context)

    assert first.changed
    assert not second.changed
    assert second.detail == "identical"


def test_create_refuses_different_content_without_force(tmp_path: Path) -> None:
    (tmp_path / "Dockerfile").write_text("FROM ruby:3.2\n", encoding="utf-8")
    context = _context(tmp_path)

    with pytest.raises(AlreadyExistsError):
        apply_operation(CreateOrOverwrite("Dockerfile", "FROM ruby:3.3\n"), context)

    result = apply_operation(CreateOrOverwrite("Dockerfile", "FROM ruby:3.3\n", force=True), context)

    assert result.changed
    assert (tmp_path / "Dockerfile").read_text(encoding="utf-8") == "FROM ruby:3.3\n"


def test_create_executable_fixes_mode_of_identical_file(tmp_path: Path) -> None:
    (tmp_path / "bin").mkdir()
    (tmp_path / "bin" / "docker-entrypoint").write_text("#!/bin/bash\n", encoding="utf-8")
    context = _context(tmp_path)

    result = apply_operation(CreateOrOverwrite("bin/docker-entrypoint", "#!/bin/bash\n", executable=True), context)

    assert result.changed
    assert context.store.is_executable("bin/docker-entrypoint")


def test_remove_is_idempotent(tmp_path: Path) -> None:
    (tmp_path / "database.yml").write_text("---\n", encoding="utf-8")
    context = _context(tmp_path)

    assert apply_operation(Remove("database.yml"), context).changed
    result = apply_operation(Remove("database.yml"), context)

    assert not result.changed
    assert result.detail == "already absent"


def test_append_once_skips_present_text(tmp_path: Path) -> None:
    (tmp_path / "Gemfile").write_text('source "https://rubygems.org"\n', encoding="utf-8")
    context = _context(tmp_path)
    operation = Append("Gemfile", 'gem "pg", "~> 1.1"\n')

    assert apply_operation(operation, context).changed
    assert not apply_operation(operation, context).changed
    assert (tmp_path / "Gemfile").read_text(encoding="utf-8") == (
        'source "https://rubygems.org"\ngem "pg", "~> 1.1"\n'
    )


def test_append_without_once_repeats(tmp_path: Path) -> None:
    context = _context(tmp_path)
    operation = Append("log.txt", "line\n", once=False)

    apply_operation(operation, context)
    apply_operation(operation, context)

    assert (tmp_path / "log.txt").read_text(encoding="utf-8") == "line\nline\n"


def test_append_adds_missing_trailing_newline_first(tmp_path: Path) -> None:
    (tmp_path / "Gemfile").write_text('gem "rails", "~> 7.1.3"', encoding="utf-8")
    context = _context(tmp_path)
    operation = Append("Gemfile", 'gem "pg", "~> 1.1"\n')

    assert apply_operation(operation, context).changed
    assert not apply_operation(operation, context).changed
    assert (tmp_path / "Gemfile").read_text(encoding="utf-8") == 'gem "rails", "~> 7.1.3"\ngem "pg", "~> 1.1"\n'


def test_tool_call_is_skipped_when_tools_are_disabled(tmp_path: Path) -> None:
    result = apply_operation(ToolCall("bundle", ("install",)), _context(tmp_path, run_tools=False))

    assert not result.changed
    assert result.detail == "skipped"
    assert result.description == "run bundle install"


def test_tool_call_runs_in_project_root(tmp_path: Path) -> None:
    result = apply_operation(ToolCall("git", ("init", "--quiet")), _context(tmp_path))

    assert result.changed
    assert (tmp_path / ".git").is_dir()
