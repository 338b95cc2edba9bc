from __future__ import annotations

import subprocess
import sys
import textwrap
from pathlib import Path
from typing import Mapping

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


RAILS_APP_FILES: Mapping[str, str] = {
    "Gemfile": """
        source "https://rubygems.org"

        ruby "3.3.0"

        # Bundle edge Rails instead: gem "rails", github: "rails/rails", branch: "main"
        gem "rails", "~> 7.1.3"
    """,
    "config/application.rb": """
        require_relative "boot"

        require "rails/all"

        # Require the gems listed in Gemfile, including any gems
        # you've limited to :test, :development, or :production.
        Bundler.require(*Rails.groups)

        module Demo
          class Application < Rails::Application
            # Initialize configuration defaults for originally generated Rails version.
            config.load_defaults 7.1

            # config.time_zone = "Central Time (US & Canada)"
            # config.eager_load_paths << Rails.root.join("extras")

            # Don't generate system test files.
            config.generators.system_tests = nil
          end
        end
    """,
    "config/database.yml": """
        default: &default
          adapter: postgresql
          encoding: unicode
          pool: <%= ENV.fetch("RAILS_MAX_THREADS") { 5 } %>

        development:
          <<: *default
          database: demo_development
    """,
    "config/environments/test.rb": """
        require "active_support/core_ext/integer/time"

        Rails.application.configure do
          # Settings specified here will take precedence over those in config/application.rb.

          config.enable_reloading = false
        end
    """,
    "config/environments/development.rb": """
        require "active_support/core_ext/integer/time"

        Rails.application.configure do
          config.enable_reloading = true
        end
    """,
    "config/routes.rb": """
        Rails.application.routes.draw do
          # Defines the root path route ("/")
          # root "posts#index"
        end
    """,
}


def write_files(root: Path, files: Mapping[str, str]) -> None:
    """Write dedented ``files`` below ``root``."""

    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")


def tree_contents(root: Path) -> dict[str, str]:
    """Return every file under ``root`` (VCS metadata excluded) keyed by relative path."""

    contents: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if relative.parts[0] in {".git", ".stencil"} or not path.is_file():
            continue
        contents[relative.as_posix()] = path.read_text(encoding="utf-8")
    return contents


@pytest.fixture()
def rails_app(tmp_path: Path) -> Path:
    """Create the part of a ``rails new`` tree the bootstrap steps edit."""

    app_root = tmp_path / "demo"
    app_root.mkdir()
    write_files(app_root, RAILS_APP_FILES)
    return app_root


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Create an empty git repository with a local identity."""

    repo_root = tmp_path / "repo"
    repo_root.mkdir()

    def run_git(*cmd: str) -> None:
        subprocess.run(
            ["git", *cmd],
            cwd=repo_root,
            check=True,
            capture_output=True,
            text=True,
        )

    run_git("init")
    run_git("config", "user.email", "stencil@example.com")
    run_git("config", "user.name", "Stencil")
    return repo_root
