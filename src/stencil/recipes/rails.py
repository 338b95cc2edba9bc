"""Bootstrap sequence for a freshly generated Rails application.

The steps expect the tree produced by ``rails new APP --database=postgresql
--skip-test`` and leave behind one commit per step:

* ``add-gems``: devise, pg and sidekiq in the ``Gemfile`` (plus ``bundle install``)
* ``configure-application``: scaffolding generators and ``Rack::Deflater``
* ``configure-database``: PostgreSQL ``config/database.yml`` driven by ``ENV``
* ``configure-sidekiq``: queue adapters, the ``/sidekiq`` mount and initializer
* ``configure-docker``: container files (only when requested)
* ``configure-devise``: devise generators and user system specs
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..anchors import Anchor
from ..operations import Append, CreateOrOverwrite, Insert, Operation, Position, Remove, Replace, ToolCall
from ..runner import Step
from ..templates import TemplateSource

TEMPLATE_ROOT = Path(__file__).resolve().parent / "templates" / "rails"

GEMS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("devise", ("~> 4.9", ">= 4.9.2")),
    ("pg", ("~> 1.1",)),
    ("sidekiq", ("~> 7.0", ">= 7.0.9")),
)

SYSTEM_TESTS_BLOCK = (
    "    # Don't generate system test files.\n"
    "    config.generators.system_tests = nil\n"
)

GENERATORS_BLOCK = """\
    # for scaffolding
    config.generators do |g|
      g.skip_routes true
      g.helper false
      g.assets false
      g.test_framework :rspec, fixture: false
      g.helper_specs false
      g.controller_specs false
      g.system_tests false
      g.view_specs false
    end

    # GZip all responses
    # TODO: remove if using nginx in deployment
    config.middleware.use Rack::Deflater
"""

SIDEKIQ_ADAPTER = """
    # set application queue adapter to sidekiq
    config.active_job.queue_adapter = :sidekiq
"""

SIDEKIQ_ROUTES = """\
  authenticate :user, ->(u) { u.admin? } do
    mount Sidekiq::Web => '/sidekiq'
  end

"""

ROUTES_DRAW = "Rails.application.routes.draw do"
CONFIGURE_BLOCK = "Rails.application.configure do"

USER_SYSTEM_SPECS = (
    "spec/system/users/logins_spec.rb",
    "spec/system/users/registrations_spec.rb",
)


@dataclass(frozen=True, slots=True)
class RailsOptions:
    """Switches for :func:`build_rails_steps`."""

    app_name: str
    run_tools: bool = True
    docker: bool = False
    devise: bool = True
    ruby_version: str = "3.3.0"


def app_name_from(root: Path | str) -> str:
    """Derive the Rails application name from the project directory."""
    name = re.sub(r"[^0-9A-Za-z]+", "_", Path(root).resolve().name).strip("_").lower()
    if not name:
        return "app"
    if name[0].isdigit():
        return f"app_{name}"
    return name


def gem_line(name: str, *requirements: str) -> str:
    """Format a ``Gemfile`` entry the way ``rails app:template`` writes it."""
    parts = [f'"{name}"', *(f'"{requirement}"' for requirement in requirements)]
    return f"gem {', '.join(parts)}\n"


def environment_line(line: str, *, indent: int = 2) -> str:
    return f"{' ' * indent}{line}\n"


def template_context(options: RailsOptions) -> Dict[str, Any]:
    return {
        "app_name": options.app_name,
        "app_name_upper": options.app_name.upper(),
        "ruby_version": options.ruby_version,
    }


def _rails_tool(*args: str) -> ToolCall:
    return ToolCall(command="bin/rails", args=tuple(args))


def add_gems_step(options: RailsOptions) -> Step:
    operations: List[Operation] = [Append("Gemfile", gem_line(name, *requirements)) for name, requirements in GEMS]
    if options.run_tools:
        operations.append(ToolCall(command="bundle", args=("install",)))
    return Step("add-gems", tuple(operations), message="Add devise, pg and sidekiq gems")


def configure_application_step() -> Step:
    return Step(
        "configure-application",
        (Replace("config/application.rb", Anchor.literal(SYSTEM_TESTS_BLOCK), GENERATORS_BLOCK),),
        message="Configure application settings",
    )


def configure_database_step(templates: TemplateSource, context: Dict[str, Any]) -> Step:
    content = templates.render("config/database.yml.tmpl", context)
    return Step(
        "configure-database",
        (
            Remove("config/database.yml"),
            CreateOrOverwrite("config/database.yml", content),
        ),
        message="Configure database",
    )


def configure_sidekiq_step(templates: TemplateSource, context: Dict[str, Any]) -> Step:
    return Step(
        "configure-sidekiq",
        (
            Insert(
                "config/environments/test.rb",
                Anchor.line(CONFIGURE_BLOCK),
                environment_line("config.active_job.queue_adapter = :test"),
            ),
            Insert(
                "config/application.rb",
                Anchor.regex(r"^  end\n"),
                SIDEKIQ_ADAPTER,
                position=Position.BEFORE,
            ),
            Insert(
                "config/routes.rb",
                Anchor.literal(ROUTES_DRAW),
                "require 'sidekiq/web'\n\n",
                position=Position.BEFORE,
            ),
            Insert("config/routes.rb", Anchor.literal(f"{ROUTES_DRAW}\n"), SIDEKIQ_ROUTES),
            CreateOrOverwrite(
                "config/initializers/sidekiq.rb",
                templates.render("config/initializers/sidekiq.rb.tmpl", context),
            ),
        ),
        message="Configure sidekiq",
    )


def configure_docker_step(templates: TemplateSource, context: Dict[str, Any]) -> Step:
    # rails new ships its own container files; these replace them.
    return Step(
        "configure-docker",
        (
            CreateOrOverwrite(
                "bin/docker-entrypoint",
                templates.read("docker/docker-entrypoint"),
                force=True,
                executable=True,
            ),
            CreateOrOverwrite("Dockerfile", templates.render("docker/Dockerfile.tmpl", context), force=True),
            CreateOrOverwrite(
                "docker-compose.yml",
                templates.render("docker/docker-compose.yml.tmpl", context),
                force=True,
            ),
        ),
        message="Configure docker",
    )


def configure_devise_step(options: RailsOptions, templates: TemplateSource) -> Step:
    operations: List[Operation] = []
    if options.run_tools:
        operations.append(_rails_tool("generate", "devise:install"))
        operations.append(_rails_tool("generate", "devise", "User"))
    operations.append(
        Insert(
            "config/environments/development.rb",
            Anchor.line(CONFIGURE_BLOCK),
            environment_line('config.action_mailer.default_url_options = { host: "localhost", port: 3000 }'),
        )
    )
    operations.extend(CreateOrOverwrite(name, templates.read(name)) for name in USER_SYSTEM_SPECS)
    return Step("configure-devise", tuple(operations), message="Configure devise")


def build_rails_steps(options: RailsOptions, templates: TemplateSource | None = None) -> List[Step]:
    """Return the bootstrap steps in the order they must run."""
    source = templates or TemplateSource(TEMPLATE_ROOT)
    context = template_context(options)
    steps: List[Step] = [
        add_gems_step(options),
        configure_application_step(),
        configure_database_step(source, context),
        configure_sidekiq_step(source, context),
    ]
    if options.docker:
        steps.append(configure_docker_step(source, context))
    if options.devise:
        steps.append(configure_devise_step(options, source))
    return steps


__all__ = [
    "GEMS",
    "RailsOptions",
    "TEMPLATE_ROOT",
    "app_name_from",
    "build_rails_steps",
    "gem_line",
]
