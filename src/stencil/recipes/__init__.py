"""Built-in step sequences."""

from .rails import RailsOptions, app_name_from, build_rails_steps

__all__ = ["RailsOptions", "app_name_from", "build_rails_steps"]
