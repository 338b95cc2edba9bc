"""Template source directory and placeholder rendering.

Templates are plain text files. :meth:`TemplateSource.read` returns a file
verbatim (a copy), :meth:`TemplateSource.render` substitutes ``{name}``
placeholders with :meth:`str.format_map`; literal braces in rendered templates
are written doubled (``{{`` / ``}}``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from .errors import NotFoundError, RecipeError


def render_template(text: str, context: Mapping[str, Any], *, name: str = "<inline>") -> str:
    """Substitute ``{placeholder}`` fields in ``text`` from ``context``."""
    try:
        return text.format_map(dict(context))
    except KeyError as error:
        raise RecipeError(
            f"Template {name} references unknown placeholder {error.args[0]!r}",
            details={"template": name, "placeholder": error.args[0]},
        ) from error
    except (IndexError, ValueError) as error:
        raise RecipeError(f"Template {name} is malformed: {error}", details={"template": name}) from error


class TemplateSource:
    """Directory of template files addressed by relative name."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def path_for(self, name: str) -> Path:
        candidate = (self.root / name).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as error:
            raise RecipeError(f"Template outside template directory: {name}") from error
        if not candidate.is_file():
            raise NotFoundError(f"Template not found: {name}", details={"template": name, "root": self.root.as_posix()})
        return candidate

    def read(self, name: str) -> str:
        return self.path_for(name).read_text(encoding="utf-8")

    def render(self, name: str, context: Mapping[str, Any]) -> str:
        return render_template(self.read(name), context, name=name)


__all__ = ["TemplateSource", "render_template"]
