"""YAML recipes describing steps of patch operations.

A recipe looks like::

    context:
      app_name: demo
    templates: templates
    steps:
      - name: configure-routes
        message: Configure routes
        operations:
          - kind: insert
            path: config/routes.rb
            after: "Rails.application.routes.draw do\\n"
            text: "  root 'home#index'\\n"

Operation text comes from exactly one of ``text`` (inline, rendered only when
``render: true``), ``template`` (rendered with the recipe context) or ``copy``
(template file taken verbatim).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .anchors import Anchor, AnchorKind
from .errors import RecipeError
from .operations import Append, CreateOrOverwrite, Insert, Operation, Position, Remove, Replace, ToolCall
from .runner import Step
from .templates import TemplateSource, render_template


class RecipeModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class _TextSource(RecipeModel):
    text: Optional[str] = None
    template: Optional[str] = None
    copy_from: Optional[str] = Field(default=None, alias="copy")
    render: bool = False

    @model_validator(mode="after")
    def check_single_source(self) -> "_TextSource":
        provided = [value for value in (self.text, self.template, self.copy_from) if value is not None]
        if len(provided) != 1:
            raise ValueError("exactly one of 'text', 'template' or 'copy' is required")
        return self

    def resolve_text(self, templates: TemplateSource | None, context: Dict[str, Any]) -> str:
        if self.text is not None:
            return render_template(self.text, context) if self.render else self.text
        if templates is None:
            raise RecipeError("Recipe uses templates but no template directory is configured.")
        if self.template is not None:
            return templates.render(self.template, context)
        return templates.read(self.copy_from or "")


class InsertModel(_TextSource):
    kind: Literal["insert"]
    path: str
    before: Optional[str] = None
    after: Optional[str] = None
    anchor: AnchorKind = AnchorKind.LITERAL
    first_match: bool = False

    @model_validator(mode="after")
    def check_single_anchor(self) -> "InsertModel":
        if (self.before is None) == (self.after is None):
            raise ValueError("insert needs exactly one of 'before' or 'after'")
        return self

    def build(self, templates: TemplateSource | None, context: Dict[str, Any]) -> Operation:
        position = Position.BEFORE if self.before is not None else Position.AFTER
        pattern = self.before if self.before is not None else self.after
        return Insert(
            path=self.path,
            anchor=Anchor(self.anchor, pattern or "", self.first_match),
            text=self.resolve_text(templates, context),
            position=position,
        )


class ReplaceModel(RecipeModel):
    kind: Literal["replace"]
    path: str
    target: str
    replacement: str
    anchor: AnchorKind = AnchorKind.LITERAL
    first_match: bool = False
    render: bool = False

    def build(self, templates: TemplateSource | None, context: Dict[str, Any]) -> Operation:
        replacement = render_template(self.replacement, context) if self.render else self.replacement
        return Replace(
            path=self.path,
            anchor=Anchor(self.anchor, self.target, self.first_match),
            replacement=replacement,
        )


class CreateModel(_TextSource):
    kind: Literal["create"]
    path: str
    force: bool = False
    executable: bool = False

    def build(self, templates: TemplateSource | None, context: Dict[str, Any]) -> Operation:
        return CreateOrOverwrite(
            path=self.path,
            content=self.resolve_text(templates, context),
            force=self.force,
            executable=self.executable,
        )


class RemoveModel(RecipeModel):
    kind: Literal["remove"]
    path: str

    def build(self, templates: TemplateSource | None, context: Dict[str, Any]) -> Operation:
        return Remove(path=self.path)


class AppendModel(_TextSource):
    kind: Literal["append"]
    path: str
    once: bool = True

    def build(self, templates: TemplateSource | None, context: Dict[str, Any]) -> Operation:
        return Append(path=self.path, text=self.resolve_text(templates, context), once=self.once)


class ToolModel(RecipeModel):
    kind: Literal["tool"]
    command: str
    args: List[str] = Field(default_factory=list)
    cwd: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    env: Dict[str, str] = Field(default_factory=dict)

    def build(self, templates: TemplateSource | None, context: Dict[str, Any]) -> Operation:
        return ToolCall(
            command=self.command,
            args=tuple(self.args),
            cwd=self.cwd,
            timeout=self.timeout,
            env=tuple(sorted(self.env.items())),
        )


OperationModel = Annotated[
    Union[InsertModel, ReplaceModel, CreateModel, RemoveModel, AppendModel, ToolModel],
    Field(discriminator="kind"),
]


class StepModel(RecipeModel):
    name: str = Field(min_length=1)
    message: Optional[str] = None
    operations: List[OperationModel] = Field(default_factory=list)


class Recipe(RecipeModel):
    """Validated recipe document."""

    context: Dict[str, Any] = Field(default_factory=dict)
    templates: Optional[str] = None
    steps: List[StepModel] = Field(default_factory=list)

    def build_steps(
        self,
        *,
        base_dir: Path | None = None,
        context: Dict[str, Any] | None = None,
    ) -> List[Step]:
        """Turn the recipe into runnable steps.

        ``templates`` is resolved relative to ``base_dir`` (normally the
        directory holding the recipe file); ``context`` overrides recipe
        context values.
        """
        merged: Dict[str, Any] = dict(self.context)
        merged.update(context or {})
        templates: TemplateSource | None = None
        if self.templates:
            template_root = Path(self.templates)
            if not template_root.is_absolute() and base_dir is not None:
                template_root = base_dir / template_root
            templates = TemplateSource(template_root)

        steps: List[Step] = []
        for step in self.steps:
            operations = tuple(model.build(templates, merged) for model in step.operations)
            steps.append(Step(name=step.name, operations=operations, message=step.message))
        return steps


def parse_recipe(data: Any, *, source: str = "<recipe>") -> Recipe:
    """Validate a decoded recipe mapping."""
    if not isinstance(data, dict):
        raise RecipeError(f"Recipe {source} must be a mapping at the top level.")
    try:
        return Recipe.model_validate(data)
    except ValidationError as error:
        raise RecipeError(
            f"Recipe {source} is invalid: {error.error_count()} error(s)",
            details={"errors": [f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()]},
        ) from error


def load_recipe(path: Path | str) -> Recipe:
    """Load and validate a YAML recipe from disk."""
    recipe_path = Path(path)
    try:
        with recipe_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as error:
        raise RecipeError(f"Recipe not found: {recipe_path}") from error
    except yaml.YAMLError as error:
        raise RecipeError(f"Failed to parse recipe {recipe_path}: {error}") from error
    return parse_recipe(data, source=recipe_path.as_posix())


__all__ = ["Recipe", "StepModel", "load_recipe", "parse_recipe"]
