"""Locate edit positions inside file content.

An anchor must resolve to exactly one location. Multiple matches raise
:class:`~stencil.errors.AmbiguousError` unless the anchor was built with
``first_match=True``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Pattern

from .errors import AmbiguousError, NotFoundError, RecipeError

__all__ = ["Anchor", "AnchorKind", "Span", "find_spans", "locate"]


class AnchorKind(str, Enum):
    LITERAL = "literal"
    REGEX = "regex"
    LINE = "line"


@dataclass(frozen=True, slots=True)
class Span:
    """Half-open character range ``[start, end)`` within a file."""

    start: int
    end: int

    def text(self, content: str) -> str:
        return content[self.start : self.end]


@dataclass(frozen=True, slots=True)
class Anchor:
    """Literal, regular expression or marker-line location specifier."""

    kind: AnchorKind
    pattern: str
    first_match: bool = False

    @classmethod
    def literal(cls, text: str, *, first_match: bool = False) -> "Anchor":
        return cls(AnchorKind.LITERAL, text, first_match)

    @classmethod
    def regex(cls, pattern: str, *, first_match: bool = False) -> "Anchor":
        return cls(AnchorKind.REGEX, pattern, first_match)

    @classmethod
    def line(cls, marker: str, *, first_match: bool = False) -> "Anchor":
        return cls(AnchorKind.LINE, marker, first_match)

    def describe(self) -> str:
        if self.kind is AnchorKind.REGEX:
            return f"/{self.pattern}/"
        if self.kind is AnchorKind.LINE:
            return f"line containing {self.pattern!r}"
        return repr(self.pattern)


def _compile(pattern: str) -> Pattern[str]:
    try:
        return re.compile(pattern, re.MULTILINE)
    except re.error as error:
        raise RecipeError(f"Invalid anchor pattern /{pattern}/: {error}", details={"pattern": pattern}) from error


def _literal_spans(content: str, text: str) -> List[Span]:
    if not text:
        raise RecipeError("Literal anchor must not be empty.")
    spans: List[Span] = []
    start = content.find(text)
    while start != -1:
        spans.append(Span(start, start + len(text)))
        start = content.find(text, start + 1)
    return spans


def _regex_spans(content: str, pattern: str) -> List[Span]:
    compiled = _compile(pattern)
    spans: List[Span] = []
    for match in compiled.finditer(content):
        group = 1 if compiled.groups else 0
        start, end = match.span(group)
        if start == -1:
            # Optional group did not participate; fall back to the whole match.
            start, end = match.span(0)
        spans.append(Span(start, end))
    return spans


def _line_spans(content: str, marker: str) -> List[Span]:
    if not marker:
        raise RecipeError("Marker anchor must not be empty.")
    spans: List[Span] = []
    offset = 0
    for line in content.splitlines(keepends=True):
        if marker in line:
            spans.append(Span(offset, offset + len(line)))
        offset += len(line)
    return spans


def find_spans(content: str, anchor: Anchor) -> List[Span]:
    """Return every location matched by ``anchor`` in document order."""
    if anchor.kind is AnchorKind.LITERAL:
        return _literal_spans(content, anchor.pattern)
    if anchor.kind is AnchorKind.REGEX:
        return _regex_spans(content, anchor.pattern)
    return _line_spans(content, anchor.pattern)


def locate(content: str, anchor: Anchor) -> Span:
    """Resolve ``anchor`` to a single span inside ``content``."""
    spans = find_spans(content, anchor)
    if not spans:
        raise NotFoundError(
            f"Anchor {anchor.describe()} not found.",
            details={"anchor": anchor.pattern, "anchor_kind": anchor.kind.value},
        )
    if len(spans) > 1 and not anchor.first_match:
        raise AmbiguousError(
            f"Anchor {anchor.describe()} matched {len(spans)} locations.",
            details={
                "anchor": anchor.pattern,
                "anchor_kind": anchor.kind.value,
                "matches": len(spans),
                "offsets": [span.start for span in spans],
            },
        )
    return spans[0]
