"""Filesystem-friendly, length-limited slugs for run artifacts."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

_UNSAFE_PATTERN: Pattern[str] = re.compile(r"[^a-z0-9_.-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "run", max_length: int = 60) -> str:
    """Normalise ``value`` into a lowercase slug no longer than ``max_length``.

    Over-long slugs keep a readable prefix and gain a short digest of the full
    slug, so distinct long labels stay distinct.
    """
    slug = _normalise(value or "") or _normalise(fallback) or "run"
    if len(slug) <= max_length:
        return slug

    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-")
    return f"{prefix}-{digest}" if prefix else digest


def _normalise(value: str) -> str:
    slug = _UNSAFE_PATTERN.sub("-", value.strip().lower())
    slug = _HYPHEN_COLLAPSE.sub("-", slug)
    return slug.strip("-")


__all__ = ["slugify"]
