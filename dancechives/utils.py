"""Utility helpers for Dance Chives."""

from __future__ import annotations

from datetime import UTC, datetime
import re
import unicodedata

_slug_invalid = re.compile(r"[^a-z0-9]+")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def slugify(value: str) -> str:
    """Return a canonical slug suitable for URLs and node ids."""
    value = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    value = value.strip().lower()
    value = _slug_invalid.sub("-", value)
    value = value.strip("-")
    return value


def unique_preserving_order(values) -> list[str]:
    """Drop duplicates and blanks while keeping the first occurrence order."""
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values or []:
        if not value or value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered
