"""Reusable parameter validators."""

import re
from typing import Annotated

from fastapi import Path, Query

# Positive integer ID validator for path parameters
PositiveIntId = Annotated[int, Path(gt=0, description="Resource ID (must be positive)")]

# Optional positive int for query params
PositiveIntQuery = Annotated[int, Query(gt=0)]

HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

DEPARTMENTS = ("kitchen", "barista", "shisha")


def validate_hex_color(value: str | None) -> str | None:
    """Accept ``#rrggbb`` colours only; returns the lower-cased value."""
    if value is None:
        return None
    if not HEX_COLOR_RE.match(value):
        raise ValueError(f"Invalid colour '{value}', expected #rrggbb")
    return value.lower()


def validate_department(value: str | None, allow: tuple[str, ...] = DEPARTMENTS) -> str | None:
    if value is None:
        return None
    value = value.strip().lower()
    if value not in allow:
        raise ValueError(f"Department must be one of: {', '.join(allow)}")
    return value
