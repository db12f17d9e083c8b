"""Parse-or-default helpers for loosely formatted CSV and user input.

Every helper returns a :class:`ParseResult` instead of raising, so callers can
keep the recovered default and still tell whether the raw value was valid.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")

ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
ZERO_DATE = date.min


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    value: T
    ok: bool

    @classmethod
    def parsed(cls, value: T) -> "ParseResult[T]":
        return cls(value=value, ok=True)

    @classmethod
    def recovered(cls, default: T) -> "ParseResult[T]":
        return cls(value=default, ok=False)


def _clean(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def parse_float(raw: Any, default: float = 0.0) -> ParseResult[float]:
    text = _clean(raw)
    if text is None or "_" in text:
        return ParseResult.recovered(default)
    try:
        return ParseResult.parsed(float(text))
    except ValueError:
        return ParseResult.recovered(default)


def parse_int(raw: Any, default: int = 0) -> ParseResult[int]:
    """Parse a base-10 integer; decimal or exponent notation is rejected."""

    text = _clean(raw)
    if text is None or "_" in text:
        return ParseResult.recovered(default)
    try:
        return ParseResult.parsed(int(text, 10))
    except ValueError:
        return ParseResult.recovered(default)


def is_iso_date(raw: Any) -> bool:
    """Return True for zero-padded ``yyyy-mm-dd`` strings (shape only)."""

    return isinstance(raw, str) and ISO_DATE_PATTERN.fullmatch(raw) is not None


def parse_iso_date(raw: Any, default: date = ZERO_DATE) -> ParseResult[date]:
    text = _clean(raw)
    if text is None or not is_iso_date(text):
        return ParseResult.recovered(default)
    try:
        return ParseResult.parsed(datetime.strptime(text, "%Y-%m-%d").date())
    except ValueError:
        return ParseResult.recovered(default)


__all__ = [
    "ParseResult",
    "ZERO_DATE",
    "is_iso_date",
    "parse_float",
    "parse_int",
    "parse_iso_date",
]
