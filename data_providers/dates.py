"""Date range normalisation for the download query."""

from __future__ import annotations

import calendar
import logging
import time
from typing import Tuple

from .parsing import is_iso_date, parse_iso_date

LOGGER = logging.getLogger(__name__)

EARLIEST_PERIOD = "0"


def order_dates(start: str, end: str) -> Tuple[str, str]:
    """Return ``(start, end)`` with an inverted range swapped.

    Lexical comparison is only meaningful for zero-padded ``yyyy-mm-dd``
    strings, so a pair is swapped only when both sides have that shape.
    """

    if start and end and is_iso_date(start) and is_iso_date(end) and start > end:
        return end, start
    return start, end


def _to_epoch(value: str) -> str | None:
    result = parse_iso_date(value)
    if not result.ok:
        return None
    return str(calendar.timegm(result.value.timetuple()))


def parse_dates(start: str, end: str) -> Tuple[str, str]:
    """Convert an ISO date pair into epoch-second strings for the query.

    A missing or unparsable start means "since the beginning" (``"0"``), a
    missing or unparsable end means "up to now".
    """

    start, end = order_dates((start or "").strip(), (end or "").strip())

    start_unix = _to_epoch(start) if start else None
    if start_unix is None:
        if start:
            LOGGER.warning("Ignoring unparsable start date %r", start)
        start_unix = EARLIEST_PERIOD

    end_unix = _to_epoch(end) if end else None
    if end_unix is None:
        if end:
            LOGGER.warning("Ignoring unparsable end date %r", end)
        end_unix = str(int(time.time()))

    return start_unix, end_unix


__all__ = ["EARLIEST_PERIOD", "order_dates", "parse_dates"]
