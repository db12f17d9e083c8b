"""Conversion of downloaded quotes into pandas frames."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from data_providers.base import Quote

LOGGER = logging.getLogger(__name__)

PRICE_COLUMNS = ["open", "high", "low", "close", "adj_close", "volume"]


def quotes_to_frame(quotes: Iterable[Quote], symbol: Optional[str] = None) -> pd.DataFrame:
    """Return a date-indexed OHLCV frame in the order the quotes were given."""

    records = [quote.as_dict() for quote in quotes]
    if records:
        frame = pd.DataFrame.from_records(records)
        resolved_symbol = symbol or str(frame["symbol"].iloc[0])
        frame["date"] = pd.to_datetime(frame["date"].astype(str), errors="coerce")
        frame = frame.set_index("date")[PRICE_COLUMNS].copy()
        frame["volume"] = frame["volume"].astype("int64")
    else:
        frame = pd.DataFrame(columns=PRICE_COLUMNS, index=pd.DatetimeIndex([], name="date"))
        resolved_symbol = symbol or ""

    frame.index.name = "date"
    frame.attrs["symbol"] = resolved_symbol.upper()
    return frame


def write_quotes_csv(quotes: Iterable[Quote], path: Path, symbol: Optional[str] = None) -> Path:
    """Write *quotes* to *path* as CSV with a ``date`` column and return the path."""

    frame = quotes_to_frame(quotes, symbol=symbol)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=True, index_label="date")
    LOGGER.info("Saved %s quotes for %s to %s", len(frame), frame.attrs["symbol"] or "unknown symbol", path)
    return path


__all__ = ["PRICE_COLUMNS", "quotes_to_frame", "write_quotes_csv"]
