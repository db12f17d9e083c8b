"""Crumb-authenticated historical quote download from Yahoo Finance."""

from .base import (
    CrumbNotFoundError,
    HistoricalQueryError,
    InvalidSymbolError,
    MalformedResponseError,
    NetworkError,
    Quote,
    Session,
)
from .crumb import SessionProvider, build_crumb_extractor, extract_crumb
from .dates import order_dates, parse_dates
from .yahoo import HistoricalQuery, QuoteFetcher, build_download_url, rows_to_quotes

__all__ = [
    "CrumbNotFoundError",
    "HistoricalQuery",
    "HistoricalQueryError",
    "InvalidSymbolError",
    "MalformedResponseError",
    "NetworkError",
    "Quote",
    "QuoteFetcher",
    "Session",
    "SessionProvider",
    "build_crumb_extractor",
    "build_download_url",
    "extract_crumb",
    "order_dates",
    "parse_dates",
    "rows_to_quotes",
]
