"""Core records, interfaces and errors for the historical quote pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Protocol

from requests.cookies import RequestsCookieJar


@dataclass(frozen=True)
class Quote:
    """One trading-day OHLCV record."""

    date: date
    symbol: str
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    adj_close: float = 0.0
    volume: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Session:
    """Crumb token plus the cookies it is bound to.

    A session stays usable until it is explicitly renewed; nothing here
    expires it.
    """

    source_url: str
    crumb: str = ""
    cookies: RequestsCookieJar = field(default_factory=RequestsCookieJar)

    @property
    def is_usable(self) -> bool:
        return bool(self.crumb)


class CrumbExtractor(Protocol):
    """Strategy that pulls the crumb token out of a history page body."""

    def extract(self, body: str) -> str:
        """Return the crumb or raise :class:`CrumbNotFoundError`."""


class HistoricalQueryError(RuntimeError):
    """Base class for failures of a historical quote query."""


class InvalidSymbolError(HistoricalQueryError, ValueError):
    """Raised when no instrument symbol was supplied."""

    def __init__(self, symbol: Optional[str] = "", message: str = "No symbol provided") -> None:
        super().__init__(message)
        self.symbol = symbol


class CrumbNotFoundError(HistoricalQueryError):
    """Raised when the crumb token cannot be located in the page markup."""

    def __init__(self, url: Optional[str] = None, message: str = "Could not find crumb") -> None:
        detail = f"{message} in {url}" if url else message
        super().__init__(detail)
        self.url = url


class NetworkError(HistoricalQueryError):
    """Raised on transport failures, timeouts and non-2xx responses."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{message}: {url}")
        self.url = url
        self.status_code = status_code


class MalformedResponseError(HistoricalQueryError):
    """Raised when a download body cannot be decoded as CSV quote data."""

    def __init__(self, url: Optional[str], message: str) -> None:
        detail = f"{message}: {url}" if url else message
        super().__init__(detail)
        self.url = url


__all__ = [
    "Quote",
    "Session",
    "CrumbExtractor",
    "HistoricalQueryError",
    "InvalidSymbolError",
    "CrumbNotFoundError",
    "NetworkError",
    "MalformedResponseError",
]
