"""Yahoo Finance historical quote download via crumb-authenticated CSV."""

from __future__ import annotations

import csv
import logging
import re
import threading
from io import StringIO
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import requests
from requests.cookies import RequestsCookieJar

from .base import InvalidSymbolError, MalformedResponseError, NetworkError, Quote, Session
from .crumb import DEFAULT_TIMEOUT, SessionProvider, build_crumb_extractor, clear_session_cookies
from .dates import order_dates, parse_dates
from .parsing import parse_float, parse_int, parse_iso_date

if TYPE_CHECKING:
    from history_query.config_manager import HistoryQueryConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_URL_TEMPLATE = (
    "https://query1.finance.yahoo.com/v7/finance/download/{symbol}"
    "?period1={start}&period2={end}&interval=1d&events=history&crumb={crumb}"
)

CSV_COLUMNS = ("Date", "Open", "High", "Low", "Close", "Adj Close", "Volume")

_CRUMB_PARAM = re.compile(r"(crumb=)[^&]*")


def build_download_url(
    symbol: str,
    start_unix: str,
    end_unix: str,
    crumb: str,
    template: str = DEFAULT_DOWNLOAD_URL_TEMPLATE,
) -> str:
    """Substitute the query values into the download URL template."""

    if not symbol:
        raise InvalidSymbolError(symbol)
    return (
        template.replace("{symbol}", symbol)
        .replace("{start}", start_unix)
        .replace("{end}", end_unix)
        .replace("{crumb}", crumb)
    )


def _mask_crumb(url: str) -> str:
    return _CRUMB_PARAM.sub(r"\1***", url)


def rows_to_quotes(symbol: str, rows: Sequence[Sequence[str]], url: Optional[str] = None) -> List[Quote]:
    """Map raw CSV rows (header first) onto :class:`Quote` records.

    Columns are located by header name. Bad fields fall back to zero values and
    never drop the row, so the output keeps the CSV order.
    """

    if not rows:
        raise MalformedResponseError(url, "Download returned no CSV header")

    header = [str(name).strip() for name in rows[0]]
    index: Dict[str, int] = {}
    for position, name in enumerate(header):
        index.setdefault(name, position)
    if "Date" not in index:
        raise MalformedResponseError(url, f"CSV header has no Date column ({', '.join(header)})")
    missing = [name for name in CSV_COLUMNS if name not in index]
    if missing:
        LOGGER.warning("CSV header is missing columns %s; they will default to zero", missing)

    stamped = symbol.upper()
    quotes: List[Quote] = []
    for row in rows[1:]:
        if not row:
            continue

        parsed_date = parse_iso_date(_field(row, index, "Date"))
        volume = parse_int(_field(row, index, "Volume"))
        if not parsed_date.ok or not volume.ok:
            LOGGER.debug("Recovered unparsable fields in %s row %s", stamped, row)

        quotes.append(
            Quote(
                date=parsed_date.value,
                symbol=stamped,
                open=parse_float(_field(row, index, "Open")).value,
                high=parse_float(_field(row, index, "High")).value,
                low=parse_float(_field(row, index, "Low")).value,
                close=parse_float(_field(row, index, "Close")).value,
                adj_close=parse_float(_field(row, index, "Adj Close")).value,
                volume=volume.value,
            )
        )
    return quotes


def _field(row: Sequence[str], index: Dict[str, int], name: str) -> Optional[str]:
    position = index.get(name)
    if position is None or position >= len(row):
        return None
    return row[position]


class QuoteFetcher:
    """Download the quote CSV using a session's cookies."""

    def __init__(
        self,
        http_session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.http_session = http_session or requests.Session()
        self.timeout = timeout

    def fetch_rows(self, url: str, cookies: Optional[RequestsCookieJar] = None) -> List[List[str]]:
        """Return every CSV row of the download, header included."""
        LOGGER.debug("Downloading quotes from %s", _mask_crumb(url))
        # Only the crumb session's cookies may accompany a download.
        clear_session_cookies(self.http_session)
        try:
            response = self.http_session.get(url, cookies=cookies, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise NetworkError(_mask_crumb(url), "Quote download failed", status_code=status) from exc
        except requests.RequestException as exc:
            raise NetworkError(_mask_crumb(url), "Could not download quotes") from exc
        finally:
            clear_session_cookies(self.http_session)

        body = response.text
        if not body or not body.strip():
            raise MalformedResponseError(_mask_crumb(url), "Download returned an empty body")
        try:
            return list(csv.reader(StringIO(body), strict=True))
        except csv.Error as exc:
            raise MalformedResponseError(_mask_crumb(url), f"Could not decode CSV body: {exc}") from exc

    def fetch_quotes(self, symbol: str, url: str, cookies: Optional[RequestsCookieJar] = None) -> List[Quote]:
        rows = self.fetch_rows(url, cookies)
        quotes = rows_to_quotes(symbol, rows, url=_mask_crumb(url))
        LOGGER.info("Decoded %s quotes for %s", len(quotes), symbol.upper())
        return quotes


class HistoricalQuery:
    """Query daily history for symbols, caching the crumb session between calls.

    ``start_date`` and ``end_date`` are plain ``yyyy-mm-dd`` strings (or empty)
    and are read again on every query.
    """

    def __init__(
        self,
        start_date: str = "",
        end_date: str = "",
        *,
        provider: Optional[SessionProvider] = None,
        fetcher: Optional[QuoteFetcher] = None,
        download_url_template: str = DEFAULT_DOWNLOAD_URL_TEMPLATE,
    ) -> None:
        self.start_date = start_date
        self.end_date = end_date
        self.provider = provider or SessionProvider()
        self.fetcher = fetcher or QuoteFetcher()
        self.download_url_template = download_url_template
        self._session: Optional[Session] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: "HistoryQueryConfig") -> "HistoricalQuery":
        headers = {
            "Accept": config.http.accept,
            "Accept-Language": config.http.accept_language,
        }
        if config.http.user_agent:
            headers["User-Agent"] = config.http.user_agent

        provider = SessionProvider(
            crumb_url_template=config.endpoints.crumb_url_template,
            timeout=config.http.timeout,
            headers=headers,
            extractor=build_crumb_extractor(config.crumb.strategy),
        )
        fetcher = QuoteFetcher(timeout=config.http.timeout)
        return cls(
            start_date=config.query.start_date,
            end_date=config.query.end_date,
            provider=provider,
            fetcher=fetcher,
            download_url_template=config.endpoints.download_url_template,
        )

    @property
    def session(self) -> Optional[Session]:
        return self._session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def query(self, symbol: str) -> List[Quote]:
        """Return the daily quotes of *symbol* for the configured range."""
        session, url = self._prepare(symbol)
        return self.fetcher.fetch_quotes(symbol, url, session.cookies)

    def query_raw(self, symbol: str) -> List[List[str]]:
        """Return the undecoded CSV rows, header first."""
        session, url = self._prepare(symbol)
        return self.fetcher.fetch_rows(url, session.cookies)

    def reset_dates(self) -> None:
        self.start_date = ""
        self.end_date = ""

    def renew_session(self) -> Optional[Session]:
        """Force a new crumb and cookie pair for the cached session.

        Without a cached session this does nothing; the next query acquires one.
        """
        with self._lock:
            if self._session is None:
                return None
            return self.provider.refresh(self._session)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _ensure_session(self, symbol: str) -> Session:
        """Return a snapshot of the cached session, acquiring it when absent.

        The snapshot keeps crumb and cookies paired if another caller renews
        the cached session while this query is in flight.
        """
        with self._lock:
            if self._session is None:
                self._session = self.provider.acquire(symbol)
            elif not self._session.is_usable:
                self.provider.refresh(self._session)
            current = self._session
            return Session(source_url=current.source_url, crumb=current.crumb, cookies=current.cookies)

    def _prepare(self, symbol: str) -> tuple[Session, str]:
        if not symbol:
            raise InvalidSymbolError(symbol)

        session = self._ensure_session(symbol)
        start, end = order_dates(self.start_date, self.end_date)
        start_unix, end_unix = parse_dates(start, end)
        url = build_download_url(symbol, start_unix, end_unix, session.crumb, self.download_url_template)
        return session, url


__all__ = [
    "CSV_COLUMNS",
    "DEFAULT_DOWNLOAD_URL_TEMPLATE",
    "HistoricalQuery",
    "QuoteFetcher",
    "build_download_url",
    "rows_to_quotes",
]
