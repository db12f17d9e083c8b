"""Crumb scraping and session acquisition for the Yahoo Finance download API."""

from __future__ import annotations

import json
import logging
import re
from typing import Dict, Iterable, Optional, Tuple

import requests
from bs4 import BeautifulSoup
from requests.cookies import RequestsCookieJar

from .base import CrumbExtractor, CrumbNotFoundError, InvalidSymbolError, NetworkError, Session

LOGGER = logging.getLogger(__name__)

DEFAULT_CRUMB_URL_TEMPLATE = "https://finance.yahoo.com/quote/{symbol}/history?p={symbol}"
DEFAULT_TIMEOUT = 10.0
DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

# The token may contain JSON escapes such as /; stop at the first unescaped quote.
_CRUMB_TOKEN = r'"crumb"\s*:\s*"(?P<crumb>(?:[^"\\]|\\.)*?)"'
CRUMB_STORE_PATTERN = re.compile(r'"CrumbStore"\s*:\s*\{\s*' + _CRUMB_TOKEN + r"\s*\}")
CRUMB_STORE_OBJECT_PATTERN = re.compile(
    r'"CrumbStore"\s*:\s*(?P<store>\{\s*"crumb"\s*:\s*"(?:[^"\\]|\\.)*?"\s*\})'
)


def _decode_token(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        return raw


class RegexCrumbExtractor:
    """Find the ``CrumbStore`` fragment anywhere in the page body."""

    def __init__(self, pattern: re.Pattern[str] = CRUMB_STORE_PATTERN) -> None:
        self.pattern = pattern

    def extract(self, body: str) -> str:
        match = self.pattern.search(body or "")
        if match is None:
            raise CrumbNotFoundError()
        crumb = _decode_token(match.group("crumb"))
        if not crumb:
            raise CrumbNotFoundError(message="Empty crumb")
        return crumb


class ScriptStoreCrumbExtractor:
    """Locate the application state ``<script>`` and decode its ``CrumbStore``.

    Only script blocks containing *marker* are inspected.
    """

    def __init__(self, marker: str = "root.App.main") -> None:
        self.marker = marker

    def extract(self, body: str) -> str:
        soup = BeautifulSoup(body or "", "html.parser")
        for script in soup.find_all("script"):
            text = script.string or script.get_text()
            if not text or self.marker not in text:
                continue
            match = CRUMB_STORE_OBJECT_PATTERN.search(text)
            if match is None:
                continue
            try:
                store = json.loads(match.group("store"))
            except json.JSONDecodeError:
                LOGGER.debug("CrumbStore object in script block is not valid JSON")
                continue
            crumb = store.get("crumb") if isinstance(store, dict) else None
            if isinstance(crumb, str) and crumb:
                return crumb
        raise CrumbNotFoundError()


class ChainedCrumbExtractor:
    """Try several extraction strategies, returning the first crumb found."""

    def __init__(self, extractors: Iterable[CrumbExtractor]) -> None:
        self.extractors = list(extractors)
        if not self.extractors:
            raise ValueError("At least one crumb extractor is required")

    def extract(self, body: str) -> str:
        last_exc = CrumbNotFoundError()
        for extractor in self.extractors:
            try:
                return extractor.extract(body)
            except CrumbNotFoundError as exc:
                last_exc = exc
        raise last_exc


CRUMB_STRATEGIES = ("regex", "script", "chain")


def build_crumb_extractor(strategy: str = "regex") -> CrumbExtractor:
    """Return the extractor registered under *strategy*."""

    name = (strategy or "regex").strip().lower()
    if name == "regex":
        return RegexCrumbExtractor()
    if name == "script":
        return ScriptStoreCrumbExtractor()
    if name == "chain":
        return ChainedCrumbExtractor([ScriptStoreCrumbExtractor(), RegexCrumbExtractor()])
    raise ValueError(f"Unknown crumb strategy '{strategy}'. Available: {', '.join(CRUMB_STRATEGIES)}")


def extract_crumb(body: str) -> str:
    return RegexCrumbExtractor().extract(body)


def clear_session_cookies(http_session) -> None:
    """Empty the cookie jar of a pooled HTTP session, if it keeps one."""
    jar = getattr(http_session, "cookies", None)
    if jar is not None:
        jar.clear()


class SessionProvider:
    """Scrape a crumb token and its cookies from an instrument history page."""

    def __init__(
        self,
        crumb_url_template: str = DEFAULT_CRUMB_URL_TEMPLATE,
        http_session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
        extractor: Optional[CrumbExtractor] = None,
    ) -> None:
        self.crumb_url_template = crumb_url_template
        self.http_session = http_session or requests.Session()
        self.timeout = timeout
        self.headers = dict(headers) if headers is not None else dict(DEFAULT_HEADERS)
        self.extractor = extractor or RegexCrumbExtractor()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def crumb_url(self, symbol: str) -> str:
        if not symbol:
            raise InvalidSymbolError(symbol)
        return self.crumb_url_template.replace("{symbol}", symbol)

    def acquire(self, symbol: str) -> Session:
        """Return a fresh session for *symbol*."""
        url = self.crumb_url(symbol)
        crumb, cookies = self._scrape(url)
        LOGGER.info("Acquired crumb session for %s (%s cookies)", symbol, len(cookies))
        return Session(source_url=url, crumb=crumb, cookies=cookies)

    def refresh(self, session: Session) -> Session:
        """Re-scrape ``session.source_url`` and replace crumb and cookies in place."""
        crumb, cookies = self._scrape(session.source_url)
        session.crumb = crumb
        session.cookies = cookies
        LOGGER.info("Renewed crumb session from %s", session.source_url)
        return session

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _scrape(self, url: str) -> Tuple[str, RequestsCookieJar]:
        # The page only hands out cookies to clients that present none.
        clear_session_cookies(self.http_session)
        try:
            response = self.http_session.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise NetworkError(url, "Crumb page request failed", status_code=status) from exc
        except requests.RequestException as exc:
            raise NetworkError(url, "Could not query crumb page") from exc

        # Cookies set on redirects land in the session jar, not on the final response.
        cookies = RequestsCookieJar()
        session_jar = getattr(self.http_session, "cookies", None)
        if session_jar is not None:
            cookies.update(session_jar)
        cookies.update(response.cookies)

        try:
            crumb = self.extractor.extract(response.text)
        except CrumbNotFoundError as exc:
            raise CrumbNotFoundError(url) from exc
        return crumb, cookies


__all__ = [
    "CRUMB_STRATEGIES",
    "DEFAULT_CRUMB_URL_TEMPLATE",
    "DEFAULT_HEADERS",
    "DEFAULT_TIMEOUT",
    "ChainedCrumbExtractor",
    "RegexCrumbExtractor",
    "ScriptStoreCrumbExtractor",
    "SessionProvider",
    "build_crumb_extractor",
    "clear_session_cookies",
    "extract_crumb",
]
