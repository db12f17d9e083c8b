from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from data_providers.crumb import SessionProvider
from data_providers.yahoo import HistoricalQuery, QuoteFetcher

QUOTES_CSV = (
    "Date,Open,High,Low,Close,Adj Close,Volume\n"
    "2017-06-01,153.169998,153.330002,152.220001,153.179993,151.421051,16404100\n"
)


class YahooLikeServer(ThreadingHTTPServer):
    """Hands out a ``B`` cookie only to cookieless crumb requests and
    rejects downloads that do not carry the cookie issued with the crumb."""

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), YahooLikeHandler)
        self.lock = threading.Lock()
        self.issued = 0
        self.valid: dict[str, str] = {}
        self.crumb_cookie_headers: list[str] = []
        self.download_cookie_headers: list[str] = []

    @property
    def base_url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}"


class YahooLikeHandler(BaseHTTPRequestHandler):
    server: YahooLikeServer

    def log_message(self, format, *args) -> None:
        pass

    def _cookies(self) -> dict[str, str]:
        header = self.headers.get("Cookie", "")
        pairs = [part.strip().split("=", 1) for part in header.split(";") if "=" in part]
        return {name: value for name, value in pairs}

    def do_GET(self) -> None:
        cookies = self._cookies()
        if self.path.startswith("/quote/"):
            self._crumb_page(cookies)
        elif self.path.startswith("/dl/"):
            self._download(cookies)
        else:
            self._reply(404, "not found")

    def _crumb_page(self, cookies: dict[str, str]) -> None:
        state = self.server
        with state.lock:
            state.crumb_cookie_headers.append(self.headers.get("Cookie", ""))
            if "B" in cookies:
                self._reply(200, "<html>already identified</html>")
                return
            state.issued += 1
            token = f"token-{state.issued}"
            crumb = f"crumb-{state.issued}"
            state.valid = {crumb: token}
        body = '<script>root.App.main = {"CrumbStore":{"crumb":"%s"}};</script>' % crumb
        self._reply(200, body, set_cookies=[f"B={token}; Path=/"])

    def _download(self, cookies: dict[str, str]) -> None:
        state = self.server
        with state.lock:
            state.download_cookie_headers.append(self.headers.get("Cookie", ""))
            crumb = self.path.rsplit("crumb=", 1)[-1]
            expected = state.valid.get(crumb)
        if expected is None or cookies.get("B") != expected:
            self._reply(401, '{"finance":{"error":{"code":"Unauthorized"}}}')
            return
        self._reply(200, QUOTES_CSV, set_cookies=["tracker=download; Path=/"])

    def _reply(self, status: int, body: str, set_cookies=()) -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        for cookie in set_cookies:
            self.send_header("Set-Cookie", cookie)
        self.end_headers()
        self.wfile.write(payload)


@pytest.fixture
def yahoo_server():
    server = YahooLikeServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


def _query(server: YahooLikeServer, provider_http: requests.Session, fetcher_http: requests.Session) -> HistoricalQuery:
    return HistoricalQuery(
        start_date="2017-06-01",
        end_date="2017-06-02",
        provider=SessionProvider(
            crumb_url_template=server.base_url + "/quote/{symbol}/history?p={symbol}",
            http_session=provider_http,
            timeout=5,
        ),
        fetcher=QuoteFetcher(http_session=fetcher_http, timeout=5),
        download_url_template=server.base_url
        + "/dl/{symbol}?period1={start}&period2={end}&interval=1d&events=history&crumb={crumb}",
    )


def test_renewed_session_carries_fresh_cookie_to_download(yahoo_server):
    with requests.Session() as provider_http, requests.Session() as fetcher_http:
        query = _query(yahoo_server, provider_http, fetcher_http)

        assert len(query.query("AAPL")) == 1
        renewed = query.renew_session()
        quotes = query.query("AAPL")

    assert len(quotes) == 1
    assert renewed is not None
    assert renewed.crumb == "crumb-2"
    assert renewed.cookies.get("B") == "token-2"
    assert yahoo_server.crumb_cookie_headers == ["", ""]
    assert yahoo_server.download_cookie_headers == ["B=token-1", "B=token-2"]


def test_shared_http_session_does_not_leak_cookies_between_requests(yahoo_server):
    with requests.Session() as http:
        query = _query(yahoo_server, http, http)

        query.query("AAPL")
        assert len(http.cookies) == 0

        query.renew_session()
        query.query("MSFT")

    assert yahoo_server.crumb_cookie_headers == ["", ""]
    assert yahoo_server.download_cookie_headers == ["B=token-1", "B=token-2"]


def test_fresh_acquire_after_previous_session_still_receives_cookies(yahoo_server):
    with requests.Session() as http:
        provider = SessionProvider(
            crumb_url_template=yahoo_server.base_url + "/quote/{symbol}/history?p={symbol}",
            http_session=http,
            timeout=5,
        )

        first = provider.acquire("AAPL")
        second = provider.acquire("MSFT")

    assert first.cookies.get("B") == "token-1"
    assert second.cookies.get("B") == "token-2"
    assert second.crumb == "crumb-2"
