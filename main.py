"""CLI entry point for the historical quote query."""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from data_pipeline import quotes_to_frame, write_quotes_csv
from data_providers.base import (
    CrumbNotFoundError,
    HistoricalQueryError,
    MalformedResponseError,
    NetworkError,
    Quote,
)
from data_providers.yahoo import HistoricalQuery
from history_query.config_manager import ConfigManager, HistoryQueryConfig

logger = logging.getLogger("history_query.cli")

STALE_SESSION_STATUS = {401, 403}


@dataclass
class AppContext:
    manager: ConfigManager
    config: HistoryQueryConfig


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def build_context(args: argparse.Namespace) -> AppContext:
    manager_kwargs: Dict[str, Path] = {}
    if args.defaults:
        manager_kwargs["default_path"] = Path(args.defaults)
    if args.settings:
        manager_kwargs["user_path"] = Path(args.settings)
    manager = ConfigManager(**manager_kwargs)
    config = manager.load(force_reload=args.force_config_reload)
    return AppContext(manager=manager, config=config)


def build_query(args: argparse.Namespace, config: HistoryQueryConfig) -> HistoricalQuery:
    query = HistoricalQuery.from_config(config)
    if getattr(args, "start", None) is not None:
        query.start_date = args.start
    if getattr(args, "end", None) is not None:
        query.end_date = args.end
    return query


def is_stale_session_error(exc: HistoricalQueryError) -> bool:
    """Return True for failures a renewed crumb session may fix."""

    if isinstance(exc, (CrumbNotFoundError, MalformedResponseError)):
        return True
    return isinstance(exc, NetworkError) and exc.status_code in STALE_SESSION_STATUS


def run_query(query: HistoricalQuery, symbol: str, *, raw: bool = False, retry_stale: bool = False):
    """Run one query, renewing the session and retrying once when asked to."""

    try:
        return query.query_raw(symbol) if raw else query.query(symbol)
    except HistoricalQueryError as exc:
        if not retry_stale or not is_stale_session_error(exc):
            raise
        logger.warning("Query for %s failed (%s); renewing session and retrying once", symbol, exc)

    if query.renew_session() is None:
        logger.debug("No cached session to renew; the retry acquires a new one")
    return query.query_raw(symbol) if raw else query.query(symbol)


def print_raw_rows(rows: List[List[str]], limit: Optional[int] = None) -> None:
    writer = csv.writer(sys.stdout, lineterminator="\n")
    selected = rows if limit is None else rows[: limit + 1]
    writer.writerows(selected)


def print_quote_preview(symbol: str, quotes: List[Quote], preview_rows: int) -> None:
    print(f"received quotes for {symbol.upper()}: {len(quotes)}")
    if not quotes or preview_rows <= 0:
        return
    frame = quotes_to_frame(quotes, symbol=symbol)
    print(f"first: {quotes[0]}")
    print(f"last:  {quotes[-1]}")
    print(frame.tail(preview_rows).to_string())


# ----------------------------------------------------------------------
# Command handlers
# ----------------------------------------------------------------------
def handle_history(args: argparse.Namespace, ctx: AppContext) -> int:
    query = build_query(args, ctx.config)
    preview_rows = args.preview_rows if args.preview_rows is not None else ctx.config.output.preview_rows

    try:
        result = run_query(query, args.symbol, raw=args.raw, retry_stale=args.retry_stale)
    except HistoricalQueryError as exc:
        logger.error("History query for %s failed: %s", args.symbol, exc)
        return 1

    if args.raw:
        print_raw_rows(result, limit=preview_rows)
        if args.output:
            path = Path(args.output)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8", newline="") as handle:
                csv.writer(handle).writerows(result)
            logger.info("Saved %s raw rows to %s", len(result), path)
        return 0

    print_quote_preview(args.symbol, result, preview_rows)
    if args.output or args.save:
        output = Path(args.output) if args.output else ctx.config.output.directory / f"{args.symbol.upper()}.csv"
        write_quotes_csv(result, output, symbol=args.symbol)
    return 0


def handle_crumb(args: argparse.Namespace, ctx: AppContext) -> int:
    query = HistoricalQuery.from_config(ctx.config)
    try:
        session = query.provider.acquire(args.symbol)
    except HistoricalQueryError as exc:
        logger.error("Crumb acquisition for %s failed: %s", args.symbol, exc)
        return 1

    print(f"source: {session.source_url}")
    print(f"crumb:  {session.crumb}")
    cookie_names = sorted(cookie.name for cookie in session.cookies)
    print(f"cookies: {', '.join(cookie_names) if cookie_names else '(none)'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query daily price history from Yahoo Finance")
    parser.add_argument("--settings", type=Path, help="Path to user settings override JSON")
    parser.add_argument("--defaults", type=Path, help="Path to alternate default settings JSON")
    parser.add_argument("--force-config-reload", action="store_true", help="Reload configuration from disk")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    history = subparsers.add_parser("history", help="Download daily quotes for a symbol")
    history.add_argument("symbol", help="Stock symbol, e.g. AAPL or bas.de")
    history.add_argument("--start", help="Start date in format yyyy-mm-dd (default: earliest available)")
    history.add_argument("--end", help="End date in format yyyy-mm-dd (default: now)")
    history.add_argument("--output", type=Path, help="Optional CSV path for the downloaded quotes")
    history.add_argument("--save", action="store_true", help="Save quotes to output.directory/<SYMBOL>.csv")
    history.add_argument("--raw", action="store_true", help="Print the undecoded CSV rows")
    history.add_argument("--preview-rows", type=int, help="Rows to show in CLI preview")
    history.add_argument("--retry-stale", action="store_true", help="Renew the crumb session and retry once on a stale-session failure")
    history.set_defaults(handler=handle_history)

    crumb = subparsers.add_parser("crumb", help="Acquire a crumb session and show its token and cookies")
    crumb.add_argument("symbol", help="Stock symbol whose history page is scraped")
    crumb.set_defaults(handler=handle_crumb)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if not hasattr(args, "handler"):
        parser.print_help()
        return 0

    ctx = build_context(args)
    return args.handler(args, ctx)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
