"""Entry point: ``python -m quotewatch.run``

Standalone watchlist loop: restores the persisted list, refreshes every
``QUOTEWATCH_POLL_INTERVAL_S`` seconds and prints a quote table after
each batch.  Fired alerts go to the log and to any push channel
configured in the environment (see ``quotewatch.notifications``).

Examples::

    python -m quotewatch.run --add NVDA --alert NVDA 1000 -
    python -m quotewatch.run --once --ephemeral
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading

from .alerts import rule_from_text
from .config import Config
from .engine import WatchlistEngine
from .notifications import FanoutSink, LogSink, NotificationSink, NotifyConfig, PushSink
from .quote_source import YahooQuoteSource
from .store import MemoryStore, PersistenceStore
from .store_sqlite import SqliteStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quotewatch",
        description="Track a ticker watchlist and fire one-shot price alerts.",
    )
    parser.add_argument("--add", action="append", default=[], metavar="SYM",
                        help="Add a ticker before starting (repeatable).")
    parser.add_argument("--remove", action="append", default=[], metavar="SYM",
                        help="Remove a ticker before starting (repeatable).")
    parser.add_argument("--alert", action="append", nargs=3, default=[],
                        metavar=("SYM", "ABOVE", "BELOW"),
                        help="Set an alert; use '-' for an unset side. '- -' clears it.")
    parser.add_argument("--once", action="store_true",
                        help="Run a single refresh, print the table and exit.")
    parser.add_argument("--ephemeral", action="store_true",
                        help="Keep state in memory only (nothing persisted).")
    parser.add_argument("--interval", type=float, default=None, metavar="SECONDS",
                        help="Override the poll interval.")
    return parser


def format_table(engine: WatchlistEngine) -> str:
    """Render the watchlist as a fixed-width text table."""
    lines = [f"{'SYMBOL':<8} {'PRICE':>12} {'CHANGE':>10} {'CHG%':>8}  ALERT"]
    for sym in engine.tickers():
        q = engine.quote_of(sym)
        rule = engine.alert_of(sym)
        alert = ""
        if rule is not None:
            parts = []
            if rule.above is not None:
                parts.append(f">={rule.above:g}")
            if rule.below is not None:
                parts.append(f"<={rule.below:g}")
            alert = " ".join(parts)
        if q is None:
            lines.append(f"{sym:<8} {'—':>12} {'':>10} {'':>8}  {alert}")
            continue
        price = f"{q.price:.2f} {q.currency}".strip()
        lines.append(
            f"{sym:<8} {price:>12} {q.change:>+10.2f} {q.change_percent:>+7.2f}%  {alert}"
        )
    return "\n".join(lines)


def _build_sink() -> NotificationSink:
    push_cfg = NotifyConfig()
    if push_cfg.has_any_channel:
        return FanoutSink([LogSink(), PushSink(push_cfg)])
    return LogSink()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    args = build_parser().parse_args(argv)
    cfg = Config()

    store: PersistenceStore = MemoryStore() if args.ephemeral else SqliteStore(cfg.sqlite_path)
    source = YahooQuoteSource(cfg.yahoo_base_url, timeout_s=cfg.http_timeout_s)
    engine = WatchlistEngine(source, _build_sink(), store, config=cfg, autostart=False)

    for sym in args.remove:
        engine.remove_ticker(sym)
    for sym in args.add:
        engine.add_ticker(sym)
    for sym, above, below in args.alert:
        engine.set_alert(sym, rule_from_text(above, below))

    if args.once:
        engine.refresh()
        print(format_table(engine))
        engine.dispose()
        source.close()
        return 0

    engine.subscribe(lambda: print(format_table(engine) + "\n", flush=True))
    engine.load()
    engine.start_polling(args.interval)
    logger.info("Polling %d ticker(s); Ctrl-C to stop", len(engine.tickers()))
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        engine.dispose()
        source.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
