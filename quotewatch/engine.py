"""Watchlist state engine.

Owns the ordered ticker list, the quote cache and the alert-rule map,
drives the periodic refresh, and fires each alert rule at most once
(the rule is deleted the moment it fires).

Threading model
---------------
Callers and the polling thread share one ``threading.RLock``.  The lock
is held only around in-memory reads/writes, never across network I/O,
so a slow quote fetch never blocks ``add_ticker`` and friends.  Quotes
and rules are frozen dataclasses replaced by a single dict assignment,
so interleaved refreshes converge on the last write per symbol.

Usage::

    engine = WatchlistEngine(YahooQuoteSource(), LogSink(), SqliteStore(path))
    unsubscribe = engine.subscribe(redraw)
    engine.add_ticker("nvda")
    engine.set_alert("NVDA", AlertRule(above=1000.0))
    ...
    engine.dispose()
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from .alerts import decode_rules, encode_rules, evaluate, sanitize_rule
from .common_types import AlertCrossing, AlertRule, PricePoint, Quote
from .config import Config
from .notifications import NotificationSink
from .poller import RepeatingTask
from .quote_source import QuoteSource
from .store import PersistenceStore

logger = logging.getLogger(__name__)

TICKERS_KEY = "tickers"
ALERTS_KEY = "alerts"

Listener = Callable[[], None]


def normalize_symbol(raw: str) -> str:
    """Trim and uppercase a user-entered symbol."""
    return raw.strip().upper() if isinstance(raw, str) else ""


def _dedupe(symbols: Iterable[str]) -> list[str]:
    """Normalise, drop blanks and keep first occurrences in order."""
    seen: set[str] = set()
    out: list[str] = []
    for raw in symbols:
        sym = normalize_symbol(raw)
        if sym and sym not in seen:
            seen.add(sym)
            out.append(sym)
    return out


class WatchlistEngine:
    """Single owner of ticker, quote and alert state.

    Parameters
    ----------
    source : QuoteSource
        Quote provider; ``fetch_quote`` returns ``None`` when unavailable.
    sink : NotificationSink
        Receives ``notify(title, body)`` when a rule fires.
    store : PersistenceStore
        Durable storage for the ticker list and alert rules.
    config : Config, optional
        Defaults to ``Config()`` (reads env vars).
    autostart : bool
        When True, ``load()`` (initial full refresh) and
        ``start_polling()`` run from the constructor.  When False only
        persisted state is restored and the caller drives the rest.
    """

    def __init__(
        self,
        source: QuoteSource,
        sink: NotificationSink,
        store: PersistenceStore,
        config: Config | None = None,
        autostart: bool = True,
    ) -> None:
        self._config = config or Config()
        self._source = source
        self._sink = sink
        self._store = store

        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        # Held by the periodic tick so a slow cycle is never stacked on.
        self._tick_lock = threading.Lock()

        self._tickers: list[str] = []
        self._quotes: dict[str, Quote] = {}
        self._alerts: dict[str, AlertRule] = {}
        self._failure_streaks: dict[str, int] = {}
        self._listeners: list[Listener] = []
        self._poll_task: RepeatingTask | None = None
        self._disposed = False

        if autostart:
            self.load()
            self.start_polling()
        else:
            self._restore()

    # ── Observable state ────────────────────────────────────

    def tickers(self) -> list[str]:
        """Tracked symbols in display (insertion) order."""
        with self._lock:
            return list(self._tickers)

    def quote_of(self, symbol: str) -> Quote | None:
        with self._lock:
            return self._quotes.get(normalize_symbol(symbol))

    def alert_of(self, symbol: str) -> AlertRule | None:
        with self._lock:
            return self._alerts.get(normalize_symbol(symbol))

    def failure_streak(self, symbol: str) -> int:
        """Consecutive failed fetches for *symbol* since its last good quote."""
        with self._lock:
            return self._failure_streaks.get(normalize_symbol(symbol), 0)

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_polling(self) -> bool:
        task = self._poll_task
        return task is not None and task.is_alive

    def intraday_series(self, symbol: str) -> list[PricePoint]:
        """Today's intraday closes for *symbol* (``[]`` when unavailable)."""
        sym = normalize_symbol(symbol)
        if not sym:
            return []
        try:
            return self._source.fetch_series(sym)
        except Exception as exc:
            logger.warning("Series fetch raised for %s: %s", sym, exc)
            return []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change callback; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify_listeners(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Watchlist listener %r failed", listener)

    # ── Ticker management ───────────────────────────────────

    def add_ticker(self, raw: str) -> bool:
        """Append a symbol and fetch its quote right away.

        Returns False (and does nothing) for blank input or a symbol
        already on the list.
        """
        sym = normalize_symbol(raw)
        if not sym:
            return False
        with self._lock:
            if sym in self._tickers:
                logger.debug("%s already on watchlist", sym)
                return False
            self._tickers.append(sym)
            count = len(self._tickers)
        logger.info("Added %s to watchlist (%d total)", sym, count)
        self._notify_listeners()
        self.save()
        self.refresh([sym])
        return True

    def remove_ticker(self, symbol: str) -> bool:
        """Drop a symbol together with its quote and alert rule."""
        sym = normalize_symbol(symbol)
        with self._lock:
            listed = sym in self._tickers
            if listed:
                self._tickers.remove(sym)
            had_quote = self._quotes.pop(sym, None) is not None
            had_rule = self._alerts.pop(sym, None) is not None
            self._failure_streaks.pop(sym, None)
        if not (listed or had_quote or had_rule):
            return False
        if listed:
            logger.info("Removed %s from watchlist", sym)
        self._notify_listeners()
        self.save()
        return True

    # ── Alert configuration ─────────────────────────────────

    def set_alert(self, symbol: str, rule: AlertRule | None) -> None:
        """Store, replace or (``None`` / empty rule) delete the rule for *symbol*.

        Non-finite thresholds count as unset.  Always persists, even when
        nothing changed; a blank symbol changes nothing but still persists.
        """
        sym = normalize_symbol(symbol)
        rule = sanitize_rule(rule)
        if sym:
            with self._lock:
                if rule is None:
                    self._alerts.pop(sym, None)
                else:
                    self._alerts[sym] = rule
            logger.info("Alert for %s set to %s", sym, rule)
        self._notify_listeners()
        self.save()

    # ── Refresh ─────────────────────────────────────────────

    def refresh(self, symbols: Iterable[str] | None = None) -> int:
        """Fetch quotes for *symbols* (default: the whole list) and check alerts.

        Symbols are processed sequentially; a failed fetch keeps the
        previous quote and never aborts the rest of the batch.  Listeners
        are notified once, after the batch.  Returns the number of
        quotes updated.
        """
        with self._lock:
            if symbols is None:
                batch = list(self._tickers)
            else:
                batch = [s for s in (normalize_symbol(x) for x in symbols) if s]
            tracked_at_start = set(self._tickers)

        updated = 0
        for sym in batch:
            try:
                quote = self._source.fetch_quote(sym)
            except Exception as exc:
                logger.warning("Quote fetch raised for %s: %s", sym, exc)
                quote = None
            if quote is None:
                self._record_failure(sym)
                continue
            applied, crossing = self._apply_quote(sym, quote, sym in tracked_at_start)
            if applied:
                updated += 1
            if crossing is not None:
                self._deliver(crossing)

        logger.debug("Refresh cycle: %d/%d quotes updated", updated, len(batch))
        self._notify_listeners()
        return updated

    def _apply_quote(
        self, sym: str, quote: Quote, was_tracked: bool,
    ) -> tuple[bool, AlertCrossing | None]:
        with self._lock:
            if was_tracked and sym not in self._tickers:
                # Removed while the fetch was in flight.
                return False, None
            self._quotes[sym] = quote
            self._failure_streaks.pop(sym, None)
            if self._disposed:
                return True, None
            crossing = evaluate(quote, self._alerts.get(sym))
            if crossing is None:
                return True, None
            # Auto-clear: the rule is deleted before delivery.
            del self._alerts[sym]
        logger.info(
            "Alert fired: %s crossed %s %.4f at %.2f %s",
            sym, crossing.direction, crossing.threshold, crossing.price, crossing.currency,
        )
        self.save()
        return True, crossing

    def _deliver(self, crossing: AlertCrossing) -> None:
        if self._disposed:
            return
        try:
            self._sink.notify(crossing.title, crossing.body)
        except Exception:
            logger.exception("Notification delivery failed for %s", crossing.symbol)

    def _record_failure(self, sym: str) -> None:
        with self._lock:
            streak = self._failure_streaks.get(sym, 0) + 1
            self._failure_streaks[sym] = streak
        if streak == self._config.failure_streak_warn:
            logger.warning(
                "%s: %d consecutive quote fetch failures, showing stale data", sym, streak,
            )
        else:
            logger.debug("%s: quote unavailable (streak=%d)", sym, streak)

    # ── Persistence ─────────────────────────────────────────

    def save(self) -> bool:
        """Persist the ticker list and alert rules (never quotes)."""
        with self._save_lock:
            with self._lock:
                tickers = list(self._tickers)
                alerts = dict(self._alerts)
            try:
                payload = encode_rules(alerts)
                self._store.set_string_list(TICKERS_KEY, tickers)
                self._store.set_string(ALERTS_KEY, payload)
            except Exception:
                logger.exception("Failed to persist watchlist state")
                return False
        return True

    def _restore(self) -> None:
        try:
            stored = self._store.get_string_list(TICKERS_KEY)
        except Exception:
            logger.exception("Failed to read persisted tickers, using defaults")
            stored = None
        tickers = _dedupe(stored or [])
        if not tickers:
            tickers = _dedupe(self._config.default_tickers)

        try:
            raw_alerts = self._store.get_string(ALERTS_KEY)
        except Exception:
            logger.exception("Failed to read persisted alerts")
            raw_alerts = None
        try:
            alerts = decode_rules(raw_alerts)
        except Exception:
            logger.exception("Failed to decode persisted alerts")
            alerts = {}

        with self._lock:
            self._tickers = tickers
            self._alerts = alerts
            self._quotes = {s: q for s, q in self._quotes.items() if s in tickers}
        logger.info("Restored %d ticker(s), %d alert rule(s)", len(tickers), len(alerts))

    def load(self) -> None:
        """Re-read persisted state, then run a full refresh."""
        self._restore()
        self._notify_listeners()
        self.refresh()

    # ── Polling lifecycle ───────────────────────────────────

    def _periodic_refresh(self) -> None:
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous periodic refresh still running, skipping tick")
            return
        try:
            if not self._disposed:
                self.refresh()
        finally:
            self._tick_lock.release()

    def start_polling(self, interval_s: float | None = None) -> None:
        """(Re)start the periodic full refresh; any previous timer is cancelled."""
        interval = interval_s if interval_s is not None else self._config.poll_interval_s
        with self._lock:
            if self._disposed:
                logger.warning("start_polling() called on a disposed engine")
                return
            previous = self._poll_task
            task = RepeatingTask(self._periodic_refresh, interval, name="quotewatch-poll")
            self._poll_task = task
        if previous is not None:
            previous.stop()
        task.start()

    def stop_polling(self) -> None:
        with self._lock:
            task = self._poll_task
            self._poll_task = None
        if task is not None:
            task.stop()

    def dispose(self) -> None:
        """Stop polling for good; in-flight refreshes finish silently."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
        self.stop_polling()
        logger.info("Watchlist engine disposed")

    def __enter__(self) -> WatchlistEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()
