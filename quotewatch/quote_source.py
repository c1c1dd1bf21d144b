"""Synchronous Yahoo Finance quote adapter.

Polls two endpoints:
 1. /v7/finance/quote?symbols=…                 (current quote)
 2. /v8/finance/chart/{symbol}?range=1d&interval=5m   (intraday closes)

Uses httpx synchronously so the adapter can be called from the engine's
polling thread without needing asyncio.  Every failure is logged and
mapped to ``None`` / ``[]``; callers never see an exception.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Protocol

import httpx

from .common_types import PricePoint, Quote
from .errors import QuoteSourceError

logger = logging.getLogger(__name__)

# Regex to strip credentials from URLs before logging.
_APIKEY_RE = re.compile(r"(apikey|api_key|token|crumb)=[^&\s]+", re.IGNORECASE)


class QuoteSource(Protocol):
    """Market-data collaborator consumed by the engine."""

    def fetch_quote(self, symbol: str) -> Quote | None: ...

    def fetch_series(self, symbol: str) -> list[PricePoint]: ...


def _sanitize(text: str) -> str:
    """Remove credential query params from a URL/exception for safe logging."""
    return _APIKEY_RE.sub(r"\1=***", text)


def _num(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_quote(payload: Any) -> Quote | None:
    """Extract a ``Quote`` from a v7 ``quoteResponse`` payload."""
    try:
        result = payload["quoteResponse"]["result"]
    except (KeyError, TypeError):
        return None
    if not isinstance(result, list) or not result or not isinstance(result[0], dict):
        return None
    m = result[0]
    price = _num(m.get("regularMarketPrice"))
    symbol = m.get("symbol")
    if price is None or not isinstance(symbol, str) or not symbol.strip():
        return None
    currency = m.get("currency")
    return Quote(
        symbol=symbol.strip().upper(),
        price=price,
        change=_num(m.get("regularMarketChange")) or 0.0,
        change_percent=_num(m.get("regularMarketChangePercent")) or 0.0,
        currency=currency if isinstance(currency, str) else "",
    )


def parse_series(payload: Any) -> list[PricePoint]:
    """Pair chart timestamps with closes, skipping null closes.

    ``index`` is the bar position, so gaps in the session stay visible.
    """
    try:
        res = payload["chart"]["result"][0]
    except (KeyError, IndexError, TypeError):
        return []
    if not isinstance(res, dict):
        return []
    ts = res.get("timestamp") or []
    try:
        closes = res["indicators"]["quote"][0]["close"] or []
    except (KeyError, IndexError, TypeError):
        closes = []
    points: list[PricePoint] = []
    for i in range(min(len(ts), len(closes))):
        close = _num(closes[i])
        if close is None:
            continue
        points.append(PricePoint(index=i, price=close))
    return points


class YahooQuoteSource:
    """Quote + intraday series from Yahoo's public JSON endpoints."""

    _RETRYABLE_CODES = frozenset({429, 500, 502, 503, 504})
    _MAX_RETRIES = 3

    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com",
        timeout_s: float = 10.0,
        client: httpx.Client | None = None,
        backoff_s: float = 1.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(
            timeout=timeout_s,
            headers={"User-Agent": "Mozilla/5.0 (quotewatch)", "Accept": "application/json"},
        )
        self._backoff_s = backoff_s

    # ── HTTP helpers ────────────────────────────────────────────

    def _safe_get(self, url: str, params: dict[str, Any], symbol: str) -> Any:
        """GET with retry+backoff for transient failures; returns parsed JSON."""
        last_exc: Exception | None = None
        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                r = self.client.get(url, params=params)
                if r.status_code in self._RETRYABLE_CODES and attempt < self._MAX_RETRIES:
                    wait = self._backoff_s * 2 ** (attempt - 1)
                    logger.warning(
                        "Yahoo %d for %s — retry %d/%d in %.1fs",
                        r.status_code, symbol, attempt, self._MAX_RETRIES, wait,
                    )
                    time.sleep(wait)
                    continue
                if r.status_code != 200:
                    raise QuoteSourceError(
                        f"HTTP {r.status_code} from {_sanitize(str(r.url))}",
                        symbol=symbol, endpoint=url,
                    )
                try:
                    return r.json()
                except (json.JSONDecodeError, ValueError):
                    raise QuoteSourceError(
                        f"non-JSON response (content-type={r.headers.get('content-type', '')!r})",
                        symbol=symbol, endpoint=url,
                    ) from None
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_exc = exc
                if attempt < self._MAX_RETRIES:
                    wait = self._backoff_s * 2 ** (attempt - 1)
                    logger.warning(
                        "Yahoo network error (%s) for %s — retry %d/%d in %.1fs",
                        type(exc).__name__, symbol, attempt, self._MAX_RETRIES, wait,
                    )
                    time.sleep(wait)
                    continue
        raise QuoteSourceError(
            f"all {self._MAX_RETRIES} attempts failed"
            + (f" (last error: {_sanitize(str(last_exc))})" if last_exc else ""),
            symbol=symbol, endpoint=url,
        )

    # ── QuoteSource ─────────────────────────────────────────────

    def fetch_quote(self, symbol: str) -> Quote | None:
        """GET /v7/finance/quote?symbols=…; ``None`` when unavailable."""
        sym = symbol.strip().upper()
        if not sym:
            return None
        url = f"{self.base_url}/v7/finance/quote"
        try:
            payload = self._safe_get(url, {"symbols": sym}, sym)
        except (QuoteSourceError, httpx.HTTPError) as exc:
            logger.warning("Quote fetch failed for %s: %s", sym, _sanitize(str(exc)))
            return None
        quote = parse_quote(payload)
        if quote is None:
            logger.info("No usable quote for %s", sym)
        return quote

    def fetch_series(self, symbol: str) -> list[PricePoint]:
        """GET /v8/finance/chart/{symbol} (1 day, 5 min bars); ``[]`` on failure."""
        sym = symbol.strip().upper()
        if not sym:
            return []
        url = f"{self.base_url}/v8/finance/chart/{sym}"
        try:
            payload = self._safe_get(url, {"range": "1d", "interval": "5m"}, sym)
        except (QuoteSourceError, httpx.HTTPError) as exc:
            logger.warning("Series fetch failed for %s: %s", sym, _sanitize(str(exc)))
            return []
        return parse_series(payload)

    def close(self) -> None:
        self.client.close()
