"""Runtime configuration for the watchlist engine and its adapters.

All tunables can be overridden via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_symbols(key: str, default: str) -> tuple[str, ...]:
    """Read a comma-separated symbol list, normalised to uppercase."""
    raw = os.getenv(key, default)
    symbols = tuple(s.strip().upper() for s in raw.split(",") if s.strip())
    return symbols or tuple(s.strip() for s in default.split(","))


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per engine.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── Polling cadence ─────────────────────────────────────────
    poll_interval_s: float = field(default_factory=lambda: _env_float("QUOTEWATCH_POLL_INTERVAL_S", 45.0))

    # ── Quote source ────────────────────────────────────────────
    yahoo_base_url: str = field(default_factory=lambda: os.getenv(
        "QUOTEWATCH_YAHOO_BASE_URL",
        "https://query1.finance.yahoo.com",
    ))
    http_timeout_s: float = field(default_factory=lambda: _env_float("QUOTEWATCH_HTTP_TIMEOUT_S", 10.0))

    # ── State ───────────────────────────────────────────────────
    sqlite_path: str = field(default_factory=lambda: os.getenv("QUOTEWATCH_SQLITE_PATH", "artifacts/quotewatch/state.db"))

    # Seed list used when no (or an empty) ticker list is persisted.
    default_tickers: tuple[str, ...] = field(
        default_factory=lambda: _env_symbols("QUOTEWATCH_DEFAULT_TICKERS", "AAPL,MSFT,TSLA"),
    )

    # ── Telemetry ───────────────────────────────────────────────
    # Consecutive fetch failures for one symbol before a warning is logged.
    failure_streak_warn: int = field(default_factory=lambda: _env_int("QUOTEWATCH_FAILURE_STREAK_WARN", 5))
