"""Tests for the collaborator adapters: Yahoo source, push sinks, stores, config."""
from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from quotewatch.common_types import PricePoint, Quote
from quotewatch.config import Config
from quotewatch.notifications import FanoutSink, LogSink, NotifyConfig, PushSink, _mask_url
from quotewatch.quote_source import YahooQuoteSource, parse_quote, parse_series
from quotewatch.store import MemoryStore
from quotewatch.store_sqlite import SqliteStore


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _quote_payload(**overrides) -> dict:
    row = {
        "symbol": "aapl",
        "regularMarketPrice": 189.5,
        "regularMarketChange": -1.25,
        "regularMarketChangePercent": -0.66,
        "currency": "USD",
    }
    row.update(overrides)
    return {"quoteResponse": {"result": [row], "error": None}}


def _chart_payload() -> dict:
    return {
        "chart": {
            "result": [{
                "timestamp": [1, 2, 3, 4],
                "indicators": {"quote": [{"close": [10.0, None, 10.5, 11]}]},
            }],
        },
    }


def _source(handler) -> YahooQuoteSource:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return YahooQuoteSource("https://yahoo.test", client=client, backoff_s=0.0)


@pytest.fixture
def tmp_db(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "nested" / "state.db"))
    yield store
    store.close()


# ---------------------------------------------------------------------------
# Yahoo parsing
# ---------------------------------------------------------------------------


class TestParseQuote:
    def test_full_row(self):
        assert parse_quote(_quote_payload()) == Quote("AAPL", 189.5, -1.25, -0.66, "USD")

    def test_missing_price_is_unavailable(self):
        assert parse_quote(_quote_payload(regularMarketPrice=None)) is None

    def test_missing_change_fields_default_to_zero(self):
        payload = _quote_payload()
        row = payload["quoteResponse"]["result"][0]
        del row["regularMarketChange"], row["regularMarketChangePercent"], row["currency"]
        q = parse_quote(payload)
        assert (q.change, q.change_percent, q.currency) == (0.0, 0.0, "")

    @pytest.mark.parametrize("payload", [
        {},
        {"quoteResponse": {"result": []}},
        {"quoteResponse": {"result": None}},
        {"quoteResponse": None},
        [],
    ])
    def test_empty_shapes(self, payload):
        assert parse_quote(payload) is None


class TestParseSeries:
    def test_skips_null_closes_and_keeps_index(self):
        assert parse_series(_chart_payload()) == [
            PricePoint(0, 10.0), PricePoint(2, 10.5), PricePoint(3, 11.0),
        ]

    def test_missing_result(self):
        assert parse_series({"chart": {"result": None}}) == []
        assert parse_series({}) == []

    def test_length_mismatch_uses_shorter(self):
        payload = _chart_payload()
        payload["chart"]["result"][0]["timestamp"] = [1, 2]
        assert parse_series(payload) == [PricePoint(0, 10.0)]


# ---------------------------------------------------------------------------
# YahooQuoteSource over a mock transport
# ---------------------------------------------------------------------------


class TestYahooQuoteSource:
    def test_fetch_quote_request_shape(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_quote_payload())

        q = _source(handler).fetch_quote(" aapl ")
        assert q.symbol == "AAPL"
        assert seen[0].url.path == "/v7/finance/quote"
        assert seen[0].url.params["symbols"] == "AAPL"

    def test_fetch_series_request_shape(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_chart_payload())

        points = _source(handler).fetch_series("msft")
        assert len(points) == 3
        assert seen[0].url.path == "/v8/finance/chart/MSFT"
        assert seen[0].url.params["range"] == "1d"
        assert seen[0].url.params["interval"] == "5m"

    def test_http_error_maps_to_none(self):
        src = _source(lambda request: httpx.Response(404, text="nope"))
        assert src.fetch_quote("AAPL") is None
        assert src.fetch_series("AAPL") == []

    def test_non_json_maps_to_none(self):
        src = _source(lambda request: httpx.Response(200, text="<html>"))
        assert src.fetch_quote("AAPL") is None

    def test_retries_transient_status(self):
        responses = [httpx.Response(503), httpx.Response(200, json=_quote_payload())]
        src = _source(lambda request: responses.pop(0))
        assert src.fetch_quote("AAPL").price == 189.5

    def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            raise httpx.ConnectError("refused", request=request)

        assert _source(handler).fetch_quote("AAPL") is None
        assert len(calls) == YahooQuoteSource._MAX_RETRIES

    def test_blank_symbol_makes_no_request(self):
        handler = MagicMock()
        assert _source(handler).fetch_quote("  ") is None
        handler.assert_not_called()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def _push_cfg(**kwargs) -> NotifyConfig:
    base = {
        "telegram_bot_token": "",
        "telegram_chat_id": "",
        "discord_webhook_url": "",
        "pushover_app_token": "",
        "pushover_user_key": "",
    }
    base.update(kwargs)
    return NotifyConfig(**base)


class TestNotifyConfig:
    @patch.dict(os.environ, {}, clear=True)
    def test_no_channels_by_default(self):
        assert NotifyConfig().has_any_channel is False

    @patch.dict(os.environ, {"QUOTEWATCH_DISCORD_WEBHOOK_URL": "https://discord.com/api/webhooks/1/x"})
    def test_discord_from_env(self):
        assert NotifyConfig().has_any_channel is True

    def test_secrets_hidden_from_repr(self):
        cfg = _push_cfg(telegram_bot_token="SECRET", telegram_chat_id="42")
        assert "SECRET" not in repr(cfg)


class TestPushSink:
    def test_dispatches_to_all_configured_channels(self):
        hosts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return httpx.Response(204 if "discord" in request.url.host else 200)

        sink = PushSink(
            _push_cfg(
                telegram_bot_token="t", telegram_chat_id="c",
                discord_webhook_url="https://discord.com/api/webhooks/1/x",
                pushover_app_token="a", pushover_user_key="u",
            ),
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        results = sink.send("AAPL crossed ↑ 100.0", "Now 100.00 USD")
        assert results == {"telegram": True, "discord": True, "pushover": True}
        assert hosts == ["api.telegram.org", "discord.com", "api.pushover.net"]

    def test_telegram_payload(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        sink = PushSink(
            _push_cfg(telegram_bot_token="t", telegram_chat_id="c"),
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        sink.notify("TSLA crossed ↓ 150.0", "Now 149.00 USD")
        assert bodies[0]["chat_id"] == "c"
        assert bodies[0]["text"] == "TSLA crossed ↓ 150.0\nNow 149.00 USD"

    def test_channel_failure_swallowed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        sink = PushSink(
            _push_cfg(discord_webhook_url="https://discord.com/api/webhooks/1/x"),
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        sink.notify("t", "b")  # must not raise
        assert sink.send("t", "b") == {"discord": False}

    def test_no_channels_sends_nothing(self):
        handler = MagicMock()
        sink = PushSink(_push_cfg(), client=httpx.Client(transport=httpx.MockTransport(handler)))
        assert sink.send("t", "b") == {}
        handler.assert_not_called()

    def test_mask_url(self):
        assert _mask_url("https://discord.com/api/webhooks/123/abc?wait=1") == (
            "https://discord.com/api/webhooks/***?***"
        )


class TestFanoutAndLogSink:
    def test_fanout_continues_after_failure(self):
        bad = MagicMock()
        bad.notify.side_effect = RuntimeError("x")
        good = MagicMock()
        FanoutSink([bad, good]).notify("t", "b")
        good.notify.assert_called_once_with("t", "b")

    def test_log_sink_logs_warning(self, caplog):
        with caplog.at_level("WARNING", logger="quotewatch.notifications"):
            LogSink().notify("AAPL crossed ↑ 1.0", "Now 1.00 USD")
        assert any("AAPL crossed" in r.getMessage() for r in caplog.records)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class TestSqliteStore:
    def test_string_round_trip(self, tmp_db):
        assert tmp_db.get_string("alerts") is None
        tmp_db.set_string("alerts", "{}")
        tmp_db.set_string("alerts", '{"A": 1}')
        assert tmp_db.get_string("alerts") == '{"A": 1}'

    def test_list_round_trip(self, tmp_db):
        assert tmp_db.get_string_list("tickers") is None
        tmp_db.set_string_list("tickers", ["AAPL", "MSFT"])
        assert tmp_db.get_string_list("tickers") == ["AAPL", "MSFT"]

    def test_corrupt_list_reads_as_none(self, tmp_db):
        tmp_db.set_string("tickers", "not json")
        assert tmp_db.get_string_list("tickers") is None
        tmp_db.set_string("tickers", '{"a": 1}')
        assert tmp_db.get_string_list("tickers") is None

    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "state.db")
        first = SqliteStore(path)
        first.set_string_list("tickers", ["NVDA"])
        first.close()
        second = SqliteStore(path)
        try:
            assert second.get_string_list("tickers") == ["NVDA"]
        finally:
            second.close()


class TestMemoryStore:
    def test_lists_are_copied(self):
        store = MemoryStore()
        values = ["AAPL"]
        store.set_string_list("tickers", values)
        values.append("MSFT")
        assert store.get_string_list("tickers") == ["AAPL"]

    def test_type_separation(self):
        store = MemoryStore()
        store.set_string("k", "v")
        assert store.get_string_list("k") is None


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestConfig:
    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        cfg = Config()
        assert cfg.poll_interval_s == 45.0
        assert cfg.default_tickers == ("AAPL", "MSFT", "TSLA")
        assert cfg.http_timeout_s == 10.0

    def test_env_read_at_instantiation(self):
        with patch.dict(os.environ, {"QUOTEWATCH_POLL_INTERVAL_S": "5"}):
            assert Config().poll_interval_s == 5.0
        with patch.dict(os.environ, {"QUOTEWATCH_POLL_INTERVAL_S": "garbage"}):
            assert Config().poll_interval_s == 45.0

    def test_default_tickers_env(self):
        with patch.dict(os.environ, {"QUOTEWATCH_DEFAULT_TICKERS": " spy, qqq ,,"}):
            assert Config().default_tickers == ("SPY", "QQQ")
