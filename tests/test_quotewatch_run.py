"""Tests for the ``python -m quotewatch.run`` entry point."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

from quotewatch.common_types import AlertRule, Quote
from quotewatch.config import Config
from quotewatch.engine import WatchlistEngine
from quotewatch.run import build_parser, format_table, main
from quotewatch.store import MemoryStore


def _fake_source() -> MagicMock:
    src = MagicMock()
    src.fetch_quote.side_effect = lambda sym: (
        None if sym == "MSFT" else Quote(sym, 123.456, 1.5, 1.23, "USD")
    )
    return src


class TestParser:
    def test_repeatable_options(self):
        args = build_parser().parse_args(
            ["--add", "nvda", "--add", "amd", "--alert", "NVDA", "1000", "-", "--once"]
        )
        assert args.add == ["nvda", "amd"]
        assert args.alert == [["NVDA", "1000", "-"]]
        assert args.once is True
        assert args.ephemeral is False


class TestFormatTable:
    def test_rows(self):
        engine = WatchlistEngine(
            _fake_source(), MagicMock(), MemoryStore(),
            config=Config(default_tickers=("AAPL", "MSFT")), autostart=False,
        )
        engine.refresh()
        engine.set_alert("AAPL", AlertRule(above=200.0, below=100.0))
        lines = format_table(engine).splitlines()
        assert lines[0].startswith("SYMBOL")
        assert "123.46 USD" in lines[1]
        assert ">=200 <=100" in lines[1]
        assert lines[2].startswith("MSFT") and "—" in lines[2]


class TestMain:
    @patch.dict("os.environ", {"QUOTEWATCH_DEFAULT_TICKERS": "AAPL,MSFT"})
    def test_once_ephemeral(self, capsys):
        with patch("quotewatch.run.YahooQuoteSource") as mock_cls:
            mock_cls.return_value = _fake_source()
            rc = main(["--once", "--ephemeral", "--add", "tsla", "--remove", "MSFT",
                       "--alert", "TSLA", "-", "50"])
        assert rc == 0
        out = capsys.readouterr().out
        assert "AAPL" in out
        assert "TSLA" in out
        assert "<=50" in out
        assert "MSFT" not in out
        mock_cls.return_value.close.assert_called_once()
