"""Notification sinks for fired price alerts.

The engine only knows the ``NotificationSink`` protocol: ``notify(title,
body)``, fire-and-forget.  Shipped sinks:

* ``LogSink`` – writes the alert to the log (always available).
* ``PushSink`` – dispatches to Telegram, Discord and/or Pushover.
* ``FanoutSink`` – delivers to several sinks.

``PushSink`` configuration is read from environment variables:

    # Telegram
    QUOTEWATCH_TELEGRAM_BOT_TOKEN=123456:ABC-DEF...
    QUOTEWATCH_TELEGRAM_CHAT_ID=-1001234567890

    # Discord
    QUOTEWATCH_DISCORD_WEBHOOK_URL=https://discord.com/api/webhooks/...

    # Pushover
    QUOTEWATCH_PUSHOVER_APP_TOKEN=...
    QUOTEWATCH_PUSHOVER_USER_KEY=...

All channels are optional; only configured channels receive alerts.
"""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"(bot)\d+:[A-Za-z0-9_-]+|(token|user)=[^&\s]+", re.IGNORECASE)


class NotificationSink(Protocol):
    """Best-effort notification delivery; must never raise."""

    def notify(self, title: str, body: str) -> None: ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotifyConfig:
    """Push-notification settings (reads env at instantiation)."""

    # Telegram
    telegram_bot_token: str = field(
        default_factory=lambda: os.getenv("QUOTEWATCH_TELEGRAM_BOT_TOKEN", ""),
        repr=False,
    )
    telegram_chat_id: str = field(
        default_factory=lambda: os.getenv("QUOTEWATCH_TELEGRAM_CHAT_ID", ""),
    )
    # Discord
    discord_webhook_url: str = field(
        default_factory=lambda: os.getenv("QUOTEWATCH_DISCORD_WEBHOOK_URL", ""),
        repr=False,
    )
    # Pushover
    pushover_app_token: str = field(
        default_factory=lambda: os.getenv("QUOTEWATCH_PUSHOVER_APP_TOKEN", ""),
        repr=False,
    )
    pushover_user_key: str = field(
        default_factory=lambda: os.getenv("QUOTEWATCH_PUSHOVER_USER_KEY", ""),
        repr=False,
    )

    @property
    def has_any_channel(self) -> bool:
        return bool(
            (self.telegram_bot_token and self.telegram_chat_id)
            or self.discord_webhook_url
            or (self.pushover_app_token and self.pushover_user_key)
        )


def _mask_url(url: str) -> str:
    """Mask path tokens and query params for safe logging."""
    base = url.split("?")[0]
    if "/webhooks/" in base:
        base = base.split("/webhooks/")[0] + "/webhooks/***"
    return base + ("?***" if "?" in url else "")


def _sanitize_exc(exc: Exception) -> str:
    return _TOKEN_RE.sub("***", str(exc))


# ---------------------------------------------------------------------------
# Channel dispatchers
# ---------------------------------------------------------------------------


def _send_telegram(client: httpx.Client, token: str, chat_id: str, text: str) -> bool:
    """Send a Telegram message via Bot API. Returns True on success."""
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    try:
        resp = client.post(url, json={
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        })
    except httpx.HTTPError as exc:
        logger.warning("Telegram send failed: %s", _sanitize_exc(exc))
        return False
    if resp.status_code == 200:
        logger.info("Telegram notification sent to %s", chat_id)
        return True
    logger.warning("Telegram HTTP %d: %s", resp.status_code, resp.text[:200])
    return False


def _send_discord(client: httpx.Client, webhook_url: str, text: str) -> bool:
    """Send a Discord webhook message. Returns True on success."""
    try:
        resp = client.post(webhook_url, json={"content": text})
    except httpx.HTTPError as exc:
        logger.warning("Discord send failed: %s", type(exc).__name__)
        return False
    # Discord answers 204 No Content on success
    if 200 <= resp.status_code < 300:
        logger.info("Discord notification sent (%s)", _mask_url(webhook_url))
        return True
    logger.warning("Discord HTTP %d", resp.status_code)
    return False


def _send_pushover(client: httpx.Client, app_token: str, user_key: str, title: str, message: str) -> bool:
    """Send a Pushover notification. Returns True on success."""
    try:
        resp = client.post("https://api.pushover.net/1/messages.json", data={
            "token": app_token,
            "user": user_key,
            "title": title,
            "message": message,
            "priority": 0,
            "sound": "cashregister",
        })
    except httpx.HTTPError as exc:
        logger.warning("Pushover send failed: %s", _sanitize_exc(exc))
        return False
    if resp.status_code == 200:
        logger.info("Pushover notification sent")
        return True
    logger.warning("Pushover HTTP %d", resp.status_code)
    return False


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class LogSink:
    """Writes each alert to the log at WARNING so it stands out."""

    def notify(self, title: str, body: str) -> None:
        logger.warning("ALERT %s — %s", title, body)


class PushSink:
    """Dispatch alerts to every configured push channel.

    Parameters
    ----------
    config : NotifyConfig, optional
        Override config (default: reads env vars).
    client : httpx.Client, optional
        Shared HTTP client (tests inject one with a mock transport).
    """

    def __init__(self, config: NotifyConfig | None = None, client: httpx.Client | None = None) -> None:
        self.config = config or NotifyConfig()
        self.client = client or httpx.Client(timeout=10.0)
        if not self.config.has_any_channel:
            logger.debug("PushSink created but no channels configured")

    def channels(self) -> list[str]:
        cfg = self.config
        names: list[str] = []
        if cfg.telegram_bot_token and cfg.telegram_chat_id:
            names.append("telegram")
        if cfg.discord_webhook_url:
            names.append("discord")
        if cfg.pushover_app_token and cfg.pushover_user_key:
            names.append("pushover")
        return names

    def send(self, title: str, body: str) -> dict[str, bool]:
        """Deliver to all channels; returns ``{channel: ok}``."""
        cfg = self.config
        results: dict[str, bool] = {}
        text = f"{title}\n{body}"
        for name in self.channels():
            try:
                if name == "telegram":
                    ok = _send_telegram(self.client, cfg.telegram_bot_token, cfg.telegram_chat_id, text)
                elif name == "discord":
                    ok = _send_discord(self.client, cfg.discord_webhook_url, text)
                else:
                    ok = _send_pushover(
                        self.client, cfg.pushover_app_token, cfg.pushover_user_key, title, body,
                    )
            except Exception as exc:
                logger.warning("%s dispatch raised: %s", name, _sanitize_exc(exc))
                ok = False
            results[name] = ok
        return results

    def notify(self, title: str, body: str) -> None:
        results = self.send(title, body)
        if results and not any(results.values()):
            logger.warning("Alert %r not delivered on any channel", title)

    def close(self) -> None:
        self.client.close()


class FanoutSink:
    """Deliver to several sinks; one failing sink never blocks the rest."""

    def __init__(self, sinks: Iterable[NotificationSink]) -> None:
        self.sinks = list(sinks)

    def notify(self, title: str, body: str) -> None:
        for sink in self.sinks:
            try:
                sink.notify(title, body)
            except Exception:
                logger.exception("Notification sink %s failed", type(sink).__name__)
