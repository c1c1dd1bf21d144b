"""Alert rules: boundary parsing, crossing evaluation and the persisted codec.

Evaluation is a pure function; the engine owns the side effects
(auto-clear, persistence, notification delivery).
"""
from __future__ import annotations

import json
import logging
import math
from typing import Any

from .common_types import AlertCrossing, AlertRule, Quote
from .errors import StoreDecodeError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Boundary parsing (user-entered text → thresholds)
# ---------------------------------------------------------------------------


def parse_threshold(text: str | None) -> float | None:
    """Parse a user-entered threshold; blank or garbage yields ``None``."""
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def sanitize_rule(rule: AlertRule | None) -> AlertRule | None:
    """Drop non-finite thresholds; ``None`` when nothing usable is left."""
    if rule is None:
        return None

    def _finite(value: float | None) -> float | None:
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        try:
            f = float(value)
        except OverflowError:
            return None
        return f if math.isfinite(f) else None

    clean = AlertRule(above=_finite(rule.above), below=_finite(rule.below))
    return None if clean.is_empty else clean


def rule_from_text(above: str | None, below: str | None) -> AlertRule | None:
    """Build a rule from two text fields, or ``None`` when both are unusable."""
    rule = AlertRule(above=parse_threshold(above), below=parse_threshold(below))
    return None if rule.is_empty else rule


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate(quote: Quote, rule: AlertRule | None) -> AlertCrossing | None:
    """Return the crossing *rule* reports for *quote*, if any.

    The upward check runs first, so an inverted rule (``below >= above``)
    that is satisfied on both sides reports the upward crossing.
    """
    if rule is None:
        return None
    price = quote.price
    if rule.above is not None and price >= rule.above:
        return AlertCrossing(quote.symbol, "above", rule.above, price, quote.currency)
    if rule.below is not None and price <= rule.below:
        return AlertCrossing(quote.symbol, "below", rule.below, price, quote.currency)
    return None


# ---------------------------------------------------------------------------
# Persisted codec
# ---------------------------------------------------------------------------


def encode_rules(rules: dict[str, AlertRule]) -> str:
    """Serialise ``symbol -> rule`` as a JSON object."""
    return json.dumps(
        {sym: rule.to_dict() for sym, rule in rules.items()},
        allow_nan=False,
    )


def _parse_payload(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise StoreDecodeError(f"alerts payload is not JSON: {exc}", key="alerts") from None
    if not isinstance(data, dict):
        raise StoreDecodeError(
            f"alerts payload must be an object, got {type(data).__name__}", key="alerts",
        )
    return data


def decode_rules(raw: str | None) -> dict[str, AlertRule]:
    """Decode the persisted alert map, skipping malformed entries.

    Accepts both the plain encoding (``{"AAPL": {"above": 1.0, ...}}``)
    and the legacy one where each value is a JSON-encoded string.
    """
    if not raw:
        return {}
    try:
        data = _parse_payload(raw)
    except StoreDecodeError as exc:
        logger.warning("Discarding persisted alerts: %s", exc)
        return {}

    rules: dict[str, AlertRule] = {}
    for key, value in data.items():
        sym = str(key).strip().upper()
        if not sym:
            continue
        try:
            if isinstance(value, str):
                value = json.loads(value)
            rule = AlertRule.from_dict(value)
        except (ValueError, TypeError, OverflowError) as exc:
            logger.warning("Skipping malformed alert rule for %s: %s", sym, exc)
            continue
        if rule.is_empty:
            continue
        rules[sym] = rule
    return rules
