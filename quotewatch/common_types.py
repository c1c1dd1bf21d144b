"""Value types shared by the engine and its collaborators.

Quotes and alert rules are immutable snapshots: the engine replaces
them wholesale and never mutates one in place.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Quote:
    """Latest known price snapshot for one symbol."""

    symbol: str  # uppercase
    price: float
    change: float
    change_percent: float
    currency: str = ""


@dataclass(frozen=True)
class PricePoint:
    """One intraday sample; ``index`` is the bar position in the session."""

    index: int
    price: float


def _threshold(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"threshold must be numeric, got {type(value).__name__}")
    try:
        f = float(value)
    except OverflowError:
        raise ValueError(f"threshold out of range: {value!r:.40}") from None
    if not math.isfinite(f):
        raise ValueError(f"threshold must be finite, got {f!r}")
    return f


@dataclass(frozen=True)
class AlertRule:
    """Upper/lower price thresholds for a single symbol.

    ``above`` fires when price >= above; ``below`` fires when
    price <= below.  A rule with neither set is empty and is never
    stored by the engine.
    """

    above: float | None = None
    below: float | None = None

    @property
    def is_empty(self) -> bool:
        return self.above is None and self.below is None

    def to_dict(self) -> dict[str, float | None]:
        return {"above": self.above, "below": self.below}

    @classmethod
    def from_dict(cls, data: Any) -> AlertRule:
        """Build a rule from its persisted mapping.

        Raises ``ValueError`` for anything that is not a mapping of
        numeric (or null) thresholds.
        """
        if not isinstance(data, dict):
            raise ValueError(f"alert rule must be an object, got {type(data).__name__}")
        return cls(above=_threshold(data.get("above")), below=_threshold(data.get("below")))


@dataclass(frozen=True)
class AlertCrossing:
    """A rule that fired against a fresh quote."""

    symbol: str
    direction: str  # "above" | "below"
    threshold: float
    price: float
    currency: str = ""

    @property
    def title(self) -> str:
        arrow = "↑" if self.direction == "above" else "↓"
        return f"{self.symbol} crossed {arrow} {self.threshold}"

    @property
    def body(self) -> str:
        return f"Now {self.price:.2f} {self.currency}".rstrip()
