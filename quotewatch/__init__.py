"""quotewatch – watchlist quotes with one-shot price alerts.

Keeps a user-curated ticker list, refreshes quotes on a fixed cadence,
and fires a notification exactly once when a configured price threshold
is crossed (the rule is cleared the moment it fires).

The state engine lives in ``quotewatch.engine``; quote fetching,
notification delivery and persistence are pluggable collaborators.
"""

from .common_types import AlertCrossing, AlertRule, PricePoint, Quote
from .config import Config
from .engine import WatchlistEngine

__all__: list[str] = [
    "AlertCrossing",
    "AlertRule",
    "Config",
    "PricePoint",
    "Quote",
    "WatchlistEngine",
]
