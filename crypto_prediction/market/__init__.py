"""
Market data types.

The Polygon client lives in `crypto_prediction.market.source`.
"""

from crypto_prediction.market.bars import IndicatorBundle, MarketBar, validate_bars

__all__ = [
    "IndicatorBundle",
    "MarketBar",
    "validate_bars",
]
