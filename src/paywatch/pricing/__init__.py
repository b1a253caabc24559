"""Fiat -> native amount conversion."""

from paywatch.pricing.quoter import RateQuoter
from paywatch.pricing.source import CoinGeckoPriceSource, PriceSource

__all__ = ["CoinGeckoPriceSource", "PriceSource", "RateQuoter"]
