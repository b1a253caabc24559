"""
Rate Quoter.

Converts a fiat target amount into a native amount at the asset's canonical
precision. Spot rates are cached per (asset, fiat) pair.
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Callable

from paywatch.core.assets import get_asset, normalize_fiat
from paywatch.core.exceptions import RateUnavailable, ValidationError
from paywatch.core.logging import get_logger
from paywatch.core.types import AmountType, Quote, to_decimal
from paywatch.pricing.source import PriceSource

logger = get_logger("quoter")


class RateQuoter:
    """Quote fiat amounts in native units."""

    def __init__(
        self,
        source: PriceSource,
        cache_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[tuple[str, str], tuple[Decimal, float]] = {}
        self._lock = asyncio.Lock()

    def _cached(self, key: tuple[str, str]) -> Decimal | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        rate, fetched_at = entry
        if self._clock() - fetched_at > self._cache_ttl:
            return None
        return rate

    async def get_rate(self, asset: str, fiat_currency: str) -> Decimal:
        """Spot price of one unit of ``asset`` in ``fiat_currency``."""
        info = get_asset(asset)
        fiat = normalize_fiat(fiat_currency)
        key = (info.code, fiat)

        rate = self._cached(key)
        if rate is not None:
            return rate

        async with self._lock:
            # Another coroutine may have refreshed while we waited
            rate = self._cached(key)
            if rate is not None:
                return rate

            rate = await self._source.get_price(info.code, fiat)
            if rate <= 0:
                raise RateUnavailable(
                    f"Non-positive {fiat} price for {info.code}: {rate}",
                    asset=info.code,
                    currency=fiat,
                )
            self._cache[key] = (rate, self._clock())
            logger.debug(f"Fetched {info.code}/{fiat} rate {rate}")
            return rate

    async def quote(self, fiat_amount: AmountType, fiat_currency: str, asset: str) -> Quote:
        """
        Convert ``fiat_amount`` to the native amount of ``asset``.

        Raises:
            UnsupportedAsset: Unknown asset code
            UnsupportedFiatCurrency: Unknown fiat code
            RateUnavailable: Price source failed or has no price for the pair
        """
        amount = to_decimal(fiat_amount)
        if amount <= 0:
            raise ValidationError(f"Fiat amount must be positive, got {amount}")

        info = get_asset(asset)
        fiat = normalize_fiat(fiat_currency)
        rate = await self.get_rate(info.code, fiat)

        return Quote(
            native_amount=info.quantize(amount / rate),
            rate=rate,
            asset=info.code,
            fiat_currency=fiat,
        )

    def clear_cache(self) -> None:
        self._cache.clear()
