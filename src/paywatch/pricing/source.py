"""
Price sources.

A price source returns the spot price of one unit of an asset in a fiat
currency. ``CoinGeckoPriceSource`` talks to the CoinGecko simple-price API.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation

import httpx

from paywatch.core.assets import get_asset
from paywatch.core.exceptions import RateUnavailable
from paywatch.core.logging import get_logger
from paywatch.resilience.retry import execute_with_retry

logger = get_logger("pricing")


class PriceSource(ABC):
    """Spot rate provider for (asset, fiat) pairs."""

    @abstractmethod
    async def get_price(self, asset: str, fiat_currency: str) -> Decimal:
        """
        Price of one unit of ``asset`` in ``fiat_currency``.

        Raises:
            RateUnavailable: If the source errors or has no price for the pair
        """
        ...

    async def close(self) -> None:
        return None


class CoinGeckoPriceSource(PriceSource):
    """CoinGecko ``/simple/price`` client."""

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http_client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["x-cg-pro-api-key"] = self._api_key
            self._http_client = httpx.AsyncClient(timeout=self._timeout, headers=headers)
        return self._http_client

    async def _fetch(self, coin_id: str, vs_currency: str) -> dict:
        response = await self._get_client().get(
            f"{self._base_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": vs_currency},
        )
        response.raise_for_status()
        return response.json()

    async def get_price(self, asset: str, fiat_currency: str) -> Decimal:
        info = get_asset(asset)
        vs_currency = fiat_currency.lower()

        try:
            data = await execute_with_retry(self._fetch, info.coingecko_id, vs_currency)
        except httpx.HTTPStatusError as e:
            raise RateUnavailable(
                f"Price source returned HTTP {e.response.status_code}",
                asset=info.code,
                currency=fiat_currency,
            ) from e
        except httpx.HTTPError as e:
            raise RateUnavailable(
                f"Price source request failed: {e}",
                asset=info.code,
                currency=fiat_currency,
            ) from e
        except ValueError as e:
            raise RateUnavailable(
                f"Price source returned a non-JSON body: {e}",
                asset=info.code,
                currency=fiat_currency,
            ) from e

        if not isinstance(data, dict):
            raise RateUnavailable(
                f"Price source returned {type(data).__name__} instead of an object",
                asset=info.code,
                currency=fiat_currency,
            )
        entry = data.get(info.coingecko_id)
        raw = entry.get(vs_currency) if isinstance(entry, dict) else None
        if raw is None:
            raise RateUnavailable(
                f"No {vs_currency.upper()} price for {info.code}",
                asset=info.code,
                currency=fiat_currency,
            )
        try:
            return Decimal(str(raw))
        except InvalidOperation as e:
            raise RateUnavailable(
                f"Malformed price for {info.code}: {raw!r}",
                asset=info.code,
                currency=fiat_currency,
            ) from e

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
