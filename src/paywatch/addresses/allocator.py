"""
Address Allocator.

Picks a receiving address from an organization's pool. The decision and the
usage record are written in one conditional upsert per
(organization, asset, address), so concurrent callers never get the same
address inside the cooldown window.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from paywatch.addresses.pool import USAGE_COLLECTION, AddressPool, usage_key
from paywatch.core.assets import get_asset
from paywatch.core.exceptions import (
    AddressPoolExhausted,
    NoAddressesConfigured,
    OrganizationNotEligible,
)
from paywatch.core.logging import get_logger
from paywatch.core.types import utcnow
from paywatch.storage.base import StorageBackend

logger = get_logger("allocator")


class AddressAllocator:
    """
    Allocate receiving addresses.

    Reuse mode (default) hands out the first address idle for longer than the
    cooldown and falls back to the first address when the whole pool is
    cooling down. No-reuse mode hands out each address once and then raises
    ``AddressPoolExhausted``.
    """

    def __init__(
        self,
        storage: StorageBackend,
        pool: AddressPool,
        default_cooldown_hours: float = 24.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._pool = pool
        self._default_cooldown_hours = default_cooldown_hours
        self._clock = clock

    async def _claim(
        self,
        organization_id: str,
        asset: str,
        address: str,
        now: float,
        stale_before: float | None,
    ) -> bool:
        return await self._storage.conditional_upsert(
            USAGE_COLLECTION,
            usage_key(organization_id, asset, address),
            {
                "organization_id": organization_id,
                "asset": asset,
                "address": address,
                "last_used_at": now,
            },
            field="last_used_at",
            stale_before=stale_before,
        )

    async def allocate(self, organization_id: str, asset: str) -> str:
        """
        Select an address for a new payment intent.

        Raises:
            OrganizationNotEligible: Crypto payments are disabled
            NoAddressesConfigured: The pool for the asset is empty
            AddressPoolExhausted: No-reuse mode and every address was used
        """
        code = get_asset(asset).code
        settings = await self._pool.get_settings(organization_id)

        if not settings.crypto_enabled:
            raise OrganizationNotEligible(
                f"Crypto payments are not enabled for organization {organization_id}",
                organization_id=organization_id,
                asset=code,
            )

        addresses = settings.addresses_for(code)
        if not addresses:
            raise NoAddressesConfigured(
                f"No {code.upper()} addresses configured for organization {organization_id}",
                organization_id=organization_id,
                asset=code,
            )

        now = self._clock().timestamp()

        if settings.stop_reusing_addresses:
            for address in addresses:
                if await self._claim(organization_id, code, address, now, stale_before=None):
                    logger.debug(f"Allocated unused {code} address {address}")
                    return address
            raise AddressPoolExhausted(
                f"All {len(addresses)} {code.upper()} addresses have been used "
                f"and address reuse is disabled",
                organization_id=organization_id,
                asset=code,
                details={"pool_size": len(addresses)},
            )

        cooldown_hours = settings.cooldown_hours
        if cooldown_hours is None:
            cooldown_hours = self._default_cooldown_hours
        stale_before = now - cooldown_hours * 3600

        for address in addresses:
            if await self._claim(organization_id, code, address, now, stale_before=stale_before):
                logger.debug(f"Allocated {code} address {address}")
                return address

        # Availability over cooldown: reissue the first address without touching its usage record
        fallback = addresses[0]
        logger.warning(
            f"All {code.upper()} addresses for organization {organization_id} are within "
            f"the {cooldown_hours}h cooldown, reusing {fallback}"
        )
        return fallback
