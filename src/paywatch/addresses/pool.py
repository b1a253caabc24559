"""
Organization settings and receiving-address pools.

Settings are stored through the storage backend, one record per organization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from paywatch.core.assets import get_asset
from paywatch.core.exceptions import ValidationError
from paywatch.core.logging import get_logger
from paywatch.core.types import AddressUsage
from paywatch.storage.base import StorageBackend

logger = get_logger("addresses")

SETTINGS_COLLECTION = "organization_settings"
USAGE_COLLECTION = "address_usage"


def usage_key(organization_id: str, asset: str, address: str) -> str:
    return f"{organization_id}:{asset}:{address}"


@dataclass
class OrganizationSettings:
    """Crypto payment settings for one organization."""

    organization_id: str
    crypto_enabled: bool = True
    wallets: dict[str, list[str]] = field(default_factory=dict)
    cooldown_hours: float | None = None
    stop_reusing_addresses: bool = False
    min_confirmations: int | None = None

    def addresses_for(self, asset: str) -> list[str]:
        return list(self.wallets.get(asset, []))

    def to_dict(self) -> dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "crypto_enabled": self.crypto_enabled,
            "wallets": {asset: list(addrs) for asset, addrs in self.wallets.items()},
            "cooldown_hours": self.cooldown_hours,
            "stop_reusing_addresses": self.stop_reusing_addresses,
            "min_confirmations": self.min_confirmations,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrganizationSettings:
        return cls(
            organization_id=data["organization_id"],
            crypto_enabled=bool(data.get("crypto_enabled", True)),
            wallets={asset: list(addrs) for asset, addrs in (data.get("wallets") or {}).items()},
            cooldown_hours=data.get("cooldown_hours"),
            stop_reusing_addresses=bool(data.get("stop_reusing_addresses", False)),
            min_confirmations=data.get("min_confirmations"),
        )


class AddressPool:
    """Storage-backed organization settings and address pools."""

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    async def get_settings(self, organization_id: str) -> OrganizationSettings:
        """Settings for an organization (defaults when none are stored)."""
        data = await self._storage.get(SETTINGS_COLLECTION, organization_id)
        if data is None:
            return OrganizationSettings(organization_id=organization_id)
        data.pop("_key", None)
        return OrganizationSettings.from_dict(data)

    async def save_settings(self, settings: OrganizationSettings) -> OrganizationSettings:
        await self._storage.save(SETTINGS_COLLECTION, settings.organization_id, settings.to_dict())
        return settings

    async def configure(self, organization_id: str, **changes: Any) -> OrganizationSettings:
        """
        Update organization settings.

        Args:
            organization_id: Organization to update
            **changes: Any ``OrganizationSettings`` field except the id
        """
        settings = await self.get_settings(organization_id)
        for name, value in changes.items():
            if name == "organization_id" or not hasattr(settings, name):
                raise ValidationError(f"Unknown organization setting: {name}")
            setattr(settings, name, value)
        if settings.min_confirmations is not None and settings.min_confirmations < 1:
            raise ValidationError("min_confirmations must be at least 1")
        if settings.cooldown_hours is not None and settings.cooldown_hours < 0:
            raise ValidationError("cooldown_hours cannot be negative")
        return await self.save_settings(settings)

    async def add_address(self, organization_id: str, asset: str, address: str) -> list[str]:
        """Append an address to the pool (no-op if already present)."""
        code = get_asset(asset).code
        address = address.strip()
        if not address:
            raise ValidationError("Address cannot be empty")

        settings = await self.get_settings(organization_id)
        addresses = settings.wallets.setdefault(code, [])
        if address not in addresses:
            addresses.append(address)
            await self.save_settings(settings)
            logger.info(f"Added {code} address {address} for organization {organization_id}")
        return list(addresses)

    async def remove_address(self, organization_id: str, asset: str, address: str) -> bool:
        """Remove an address from the pool together with its usage record."""
        code = get_asset(asset).code
        settings = await self.get_settings(organization_id)
        addresses = settings.wallets.get(code, [])
        if address not in addresses:
            return False

        addresses.remove(address)
        await self.save_settings(settings)
        await self._storage.delete(USAGE_COLLECTION, usage_key(organization_id, code, address))
        logger.info(f"Removed {code} address {address} for organization {organization_id}")
        return True

    async def get_usage(self, organization_id: str, asset: str, address: str) -> AddressUsage:
        code = get_asset(asset).code
        data = await self._storage.get(USAGE_COLLECTION, usage_key(organization_id, code, address))
        last_used_at = None
        if data and data.get("last_used_at") is not None:
            last_used_at = datetime.fromtimestamp(float(data["last_used_at"]), tz=timezone.utc)
        return AddressUsage(
            organization_id=organization_id,
            asset=code,
            address=address,
            last_used_at=last_used_at,
        )
