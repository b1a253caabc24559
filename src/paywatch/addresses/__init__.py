"""Receiving-address pools and allocation."""

from paywatch.addresses.allocator import AddressAllocator
from paywatch.addresses.pool import AddressPool, OrganizationSettings

__all__ = ["AddressAllocator", "AddressPool", "OrganizationSettings"]
