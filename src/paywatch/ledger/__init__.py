"""Ledger access: query and subscription clients."""

from paywatch.ledger.base import LedgerClient, Subscription
from paywatch.ledger.xrpl import XRPLClient, XRPLSubscription, parse_transaction

__all__ = [
    "LedgerClient",
    "Subscription",
    "XRPLClient",
    "XRPLSubscription",
    "parse_transaction",
]
