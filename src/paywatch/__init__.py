"""
PayWatch - Crypto payment confirmation for invoices.

Quotes an invoice balance in a crypto asset, hands out a receiving address,
watches the ledger for the matching deposit and confirms it exactly once.

Usage:
    >>> from paywatch import PayWatch
    >>>
    >>> client = PayWatch()
    >>> intent = await client.create_intent("org-1", "inv-42", "50.00", "xrp")
    >>> async with client.observe(intent.id) as session:
    ...     ...
    >>> report = await client.check_status(intent.id)
    >>> report.status
    <PaymentStatus.CONFIRMED: 'confirmed'>
"""

from paywatch.client import PayWatch
from paywatch.core.config import Config
from paywatch.core.exceptions import (
    AddressPoolExhausted,
    AllocationError,
    ConfigurationError,
    IntentError,
    IntentExpired,
    IntentNotFound,
    LedgerQueryFailed,
    NetworkError,
    NoAddressesConfigured,
    OrganizationNotEligible,
    PayWatchError,
    QuoteError,
    RateUnavailable,
    SubscriptionFailed,
    UnsupportedAsset,
    UnsupportedFiatCurrency,
    ValidationError,
)
from paywatch.core.logging import configure_logging, get_logger
from paywatch.core.types import (
    AddressUsage,
    LedgerTransaction,
    PaymentIntent,
    PaymentStatus,
    Quote,
    StatusReport,
)
from paywatch.session import ClientSessionToken, SessionRestore
from paywatch.watcher import WatchSession

__version__ = "0.1.0"

__all__ = [
    # Client
    "PayWatch",
    "Config",
    # Types
    "AddressUsage",
    "LedgerTransaction",
    "PaymentIntent",
    "PaymentStatus",
    "Quote",
    "StatusReport",
    "WatchSession",
    "ClientSessionToken",
    "SessionRestore",
    # Exceptions
    "PayWatchError",
    "ConfigurationError",
    "ValidationError",
    "AllocationError",
    "NoAddressesConfigured",
    "AddressPoolExhausted",
    "OrganizationNotEligible",
    "QuoteError",
    "UnsupportedAsset",
    "UnsupportedFiatCurrency",
    "RateUnavailable",
    "IntentError",
    "IntentNotFound",
    "IntentExpired",
    "NetworkError",
    "LedgerQueryFailed",
    "SubscriptionFailed",
    # Logging
    "configure_logging",
    "get_logger",
]
