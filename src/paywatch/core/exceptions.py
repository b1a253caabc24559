"""
Exception hierarchy for PayWatch.

All package-specific exceptions inherit from PayWatchError for easy catching.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class PayWatchError(Exception):
    """
    Base exception for all PayWatch errors.

    Catch this to handle any payment-confirmation related exception.

    Example:
        >>> try:
        ...     await client.create_intent(...)
        ... except PayWatchError as e:
        ...     print(f"Crypto payment error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PayWatchError):
    """
    Configuration is missing or invalid.

    Raised when:
    - A storage backend or renderer name is unknown
    - No ledger client is registered for an asset
    """

    pass


class ValidationError(PayWatchError):
    """
    Input validation error.

    Raised when:
    - Required parameters are missing
    - Amounts are zero or negative
    """

    pass


class AllocationError(PayWatchError):
    """
    Base exception for receiving-address allocation failures.

    Allocation errors are terminal for intent creation: no intent is persisted.
    """

    def __init__(
        self,
        message: str,
        organization_id: str | None = None,
        asset: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.organization_id = organization_id
        self.asset = asset


class NoAddressesConfigured(AllocationError):
    """The organization has no receiving addresses for the asset."""

    pass


class AddressPoolExhausted(AllocationError):
    """
    Every address in the pool has been used and reuse is disabled.

    Add more addresses or enable address reuse to continue.
    """

    pass


class OrganizationNotEligible(AllocationError):
    """Crypto payments are not enabled for the organization."""

    pass


class QuoteError(PayWatchError):
    """Base exception for fiat -> native amount conversion failures."""

    pass


class UnsupportedAsset(QuoteError):
    """The asset code is not in the asset table."""

    def __init__(self, asset: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Unsupported asset: {asset}", details)
        self.asset = asset


class UnsupportedFiatCurrency(QuoteError):
    """The fiat currency code is not supported by the price source."""

    def __init__(self, currency: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Unsupported fiat currency: {currency}", details)
        self.currency = currency


class RateUnavailable(QuoteError):
    """
    No usable exchange rate.

    Raised when:
    - The price source returns an error
    - The price source has no price for the (asset, fiat) pair
    """

    def __init__(
        self,
        message: str,
        asset: str | None = None,
        currency: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.asset = asset
        self.currency = currency


class IntentError(PayWatchError):
    """Base exception for payment intent lookups."""

    def __init__(
        self,
        message: str,
        intent_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.intent_id = intent_id


class IntentNotFound(IntentError):
    """No intent exists with the given id."""

    def __init__(self, intent_id: str) -> None:
        super().__init__(f"Payment intent not found: {intent_id}", intent_id)


class IntentExpired(IntentError):
    """
    The intent passed its expiry deadline.

    Status checks report this as status ``expired``; the exception is only
    raised when a caller asks to start observing an already-expired intent.
    """

    def __init__(self, intent_id: str, expires_at: datetime) -> None:
        super().__init__(
            f"Payment intent {intent_id} expired at {expires_at.isoformat()}",
            intent_id,
        )
        self.expires_at = expires_at


class NetworkError(PayWatchError):
    """
    Network or API communication error.

    Raised when:
    - HTTP request fails (timeout, connection error)
    - API returns unexpected response
    - Rate limiting encountered
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url

    def is_rate_limited(self) -> bool:
        """Check if this is a rate limit error."""
        return self.status_code == 429

    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and 500 <= self.status_code < 600


class LedgerQueryFailed(NetworkError):
    """
    A ledger query failed.

    Transient: the next poll tick retries. Never surfaced to callers, who keep
    seeing ``pending`` while this happens.
    """

    pass


class SubscriptionFailed(NetworkError):
    """
    A live ledger subscription failed.

    Transient: triggers the switch from push to pull observation.
    """

    def __init__(
        self,
        message: str,
        address: str | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, url=url, details=details)
        self.address = address
