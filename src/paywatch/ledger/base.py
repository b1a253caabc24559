"""
Ledger access interfaces.

A ledger client answers three questions about an address: which payments
arrived recently, what a given transaction actually paid it, and (optionally)
which payments arrive from now on, via a live subscription.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from paywatch.core.exceptions import SubscriptionFailed
from paywatch.core.types import LedgerTransaction

TransactionHandler = Callable[[LedgerTransaction], Awaitable[None]]
ErrorHandler = Callable[[SubscriptionFailed], Awaitable[None]]


class Subscription(ABC):
    """Handle for a live address subscription."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        ...


class LedgerClient(ABC):
    """Read access to one ledger."""

    @property
    def supports_subscriptions(self) -> bool:
        """Whether ``subscribe`` is available for this ledger."""
        return False

    @abstractmethod
    async def account_transactions(
        self,
        address: str,
        limit: int = 20,
    ) -> list[LedgerTransaction]:
        """
        Recent incoming payments to ``address``, newest first.

        Raises:
            LedgerQueryFailed: The query failed or timed out
        """
        ...

    @abstractmethod
    async def transaction(self, tx_hash: str, address: str) -> LedgerTransaction | None:
        """
        Look up one transaction as the ledger recorded it.

        Returns None unless ``tx_hash`` is a successful payment to ``address``.
        Amount, destination tag and confirmations come from the ledger.

        Raises:
            LedgerQueryFailed: The query failed or timed out
        """
        ...

    async def subscribe(
        self,
        address: str,
        on_transaction: TransactionHandler,
        on_error: ErrorHandler,
    ) -> Subscription:
        """
        Open a live subscription for incoming transactions to ``address``.

        ``on_error`` is awaited at most once, when the subscription breaks
        after being opened.

        Raises:
            SubscriptionFailed: The subscription could not be opened
        """
        raise SubscriptionFailed(
            f"{type(self).__name__} does not support subscriptions",
            address=address,
        )

    async def close(self) -> None:
        return None
