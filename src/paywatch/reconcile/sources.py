"""
Transaction sources.

The reconciler fetches candidate transactions through a ``TransactionSource``.
``LedgerTransactionSource`` queries a real ledger; ``SandboxTransactionSource``
synthesizes a deterministic payment so the whole state machine runs offline.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable

from paywatch.core.exceptions import LedgerQueryFailed
from paywatch.core.types import LedgerTransaction, PaymentIntent, utcnow
from paywatch.ledger.base import LedgerClient

SANDBOX_DELAY = 5  # seconds after creation before the payment appears
SANDBOX_CONFIRMATION_INTERVAL = 10  # seconds per additional confirmation
SANDBOX_MAX_CONFIRMATIONS = 6


class TransactionSource(ABC):
    """Where the reconciler looks for payments."""

    @abstractmethod
    async def find(self, intent: PaymentIntent) -> list[LedgerTransaction]:
        """Incoming transactions to the intent's address."""
        ...

    @abstractmethod
    async def transaction(self, intent: PaymentIntent, tx_hash: str) -> LedgerTransaction | None:
        """``tx_hash`` as recorded on the ledger, or None if it did not pay the intent's address."""
        ...


class LedgerTransactionSource(TransactionSource):
    """Queries the ledger registered for the intent's asset."""

    def __init__(self, ledgers: dict[str, LedgerClient], limit: int = 20) -> None:
        self._ledgers = ledgers
        self._limit = limit

    def _ledger(self, asset: str) -> LedgerClient:
        ledger = self._ledgers.get(asset)
        if ledger is None:
            raise LedgerQueryFailed(f"No ledger client registered for {asset}")
        return ledger

    async def find(self, intent: PaymentIntent) -> list[LedgerTransaction]:
        return await self._ledger(intent.asset).account_transactions(
            intent.address, limit=self._limit
        )

    async def transaction(self, intent: PaymentIntent, tx_hash: str) -> LedgerTransaction | None:
        return await self._ledger(intent.asset).transaction(tx_hash, intent.address)


class SandboxTransactionSource(TransactionSource):
    """
    Synthetic ledger for test mode.

    The exact requested amount "arrives" 5 seconds after the intent is
    created and gains one confirmation every 10 seconds after that, up to 6.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    @staticmethod
    def transaction_hash(intent: PaymentIntent) -> str:
        return "test_" + hashlib.sha256(intent.id.encode()).hexdigest()[:32]

    def _confirmations_at(self, intent: PaymentIntent, now: datetime) -> int | None:
        elapsed = (now - intent.created_at).total_seconds()
        if elapsed < SANDBOX_DELAY:
            return None
        return min(
            int((elapsed - SANDBOX_DELAY) // SANDBOX_CONFIRMATION_INTERVAL),
            SANDBOX_MAX_CONFIRMATIONS,
        )

    async def find(self, intent: PaymentIntent) -> list[LedgerTransaction]:
        confirmations = self._confirmations_at(intent, self._clock())
        if confirmations is None:
            return []
        return [
            LedgerTransaction(
                hash=self.transaction_hash(intent),
                amount=intent.native_amount,
                confirmations=confirmations,
                timestamp=intent.created_at + timedelta(seconds=SANDBOX_DELAY),
                tag=intent.tag,
            )
        ]

    async def transaction(self, intent: PaymentIntent, tx_hash: str) -> LedgerTransaction | None:
        if tx_hash != self.transaction_hash(intent):
            return None
        found = await self.find(intent)
        return found[0] if found else None
