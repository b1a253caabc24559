"""
Payment Intent Store.

``create`` is the only writer of the immutable fields. ``transition`` is the
only writer of status and observed-transaction fields, and every transition is
a compare-and-swap on the stored status.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from paywatch.core.exceptions import IntentNotFound
from paywatch.core.logging import get_logger
from paywatch.core.types import (
    ObservedTransaction,
    PaymentIntent,
    PaymentStatus,
    Quote,
    utcnow,
)
from paywatch.storage.base import StorageBackend

logger = get_logger("intents")

COLLECTION = "payment_intents"

# Target status -> statuses it may be written over
ALLOWED_TRANSITIONS: dict[PaymentStatus, tuple[PaymentStatus, ...]] = {
    PaymentStatus.PENDING: (PaymentStatus.PENDING,),
    PaymentStatus.UNDERPAID: (PaymentStatus.PENDING, PaymentStatus.UNDERPAID),
    PaymentStatus.CONFIRMED: (PaymentStatus.PENDING, PaymentStatus.UNDERPAID),
    PaymentStatus.EXPIRED: (PaymentStatus.PENDING,),
}


def _key(intent_id: str) -> str:
    return f"intent:{intent_id}"


class PaymentIntentStore:
    """Persisted payment intents and their guarded status transitions."""

    def __init__(
        self,
        storage: StorageBackend,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._clock = clock

    async def create(
        self,
        organization_id: str,
        invoice_id: str,
        fiat_amount: Decimal,
        quote: Quote,
        address: str,
        ttl_seconds: int,
        min_confirmations: int,
        tag: int | None = None,
        test_mode: bool = False,
        testnet: bool = False,
        metadata: dict | None = None,
    ) -> PaymentIntent:
        now = self._clock()
        intent = PaymentIntent(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            invoice_id=invoice_id,
            fiat_amount=fiat_amount,
            fiat_currency=quote.fiat_currency,
            asset=quote.asset,
            native_amount=quote.native_amount,
            exchange_rate=quote.rate,
            address=address,
            tag=tag,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            min_confirmations=min_confirmations,
            test_mode=test_mode,
            testnet=testnet,
            updated_at=now,
            metadata=metadata or {},
        )
        await self._storage.save(COLLECTION, _key(intent.id), intent.to_dict())
        logger.info(
            f"Created intent {intent.id} for invoice {invoice_id}: "
            f"{intent.native_amount} {intent.asset} to {address}"
        )
        return intent

    async def get(self, intent_id: str) -> PaymentIntent:
        data = await self._storage.get(COLLECTION, _key(intent_id))
        if data is None:
            raise IntentNotFound(intent_id)
        data.pop("_key", None)
        return PaymentIntent.from_dict(data)

    async def apply_transition(
        self,
        intent_id: str,
        new_status: PaymentStatus,
        observed: ObservedTransaction | None = None,
    ) -> tuple[PaymentIntent, bool]:
        """
        Move an intent to ``new_status``.

        Returns:
            ``(intent, applied)``. When the stored status does not allow the
            move (including a lost race) nothing is written, ``applied`` is
            False and the current record is returned.
        """
        allowed = ALLOWED_TRANSITIONS[new_status]
        now = self._clock()

        patch: dict = {"status": new_status.value, "updated_at": now.isoformat()}
        if observed is not None:
            patch.update(observed.to_dict())
        if new_status == PaymentStatus.CONFIRMED:
            patch["confirmed_at"] = now.isoformat()

        applied = await self._storage.compare_and_update(
            COLLECTION,
            _key(intent_id),
            "status",
            [status.value for status in allowed],
            patch,
        )
        intent = await self.get(intent_id)

        if applied and new_status != PaymentStatus.PENDING:
            logger.info(f"Intent {intent_id} -> {new_status.value}")
        elif not applied:
            logger.debug(
                f"Transition of intent {intent_id} to {new_status.value} ignored "
                f"(current status {intent.status.value})"
            )
        return intent, applied

    async def transition(
        self,
        intent_id: str,
        new_status: PaymentStatus,
        observed: ObservedTransaction | None = None,
    ) -> PaymentIntent:
        """Guarded transition; disallowed moves are no-ops returning the stored record."""
        intent, _ = await self.apply_transition(intent_id, new_status, observed)
        return intent

    async def list_for_invoice(self, invoice_id: str) -> list[PaymentIntent]:
        records = await self._storage.query(COLLECTION, filters={"invoice_id": invoice_id})
        intents = []
        for data in records:
            data.pop("_key", None)
            intents.append(PaymentIntent.from_dict(data))
        intents.sort(key=lambda i: i.created_at, reverse=True)
        return intents

    async def find_active_for_invoice(
        self,
        invoice_id: str,
        asset: str | None = None,
    ) -> PaymentIntent | None:
        """
        Most recent intent for an invoice that can still be shown.

        Intents past their deadline are skipped unless already confirmed.
        """
        now = self._clock()
        for intent in await self.list_for_invoice(invoice_id):
            if asset is not None and intent.asset != asset:
                continue
            if intent.status == PaymentStatus.EXPIRED:
                continue
            if intent.status != PaymentStatus.CONFIRMED and intent.is_expired(now):
                continue
            return intent
        return None

    async def find_open(self, invoice_id: str, asset: str) -> list[PaymentIntent]:
        """
        Non-terminal intents for (invoice, asset).

        Pending intents past their deadline are left out; underpaid intents
        never expire and are always included.
        """
        now = self._clock()
        return [
            intent
            for intent in await self.list_for_invoice(invoice_id)
            if intent.asset == asset
            and (
                intent.status == PaymentStatus.UNDERPAID
                or (intent.status == PaymentStatus.PENDING and not intent.is_expired(now))
            )
        ]

    async def expire_overdue(self) -> int:
        """Expire every pending intent past its deadline. Returns the number expired."""
        now = self._clock()
        records = await self._storage.query(
            COLLECTION, filters={"status": PaymentStatus.PENDING.value}
        )
        expired = 0
        for data in records:
            data.pop("_key", None)
            intent = PaymentIntent.from_dict(data)
            if not intent.is_expired(now):
                continue
            _, applied = await self.apply_transition(intent.id, PaymentStatus.EXPIRED)
            if applied:
                expired += 1
        if expired:
            logger.info(f"Expired {expired} overdue payment intents")
        return expired

    async def count_for_address(self, organization_id: str, asset: str, address: str) -> int:
        return await self._storage.count(
            COLLECTION,
            filters={"organization_id": organization_id, "asset": asset, "address": address},
        )
