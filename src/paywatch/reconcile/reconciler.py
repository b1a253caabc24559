"""
Confirmation Reconciler.

Decides pending / underpaid / confirmed / expired for an intent and persists
the result through the store's guarded transition. Only the caller whose
transition actually wrote ``confirmed`` fires the confirmation callback.
"""

from __future__ import annotations

import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, Union

from paywatch.core.assets import explorer_url
from paywatch.core.exceptions import LedgerQueryFailed
from paywatch.core.logging import get_logger
from paywatch.core.types import (
    LedgerTransaction,
    PaymentIntent,
    PaymentStatus,
    StatusReport,
    utcnow,
)
from paywatch.intents.service import PaymentIntentStore
from paywatch.reconcile.matching import Assessment, assess
from paywatch.reconcile.sources import TransactionSource

logger = get_logger("reconciler")

ConfirmedCallback = Callable[[PaymentIntent], Union[Awaitable[Any], Any]]


class ConfirmationReconciler:
    """Reconcile intents against observed ledger transactions."""

    def __init__(
        self,
        store: PaymentIntentStore,
        source: TransactionSource,
        on_confirmed: ConfirmedCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._source = source
        self._on_confirmed = on_confirmed
        self._clock = clock

    @property
    def source(self) -> TransactionSource:
        return self._source

    def report(self, intent: PaymentIntent) -> StatusReport:
        url = None
        if intent.tx_hash:
            url = explorer_url(intent.asset, intent.tx_hash, intent.testnet, intent.test_mode)
        return StatusReport.from_intent(intent, explorer_url=url)

    async def reconcile(
        self,
        intent_id: str,
        candidate: LedgerTransaction | None = None,
    ) -> StatusReport:
        """
        Bring an intent up to date.

        Args:
            intent_id: Intent to reconcile
            candidate: A transaction delivered by a subscription, or one the
                caller reports (confirmations None) which is checked against
                the ledger first. Without one, the transaction source is queried.

        Raises:
            IntentNotFound: Unknown intent id
        """
        intent = await self._store.get(intent_id)

        if intent.status.is_terminal():
            return self.report(intent)

        if intent.status == PaymentStatus.PENDING and intent.is_expired(self._clock()):
            intent = await self._store.transition(intent.id, PaymentStatus.EXPIRED)
            return self.report(intent)

        try:
            if candidate is not None:
                transactions = await self._verified(intent, candidate)
            else:
                transactions = await self._source.find(intent)
        except LedgerQueryFailed as e:
            logger.warning(f"Ledger query for intent {intent.id} failed, will retry: {e}")
            return self.report(intent)

        assessment = assess(intent, transactions)
        if assessment.observed is None or self._unchanged(intent, assessment):
            return self.report(intent)

        if assessment.status == PaymentStatus.UNDERPAID:
            kind = "more" if assessment.overpaid else "less"
            logger.warning(
                f"Intent {intent.id} received {kind} than expected: "
                f"{assessment.observed.observed_amount} of {intent.native_amount} {intent.asset}"
            )

        intent, applied = await self._store.apply_transition(
            intent.id, assessment.status, assessment.observed
        )
        if applied and intent.status == PaymentStatus.CONFIRMED:
            await self._fire_confirmed(intent)
        return self.report(intent)

    async def _verified(
        self,
        intent: PaymentIntent,
        candidate: LedgerTransaction,
    ) -> list[LedgerTransaction]:
        # Subscription events are already the ledger's record
        if candidate.confirmations is not None:
            return [candidate]

        # A reported hash only names the transaction; destination, tag and
        # amount are taken from the ledger
        recorded = await self._source.transaction(intent, candidate.hash)
        if recorded is None:
            logger.info(
                f"Transaction {candidate.hash} is not a payment to {intent.address}, "
                f"ignored for intent {intent.id}"
            )
            return []
        if recorded.amount != candidate.amount:
            logger.warning(
                f"Transaction {candidate.hash} delivered {recorded.amount} {intent.asset}, "
                f"caller reported {candidate.amount}"
            )
        return [recorded]

    @staticmethod
    def _unchanged(intent: PaymentIntent, assessment: Assessment) -> bool:
        observed = assessment.observed
        return (
            assessment.status == intent.status
            and observed.tx_hash == intent.tx_hash
            and observed.observed_amount == intent.observed_amount
            and observed.confirmations == intent.confirmations
            and observed.payments == intent.observed_payments
        )

    async def _fire_confirmed(self, intent: PaymentIntent) -> None:
        logger.info(
            f"Payment confirmed for intent {intent.id} (invoice {intent.invoice_id}): "
            f"{intent.observed_amount} {intent.asset} in {intent.tx_hash}",
            extra={"intent_id": intent.id, "asset": intent.asset, "tx_hash": intent.tx_hash},
        )
        if self._on_confirmed is None:
            return
        try:
            result = self._on_confirmed(intent)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # The transition is already persisted; the callback cannot undo it
            logger.exception(f"Confirmation callback failed for intent {intent.id}")
