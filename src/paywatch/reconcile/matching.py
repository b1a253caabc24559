"""
Amount matching.

Pure functions: given an intent and the transactions seen for its address,
decide which status the intent should move to and which observation to record.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from paywatch.core.types import (
    LedgerTransaction,
    ObservedTransaction,
    PaymentIntent,
    PaymentStatus,
)

TOLERANCE = Decimal("0.01")


def tolerance_band(required: Decimal) -> tuple[Decimal, Decimal]:
    return required * (1 - TOLERANCE), required * (1 + TOLERANCE)


def within_tolerance(amount: Decimal, required: Decimal) -> bool:
    low, high = tolerance_band(required)
    return low <= amount <= high


def is_eligible(intent: PaymentIntent, tx: LedgerTransaction) -> bool:
    """Whether a transaction can pay this intent at all."""
    if tx.amount <= 0:
        return False
    if intent.tag is not None and tx.tag != intent.tag:
        return False
    # Reused addresses carry payments for earlier intents
    if tx.timestamp is not None and tx.timestamp < intent.created_at:
        return False
    return True


@dataclass
class Assessment:
    status: PaymentStatus
    observed: ObservedTransaction | None = None
    overpaid: bool = False


def _status_for_match(intent: PaymentIntent, confirmations: int) -> PaymentStatus:
    if confirmations >= intent.min_confirmations:
        return PaymentStatus.CONFIRMED
    # A top-up waiting for confirmations keeps the underpaid flag until it confirms
    return intent.status


def assess(intent: PaymentIntent, transactions: Iterable[LedgerTransaction]) -> Assessment:
    """
    Classify the observed transactions against the intent's required amount.

    A single transaction inside the tolerance band matches on its own.
    Otherwise every payment seen for the intent (earlier observations plus
    this batch, deduplicated by hash) is summed, so a top-up can bring an
    underpaid intent into the band.
    """
    required = intent.native_amount
    batch = [tx for tx in transactions if is_eligible(intent, tx)]

    payments = dict(intent.observed_payments)
    for tx in batch:
        payments[tx.hash] = tx.amount

    in_band = [tx for tx in batch if within_tolerance(tx.amount, required)]
    if in_band:
        best = max(in_band, key=lambda tx: tx.confirmations or 0)
        confirmations = best.confirmations or 0
        return Assessment(
            status=_status_for_match(intent, confirmations),
            observed=ObservedTransaction(
                tx_hash=best.hash,
                observed_amount=best.amount,
                confirmations=confirmations,
                payments=payments,
            ),
        )

    if not payments:
        return Assessment(status=intent.status)

    total = sum(payments.values(), Decimal(0))
    if batch:
        latest = min(batch, key=lambda tx: tx.confirmations or 0)
        tx_hash = latest.hash
        confirmations = min(tx.confirmations or 0 for tx in batch)
    else:
        tx_hash = intent.tx_hash
        confirmations = intent.confirmations or 0

    observed = ObservedTransaction(
        tx_hash=tx_hash,
        observed_amount=total,
        confirmations=confirmations,
        payments=payments,
    )

    if within_tolerance(total, required):
        return Assessment(status=_status_for_match(intent, confirmations), observed=observed)

    _, high = tolerance_band(required)
    return Assessment(status=PaymentStatus.UNDERPAID, observed=observed, overpaid=total > high)
