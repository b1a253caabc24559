"""Matching observed transactions to payment intents."""

from paywatch.reconcile.matching import TOLERANCE, Assessment, assess, within_tolerance
from paywatch.reconcile.reconciler import ConfirmationReconciler
from paywatch.reconcile.sources import (
    LedgerTransactionSource,
    SandboxTransactionSource,
    TransactionSource,
)

__all__ = [
    "TOLERANCE",
    "Assessment",
    "ConfirmationReconciler",
    "LedgerTransactionSource",
    "SandboxTransactionSource",
    "TransactionSource",
    "assess",
    "within_tolerance",
]
