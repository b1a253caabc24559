"""
Type definitions for PayWatch.

This module contains the enums and data classes shared by the allocator,
quoter, intent store, reconciler and watcher.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, TypeAlias

# Type alias for flexible amount input
AmountType: TypeAlias = Decimal | int | float | str


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def to_decimal(value: AmountType) -> Decimal:
    """Convert user input to Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_datetime(val: str | datetime | None) -> datetime | None:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val.replace("Z", "+00:00"))


class PaymentStatus(str, Enum):
    """Status of a crypto payment intent, surfaced verbatim to callers."""

    PENDING = "pending"  # Waiting for a matching transaction or confirmations
    CONFIRMED = "confirmed"  # Matching amount with enough confirmations
    UNDERPAID = "underpaid"  # Transaction seen, amount outside the tolerance band
    EXPIRED = "expired"  # Deadline passed before confirmation

    def is_terminal(self) -> bool:
        return self in (PaymentStatus.CONFIRMED, PaymentStatus.EXPIRED)


@dataclass
class LedgerTransaction:
    """An incoming transaction observed on a ledger."""

    hash: str
    amount: Decimal
    confirmations: int | None = None
    timestamp: datetime | None = None
    tag: int | None = None
    sender: str | None = None
    ledger_index: int | None = None


@dataclass
class Quote:
    """Fiat -> native conversion at a point in time."""

    native_amount: Decimal
    rate: Decimal
    asset: str
    fiat_currency: str


@dataclass
class PaymentIntent:
    """One requested payment awaiting ledger confirmation."""

    id: str
    organization_id: str
    invoice_id: str
    fiat_amount: Decimal
    fiat_currency: str
    asset: str
    native_amount: Decimal
    exchange_rate: Decimal
    address: str
    created_at: datetime
    expires_at: datetime
    min_confirmations: int
    status: PaymentStatus = PaymentStatus.PENDING
    tag: int | None = None
    test_mode: bool = False
    testnet: bool = False
    # Observed transaction reference (empty until a candidate is seen)
    tx_hash: str | None = None
    observed_amount: Decimal | None = None
    confirmations: int | None = None
    observed_payments: dict[str, Decimal] = field(default_factory=dict)
    updated_at: datetime | None = None
    confirmed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        """True once the wall-clock deadline has passed."""
        return now > self.expires_at

    @property
    def payment_uri(self) -> str:
        """QR payload understood by wallets: ``xrp:rAddr?dt=123&amount=1.5``."""
        uri = f"{self.asset}:{self.address}"
        if self.tag is not None:
            return f"{uri}?dt={self.tag}&amount={self.native_amount}"
        return f"{uri}?amount={self.native_amount}"

    @property
    def observed_fiat_amount(self) -> Decimal | None:
        """Fiat value of what was actually received, at the creation-time rate."""
        if self.observed_amount is None:
            return None
        return (self.observed_amount * self.exchange_rate).quantize(Decimal("0.01"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "invoice_id": self.invoice_id,
            "fiat_amount": str(self.fiat_amount),
            "fiat_currency": self.fiat_currency,
            "asset": self.asset,
            "native_amount": str(self.native_amount),
            "exchange_rate": str(self.exchange_rate),
            "address": self.address,
            "tag": self.tag,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "min_confirmations": self.min_confirmations,
            "status": self.status.value,
            "test_mode": self.test_mode,
            "testnet": self.testnet,
            "tx_hash": self.tx_hash,
            "observed_amount": str(self.observed_amount) if self.observed_amount is not None else None,
            "confirmations": self.confirmations,
            "observed_payments": {h: str(a) for h, a in self.observed_payments.items()},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentIntent:
        return cls(
            id=data["id"],
            organization_id=data["organization_id"],
            invoice_id=data["invoice_id"],
            fiat_amount=Decimal(data["fiat_amount"]),
            fiat_currency=data["fiat_currency"],
            asset=data["asset"],
            native_amount=Decimal(data["native_amount"]),
            exchange_rate=Decimal(data["exchange_rate"]),
            address=data["address"],
            tag=data.get("tag"),
            created_at=parse_datetime(data["created_at"]),
            expires_at=parse_datetime(data["expires_at"]),
            min_confirmations=int(data["min_confirmations"]),
            status=PaymentStatus(data["status"]),
            test_mode=bool(data.get("test_mode", False)),
            testnet=bool(data.get("testnet", False)),
            tx_hash=data.get("tx_hash"),
            observed_amount=Decimal(data["observed_amount"])
            if data.get("observed_amount") is not None
            else None,
            confirmations=data.get("confirmations"),
            observed_payments={
                h: Decimal(a) for h, a in (data.get("observed_payments") or {}).items()
            },
            updated_at=parse_datetime(data.get("updated_at")),
            confirmed_at=parse_datetime(data.get("confirmed_at")),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ObservedTransaction:
    """Observation fields written by a status transition."""

    tx_hash: str | None
    observed_amount: Decimal
    confirmations: int
    payments: dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "observed_amount": str(self.observed_amount),
            "confirmations": self.confirmations,
            "observed_payments": {h: str(a) for h, a in self.payments.items()},
        }


@dataclass
class StatusReport:
    """Result of a status check, safe to hand to UI callers."""

    intent_id: str
    status: PaymentStatus
    confirmations: int
    required_confirmations: int
    expected_amount: Decimal
    tx_hash: str | None = None
    observed_amount: Decimal | None = None
    observed_fiat_amount: Decimal | None = None
    test_mode: bool = False
    testnet: bool = False
    explorer_url: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == PaymentStatus.CONFIRMED

    @property
    def underpaid(self) -> bool:
        return self.status == PaymentStatus.UNDERPAID

    @classmethod
    def from_intent(
        cls,
        intent: PaymentIntent,
        confirmations: int | None = None,
        explorer_url: str | None = None,
    ) -> StatusReport:
        return cls(
            intent_id=intent.id,
            status=intent.status,
            confirmations=confirmations if confirmations is not None else (intent.confirmations or 0),
            required_confirmations=intent.min_confirmations,
            expected_amount=intent.native_amount,
            tx_hash=intent.tx_hash,
            observed_amount=intent.observed_amount,
            observed_fiat_amount=intent.observed_fiat_amount,
            test_mode=intent.test_mode,
            testnet=intent.testnet,
            explorer_url=explorer_url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "status": self.status.value,
            "confirmed": self.confirmed,
            "underpaid": self.underpaid,
            "confirmations": self.confirmations,
            "required_confirmations": self.required_confirmations,
            "expected_amount": str(self.expected_amount),
            "tx_hash": self.tx_hash,
            "observed_amount": str(self.observed_amount) if self.observed_amount is not None else None,
            "observed_fiat_amount": str(self.observed_fiat_amount)
            if self.observed_fiat_amount is not None
            else None,
            "test_mode": self.test_mode,
            "testnet": self.testnet,
            "explorer_url": self.explorer_url,
        }


@dataclass
class AddressUsage:
    """Usage statistics for one receiving address."""

    organization_id: str
    asset: str
    address: str
    last_used_at: datetime | None = None
    times_used: int = 0
