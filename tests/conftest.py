from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from paywatch.client import PayWatch
from paywatch.core.config import Config
from paywatch.core.exceptions import LedgerQueryFailed, RateUnavailable, SubscriptionFailed
from paywatch.core.types import LedgerTransaction
from paywatch.ledger.base import LedgerClient, Subscription
from paywatch.pricing.source import PriceSource
from paywatch.storage.memory import InMemoryStorage

ADDRESS_A = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
ADDRESS_B = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"


class FakeClock:
    """Controllable wall clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakePriceSource(PriceSource):
    def __init__(self, prices: dict[tuple[str, str], Decimal] | None = None) -> None:
        self.prices = prices if prices is not None else {("xrp", "USD"): Decimal("0.5")}
        self.calls = 0
        self.error: Exception | None = None
        self.closed = False

    async def get_price(self, asset: str, fiat_currency: str) -> Decimal:
        self.calls += 1
        if self.error is not None:
            raise self.error
        price = self.prices.get((asset, fiat_currency))
        if price is None:
            raise RateUnavailable(f"No price for {asset}/{fiat_currency}", asset, fiat_currency)
        return price

    async def close(self) -> None:
        self.closed = True


class FakeSubscription(Subscription):
    def __init__(self, address, on_transaction, on_error) -> None:
        self.address = address
        self.on_transaction = on_transaction
        self.on_error = on_error
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True


class FakeLedger(LedgerClient):
    """In-memory ledger with switchable failures."""

    def __init__(self, subscriptions: bool = True) -> None:
        self._subscriptions = subscriptions
        self.transactions: dict[str, list[LedgerTransaction]] = {}
        self.confirmations: dict[str, int] = {}
        self.fail_queries = False
        self.fail_subscribe = False
        self.query_calls = 0
        self.subscribe_calls = 0
        self.live: list[FakeSubscription] = []
        self.closed = False

    @property
    def supports_subscriptions(self) -> bool:
        return self._subscriptions

    def add(self, address: str, tx: LedgerTransaction) -> None:
        self.transactions.setdefault(address, []).insert(0, tx)
        if tx.confirmations is not None:
            self.confirmations[tx.hash] = tx.confirmations

    async def account_transactions(self, address, limit=20):
        self.query_calls += 1
        if self.fail_queries:
            raise LedgerQueryFailed("ledger unavailable", status_code=503)
        return [self._current(tx) for tx in self.transactions.get(address, [])[:limit]]

    async def transaction(self, tx_hash, address):
        if self.fail_queries:
            raise LedgerQueryFailed("ledger unavailable", status_code=503)
        for tx in self.transactions.get(address, []):
            if tx.hash == tx_hash:
                recorded = self._current(tx)
                recorded.confirmations = recorded.confirmations or 0
                return recorded
        return None

    def _current(self, tx: LedgerTransaction) -> LedgerTransaction:
        return replace(tx, confirmations=self.confirmations.get(tx.hash, tx.confirmations))

    async def subscribe(self, address, on_transaction, on_error):
        self.subscribe_calls += 1
        if self.fail_subscribe:
            raise SubscriptionFailed("connection refused", address=address)
        sub = FakeSubscription(address, on_transaction, on_error)
        self.live.append(sub)
        return sub

    def open_subscriptions(self, address: str | None = None) -> list[FakeSubscription]:
        return [s for s in self.live if not s.closed and (address is None or s.address == address)]

    async def push(self, address: str, tx: LedgerTransaction) -> None:
        for sub in self.open_subscriptions(address):
            await sub.on_transaction(tx)

    async def break_subscriptions(self, address: str) -> None:
        for sub in self.open_subscriptions(address):
            await sub.on_error(SubscriptionFailed("connection lost", address=address))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def price_source():
    return FakePriceSource()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def config():
    return Config(poll_interval=0.01, use_testnet=True)


@pytest.fixture
def confirmed_events():
    return []


@pytest_asyncio.fixture
async def client(config, storage, price_source, ledger, clock, confirmed_events):
    async def on_confirmed(intent):
        confirmed_events.append(intent.id)

    pw = PayWatch(
        config=config,
        storage=storage,
        price_source=price_source,
        ledgers={"xrp": ledger},
        on_confirmed=on_confirmed,
        clock=clock,
    )
    await pw.add_address("org-1", "xrp", ADDRESS_A)
    await pw.add_address("org-1", "xrp", ADDRESS_B)
    yield pw
    await pw.close()
