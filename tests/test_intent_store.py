"""Tests for the payment intent store and its guarded transitions."""

import asyncio
from decimal import Decimal

import pytest

from conftest import ADDRESS_A
from paywatch.core.exceptions import IntentNotFound
from paywatch.core.types import ObservedTransaction, PaymentStatus, Quote
from paywatch.intents import PaymentIntentStore


@pytest.fixture
def store(storage, clock):
    return PaymentIntentStore(storage, clock=clock)


QUOTE = Quote(
    native_amount=Decimal("100.000000"),
    rate=Decimal("0.5"),
    asset="xrp",
    fiat_currency="USD",
)


async def _create(store, invoice_id="inv-1", ttl=3600, **kwargs):
    return await store.create(
        organization_id="org-1",
        invoice_id=invoice_id,
        fiat_amount=Decimal("50"),
        quote=QUOTE,
        address=ADDRESS_A,
        ttl_seconds=ttl,
        min_confirmations=1,
        tag=12345,
        **kwargs,
    )


def _observed(amount="100", confirmations=1, tx_hash="H1"):
    return ObservedTransaction(
        tx_hash=tx_hash,
        observed_amount=Decimal(amount),
        confirmations=confirmations,
        payments={tx_hash: Decimal(amount)},
    )


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_create_persists_intent(self, store, clock):
        intent = await _create(store)
        loaded = await store.get(intent.id)

        assert loaded == intent
        assert loaded.status == PaymentStatus.PENDING
        assert loaded.native_amount == Decimal("100.000000")
        assert (loaded.expires_at - loaded.created_at).total_seconds() == 3600
        assert loaded.tx_hash is None and loaded.observed_amount is None

    @pytest.mark.asyncio
    async def test_get_unknown(self, store):
        with pytest.raises(IntentNotFound):
            await store.get("missing")

    @pytest.mark.asyncio
    async def test_payment_uri_and_fiat_value(self, store):
        intent = await _create(store)
        assert intent.payment_uri == f"xrp:{ADDRESS_A}?dt=12345&amount=100.000000"

        updated = await store.transition(intent.id, PaymentStatus.UNDERPAID, _observed("80"))
        assert updated.observed_fiat_amount == Decimal("40.00")


class TestTransitions:
    @pytest.mark.asyncio
    async def test_pending_to_confirmed(self, store, clock):
        intent = await _create(store)

        confirmed, applied = await store.apply_transition(
            intent.id, PaymentStatus.CONFIRMED, _observed()
        )

        assert applied is True
        assert confirmed.status == PaymentStatus.CONFIRMED
        assert confirmed.tx_hash == "H1"
        assert confirmed.observed_payments == {"H1": Decimal("100")}
        assert confirmed.confirmed_at == clock.now

    @pytest.mark.asyncio
    async def test_confirmed_is_immutable(self, store):
        intent = await _create(store)
        confirmed = await store.transition(intent.id, PaymentStatus.CONFIRMED, _observed())

        for status in PaymentStatus:
            result, applied = await store.apply_transition(
                intent.id, status, _observed("1", tx_hash="OTHER")
            )
            assert applied is False
            assert result == confirmed

    @pytest.mark.asyncio
    async def test_underpaid_can_be_confirmed_but_not_expired(self, store):
        intent = await _create(store)
        await store.transition(intent.id, PaymentStatus.UNDERPAID, _observed("80"))

        _, expired = await store.apply_transition(intent.id, PaymentStatus.EXPIRED)
        _, pending = await store.apply_transition(intent.id, PaymentStatus.PENDING)
        result, confirmed = await store.apply_transition(
            intent.id, PaymentStatus.CONFIRMED, _observed("100")
        )

        assert (expired, pending, confirmed) == (False, False, True)
        assert result.status == PaymentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_expired_is_terminal(self, store):
        intent = await _create(store)
        await store.transition(intent.id, PaymentStatus.EXPIRED)

        result = await store.transition(intent.id, PaymentStatus.CONFIRMED, _observed())

        assert result.status == PaymentStatus.EXPIRED
        assert result.tx_hash is None

    @pytest.mark.asyncio
    async def test_concurrent_confirmations_single_winner(self, store):
        intent = await _create(store)

        results = await asyncio.gather(
            *[
                store.apply_transition(intent.id, PaymentStatus.CONFIRMED, _observed(tx_hash=f"H{i}"))
                for i in range(5)
            ]
        )

        winners = [record for record, applied in results if applied]
        assert len(winners) == 1
        assert all(record.status == PaymentStatus.CONFIRMED for record, _ in results)
        assert (await store.get(intent.id)).tx_hash == winners[0].tx_hash


class TestQueries:
    @pytest.mark.asyncio
    async def test_find_active_skips_expired_unless_confirmed(self, store, clock):
        stale = await _create(store, ttl=60)
        clock.advance(120)

        assert await store.find_active_for_invoice("inv-1") is None

        paid = await _create(store, ttl=60)
        await store.transition(paid.id, PaymentStatus.CONFIRMED, _observed())
        clock.advance(120)

        active = await store.find_active_for_invoice("inv-1")
        assert active.id == paid.id
        assert active.id != stale.id

    @pytest.mark.asyncio
    async def test_find_active_filters_by_asset(self, store):
        await _create(store)

        assert await store.find_active_for_invoice("inv-1", asset="btc") is None
        assert await store.find_active_for_invoice("inv-1", asset="xrp") is not None

    @pytest.mark.asyncio
    async def test_find_active_returns_newest(self, store, clock):
        await _create(store)
        clock.advance(10)
        newer = await _create(store)

        assert (await store.find_active_for_invoice("inv-1")).id == newer.id

    @pytest.mark.asyncio
    async def test_expire_overdue(self, store, clock):
        overdue = await _create(store, invoice_id="inv-1", ttl=60)
        underpaid = await _create(store, invoice_id="inv-2", ttl=60)
        await store.transition(underpaid.id, PaymentStatus.UNDERPAID, _observed("80"))
        fresh = await _create(store, invoice_id="inv-3", ttl=3600)
        clock.advance(120)

        assert await store.expire_overdue() == 1
        assert (await store.get(overdue.id)).status == PaymentStatus.EXPIRED
        assert (await store.get(underpaid.id)).status == PaymentStatus.UNDERPAID
        assert (await store.get(fresh.id)).status == PaymentStatus.PENDING
        assert await store.expire_overdue() == 0

    @pytest.mark.asyncio
    async def test_count_for_address(self, store):
        await _create(store, invoice_id="inv-1")
        await _create(store, invoice_id="inv-2")

        assert await store.count_for_address("org-1", "xrp", ADDRESS_A) == 2
        assert await store.count_for_address("org-2", "xrp", ADDRESS_A) == 0
