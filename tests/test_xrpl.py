"""Tests for the XRP Ledger client."""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from paywatch.core.exceptions import LedgerQueryFailed, SubscriptionFailed
from paywatch.ledger.xrpl import XRPLClient, parse_transaction, ripple_time_to_datetime

DEST = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
SENDER = "rN7n7otQDd6FczFgLdSqtcsAUxDkw6fzRH"


def payment_entry(
    tx_hash="ABC123",
    drops="99500000",
    ledger_index=995,
    destination=DEST,
    result="tesSUCCESS",
    tx_type="Payment",
    validated=True,
    tag=4242,
):
    return {
        "meta": {"TransactionResult": result, "delivered_amount": drops},
        "tx": {
            "TransactionType": tx_type,
            "Account": SENDER,
            "Destination": destination,
            "Amount": drops,
            "DestinationTag": tag,
            "date": 794000000,
            "hash": tx_hash,
            "ledger_index": ledger_index,
        },
        "validated": validated,
    }


def tx_reply(entry):
    """Shape an account_tx entry like a `tx` reply: fields at the top level."""
    reply = dict(entry["tx"])
    reply.update(meta=entry["meta"], validated=entry["validated"], status="success")
    return reply


class RPCStub:
    """JSON-RPC responder keyed by method name."""

    def __init__(self, **results):
        self.results = results
        self.calls: list[dict] = []
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="unavailable")
        return httpx.Response(200, json={"result": self.results[body["method"]]})


def make_client(storage, stub) -> XRPLClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return XRPLClient("https://xrpl.test/", "wss://xrpl.test", storage, http_client=http)


class TestParseTransaction:
    def test_payment(self):
        tx = parse_transaction(payment_entry(), DEST)

        assert tx.hash == "ABC123"
        assert tx.amount == Decimal("99.5")
        assert tx.tag == 4242
        assert tx.sender == SENDER
        assert tx.ledger_index == 995
        assert tx.timestamp == ripple_time_to_datetime(794000000)

    def test_ripple_epoch(self):
        assert ripple_time_to_datetime(0) == datetime(2000, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"tx_type": "OfferCreate"},
            {"destination": SENDER},
            {"result": "tecPATH_DRY"},
        ],
    )
    def test_filtered(self, overrides):
        assert parse_transaction(payment_entry(**overrides), DEST) is None

    def test_issued_currency_ignored(self):
        entry = payment_entry()
        entry["meta"]["delivered_amount"] = {"currency": "USD", "issuer": SENDER, "value": "100"}

        assert parse_transaction(entry, DEST) is None

    def test_api_v2_shape(self):
        entry = payment_entry()
        tx_json = entry.pop("tx")
        entry["tx_json"] = tx_json
        entry["hash"] = tx_json.pop("hash")
        entry["ledger_index"] = tx_json.pop("ledger_index")

        tx = parse_transaction(entry, DEST)

        assert tx.hash == "ABC123"
        assert tx.ledger_index == 995


class TestQueries:
    @pytest.mark.asyncio
    async def test_account_transactions(self, storage):
        stub = RPCStub(
            account_tx={
                "status": "success",
                "transactions": [
                    payment_entry(),
                    payment_entry(tx_hash="PENDING", validated=False),
                    payment_entry(tx_hash="OUT", destination=SENDER),
                ],
            },
            ledger={"status": "success", "ledger_index": 1000},
        )
        client = make_client(storage, stub)

        [tx] = await client.account_transactions(DEST, limit=10)
        await client.close()

        assert tx.hash == "ABC123"
        assert tx.confirmations == 6
        account_tx = stub.calls[0]
        assert account_tx["method"] == "account_tx"
        assert account_tx["params"][0]["account"] == DEST
        assert account_tx["params"][0]["limit"] == 10

    @pytest.mark.asyncio
    async def test_unfunded_account_has_no_transactions(self, storage):
        stub = RPCStub(account_tx={"status": "error", "error": "actNotFound"})
        client = make_client(storage, stub)

        assert await client.account_transactions(DEST) == []

    @pytest.mark.asyncio
    async def test_other_rpc_error_fails(self, storage):
        stub = RPCStub(account_tx={"status": "error", "error": "actMalformed"})
        client = make_client(storage, stub)

        with pytest.raises(LedgerQueryFailed, match="actMalformed"):
            await client.account_transactions(DEST)

    @pytest.mark.asyncio
    async def test_http_error_fails(self, storage):
        stub = RPCStub()
        stub.status_code = 503
        client = make_client(storage, stub)

        with pytest.raises(LedgerQueryFailed) as exc_info:
            await client.account_transactions(DEST)

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transaction_lookup(self, storage):
        stub = RPCStub(
            tx=tx_reply(payment_entry(ledger_index=990)),
            ledger={"status": "success", "ledger": {"ledger_index": "1000"}},
        )
        client = make_client(storage, stub)

        tx = await client.transaction("ABC123", DEST)

        assert tx.hash == "ABC123"
        assert tx.amount == Decimal("99.5")
        assert tx.tag == 4242
        assert tx.confirmations == 11
        assert stub.calls[0]["params"][0] == {"transaction": "ABC123"}

    @pytest.mark.asyncio
    async def test_transaction_lookup_rejects_other_destination(self, storage):
        stub = RPCStub(tx=tx_reply(payment_entry(destination=SENDER)))
        client = make_client(storage, stub)

        assert await client.transaction("ABC123", DEST) is None
        assert [c["method"] for c in stub.calls] == ["tx"]

    @pytest.mark.asyncio
    async def test_unknown_and_unvalidated_transactions(self, storage):
        stub = RPCStub(tx={"status": "error", "error": "txnNotFound"})
        client = make_client(storage, stub)
        assert await client.transaction("NOPE", DEST) is None

        stub.results["tx"] = tx_reply(payment_entry(tx_hash="NEW", validated=False))
        tx = await client.transaction("NEW", DEST)
        assert tx.confirmations == 0

    @pytest.mark.asyncio
    async def test_open_circuit_skips_requests(self, storage):
        stub = RPCStub()
        stub.status_code = 500
        client = make_client(storage, stub)

        for _ in range(5):
            with pytest.raises(LedgerQueryFailed):
                await client.account_transactions(DEST)
        calls = len(stub.calls)

        with pytest.raises(LedgerQueryFailed, match="Circuit OPEN"):
            await client.account_transactions(DEST)

        assert len(stub.calls) == calls

    @pytest.mark.asyncio
    async def test_client_errors_leave_circuit_closed(self, storage):
        stub = RPCStub()
        stub.status_code = 400
        client = make_client(storage, stub)

        for _ in range(6):
            with pytest.raises(LedgerQueryFailed) as exc_info:
                await client.account_transactions(DEST)
            assert exc_info.value.status_code == 400

        assert len(stub.calls) == 6

    @pytest.mark.asyncio
    async def test_circuits_are_per_endpoint(self, storage):
        failing = RPCStub()
        failing.status_code = 503
        mainnet = XRPLClient(
            "https://mainnet.test/",
            "wss://mainnet.test",
            storage,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(failing)),
        )
        testnet = make_client(
            storage, RPCStub(account_tx={"status": "error", "error": "actNotFound"})
        )

        for _ in range(6):
            with pytest.raises(LedgerQueryFailed):
                await mainnet.account_transactions(DEST)

        assert len(failing.calls) == 5
        assert await testnet.account_transactions(DEST) == []


class FakeWebSocket:
    def __init__(self, reply, messages=(), hold=False, error=None):
        self.reply = reply
        self.messages = list(messages)
        self.hold = hold
        self.error = error
        self.sent: list[dict] = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        return json.dumps(self.reply)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield json.dumps(message)
        if self.hold:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


def stream_message(validated=True):
    entry = payment_entry()
    return {
        "type": "transaction",
        "validated": validated,
        "transaction": entry["tx"],
        "meta": entry["meta"],
        "ledger_index": 995,
    }


class TestSubscription:
    @pytest.mark.asyncio
    async def test_delivers_validated_payments_then_reports_loss(self, storage, monkeypatch):
        ws = FakeWebSocket(
            {"status": "success", "result": {}},
            messages=[stream_message(validated=False), stream_message()],
            error=OSError("connection reset"),
        )
        monkeypatch.setattr("paywatch.ledger.xrpl.websockets.connect", AsyncMock(return_value=ws))
        on_tx = AsyncMock()
        on_error = AsyncMock()
        client = XRPLClient("https://xrpl.test/", "wss://xrpl.test", storage)

        subscription = await client.subscribe(DEST, on_tx, on_error)
        for _ in range(20):
            if on_error.await_count:
                break
            await asyncio.sleep(0.01)

        assert ws.sent == [{"id": "paywatch", "command": "subscribe", "accounts": [DEST]}]
        on_tx.assert_awaited_once()
        tx = on_tx.await_args.args[0]
        assert tx.hash == "ABC123"
        assert tx.confirmations == 1
        on_error.assert_awaited_once()
        assert isinstance(on_error.await_args.args[0], SubscriptionFailed)
        assert subscription.closed
        assert ws.closed

    @pytest.mark.asyncio
    async def test_unfunded_account_subscribes(self, storage, monkeypatch):
        ws = FakeWebSocket({"status": "error", "error": "actNotFound"}, hold=True)
        monkeypatch.setattr("paywatch.ledger.xrpl.websockets.connect", AsyncMock(return_value=ws))
        on_error = AsyncMock()
        client = XRPLClient("https://xrpl.test/", "wss://xrpl.test", storage)

        subscription = await client.subscribe(DEST, AsyncMock(), on_error)
        await subscription.close()
        await subscription.close()

        assert subscription.closed
        assert ws.closed
        on_error.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_subscribe(self, storage, monkeypatch):
        ws = FakeWebSocket({"status": "error", "error": "actMalformed"})
        monkeypatch.setattr("paywatch.ledger.xrpl.websockets.connect", AsyncMock(return_value=ws))
        client = XRPLClient("https://xrpl.test/", "wss://xrpl.test", storage)

        with pytest.raises(SubscriptionFailed, match="actMalformed"):
            await client.subscribe(DEST, AsyncMock(), AsyncMock())

        assert ws.closed

    @pytest.mark.asyncio
    async def test_connect_failure(self, storage, monkeypatch):
        monkeypatch.setattr(
            "paywatch.ledger.xrpl.websockets.connect",
            AsyncMock(side_effect=OSError("network unreachable")),
        )
        client = XRPLClient("https://xrpl.test/", "wss://xrpl.test", storage)

        with pytest.raises(SubscriptionFailed, match="network unreachable"):
            await client.subscribe(DEST, AsyncMock(), AsyncMock())
