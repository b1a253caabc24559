"""
XRP Ledger client.

Queries go over JSON-RPC with httpx, inside a circuit breaker. Live
subscriptions use the WebSocket ``subscribe`` command with ``accounts``.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx
import websockets
from websockets.exceptions import WebSocketException

from paywatch.core.exceptions import LedgerQueryFailed, SubscriptionFailed
from paywatch.core.logging import get_logger
from paywatch.core.types import LedgerTransaction
from paywatch.ledger.base import ErrorHandler, LedgerClient, Subscription, TransactionHandler
from paywatch.resilience.circuit import CircuitBreaker, CircuitOpenError
from paywatch.storage.base import StorageBackend

logger = get_logger("ledger.xrpl")

DROPS_PER_XRP = Decimal(1_000_000)
# Seconds between the Unix epoch and 2000-01-01T00:00:00Z
RIPPLE_EPOCH_OFFSET = 946684800

# Subscribing to an unfunded account is allowed; payments fund it
NON_FATAL_SUBSCRIBE_ERRORS = ("actNotFound", "actNotFunded")


def ripple_time_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value + RIPPLE_EPOCH_OFFSET, tz=timezone.utc)


def parse_transaction(entry: dict[str, Any], address: str) -> LedgerTransaction | None:
    """
    Convert an ``account_tx`` entry, a ``tx`` reply or a stream message into a
    LedgerTransaction.

    Returns None unless the entry is a successful XRP Payment to ``address``.
    """
    # A `tx` reply (API v1) carries the transaction fields at the top level
    tx = entry.get("tx_json") or entry.get("tx") or entry.get("transaction") or entry
    meta = entry.get("meta") or {}
    if not isinstance(meta, dict):
        return None

    if tx.get("TransactionType") != "Payment":
        return None
    if tx.get("Destination") != address:
        return None
    if meta.get("TransactionResult") != "tesSUCCESS":
        return None

    # delivered_amount covers partial payments; dict amounts are issued currencies
    delivered = meta.get("delivered_amount", tx.get("DeliverMax", tx.get("Amount")))
    if delivered is None or isinstance(delivered, dict):
        return None

    tx_hash = entry.get("hash") or tx.get("hash")
    if not tx_hash:
        return None

    date = tx.get("date", entry.get("date"))
    ledger_index = entry.get("ledger_index", tx.get("ledger_index"))

    return LedgerTransaction(
        hash=tx_hash,
        amount=Decimal(str(delivered)) / DROPS_PER_XRP,
        timestamp=ripple_time_to_datetime(int(date)) if date is not None else None,
        tag=tx.get("DestinationTag"),
        sender=tx.get("Account"),
        ledger_index=int(ledger_index) if ledger_index is not None else None,
    )


class XRPLSubscription(Subscription):
    """Live ``accounts`` subscription for one address."""

    def __init__(
        self,
        url: str,
        address: str,
        on_transaction: TransactionHandler,
        on_error: ErrorHandler,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._address = address
        self._on_transaction = on_transaction
        self._on_error = on_error
        self._timeout = timeout
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Connect and subscribe. Raises SubscriptionFailed on any failure."""
        try:
            self._ws = await websockets.connect(self._url, open_timeout=self._timeout)
            await self._ws.send(
                json.dumps(
                    {"id": "paywatch", "command": "subscribe", "accounts": [self._address]}
                )
            )
            reply = json.loads(await asyncio.wait_for(self._ws.recv(), self._timeout))
        except (OSError, asyncio.TimeoutError, WebSocketException, ValueError) as e:
            await self._discard()
            raise SubscriptionFailed(
                f"Could not subscribe to {self._address}: {e}",
                address=self._address,
                url=self._url,
            ) from e

        if reply.get("status") == "error" and reply.get("error") not in NON_FATAL_SUBSCRIBE_ERRORS:
            await self._discard()
            raise SubscriptionFailed(
                f"Subscribe rejected for {self._address}: {reply.get('error')}",
                address=self._address,
                url=self._url,
                details={"error": reply.get("error")},
            )

        self._reader = asyncio.create_task(self._read())
        logger.debug(f"Subscribed to {self._address} at {self._url}")

    async def _read(self) -> None:
        reason = "connection closed by server"
        try:
            async for raw in self._ws:
                message = json.loads(raw)
                if message.get("type") != "transaction" or not message.get("validated"):
                    continue
                tx = parse_transaction(message, self._address)
                if tx is None:
                    continue
                # Stream transactions come from the validated tip
                tx.confirmations = 1
                await self._on_transaction(tx)
        except (OSError, WebSocketException, ValueError) as e:
            reason = str(e)

        if not self._closed:
            self._closed = True
            await self._discard()
            await self._on_error(
                SubscriptionFailed(
                    f"Subscription for {self._address} lost: {reason}",
                    address=self._address,
                    url=self._url,
                )
            )

    async def _discard(self) -> None:
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        await self._discard()


class XRPLClient(LedgerClient):
    """XRP Ledger JSON-RPC and WebSocket client."""

    def __init__(
        self,
        rpc_url: str,
        ws_url: str,
        storage: StorageBackend,
        timeout: float = 5.0,
        subscription_timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._ws_url = ws_url
        self._timeout = timeout
        self._subscription_timeout = subscription_timeout
        self._http_client = http_client
        self._circuit = CircuitBreaker(f"xrpl:{rpc_url}", storage)

    @property
    def supports_subscriptions(self) -> bool:
        return True

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _post(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await self._get_client().post(
            self._rpc_url,
            json={"method": method, "params": [params]},
        )
        response.raise_for_status()
        return response.json().get("result") or {}

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Run a JSON-RPC call. Ledger-level errors are returned, not raised."""
        try:
            async with self._circuit:
                return await self._post(method, params)
        except CircuitOpenError as e:
            raise LedgerQueryFailed(str(e), url=self._rpc_url) from e
        except httpx.HTTPStatusError as e:
            raise LedgerQueryFailed(
                f"XRPL {method} returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                url=self._rpc_url,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerQueryFailed(f"XRPL {method} failed: {e}", url=self._rpc_url) from e

    async def validated_ledger_index(self) -> int:
        result = await self._request("ledger", {"ledger_index": "validated"})
        index = result.get("ledger_index") or (result.get("ledger") or {}).get("ledger_index")
        if index is None:
            raise LedgerQueryFailed(
                f"XRPL ledger returned no validated index: {result.get('error')}",
                url=self._rpc_url,
            )
        return int(index)

    async def account_transactions(
        self,
        address: str,
        limit: int = 20,
    ) -> list[LedgerTransaction]:
        result = await self._request(
            "account_tx",
            {
                "account": address,
                "ledger_index_min": -1,
                "ledger_index_max": -1,
                "limit": limit,
            },
        )
        if result.get("status") == "error":
            if result.get("error") == "actNotFound":
                return []
            raise LedgerQueryFailed(
                f"XRPL account_tx error for {address}: {result.get('error')}",
                url=self._rpc_url,
            )

        entries = [e for e in result.get("transactions", []) if e.get("validated")]
        if not entries:
            return []

        tip = await self.validated_ledger_index()
        transactions = []
        for entry in entries:
            tx = parse_transaction(entry, address)
            if tx is None:
                continue
            if tx.ledger_index is not None:
                tx.confirmations = max(tip - tx.ledger_index + 1, 0)
            transactions.append(tx)
        return transactions

    async def transaction(self, tx_hash: str, address: str) -> LedgerTransaction | None:
        result = await self._request("tx", {"transaction": tx_hash})
        if result.get("status") == "error":
            if result.get("error") == "txnNotFound":
                return None
            raise LedgerQueryFailed(
                f"XRPL tx error for {tx_hash}: {result.get('error')}",
                url=self._rpc_url,
            )

        tx = parse_transaction(result, address)
        if tx is None:
            return None
        if not result.get("validated") or tx.ledger_index is None:
            tx.confirmations = 0
            return tx
        tip = await self.validated_ledger_index()
        tx.confirmations = max(tip - tx.ledger_index + 1, 0)
        return tx

    async def subscribe(
        self,
        address: str,
        on_transaction: TransactionHandler,
        on_error: ErrorHandler,
    ) -> Subscription:
        subscription = XRPLSubscription(
            self._ws_url,
            address,
            on_transaction,
            on_error,
            timeout=self._subscription_timeout,
        )
        await subscription.open()
        return subscription

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
