"""
Ledger endpoint circuit breaker.

One breaker per ledger endpoint URL. State lives in the storage backend so
every process that polls the same endpoint (through Redis) stops hammering it
together, and a mainnet outage never blocks testnet queries.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from paywatch.core.logging import get_logger
from paywatch.resilience.retry import is_transient_error

if TYPE_CHECKING:
    from paywatch.storage.base import StorageBackend

COLLECTION = "ledger_circuits"


class CircuitState(str, Enum):
    CLOSED = "closed"  # Queries flow
    OPEN = "open"  # Queries rejected until retry_at
    HALF_OPEN = "half_open"  # Next query decides


class CircuitOpenError(Exception):
    """A query was attempted while the endpoint's circuit is open."""

    def __init__(self, endpoint: str, retry_at: float):
        self.endpoint = endpoint
        self.retry_at = retry_at
        super().__init__(f"Circuit OPEN for {endpoint}, next attempt after {retry_at:.0f}")


@dataclass
class CircuitStatus:
    state: CircuitState
    failures: int = 0
    retry_at: float | None = None


class CircuitBreaker:
    """
    Consecutive-failure breaker for a ledger endpoint.

    Only transient errors (transport failures, 429 and 5xx responses) count.
    A ledger-level error reply or a 4xx is the caller's problem and leaves the
    breaker alone. ``failure_threshold`` transient failures in a row open the
    circuit for ``recovery_timeout`` seconds; the first query after that is a
    trial that closes or reopens it.
    """

    def __init__(
        self,
        endpoint: str,
        storage: StorageBackend,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        is_failure: Callable[[BaseException], bool] = is_transient_error,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.endpoint = endpoint
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._storage = storage
        self._is_failure = is_failure
        self._clock = clock
        self._state_key = f"{endpoint}:state"
        self._failures_key = f"{endpoint}:failures"
        self._logger = get_logger("circuit")

    async def status(self) -> CircuitStatus:
        record = await self._storage.get(COLLECTION, self._state_key) or {}
        counter = await self._storage.get(COLLECTION, self._failures_key) or {}
        state = CircuitState(record.get("state", CircuitState.CLOSED.value))
        retry_at = record.get("retry_at")
        status = CircuitStatus(
            state=state,
            failures=int(float(counter.get("value", 0))),
            retry_at=float(retry_at) if retry_at is not None else None,
        )
        if status.state == CircuitState.OPEN and (
            status.retry_at is None or self._clock() >= status.retry_at
        ):
            status.state = CircuitState.HALF_OPEN
        return status

    async def get_state(self) -> CircuitState:
        return (await self.status()).state

    async def is_available(self) -> bool:
        return (await self.get_state()) != CircuitState.OPEN

    async def record_failure(self) -> None:
        status = await self.status()
        if status.state == CircuitState.HALF_OPEN:
            self._logger.warning(f"Trial query to {self.endpoint} failed, reopening circuit")
            await self.trip()
            return

        failures = int(float(await self._storage.atomic_add(COLLECTION, self._failures_key, "1")))
        self._logger.warning(
            f"Transient failure from {self.endpoint} ({failures}/{self.failure_threshold})"
        )
        if failures >= self.failure_threshold:
            await self.trip()

    async def record_success(self) -> None:
        status = await self.status()
        if status.state == CircuitState.HALF_OPEN:
            self._logger.info(f"Trial query to {self.endpoint} succeeded")
            await self.close()
        elif status.failures:
            await self._storage.delete(COLLECTION, self._failures_key)

    async def trip(self) -> None:
        retry_at = self._clock() + self.recovery_timeout
        await self._storage.save(
            COLLECTION,
            self._state_key,
            {"state": CircuitState.OPEN.value, "retry_at": retry_at},
        )
        await self._storage.delete(COLLECTION, self._failures_key)
        self._logger.critical(
            f"Circuit for {self.endpoint} OPEN, ledger queries paused for {self.recovery_timeout}s"
        )

    async def close(self) -> None:
        await self._storage.delete(COLLECTION, self._state_key)
        await self._storage.delete(COLLECTION, self._failures_key)
        self._logger.info(f"Circuit for {self.endpoint} closed")

    async def __aenter__(self) -> CircuitBreaker:
        status = await self.status()
        if status.state == CircuitState.OPEN:
            raise CircuitOpenError(self.endpoint, status.retry_at or 0.0)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            await self.record_success()
        elif self._is_failure(exc_val):
            await self.record_failure()
        return False
