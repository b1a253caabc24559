"""
Ledger Watcher.

Observes the receiving address of each open intent. Push mode (a live
subscription) is preferred; the first subscription error switches the
address to pull mode (a poll ticker) for the rest of the process. Observation
ends when the intent reaches a terminal status, passes its deadline, or the
caller stops it.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable

from paywatch.core.exceptions import IntentExpired, PayWatchError, SubscriptionFailed
from paywatch.core.logging import get_logger
from paywatch.core.types import (
    LedgerTransaction,
    PaymentIntent,
    PaymentStatus,
    StatusReport,
    utcnow,
)
from paywatch.ledger.base import LedgerClient
from paywatch.reconcile.reconciler import ConfirmationReconciler
from paywatch.watcher.session import WatchSession
from paywatch.watcher.ticker import Ticker

logger = get_logger("watcher")


class LedgerWatcher:
    """Push/pull observation of intents."""

    def __init__(
        self,
        reconciler: ConfirmationReconciler,
        ledger_for: Callable[[str], LedgerClient | None],
        poll_interval: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
        deadline_grace: float = 1.0,
    ) -> None:
        """
        Args:
            reconciler: Reconciler used by both the push and pull paths
            ledger_for: Returns the subscription-capable ledger for an asset,
                or None to observe by polling only
            poll_interval: Seconds between pull-mode checks
            clock: Current time, used for deadlines
            deadline_grace: Seconds after an intent's deadline before the
                final check that ends its session
        """
        self._reconciler = reconciler
        self._ledger_for = ledger_for
        self._poll_interval = poll_interval
        self._clock = clock
        self._deadline_grace = deadline_grace
        self._sessions: dict[str, WatchSession] = {}
        # (asset, address) pairs whose subscription failed in this process
        self._failed_addresses: set[tuple[str, str]] = set()

    @property
    def sessions(self) -> dict[str, WatchSession]:
        return dict(self._sessions)

    def get_session(self, intent_id: str) -> WatchSession | None:
        return self._sessions.get(intent_id)

    def is_push_failed(self, asset: str, address: str) -> bool:
        return (asset, address) in self._failed_addresses

    async def watch(self, intent: PaymentIntent) -> WatchSession:
        """
        Start observing an intent.

        Performs one check immediately, then opens a subscription or starts
        polling. Watching an intent that is already observed returns the
        existing session.

        Raises:
            IntentExpired: The intent is (or has just become) expired
        """
        existing = self._sessions.get(intent.id)
        if existing is not None and not existing.closed:
            return existing

        session = WatchSession(
            intent_id=intent.id,
            asset=intent.asset,
            address=intent.address,
            expires_at=intent.expires_at,
            tag=intent.tag,
            push_failed=self.is_push_failed(intent.asset, intent.address),
        )
        # Registered before the first await so concurrent callers share it
        self._sessions[intent.id] = session

        # Catches payments that arrived before observation began
        try:
            report = await self._reconciler.reconcile(intent.id)
        except BaseException:
            await self._discard(session)
            raise
        session.last_report = report
        if session.closed:
            # Stopped while the initial check ran
            return session
        if report.status == PaymentStatus.EXPIRED:
            await self._discard(session)
            raise IntentExpired(intent.id, intent.expires_at)
        if report.status.is_terminal():
            await self._discard(session)
            return session

        session.deadline = asyncio.create_task(self._expire_at_deadline(session, intent))

        ledger = self._ledger_for(intent.asset)
        if ledger is not None and ledger.supports_subscriptions and not session.push_failed:
            await self._open_push(session, ledger)
        else:
            self._start_pull(session)

        logger.info(
            f"Watching intent {intent.id} at {intent.address} ({session.mode} mode)",
            extra={"intent_id": intent.id, "address": intent.address, "asset": intent.asset},
        )
        return session

    async def _open_push(self, session: WatchSession, ledger: LedgerClient) -> None:
        async def on_transaction(tx: LedgerTransaction) -> None:
            await self._on_transaction(session, tx)

        async def on_error(error: SubscriptionFailed) -> None:
            await self._on_push_failure(session, error)

        try:
            session.subscription = await ledger.subscribe(session.address, on_transaction, on_error)
        except SubscriptionFailed as e:
            await self._on_push_failure(session, e)
            return

        if session.closed:
            # Stopped while the subscription was opening
            subscription, session.subscription = session.subscription, None
            await subscription.close()

    def _start_pull(self, session: WatchSession) -> None:
        if session.closed:
            return
        if session.ticker is None:
            session.ticker = Ticker(
                self._poll_interval,
                lambda: self.tick(session.intent_id),
                name=f"poll-{session.intent_id}",
            )
        session.ticker.start()

    async def _on_transaction(self, session: WatchSession, tx: LedgerTransaction) -> None:
        if session.closed:
            return
        try:
            report = await self._reconciler.reconcile(session.intent_id, tx)
        except PayWatchError:
            logger.exception(f"Handling {tx.hash} for intent {session.intent_id} failed")
            return
        await self._after_check(session, report)

    async def _on_push_failure(self, session: WatchSession, error: SubscriptionFailed) -> None:
        """Switch a session to pull mode. Repeated failures are no-ops."""
        if session.closed:
            return
        self._failed_addresses.add((session.asset, session.address))
        if session.mark_push_failed():
            logger.warning(
                f"Subscription for {session.address} failed, polling every "
                f"{self._poll_interval}s instead: {error.message}"
            )

        subscription, session.subscription = session.subscription, None
        if subscription is not None:
            await subscription.close()
        self._start_pull(session)

    async def tick(self, intent_id: str) -> StatusReport | None:
        """Run one pull-mode check. Returns None when the intent is not watched."""
        session = self._sessions.get(intent_id)
        if session is None or session.closed:
            return None
        report = await self._reconciler.reconcile(intent_id)
        await self._after_check(session, report)
        return report

    async def _after_check(self, session: WatchSession, report: StatusReport) -> None:
        session.last_report = report
        if report.status.is_terminal():
            await self.stop(session.intent_id)
            return
        if self._clock() > session.expires_at:
            logger.info(f"Intent {session.intent_id} passed its deadline as {report.status.value}")
            await self.stop(session.intent_id)

    async def _expire_at_deadline(self, session: WatchSession, intent: PaymentIntent) -> None:
        delay = (intent.expires_at - self._clock()).total_seconds()
        await asyncio.sleep(max(delay, 0) + self._deadline_grace)
        if session.closed:
            return
        try:
            session.last_report = await self._reconciler.reconcile(intent.id)
        except PayWatchError:
            logger.exception(f"Final check of intent {intent.id} at its deadline failed")
        finally:
            await self._discard(session)

    async def _discard(self, session: WatchSession) -> None:
        """Release a session, unregistering it if it is still the current one."""
        if self._sessions.get(session.intent_id) is session:
            del self._sessions[session.intent_id]
        await session.release()

    async def stop(self, intent_id: str) -> bool:
        """Stop observing an intent. Returns False if it was not observed."""
        session = self._sessions.pop(intent_id, None)
        if session is None:
            return False
        await session.release()
        logger.debug(f"Stopped watching intent {intent_id}")
        return True

    @asynccontextmanager
    async def observe(self, intent: PaymentIntent) -> AsyncIterator[WatchSession]:
        """Watch an intent for the duration of an ``async with`` block."""
        session = await self.watch(intent)
        try:
            yield session
        finally:
            await self.stop(intent.id)

    async def close(self) -> None:
        for intent_id in list(self._sessions):
            await self.stop(intent_id)
