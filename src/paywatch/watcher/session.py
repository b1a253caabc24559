"""Per-intent observation state owned by the LedgerWatcher."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from paywatch.core.types import StatusReport
from paywatch.ledger.base import Subscription
from paywatch.watcher.ticker import Ticker


@dataclass
class WatchSession:
    """
    Observation of one intent's receiving address.

    Holds at most one subscription and at most one poll ticker. Once
    ``push_failed`` is set it stays set for the life of the session.
    """

    intent_id: str
    asset: str
    address: str
    expires_at: datetime
    tag: int | None = None
    subscription: Subscription | None = None
    ticker: Ticker | None = None
    deadline: asyncio.Task | None = None
    push_failed: bool = False
    closed: bool = False
    last_report: StatusReport | None = None

    @property
    def mode(self) -> str:
        if self.closed:
            return "closed"
        if self.subscription is not None and not self.subscription.closed:
            return "push"
        if self.ticker is not None and self.ticker.running:
            return "pull"
        return "idle"

    def mark_push_failed(self) -> bool:
        """Set the push-failed flag. Returns True only for the first call."""
        if self.push_failed:
            return False
        self.push_failed = True
        return True

    async def release(self) -> None:
        """Release the subscription, ticker and deadline timer."""
        self.closed = True
        subscription, self.subscription = self.subscription, None
        if subscription is not None:
            await subscription.close()
        if self.ticker is not None:
            await self.ticker.stop()
        deadline, self.deadline = self.deadline, None
        if deadline is not None and deadline is not asyncio.current_task():
            deadline.cancel()
            try:
                await deadline
            except asyncio.CancelledError:
                pass
