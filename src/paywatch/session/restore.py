"""
Client Session Restore.

Lets a caller's UI re-attach to an in-flight intent after a reload. Local
state pairs a per-client session id with the intent's creation time; an
intent is offered again only to the same session, within a short window,
and only while the server still reports it as not expired. Every failing
condition clears the local state silently.

This is a soft client-side mechanism that keeps stale or foreign QR codes
off screen, not an access control.
"""

from __future__ import annotations

import json
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from paywatch.core.exceptions import PayWatchError
from paywatch.core.logging import get_logger
from paywatch.core.types import PaymentIntent, PaymentStatus, parse_datetime, utcnow

logger = get_logger("session")

SESSION_ID_KEY = "paywatch:session_id"


def _intent_key(invoice_id: str) -> str:
    return f"paywatch:intent:{invoice_id}"


@dataclass
class ClientSessionToken:
    """Stored alongside an intent: which session created it, and when."""

    session_id: str
    intent_id: str
    created_at: datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "session_id": self.session_id,
                "intent_id": self.intent_id,
                "created_at": self.created_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> ClientSessionToken:
        data = json.loads(raw)
        return cls(
            session_id=data["session_id"],
            intent_id=data["intent_id"],
            created_at=parse_datetime(data["created_at"]),
        )


class SessionStore(ABC):
    """Client-local key/value storage (browser localStorage or similar)."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class DictSessionStore(SessionStore):
    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class SessionRestore:
    """Decide whether a remembered intent may be shown again."""

    def __init__(
        self,
        store: SessionStore,
        lookup: Callable[[str], Awaitable[PaymentIntent]],
        ttl: float = 300,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Args:
            store: Client-local storage
            lookup: Fetches the server's current view of an intent by id
            ttl: Seconds after creation during which an intent may be restored
            clock: Current time
        """
        self._store = store
        self._lookup = lookup
        self._ttl = ttl
        self._clock = clock

    def session_id(self) -> str:
        """The client's session id, generated once and then reused."""
        session_id = self._store.get(SESSION_ID_KEY)
        if not session_id:
            session_id = secrets.token_urlsafe(16)
            self._store.set(SESSION_ID_KEY, session_id)
        return session_id

    def remember(self, invoice_id: str, intent: PaymentIntent) -> ClientSessionToken:
        """Record a freshly created intent for this session."""
        token = ClientSessionToken(
            session_id=self.session_id(),
            intent_id=intent.id,
            created_at=self._clock(),
        )
        self._store.set(_intent_key(invoice_id), token.to_json())
        return token

    def clear(self, invoice_id: str) -> None:
        self._store.remove(_intent_key(invoice_id))

    async def restore(self, invoice_id: str) -> PaymentIntent | None:
        """
        The remembered intent for ``invoice_id``, or None.

        Never raises: any failing condition clears local state and returns None.
        """
        raw = self._store.get(_intent_key(invoice_id))
        if raw is None:
            return None

        try:
            token = ClientSessionToken.from_json(raw)
        except (ValueError, KeyError, TypeError):
            self.clear(invoice_id)
            return None

        if token.session_id != self._store.get(SESSION_ID_KEY):
            logger.debug(f"Stored intent for invoice {invoice_id} belongs to another session")
            self.clear(invoice_id)
            return None

        age = (self._clock() - token.created_at).total_seconds()
        if age >= self._ttl:
            self.clear(invoice_id)
            return None

        try:
            intent = await self._lookup(token.intent_id)
        except PayWatchError as e:
            logger.debug(f"Could not restore intent {token.intent_id}: {e}")
            self.clear(invoice_id)
            return None

        if intent.status == PaymentStatus.EXPIRED or (
            intent.status != PaymentStatus.CONFIRMED and intent.is_expired(self._clock())
        ):
            self.clear(invoice_id)
            return None

        return intent
