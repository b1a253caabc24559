"""Client-side session restore."""

from paywatch.session.restore import (
    ClientSessionToken,
    DictSessionStore,
    SessionRestore,
    SessionStore,
)

__all__ = ["ClientSessionToken", "DictSessionStore", "SessionRestore", "SessionStore"]
