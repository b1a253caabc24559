"""Push/pull observation of payment intents."""

from paywatch.watcher.session import WatchSession
from paywatch.watcher.ticker import Ticker
from paywatch.watcher.watcher import LedgerWatcher

__all__ = ["LedgerWatcher", "Ticker", "WatchSession"]
