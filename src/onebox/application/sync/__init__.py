"""Mailbox synchronization: sessions, reconnection and the engine that owns them."""

from onebox.application.sync.engine import SyncEngine
from onebox.application.sync.reconnect import BackoffPolicy, ReconnectScheduler
from onebox.application.sync.registry import SessionHandle, SessionRegistry
from onebox.application.sync.session import AccountSession, SessionContext, SessionOptions, SessionState

__all__ = [
    "AccountSession",
    "BackoffPolicy",
    "ReconnectScheduler",
    "SessionContext",
    "SessionHandle",
    "SessionOptions",
    "SessionRegistry",
    "SessionState",
    "SyncEngine",
]
