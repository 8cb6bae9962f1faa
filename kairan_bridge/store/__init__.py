"""
Bridge storage — members, quiet-hours queue, activity log, auto replies.
"""

from kairan_bridge.store.repository import (
    AutoReply,
    Base,
    BridgeDB,
    LogEntry,
    QueuedBroadcast,
    SyncState,
    User,
)

__all__ = [
    "AutoReply",
    "Base",
    "BridgeDB",
    "LogEntry",
    "QueuedBroadcast",
    "SyncState",
    "User",
]
