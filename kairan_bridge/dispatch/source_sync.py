"""
Discord ingestion with a persisted cursor.
"""

from __future__ import annotations

from typing import Optional, Protocol

from kairan_bridge.observability import get_logger
from kairan_bridge.transport.discord_client import RelayMessage

logger = get_logger(__name__)


class MessageSource(Protocol):
    def fetch_messages_since(self, cursor: Optional[str]) -> list[RelayMessage]: ...


class CursorStore(Protocol):
    def get_cursor(self) -> Optional[str]: ...

    def set_cursor(self, value: str) -> None: ...


class SourceSync:
    """
    Fetch new Discord messages exactly once each.

    Discord returns the newest message first. ``poll`` moves the cursor to
    that newest id before anything is processed, so a failure while
    handling one message never causes the whole batch to be fetched again.
    Messages come back oldest first so commands replay in the order they
    were posted.
    """

    def __init__(self, source: MessageSource, cursors: CursorStore) -> None:
        self.source = source
        self.cursors = cursors

    def poll(self) -> list[RelayMessage]:
        cursor = self.cursors.get_cursor()
        messages = self.source.fetch_messages_since(cursor)
        human = [m for m in messages if not m.author_is_bot]
        if not human:
            return []

        self.cursors.set_cursor(messages[0].id)
        logger.info(
            "Fetched %d new Discord message(s); cursor %s -> %s",
            len(human),
            cursor,
            messages[0].id,
        )
        return list(reversed(human))
