"""
Push gateway — chunked, paced multicast delivery to LINE.

LINE accepts at most 500 recipients per multicast call and rate-limits
bursts, so large audiences go out in sequential chunks with a fixed pause
between them. A failed chunk is logged and skipped; the rest still go out.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence

from kairan_bridge.dispatch.messages import MessageUnit
from kairan_bridge.errors import TransportError
from kairan_bridge.observability import get_logger

logger = get_logger(__name__)


class BulkSender(Protocol):
    def multicast(self, user_ids: Sequence[str], units: Sequence[MessageUnit]) -> None: ...


class ActivityLog(Protocol):
    def log(self, category: str, subject: str, detail: str = "") -> None: ...


@dataclass
class ChunkResult:
    """Outcome of one multicast call."""

    index: int
    recipients: list[str]
    success: bool
    error: Optional[str] = None


@dataclass
class DeliveryReport:
    """Outcome of a full delivery."""

    chunks: list[ChunkResult] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(len(c.recipients) for c in self.chunks if c.success)

    @property
    def failed(self) -> int:
        return sum(len(c.recipients) for c in self.chunks if not c.success)

    @property
    def complete(self) -> bool:
        return all(c.success for c in self.chunks)


def chunk_recipients(recipients: Sequence[str], size: int) -> list[list[str]]:
    """Split into slices of at most ``size``, de-duplicating within each slice."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    chunks = []
    for start in range(0, len(recipients), size):
        chunk = list(dict.fromkeys(recipients[start:start + size]))
        chunks.append(chunk)
    return chunks


class PushGateway:
    """
    Deliver message units to many LINE users.

    Usage:
        gateway = PushGateway(line_client, max_recipients_per_call=500,
                              pause_seconds=0.2, activity_log=db)
        report = gateway.deliver(user_ids, units)
    """

    def __init__(
        self,
        sender: BulkSender,
        max_recipients_per_call: int = 500,
        pause_seconds: float = 0.2,
        activity_log: Optional[ActivityLog] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sender = sender
        self.max_recipients_per_call = max_recipients_per_call
        self.pause_seconds = pause_seconds
        self.activity_log = activity_log
        self._sleep = sleep

    def deliver(self, recipients: Sequence[str], units: Sequence[MessageUnit]) -> DeliveryReport:
        report = DeliveryReport()
        chunks = chunk_recipients(list(recipients), self.max_recipients_per_call)

        for i, chunk in enumerate(chunks):
            # Pause between chunks, not before the first
            if i > 0:
                self._sleep(self.pause_seconds)
            try:
                self.sender.multicast(chunk, units)
            except TransportError as e:
                logger.error(
                    "Multicast chunk %d/%d (%d recipients) failed: %s",
                    i + 1,
                    len(chunks),
                    len(chunk),
                    e,
                )
                if self.activity_log is not None:
                    self.activity_log.log(
                        "Error",
                        "Multicast Failed",
                        f"chunk {i + 1}/{len(chunks)} ({len(chunk)} recipients): {e}",
                    )
                report.chunks.append(ChunkResult(i, chunk, success=False, error=str(e)))
                continue
            logger.info("Multicast chunk %d/%d sent to %d recipients", i + 1, len(chunks), len(chunk))
            report.chunks.append(ChunkResult(i, chunk, success=True))

        return report
