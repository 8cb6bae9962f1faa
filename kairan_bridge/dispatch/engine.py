"""
Broadcast engine — decides what happens to every broadcast command.

For each command the engine checks the quiet window, holds non-urgent
messages in the queue, resolves recipients by rank, composes the LINE
message units and hands them to the push gateway. The morning release
(``flush``) drains the queue and pushes every held message through
``dispatch`` with the quiet window bypassed.

Authorization happens before ``dispatch`` is called: the engine trusts
its caller to have checked the sender.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from kairan_bridge.dispatch.commands import BroadcastCommand
from kairan_bridge.dispatch.messages import MessageComposer
from kairan_bridge.dispatch.night_window import NightWindowPolicy
from kairan_bridge.dispatch.roles import Recipient, RecipientResolver
from kairan_bridge.errors import UnknownRoleError
from kairan_bridge.observability import get_logger
from kairan_bridge.store.repository import QueuedBroadcast
from kairan_bridge.transport.push_gateway import DeliveryReport, PushGateway

logger = get_logger(__name__)


class DispatchStatus(enum.Enum):
    """Terminal states of a single dispatch."""

    SENT = "sent"
    QUEUED = "queued"
    EMPTY = "empty"
    UNAUTHORIZED = "unauthorized"


@dataclass
class DispatchResult:
    """Outcome of dispatching one command."""

    status: DispatchStatus
    count: int = 0
    recipients: list[Recipient] = field(default_factory=list)
    delivery: Optional[DeliveryReport] = None
    error: Optional[str] = None

    @property
    def recipient_keys(self) -> list[str]:
        return [r.identity_key for r in self.recipients]

    @property
    def names(self) -> str:
        return ", ".join(r.display_name for r in self.recipients)

    @classmethod
    def unauthorized(cls) -> DispatchResult:
        return cls(status=DispatchStatus.UNAUTHORIZED)


class QueueStore(Protocol):
    def enqueue(self, item: QueuedBroadcast) -> QueuedBroadcast: ...

    def drain_queue(self) -> list[QueuedBroadcast]: ...

    def log(self, category: str, subject: str, detail: str = "") -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BroadcastEngine:
    """
    Dispatch broadcast commands to LINE members.

    Usage:
        engine = BroadcastEngine(resolver, db, gateway, policy, composer)
        result = engine.dispatch(command, exclude_identity_key=sender_id)
        if result.status is DispatchStatus.QUEUED:
            ...
        engine.flush()   # once a day, after quiet hours end
    """

    def __init__(
        self,
        resolver: RecipientResolver,
        queue: QueueStore,
        gateway: PushGateway,
        policy: NightWindowPolicy,
        composer: MessageComposer,
        clock: Callable[[], datetime] = _now,
        notifier: Optional[Callable[[str], object]] = None,
    ) -> None:
        self.resolver = resolver
        self.queue = queue
        self.gateway = gateway
        self.policy = policy
        self.composer = composer
        self.clock = clock
        self.notifier = notifier

    @property
    def urgent_marker(self) -> str:
        return self.policy.window.urgent_marker

    def dispatch(
        self,
        command: BroadcastCommand,
        force_send: bool = False,
        exclude_identity_key: Optional[str] = None,
    ) -> DispatchResult:
        """
        Queue or deliver one broadcast command.

        Args:
            command: The parsed, already-authorized command.
            force_send: Skip the quiet-window check (used by the morning release).
            exclude_identity_key: Member to leave out, normally the sender.

        Returns:
            A DispatchResult with status queued, empty or sent.

        Raises:
            UnknownRoleError: If the command targets a role the registry lacks.
        """
        urgent = command.is_urgent(self.urgent_marker)

        if not force_send and not urgent and self.policy.is_quiet(self.clock()):
            self.queue.enqueue(
                QueuedBroadcast(
                    sender=command.sender_name,
                    target_role=command.target_role,
                    body=command.body,
                    image_url=command.image_url,
                )
            )
            logger.info(
                "Queued broadcast from %s to %s during quiet hours %s",
                command.sender_name,
                command.target_role,
                self.policy.describe(),
            )
            return DispatchResult(status=DispatchStatus.QUEUED)

        recipients = self.resolver.resolve(command.target_role)
        if exclude_identity_key:
            recipients = [r for r in recipients if r.identity_key != exclude_identity_key]
        if not recipients:
            logger.info("No recipients for %s; nothing sent", command.target_role)
            return DispatchResult(status=DispatchStatus.EMPTY)

        units = self.composer.broadcast_units(command, urgent=urgent)
        report = self.gateway.deliver([r.identity_key for r in recipients], units)
        logger.info(
            "Broadcast from %s to %s: %d recipients (%d failed)%s",
            command.sender_name,
            command.target_role,
            len(recipients),
            report.failed,
            " [urgent]" if urgent else "",
        )
        return DispatchResult(
            status=DispatchStatus.SENT,
            count=len(recipients),
            recipients=recipients,
            delivery=report,
        )

    def flush(self) -> list[DispatchResult]:
        """
        Release everything held during quiet hours.

        Drains the queue, announces the batch size on the relay channel and
        dispatches each item with ``force_send``. Any error in one item,
        including a failed activity-log write, is logged and the item is
        reported with ``error`` set; the rest of the batch still goes out.
        """
        items = self.queue.drain_queue()
        if not items:
            logger.info("Queue is empty; nothing to release")
            return []

        logger.info("Releasing %d queued broadcast(s)", len(items))
        if self.notifier is not None:
            self.notifier(self.composer.render("alert_release", count=len(items)))

        results: list[DispatchResult] = []
        for item in items:
            command = BroadcastCommand(
                sender_name=item.sender,
                target_role=item.target_role,
                body=item.body,
                image_url=item.image_url or None,
                received_at=item.enqueued_at,
            )
            try:
                result = self.dispatch(command, force_send=True)
            except UnknownRoleError as e:
                logger.error("Dropping queued item %s: %s", item.id, e)
                self._record_release_failure(item, e)
                results.append(DispatchResult(status=DispatchStatus.EMPTY, error=str(e)))
                continue
            except Exception as e:
                # The rows are already drained; the rest of the batch must still go out
                logger.exception("Release of queued item %s failed", item.id)
                self._record_release_failure(item, e)
                results.append(DispatchResult(status=DispatchStatus.EMPTY, error=str(e)))
                continue

            try:
                self.queue.log(
                    "Broadcast(Queue)",
                    f"Released: {item.sender} -> {item.target_role}",
                    f"Body: {item.body}",
                )
            except Exception:
                logger.exception("Could not record release of queued item %s", item.id)
            results.append(result)
        return results

    def _record_release_failure(self, item: QueuedBroadcast, error: Exception) -> None:
        try:
            self.queue.log(
                "Error",
                f"Release failed: {item.sender} -> {item.target_role}",
                str(error),
            )
        except Exception:
            logger.exception("Could not record failed release of queued item %s", item.id)
