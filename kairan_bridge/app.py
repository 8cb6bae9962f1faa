"""
Bridge application — wires the engine to LINE, Discord and the database.

Handles LINE webhook events (registration, statistics, broadcasts, auto
replies, forwarding), the Discord polling tick and the morning release.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import httpx

from kairan_bridge.dispatch.commands import (
    BroadcastAuthorizer,
    BroadcastCommand,
    CommandParser,
    ParsedCommand,
)
from kairan_bridge.dispatch.config import BridgeConfig
from kairan_bridge.dispatch.engine import BroadcastEngine, DispatchResult, DispatchStatus
from kairan_bridge.dispatch.messages import MessageComposer, MessageUnit
from kairan_bridge.dispatch.night_window import NightWindowPolicy
from kairan_bridge.dispatch.roles import RecipientResolver, RoleRegistry
from kairan_bridge.dispatch.source_sync import SourceSync
from kairan_bridge.errors import AuthorizationError, TransportError
from kairan_bridge.locking import FileLock
from kairan_bridge.observability import get_logger
from kairan_bridge.store.repository import BridgeDB
from kairan_bridge.transport.discord_client import DiscordClient, RelayMessage
from kairan_bridge.transport.line_client import LineClient
from kairan_bridge.transport.push_gateway import PushGateway

logger = get_logger(__name__)

EMPTY_BODY = "(no text)"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BridgeApp:
    """
    Run the bridge against live or fake collaborators.

    Usage:
        config = load_bridge_config("bridge.json")
        app = BridgeApp.from_config(config)
        app.handle_events(payload["events"])   # LINE webhook
        app.sync_relay()                       # every 10 minutes
        app.flush_queue()                      # daily at 07:05
    """

    def __init__(
        self,
        config: BridgeConfig,
        db: BridgeDB,
        line: LineClient,
        discord: DiscordClient,
        clock: Callable[[], datetime] = _now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.db = db
        self.line = line
        self.discord = discord
        self.clock = clock

        self.registry = RoleRegistry(config.roles)
        self.db.registry = self.registry
        self.composer = MessageComposer(self.registry)
        self.policy = NightWindowPolicy(config.night_window)
        self.parser = CommandParser(config.commands)
        self.authorizer = BroadcastAuthorizer(self.registry)
        self.gateway = PushGateway(
            line,
            max_recipients_per_call=config.delivery.max_recipients_per_call,
            pause_seconds=config.delivery.chunk_pause_seconds,
            activity_log=db,
            sleep=sleep,
        )
        self.engine = BroadcastEngine(
            RecipientResolver(self.registry, db),
            db,
            self.gateway,
            self.policy,
            self.composer,
            clock=clock,
            notifier=discord.post_alert,
        )
        self.source_sync = SourceSync(discord, db)
        self._sync_lock = FileLock(config.schedule.sync_lock_file)

    @classmethod
    def from_config(cls, config: BridgeConfig) -> BridgeApp:
        return cls(
            config,
            db=BridgeDB(config.db_url, registry=RoleRegistry(config.roles)),
            line=LineClient(config.secrets.line_access_token, config.delivery),
            discord=DiscordClient(config.secrets, config.relay),
        )

    def close(self) -> None:
        self.line.close()
        self.discord.close()

    @property
    def release_time(self) -> str:
        s = self.config.schedule
        return f"{s.release_hour:02d}:{s.release_minute:02d}"

    # ---- LINE webhook ----

    def handle_events(self, events: Iterable[dict[str, Any]]) -> None:
        """Process a batch of LINE webhook events; one bad event never stops the rest."""
        for event in events:
            if event.get("type") != "message":
                continue
            message = event.get("message") or {}
            if message.get("type") != "text":
                continue
            user_id = (event.get("source") or {}).get("userId", "")
            text = (message.get("text") or "").strip()
            reply_token = event.get("replyToken", "")
            try:
                self.handle_text(user_id, text, reply_token)
            except Exception:
                logger.exception("Failed to handle LINE event from %s", user_id)

    def handle_text(self, user_id: str, text: str, reply_token: str) -> None:
        if text in self.config.register_keywords:
            self.handle_registration(user_id, text, reply_token)
            return
        if text == self.config.stats_command:
            self.handle_statistics(user_id, reply_token)
            return
        parsed = self.parser.parse(text)
        if parsed is not None:
            self.handle_line_broadcast(user_id, parsed, reply_token)
            return
        auto_response = self.db.find_auto_reply(text)
        if auto_response:
            self._reply(reply_token, auto_response)
            return
        self.handle_other_message(user_id, text)

    def handle_registration(self, user_id: str, keyword: str, reply_token: str) -> None:
        role = self.config.register_keywords[keyword]
        label = self.registry.label(role)
        name = self.line.get_profile(user_id).display_name
        self.db.upsert_user(user_id, name, role)
        logger.info("Registered %s as %s", user_id, role)
        self._reply(reply_token, self.composer.render("reply_registered", label=label, name=name))
        self.discord.post_alert(self.composer.render("alert_registered", name=name, label=label))

    def handle_statistics(self, user_id: str, reply_token: str) -> None:
        if not self.authorizer.is_allowed(self.db.get_user_role(user_id)):
            self._reply(reply_token, self.composer.render("reply_forbidden"))
            return
        stats = self.db.user_stats()
        rows = [(r.label, stats[r.key]) for r in self.registry.roles if r.key in stats]
        # Rows with a role the registry no longer knows
        rows += [(key, n) for key, n in stats.items() if not self.registry.is_known(key)]
        total = sum(stats.values())
        self._reply(reply_token, self.composer.render("reply_stats", rows=rows, total=total))

    def handle_line_broadcast(
        self,
        user_id: str,
        parsed: ParsedCommand,
        reply_token: str,
    ) -> DispatchResult:
        """Authorize and dispatch a broadcast issued from LINE."""
        sender_role = self.db.get_user_role(user_id)
        try:
            self.authorizer.check(user_id, sender_role)
        except AuthorizationError as e:
            logger.info("Rejected broadcast: %s", e)
            self._reply(reply_token, self.composer.render("reply_forbidden"))
            return DispatchResult.unauthorized()

        body = parsed.body or EMPTY_BODY
        sender_name = self.line.get_profile(user_id).display_name
        command = BroadcastCommand(
            sender_name=sender_name,
            target_role=parsed.target_role,
            body=body,
            sender_key=user_id,
            received_at=self.clock(),
        )
        result = self.engine.dispatch(command, exclude_identity_key=user_id)

        label = self.registry.label(parsed.target_role)
        queued = result.status is DispatchStatus.QUEUED
        if queued:
            reply = self.composer.render(
                "reply_queued",
                window=self.policy.describe(),
                release=self.release_time,
                marker=self.engine.urgent_marker,
            )
        elif result.status is DispatchStatus.EMPTY:
            reply = self.composer.render("reply_empty", label=label)
        else:
            reply = self.composer.render("reply_sent", label=label, count=result.count)
        self._reply(reply_token, reply)

        log_msg = self.composer.render(
            "alert_line_broadcast",
            queued=queued,
            sender=sender_name,
            label=label,
            count=result.count,
        )
        self.discord.post_alert(log_msg)
        self.db.log("Broadcast(LINE)", log_msg, f"Body: {body}")
        return result

    def handle_other_message(self, user_id: str, text: str) -> None:
        name = self.line.get_profile(user_id).display_name
        self.db.log("UserMessage", f"From: {name}", text)
        alert = self.composer.render("alert_user_message", name=name, text=text)
        self.discord.forward_user_message(name, text, alert_text=alert)

    def _reply(self, reply_token: str, text: str) -> None:
        if not reply_token:
            return
        try:
            self.line.reply(reply_token, [MessageUnit.text_unit(text)])
        except TransportError as e:
            logger.warning("LINE reply failed: %s", e)

    # ---- Discord polling ----

    def sync_relay(self) -> Optional[list[DispatchResult]]:
        """
        One polling tick: replay new Discord commands as broadcasts.

        Returns None when the tick was skipped (another tick holds the lock)
        or aborted (Discord could not be read); otherwise one result per
        command found.
        """
        timeout = self.config.schedule.sync_lock_timeout_seconds
        with self._sync_lock.hold(timeout) as acquired:
            if not acquired:
                logger.info("Sync tick skipped: another tick holds %s", self._sync_lock.path)
                return None
            try:
                messages = self.source_sync.poll()
            except (TransportError, httpx.HTTPError) as e:
                logger.warning("Discord fetch failed: %s", e)
                return None

            results: list[DispatchResult] = []
            for msg in messages:
                # The cursor has already moved past this batch
                try:
                    result = self.process_relay_message(msg)
                except Exception:
                    logger.exception("Failed to process Discord message %s", msg.id)
                    continue
                if result is not None:
                    results.append(result)
            return results

    def process_relay_message(self, msg: RelayMessage) -> Optional[DispatchResult]:
        """Dispatch a Discord message if it starts with a broadcast command.

        The Discord command channel is the officers' room, so its members
        are trusted without a rank check.
        """
        parsed = self.parser.parse(msg.content)
        if parsed is None:
            return None

        image_url = msg.image_url
        body = parsed.body
        if not body and not image_url:
            body = EMPTY_BODY

        command = BroadcastCommand(
            sender_name=msg.author_name,
            target_role=parsed.target_role,
            body=body,
            image_url=image_url,
            received_at=self.clock(),
        )
        result = self.engine.dispatch(command)

        if result.status is DispatchStatus.QUEUED:
            reply = self.composer.render(
                "relay_queued", release=self.release_time, marker=self.engine.urgent_marker
            )
        elif result.status is DispatchStatus.EMPTY:
            reply = self.composer.render(
                "relay_empty", label=self.registry.label(parsed.target_role)
            )
        else:
            reply = self.composer.render("relay_sent", count=result.count)
        self.discord.post_message(reply)
        self.db.log(
            "Broadcast(Discord)",
            f"Author: {msg.author_name} -> {parsed.target_role}",
            f"Result: {result.status.value}",
        )
        return result

    # ---- Morning release ----

    def flush_queue(self) -> list[DispatchResult]:
        return self.engine.flush()
