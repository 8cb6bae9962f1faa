"""
Command parsing and broadcast authorization.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from kairan_bridge.dispatch.config import CommandSpec
from kairan_bridge.dispatch.roles import RoleRegistry
from kairan_bridge.errors import AuthorizationError


@dataclass
class ParsedCommand:
    """Free text split into the matched command and its body."""

    prefix: str
    target_role: str
    body: str


@dataclass
class BroadcastCommand:
    """A broadcast instruction ready for dispatch.

    Attributes:
        sender_name: Display name shown in the attribution line.
        target_role: Lowest role that receives the message.
        body: Message text.
        image_url: Optional image sent as a second message unit.
        sender_key: LINE user id of the sender; None for Discord relays.
        received_at: Arrival time of the inbound event.
    """

    sender_name: str
    target_role: str
    body: str
    image_url: Optional[str] = None
    sender_key: Optional[str] = None
    received_at: Optional[datetime] = None

    def is_urgent(self, marker: str) -> bool:
        return marker in self.body


class CommandParser:
    """
    Match text against broadcast command prefixes in declaration order.

    Usage:
        parser = CommandParser(config.commands)
        parsed = parser.parse("全役員連絡 明日は清掃日です")
        parsed.target_role   # "Yakuin"
        parsed.body          # "明日は清掃日です"
    """

    def __init__(self, commands: Iterable[CommandSpec]) -> None:
        self.commands = list(commands)

    def parse(self, text: str) -> Optional[ParsedCommand]:
        text = text.strip()
        for cmd in self.commands:
            if text.startswith(cmd.prefix):
                return ParsedCommand(
                    prefix=cmd.prefix,
                    target_role=cmd.target_role,
                    body=text[len(cmd.prefix):].strip(),
                )
        return None


class BroadcastAuthorizer:
    """Only the top-ranked role may issue role-targeted broadcasts."""

    def __init__(self, registry: RoleRegistry) -> None:
        self.registry = registry

    def is_allowed(self, sender_role: str) -> bool:
        return self.registry.is_top_rank(sender_role)

    def check(self, identity_key: str, sender_role: str) -> None:
        """Raise AuthorizationError unless the sender holds the top rank."""
        if not self.is_allowed(sender_role):
            raise AuthorizationError(identity_key, sender_role)
