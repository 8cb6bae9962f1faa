"""
Dispatch layer: role hierarchy, quiet hours, command parsing and message
composition.

The broadcast engine itself lives in ``kairan_bridge.dispatch.engine`` and
the Discord cursor logic in ``kairan_bridge.dispatch.source_sync``; import
them from there.
"""

from kairan_bridge.dispatch.config import (
    BridgeConfig,
    CommandSpec,
    NightWindow,
    Role,
    Secrets,
    default_config,
    load_bridge_config,
)
from kairan_bridge.dispatch.roles import Recipient, RecipientResolver, RoleRegistry
from kairan_bridge.dispatch.night_window import NightWindowPolicy, is_quiet_period
from kairan_bridge.dispatch.commands import (
    BroadcastAuthorizer,
    BroadcastCommand,
    CommandParser,
    ParsedCommand,
)
from kairan_bridge.dispatch.messages import MessageComposer, MessageUnit

__all__ = [
    "BridgeConfig",
    "CommandSpec",
    "NightWindow",
    "Role",
    "Secrets",
    "default_config",
    "load_bridge_config",
    "Recipient",
    "RecipientResolver",
    "RoleRegistry",
    "NightWindowPolicy",
    "is_quiet_period",
    "BroadcastAuthorizer",
    "BroadcastCommand",
    "CommandParser",
    "ParsedCommand",
    "MessageComposer",
    "MessageUnit",
]
