"""
Outbound transports: LINE Messaging API, Discord, and chunked delivery.
"""

from kairan_bridge.transport.line_client import LineClient, ProfileResult
from kairan_bridge.transport.discord_client import DiscordClient, RelayMessage
from kairan_bridge.transport.push_gateway import DeliveryReport, PushGateway

__all__ = [
    "LineClient",
    "ProfileResult",
    "DiscordClient",
    "RelayMessage",
    "DeliveryReport",
    "PushGateway",
]
