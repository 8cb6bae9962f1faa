"""
Message composition.

Broadcast text and every bot reply are rendered from Jinja2 templates so
the wording lives in one place. Message units map one-to-one onto LINE
message objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from jinja2 import BaseLoader, Environment

from kairan_bridge.dispatch.commands import BroadcastCommand
from kairan_bridge.dispatch.roles import RoleRegistry


@dataclass(frozen=True)
class MessageUnit:
    """One LINE message object: a text or an image."""

    kind: str
    text: str = ""
    image_url: str = ""

    @classmethod
    def text_unit(cls, text: str) -> MessageUnit:
        return cls(kind="text", text=text)

    @classmethod
    def image_unit(cls, url: str) -> MessageUnit:
        return cls(kind="image", image_url=url)

    def to_line(self) -> dict[str, str]:
        if self.kind == "image":
            return {
                "type": "image",
                "originalContentUrl": self.image_url,
                "previewImageUrl": self.image_url,
            }
        return {"type": "text", "text": self.text}


TEMPLATES: dict[str, str] = {
    "header": "[{{ label }}]",
    "header_urgent": "🚨 [{{ label }} URGENT] 🚨",
    "broadcast": "{{ header }}\nFrom: {{ sender }}\n\n{{ body }}",
    "reply_queued": (
        "🌙 Quiet hours ({{ window }})\n"
        "Your message has been saved and will be delivered at {{ release }}.\n"
        "(Include \"{{ marker }}\" to send immediately.)"
    ),
    "reply_sent": "✅ Delivered\nTo: {{ label }} and above\nRecipients: {{ count }}",
    "reply_empty": "⚠️ Nobody is registered as {{ label }} or above. Nothing was sent.",
    "reply_forbidden": "⛔ You are not allowed to use this command.",
    "reply_registered": "Registered: {{ label }}\nName: {{ name }}",
    "reply_stats": (
        "📊 Registrations\n"
        "{% for label, count in rows %}{{ label }}: {{ count }}\n{% endfor %}"
        "Total: {{ total }}"
    ),
    "relay_queued": (
        "🌙 **Silent Queue**: quiet hours are active, the message was stored.\n"
        "It will be delivered at {{ release }}.\n"
        "(Include \"{{ marker }}\" to send immediately.)"
    ),
    "relay_sent": "✅ Forwarded to LINE: delivered to {{ count }} member(s).",
    "relay_empty": "⚠️ No LINE members at {{ label }} or above. Nothing was sent.",
    "alert_registered": "🆕 Registered: {{ name }} ({{ label }})",
    "alert_line_broadcast": (
        "{{ 'zzz' if queued else '📢' }} via LINE: {{ sender }} -> {{ label }} "
        "({{ 'scheduled' if queued else count ~ ' member(s)' }})"
    ),
    "alert_user_message": "📩 From {{ name }}\n{{ text }}",
    "alert_release": (
        "🌅 Good morning. Releasing {{ count }} message(s) held during quiet hours."
    ),
}


class MessageComposer:
    """
    Render broadcast units and bot replies.

    Usage:
        composer = MessageComposer(registry)
        units = composer.broadcast_units(command, urgent=False)
        composer.render("reply_sent", label="役員", count=12)
    """

    def __init__(self, registry: RoleRegistry, templates: Optional[dict[str, str]] = None) -> None:
        self.registry = registry
        self._jinja_env = Environment(
            loader=BaseLoader(),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._templates = dict(TEMPLATES)
        if templates:
            self._templates.update(templates)

    def render(self, template_name: str, /, **values: Any) -> str:
        """Render a named template; any keyword, ``name`` included, is a template variable."""
        template = self._jinja_env.from_string(self._templates[template_name])
        return template.render(**values)

    def header(self, target_role: str, urgent: bool) -> str:
        label = self.registry.label(target_role)
        return self.render("header_urgent" if urgent else "header", label=label)

    def broadcast_units(self, command: BroadcastCommand, urgent: bool) -> list[MessageUnit]:
        """Build the text unit, followed by the image unit when there is one."""
        text = self.render(
            "broadcast",
            header=self.header(command.target_role, urgent),
            sender=command.sender_name,
            body=command.body,
        )
        units = [MessageUnit.text_unit(text)]
        if command.image_url:
            units.append(MessageUnit.image_unit(command.image_url))
        return units
