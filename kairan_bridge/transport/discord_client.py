"""
Discord client for the relay side of the bridge.

The bridge talks to Discord in three ways: a webhook for alerts and
forwarded LINE messages, the bot API for replies in the command channel,
and the bot API again to poll that channel for new commands.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from kairan_bridge.dispatch.config import RelaySettings, Secrets
from kairan_bridge.errors import TransportError
from kairan_bridge.observability import get_logger

logger = get_logger(__name__)

USER_AGENT = "DiscordBot (https://github.com/kairan-bridge, 3.0) kairan-bridge/3.0"

# Rate limited or temporarily forbidden; worth waiting and retrying.
RETRY_STATUSES = (429, 403)


@dataclass
class RelayMessage:
    """A message read from the Discord command channel."""

    id: str
    content: str
    author_name: str
    author_is_bot: bool = False
    attachments: list[dict[str, Any]] = field(default_factory=list)
    embeds: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RelayMessage:
        author = data.get("author") or {}
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content") or "",
            author_name=author.get("global_name") or author.get("username", ""),
            author_is_bot=bool(author.get("bot", False)),
            attachments=data.get("attachments") or [],
            embeds=data.get("embeds") or [],
        )

    @property
    def image_url(self) -> Optional[str]:
        """First image attachment, else the first embed's image."""
        if self.attachments:
            first = self.attachments[0]
            if (first.get("content_type") or "").startswith("image/"):
                return first.get("url")
        if self.embeds:
            image = self.embeds[0].get("image") or {}
            return image.get("url")
        return None


class DiscordClient:
    """
    Client for the Discord webhook and bot APIs.

    Usage:
        with DiscordClient(config.secrets, config.relay) as discord:
            discord.post_alert("🆕 Registered: Tanaka (役員)")
            for msg in discord.fetch_messages_since(cursor):
                ...
    """

    def __init__(
        self,
        secrets: Secrets,
        settings: Optional[RelaySettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.secrets = secrets
        self.settings = settings or RelaySettings()
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=self.settings.discord_api_base,
            headers={"User-Agent": USER_AGENT},
            timeout=self.settings.timeout,
            transport=transport,
        )
        if not self.has_webhook:
            logger.warning("DISCORD_WEBHOOK_URL is not set; alerts will be skipped")
        if not self.has_bot:
            logger.warning(
                "DISCORD_BOT_TOKEN or DISCORD_CHANNEL_ID is not set; "
                "channel replies and polling will be skipped"
            )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    @property
    def has_webhook(self) -> bool:
        return bool(self.secrets.discord_webhook_url)

    @property
    def has_bot(self) -> bool:
        return bool(self.secrets.discord_bot_token and self.secrets.discord_channel_id)

    def _bot_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self.secrets.discord_bot_token}"}

    # ---- Webhook ----

    def post_alert(self, text: str) -> bool:
        """Post to the operations webhook. Returns False if nothing was sent."""
        if not self.has_webhook:
            return False
        return self._post_webhook({"content": text})

    def forward_user_message(
        self,
        display_name: str,
        text: str,
        alert_text: Optional[str] = None,
    ) -> bool:
        """Mirror a LINE member's message into the configured Discord thread.

        Without a thread the message goes to the plain alert channel as
        ``alert_text`` (the raw text when none is given), since the webhook
        username cannot carry the sender there.
        """
        if not self.has_webhook:
            return False
        if not self.secrets.discord_thread_id:
            return self.post_alert(alert_text if alert_text is not None else text)
        return self._post_webhook(
            {"content": text, "username": f"{display_name} 📱(LINE)"},
            params={"thread_id": self.secrets.discord_thread_id},
        )

    def _post_webhook(self, payload: dict[str, Any], params: Optional[dict[str, str]] = None) -> bool:
        try:
            resp = self._client.post(
                self.secrets.discord_webhook_url, json=payload, params=params
            )
        except httpx.HTTPError as e:
            logger.warning("Discord webhook failed: %s", e)
            return False
        if resp.status_code >= 400:
            logger.warning("Discord webhook returned %s: %s", resp.status_code, resp.text[:200])
            return False
        return True

    # ---- Bot API ----

    def post_message(self, text: str) -> bool:
        """Reply in the command channel. Returns False if nothing was sent."""
        if not self.has_bot:
            return False
        try:
            resp = self._client.post(
                f"/channels/{self.secrets.discord_channel_id}/messages",
                json={"content": text},
                headers=self._bot_headers(),
            )
        except httpx.HTTPError as e:
            logger.warning("Discord channel post failed: %s", e)
            return False
        if resp.status_code >= 400:
            logger.warning("Discord channel post returned %s: %s", resp.status_code, resp.text[:200])
            return False
        return True

    def fetch_messages_since(self, cursor: Optional[str]) -> list[RelayMessage]:
        """
        Fetch channel messages newer than ``cursor``, newest first.

        Returns an empty list when the bot is not configured.

        Raises:
            TransportError: If Discord still answers with an error after
                the retries are used up.
            httpx.HTTPError: If the final attempt fails to connect.
        """
        if not self.has_bot:
            return []
        params: dict[str, Any] = {"limit": self.settings.fetch_limit}
        if cursor:
            params["after"] = cursor
        resp = self._get_with_retry(
            f"/channels/{self.secrets.discord_channel_id}/messages",
            params=params,
        )
        if resp.status_code != 200:
            raise TransportError(
                f"Discord fetch returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return [RelayMessage.from_api(m) for m in resp.json()]

    def _get_with_retry(self, path: str, params: dict[str, Any]) -> httpx.Response:
        """GET with a fixed backoff on 429/403 and connection errors.

        After ``retry_count`` waits, one last attempt is made and its
        response (or exception) goes back to the caller unchanged.
        """
        for attempt in range(self.settings.retry_count):
            try:
                resp = self._client.get(path, params=params, headers=self._bot_headers())
            except httpx.TransportError as e:
                logger.warning("Discord fetch attempt %d failed: %s", attempt + 1, e)
                self._sleep(self.settings.retry_backoff_seconds)
                continue
            if resp.status_code in RETRY_STATUSES:
                logger.warning(
                    "Discord fetch attempt %d got %s; backing off %.0fs",
                    attempt + 1,
                    resp.status_code,
                    self.settings.retry_backoff_seconds,
                )
                self._sleep(self.settings.retry_backoff_seconds)
                continue
            return resp
        return self._client.get(path, params=params, headers=self._bot_headers())
