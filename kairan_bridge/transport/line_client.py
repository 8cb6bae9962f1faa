"""
LINE Messaging API client.

Wraps the endpoints the bridge uses: reply, push, multicast and profile
lookup. API docs: https://developers.line.biz/en/reference/messaging-api/
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from kairan_bridge.dispatch.config import DeliverySettings
from kairan_bridge.dispatch.messages import MessageUnit
from kairan_bridge.errors import TransportError
from kairan_bridge.observability import get_logger

logger = get_logger(__name__)

UNKNOWN_USER = "unknown user"


@dataclass
class ProfileResult:
    """Outcome of a profile lookup.

    ``display_name`` always holds something printable: the LINE name when
    the lookup succeeded, the fallback otherwise.
    """

    ok: bool
    display_name: str
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, fallback: str = UNKNOWN_USER) -> ProfileResult:
        return cls(ok=False, display_name=fallback, error=error)


class LineClient:
    """
    Client for the LINE Messaging API.

    Usage:
        with LineClient(token) as line:
            line.reply(reply_token, [MessageUnit.text_unit("hello")])
            line.multicast(["U1", "U2"], units)
            name = line.get_profile("U1").display_name
    """

    def __init__(
        self,
        access_token: str,
        settings: Optional[DeliverySettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings or DeliverySettings()
        self.configured = bool(access_token)
        if not self.configured:
            logger.warning("LINE access token is not set; LINE calls will be skipped")
        self._client = httpx.Client(
            base_url=self.settings.line_api_base,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=self.settings.timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ---- Sending ----

    def reply(self, reply_token: str, units: Sequence[MessageUnit]) -> None:
        """Answer a webhook event using its one-time reply token."""
        self._post("/message/reply", {
            "replyToken": reply_token,
            "messages": [u.to_line() for u in units],
        })

    def push(self, target: str, units: Sequence[MessageUnit]) -> None:
        """Send to a single user, group or room id."""
        self._post("/message/push", {
            "to": target,
            "messages": [u.to_line() for u in units],
        })

    def multicast(self, user_ids: Sequence[str], units: Sequence[MessageUnit]) -> None:
        """Send the same messages to up to 500 user ids in one call."""
        self._post("/message/multicast", {
            "to": list(user_ids),
            "messages": [u.to_line() for u in units],
        })

    # ---- Profiles ----

    def get_profile(self, user_id: str) -> ProfileResult:
        """Look up a user's display name; never raises."""
        if not self.configured:
            return ProfileResult.failed("LINE access token not configured")
        try:
            resp = self._client.get(f"/profile/{user_id}")
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Profile lookup failed for %s: %s", user_id, e)
            return ProfileResult.failed(str(e))
        name = data.get("displayName") or UNKNOWN_USER
        return ProfileResult(ok=True, display_name=name)

    # ---- Internal ----

    def _post(self, path: str, payload: dict[str, Any]) -> None:
        if not self.configured:
            logger.debug("Skipping LINE %s: no access token", path)
            return
        try:
            resp = self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"LINE {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(
                f"LINE {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
