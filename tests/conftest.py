"""
Shared fakes and fixtures for the bridge tests.
"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

from kairan_bridge.app import BridgeApp
from kairan_bridge.dispatch.config import ScheduleSettings, Secrets, default_config
from kairan_bridge.dispatch.roles import RoleRegistry
from kairan_bridge.errors import TransportError
from kairan_bridge.store.repository import BridgeDB
from kairan_bridge.transport.discord_client import RelayMessage
from kairan_bridge.transport.line_client import UNKNOWN_USER, ProfileResult

JST = ZoneInfo("Asia/Tokyo")


def jst(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=JST)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeLine:
    """Records LINE calls instead of sending them."""

    def __init__(self, profiles: Optional[dict[str, str]] = None, fail_on: tuple[int, ...] = ()):
        self.profiles = profiles or {}
        self.fail_on = fail_on
        self.multicasts: list[tuple[list[str], list]] = []
        self.replies: list[tuple[str, str]] = []
        self.events: Optional[list] = None

    def multicast(self, user_ids, units):
        call_no = len(self.multicasts) + 1
        self.multicasts.append((list(user_ids), list(units)))
        if self.events is not None:
            self.events.append(("multicast", len(user_ids)))
        if call_no in self.fail_on:
            raise TransportError(f"multicast {call_no} failed", status_code=500)

    def reply(self, reply_token, units):
        self.replies.append((reply_token, units[0].text))

    def get_profile(self, user_id):
        if user_id in self.profiles:
            return ProfileResult(ok=True, display_name=self.profiles[user_id])
        return ProfileResult.failed("404", fallback=UNKNOWN_USER)

    def close(self):
        pass


class FakeDiscord:
    """Records Discord posts and serves canned channel messages."""

    def __init__(self, batches: Optional[list] = None):
        self.batches = list(batches or [])
        self.alerts: list[str] = []
        self.messages: list[str] = []
        self.forwarded: list[tuple[str, str]] = []
        self.forward_alerts: list[Optional[str]] = []
        self.cursors_seen: list[Optional[str]] = []
        self.events: Optional[list] = None

    def post_alert(self, text):
        self.alerts.append(text)
        if self.events is not None:
            self.events.append(("alert", text))
        return True

    def post_message(self, text):
        self.messages.append(text)
        return True

    def forward_user_message(self, display_name, text, alert_text=None):
        self.forwarded.append((display_name, text))
        self.forward_alerts.append(alert_text)
        return True

    def fetch_messages_since(self, cursor):
        self.cursors_seen.append(cursor)
        if not self.batches:
            return []
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    def close(self):
        pass


def relay_message(msg_id: str, content: str, author: str = "sato", bot: bool = False, **kw) -> RelayMessage:
    return RelayMessage(id=msg_id, content=content, author_name=author, author_is_bot=bot, **kw)


@pytest.fixture
def config(tmp_path):
    return default_config(
        secrets=Secrets(),
        db_url="sqlite:///:memory:",
        schedule=ScheduleSettings(sync_lock_file=str(tmp_path / "sync.lock")),
    )


@pytest.fixture
def registry(config):
    return RoleRegistry(config.roles)


@pytest.fixture
def db(registry):
    return BridgeDB("sqlite:///:memory:", registry=registry)


@pytest.fixture
def clock():
    # Monday afternoon, outside quiet hours
    return FixedClock(jst(2026, 10, 19, 14))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_app(config, db, clock, sleeps):
    def _make(line=None, discord=None, cfg=None):
        return BridgeApp(
            cfg or config,
            db,
            line or FakeLine(),
            discord or FakeDiscord(),
            clock=clock,
            sleep=sleeps.append,
        )

    return _make
