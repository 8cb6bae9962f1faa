"""
Night-time quiet window.
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from kairan_bridge.dispatch.config import NightWindow


def is_quiet_period(now: datetime, start_hour: int, end_hour: int, tz: str = "Asia/Tokyo") -> bool:
    """Check whether ``now`` falls inside the quiet window.

    The hour is read in ``tz``, not the host zone. Naive datetimes are taken
    to be UTC. The end hour is exclusive: at 07:00 a 21-7 window is already
    over, so the morning release never re-queues what it drains.

    Raises:
        ValueError: If start_hour equals end_hour.
    """
    if start_hour == end_hour:
        raise ValueError(f"Quiet window start and end are both {start_hour}")
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    hour = now.astimezone(ZoneInfo(tz)).hour

    if start_hour > end_hour:
        # Crosses midnight, e.g. 21:00-07:00
        return hour >= start_hour or hour < end_hour
    return start_hour <= hour < end_hour


class NightWindowPolicy:
    """Bind a configured window to ``is_quiet_period``."""

    def __init__(self, window: NightWindow) -> None:
        self.window = window

    def is_quiet(self, now: datetime) -> bool:
        return is_quiet_period(now, self.window.start_hour, self.window.end_hour, self.window.timezone)

    def describe(self) -> str:
        return f"{self.window.start_hour:02d}:00-{self.window.end_hour:02d}:00"
