"""
Bridge configuration model.

Defines the role table, broadcast commands, registration keywords, night
window and delivery settings. Supports loading from a JSON config file with
API secrets sourced from environment variables. Every value is frozen: the
configuration is built once at process start and passed into constructors.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from kairan_bridge.errors import ConfigurationError
from kairan_bridge.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Role:
    """A member role.

    Attributes:
        key: Stable identifier stored on user records (e.g. "Yakuin").
        rank: Authority level; higher ranks receive more broadcasts.
              Rank 0 marks a blocked member.
        label: Human-readable name used in message headers.
    """

    key: str
    rank: int
    label: str


@dataclass(frozen=True)
class CommandSpec:
    """A broadcast command prefix and the role it targets."""

    prefix: str
    target_role: str


@dataclass(frozen=True)
class NightWindow:
    """Quiet hours during which non-urgent broadcasts are held.

    Attributes:
        start_hour: Local hour the window opens (inclusive).
        end_hour: Local hour the window closes (exclusive).
        urgent_marker: Substring that lets a broadcast through the window.
        timezone: IANA zone the hours are read in.
    """

    start_hour: int = 21
    end_hour: int = 7
    urgent_marker: str = "緊急"
    timezone: str = "Asia/Tokyo"


@dataclass(frozen=True)
class DeliverySettings:
    """LINE multicast limits."""

    max_recipients_per_call: int = 500
    chunk_pause_seconds: float = 0.2
    line_api_base: str = "https://api.line.me/v2/bot"
    timeout: float = 30.0


@dataclass(frozen=True)
class RelaySettings:
    """Discord polling settings."""

    fetch_limit: int = 5
    retry_count: int = 2
    retry_backoff_seconds: float = 10.0
    discord_api_base: str = "https://discord.com/api/v10"
    timeout: float = 30.0


@dataclass(frozen=True)
class ScheduleSettings:
    """Trigger times for the poll tick and the morning release."""

    poll_interval_minutes: int = 10
    release_hour: int = 7
    release_minute: int = 5
    sync_lock_timeout_seconds: float = 5.0
    # Shared by every process that runs the sync tick
    sync_lock_file: str = "kairan_bridge.sync.lock"


@dataclass(frozen=True)
class Secrets:
    """API credentials and endpoints. Empty strings mean "not configured"."""

    line_access_token: str = ""
    discord_webhook_url: str = ""
    discord_bot_token: str = ""
    discord_channel_id: str = ""
    discord_thread_id: str = ""

    # Default environment variable for each field
    ENV_NAMES = {
        "line_access_token": "LINE_ACCESS_TOKEN",
        "discord_webhook_url": "DISCORD_WEBHOOK_URL",
        "discord_bot_token": "DISCORD_BOT_TOKEN",
        "discord_channel_id": "DISCORD_CHANNEL_ID",
        "discord_thread_id": "DISCORD_THREAD_ID",
    }

    @classmethod
    def from_env(
        cls,
        env_names: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Secrets:
        """Read each secret from the environment variable named for it."""
        names = dict(cls.ENV_NAMES)
        names.update(env_names or {})
        env = os.environ if environ is None else environ
        return cls(**{attr: env.get(var, "").strip() for attr, var in names.items()})


DEFAULT_ROLES: tuple[Role, ...] = (
    Role("SanYaku", 4, "三役"),
    Role("KumiYakuin", 3, "組役員"),
    Role("Yakuin", 2, "役員"),
    Role("Member", 1, "会員"),
    Role("Blocked", 0, "停止"),
)

DEFAULT_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("全三役連絡", "SanYaku"),
    CommandSpec("全組役員連絡", "KumiYakuin"),
    CommandSpec("全役員連絡", "Yakuin"),
    CommandSpec("全町内回覧", "Member"),
)

DEFAULT_REGISTER_KEYWORDS: dict[str, str] = {
    "三役登録": "SanYaku",
    "組役員登録": "KumiYakuin",
    "役員登録": "Yakuin",
    "役員退会": "Member",
    "回覧退会": "Blocked",
}


@dataclass(frozen=True)
class BridgeConfig:
    """Complete bridge configuration.

    Attributes:
        roles: Role table, any order; ranks must be unique.
        commands: Broadcast command prefixes in match order.
        register_keywords: Exact-match self-registration keywords.
        stats_command: Keyword that returns registration counts.
        night_window: Quiet hours and urgent marker.
        delivery: LINE multicast limits.
        relay: Discord polling settings.
        schedule: Poll and release trigger times.
        secrets: API credentials.
        db_url: SQLAlchemy URL for the bridge database.
    """

    roles: tuple[Role, ...] = DEFAULT_ROLES
    commands: tuple[CommandSpec, ...] = DEFAULT_COMMANDS
    register_keywords: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_REGISTER_KEYWORDS)
    )
    stats_command: str = "統計確認"
    night_window: NightWindow = field(default_factory=NightWindow)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    relay: RelaySettings = field(default_factory=RelaySettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    secrets: Secrets = field(default_factory=Secrets)
    db_url: str = "sqlite:///kairan_bridge.db"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject configurations the engine cannot run with.

        Raises:
            ConfigurationError: On equal window hours, duplicate role keys or
                ranks, commands or keywords naming unknown roles, or a
                non-positive chunk size.
        """
        window = self.night_window
        for hour in (window.start_hour, window.end_hour):
            if not 0 <= hour <= 23:
                raise ConfigurationError(f"Night window hour out of range: {hour}")
        if window.start_hour == window.end_hour:
            raise ConfigurationError(
                f"Night window start and end are both {window.start_hour}; "
                "use different hours"
            )
        if not window.urgent_marker:
            raise ConfigurationError("Urgent marker must not be empty")

        keys = [r.key for r in self.roles]
        if len(set(keys)) != len(keys):
            raise ConfigurationError(f"Duplicate role keys: {keys}")
        ranks = [r.rank for r in self.roles]
        if len(set(ranks)) != len(ranks):
            raise ConfigurationError(f"Role ranks must be unique: {ranks}")
        if not any(r.rank >= 1 for r in self.roles):
            raise ConfigurationError("At least one role must have rank >= 1")

        known = set(keys)
        for cmd in self.commands:
            if not cmd.prefix:
                raise ConfigurationError("Command prefixes must not be empty")
            if cmd.target_role not in known:
                raise ConfigurationError(
                    f"Command '{cmd.prefix}' targets unknown role '{cmd.target_role}'"
                )
        for keyword, role in self.register_keywords.items():
            if role not in known:
                raise ConfigurationError(
                    f"Registration keyword '{keyword}' names unknown role '{role}'"
                )

        if self.delivery.max_recipients_per_call < 1:
            raise ConfigurationError("max_recipients_per_call must be at least 1")

        # Overlapping prefixes are legal; the first declared one wins.
        prefixes = [c.prefix for c in self.commands]
        for i, a in enumerate(prefixes):
            for b in prefixes[i + 1:]:
                if b.startswith(a) or a.startswith(b):
                    logger.warning(
                        "Command prefixes '%s' and '%s' overlap; declaration order decides",
                        a,
                        b,
                    )

    def with_overrides(self, **changes: Any) -> BridgeConfig:
        """Return a copy with the given top-level fields replaced."""
        return replace(self, **changes)


def default_config(secrets: Optional[Secrets] = None, **overrides: Any) -> BridgeConfig:
    """Return the association's built-in configuration.

    Secrets are read from the environment unless given explicitly.
    """
    return BridgeConfig(secrets=secrets if secrets is not None else Secrets.from_env(), **overrides)


def load_bridge_config(
    config_path: str | Path,
    environ: Optional[Mapping[str, str]] = None,
) -> BridgeConfig:
    """Load a BridgeConfig from a JSON file.

    Any section missing from the file keeps its built-in default. Secrets
    are never stored in the file: the ``secrets`` section maps each secret
    to the name of the environment variable holding it, e.g.
    ``{"line_access_token_env": "MY_LINE_TOKEN"}``.

    Args:
        config_path: Path to the bridge config JSON file.
        environ: Environment mapping to read secrets from (defaults to os.environ).

    Returns:
        A validated BridgeConfig instance.

    Raises:
        FileNotFoundError: If config_path does not exist.
        json.JSONDecodeError: If the JSON is malformed.
        ConfigurationError: If the values fail validation.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Bridge config not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = json.load(f)

    kwargs: dict[str, Any] = {}

    # --- Roles and commands ---
    if "roles" in raw:
        kwargs["roles"] = tuple(
            Role(key=r["key"], rank=int(r["rank"]), label=r.get("label", r["key"]))
            for r in raw["roles"]
        )
    if "commands" in raw:
        kwargs["commands"] = tuple(
            CommandSpec(prefix=c["prefix"], target_role=c["target_role"])
            for c in raw["commands"]
        )
    if "register_keywords" in raw:
        kwargs["register_keywords"] = dict(raw["register_keywords"])
    if "stats_command" in raw:
        kwargs["stats_command"] = raw["stats_command"]
    if "db_url" in raw:
        kwargs["db_url"] = raw["db_url"]

    # --- Nested settings ---
    sections = {
        "night_window": NightWindow,
        "delivery": DeliverySettings,
        "relay": RelaySettings,
        "schedule": ScheduleSettings,
    }
    for name, cls in sections.items():
        if name in raw:
            try:
                kwargs[name] = cls(**raw[name])
            except TypeError as e:
                raise ConfigurationError(f"Invalid '{name}' section: {e}") from e

    # --- Secrets from env ---
    env_names = {
        key[: -len("_env")]: value
        for key, value in raw.get("secrets", {}).items()
        if key.endswith("_env")
    }
    unknown = set(env_names) - set(Secrets.ENV_NAMES)
    if unknown:
        raise ConfigurationError(f"Unknown secrets: {sorted(unknown)}")
    kwargs["secrets"] = Secrets.from_env(env_names, environ=environ)

    return BridgeConfig(**kwargs)
