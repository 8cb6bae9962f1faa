"""
Role hierarchy and recipient resolution.

The registry is a fixed lookup table built from the configured roles. The
resolver turns a target role into the list of registered members whose
rank is at least the target's rank.
"""

from __future__ import annotations

from typing import Iterable, NamedTuple, Optional, Protocol, Sequence

from kairan_bridge.dispatch.config import Role
from kairan_bridge.errors import UnknownRoleError

BLOCKED_RANK = 0


class Recipient(NamedTuple):
    identity_key: str
    display_name: str


class UserRecord(Protocol):
    identity_key: str
    display_name: str
    role: str


class UserSource(Protocol):
    def list_users(self) -> Sequence[UserRecord]: ...


class RoleRegistry:
    """
    Read-only role table.

    Usage:
        registry = RoleRegistry(config.roles)
        registry.rank("Yakuin")        # 2
        registry.label("Yakuin")       # "役員"
        registry.top_role.key          # "SanYaku"
    """

    def __init__(self, roles: Iterable[Role]) -> None:
        self._roles: dict[str, Role] = {r.key: r for r in roles}
        if not self._roles:
            raise ValueError("RoleRegistry needs at least one role")
        # Highest rank first
        self._ordered = sorted(self._roles.values(), key=lambda r: r.rank, reverse=True)

    def get(self, role: str) -> Role:
        try:
            return self._roles[role]
        except KeyError:
            raise UnknownRoleError(role) from None

    def rank(self, role: str) -> int:
        return self.get(role).rank

    def label(self, role: str) -> str:
        return self.get(role).label

    def is_known(self, role: Optional[str]) -> bool:
        return role in self._roles

    @property
    def roles(self) -> list[Role]:
        """Roles ordered from highest to lowest rank."""
        return list(self._ordered)

    @property
    def top_role(self) -> Role:
        return self._ordered[0]

    @property
    def default_role(self) -> Role:
        """The lowest non-blocked role, assigned to members we have no record of."""
        active = [r for r in self._ordered if r.rank > BLOCKED_RANK]
        return active[-1]

    def is_top_rank(self, role: str) -> bool:
        """True if the role carries the highest defined rank."""
        return self.is_known(role) and self.rank(role) == self.top_role.rank


class RecipientResolver:
    """Resolve a target role to every member at or above its rank."""

    def __init__(self, registry: RoleRegistry, users: UserSource) -> None:
        self.registry = registry
        self.users = users

    def resolve(self, target_role: str) -> list[Recipient]:
        """
        Return recipients for a broadcast aimed at ``target_role``.

        Members are returned in registration order. Blocked members are never
        included. Members whose stored role is not in the registry are
        skipped so that one stale row cannot stop a broadcast.

        Raises:
            UnknownRoleError: If ``target_role`` itself is unknown.
        """
        target_rank = self.registry.rank(target_role)
        recipients: list[Recipient] = []
        for user in self.users.list_users():
            if not self.registry.is_known(user.role):
                continue
            rank = self.registry.rank(user.role)
            if rank <= BLOCKED_RANK:
                continue
            if rank >= target_rank:
                recipients.append(Recipient(user.identity_key, user.display_name))
        return recipients
