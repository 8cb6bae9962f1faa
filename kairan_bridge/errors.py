"""
Exception taxonomy shared across the bridge.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge errors."""


class UnknownRoleError(BridgeError, KeyError):
    """A role key is not present in the role registry."""

    def __init__(self, role: str) -> None:
        super().__init__(role)
        self.role = role

    def __str__(self) -> str:
        return f"Unknown role: {self.role!r}"


class TransportError(BridgeError):
    """An outbound call to LINE or Discord failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthorizationError(BridgeError):
    """The sender's role does not allow the requested command."""

    def __init__(self, identity_key: str, role: str) -> None:
        super().__init__(f"{identity_key} ({role}) is not allowed to broadcast")
        self.identity_key = identity_key
        self.role = role


class ConfigurationError(BridgeError):
    """The bridge configuration is invalid or incomplete."""
