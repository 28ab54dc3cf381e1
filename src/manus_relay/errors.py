"""Error taxonomy shared by vault, remote client, services and API."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for errors raised by manus_relay."""


class AuthenticationError(RelayError):
    """Stored ciphertext failed authenticated decryption."""


class NotFoundError(RelayError):
    """Referenced account or task does not exist for the calling user."""


class ValidationError(RelayError):
    """Caller input was rejected before any side effect."""

    def __init__(self, message: str, *, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class TransportError(RelayError):
    """Upstream HTTP call failed.

    ``status_code`` is set when the upstream answered with an HTTP error status,
    and is ``None`` for connection failures, timeouts and unreadable bodies.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DatabaseUnavailableError(RelayError):
    """No database connection string is configured."""
