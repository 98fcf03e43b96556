"""
Session error taxonomy with structured data for diagnostics.

Every failure the session engine can report is one of these types, so an
embedding application can branch on the class and a diagnostic sink can
log the attached context as structured data.

Error hierarchy:
- SessionError (base)
  - ConfigurationError (bad host/port/username/secret, re-init while active)
  - HandshakeError (transport connect or authentication failed)
    - ConnectionRefused
    - ConnectionTimeout
    - HostUnreachable
    - AuthFailed
    - HostKeyRejected
    - NoMutualKex
  - StreamCreationError (shell stream could not be opened)
  - ConnectCancelled (disconnect or transport error while connecting)
  - ConnectionLostError (runtime transport/stream failure)
  - NotConnected (send with no session and reconnect disabled)
  - StreamNotWritable (transport up but shell stream unusable)
  - SendError (write onto the shell stream failed)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class DisconnectReason(str, Enum):
    """
    Why a session was torn down.

    Carried on DISCONNECT diagnostic events.
    """
    EXPLICIT = "explicit"
    TRANSPORT_ERROR = "transport_error"
    STREAM_ERROR = "stream_error"
    STREAM_CLOSED = "stream_closed"
    SEND_FAILURE = "send_failure"
    STREAM_NOT_WRITABLE = "stream_not_writable"


@dataclass
class ErrorContext:
    """
    Structured context for session errors.

    Never holds the secret; only what is needed to diagnose the failure.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    label: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate invariants after initialisation."""
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collision with dataclass field names: "
                    f"{collisions}. Use distinct key names in extra."
                )
                result.update(value)
            else:
                result[key] = value
        return result


class SessionError(Exception):
    """
    Base exception for all session errors.

    All session errors carry structured context for logging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"SessionError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSONL logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


class ConfigurationError(SessionError):
    """
    Session configuration is missing or invalid.

    Reported synchronously from initialise/connect and never retried.
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if field_name:
            context.extra["field"] = field_name
        super().__init__(message, context)
        self.field_name = field_name


# ---------------------------------------------------------------------------
# Handshake Errors
# ---------------------------------------------------------------------------

class HandshakeError(SessionError):
    """Transport-level connect or authentication failed."""
    pass


class ConnectionRefused(HandshakeError):
    """Server actively refused the connection."""
    pass


class ConnectionTimeout(HandshakeError):
    """Connection attempt timed out."""
    pass


class HostUnreachable(HandshakeError):
    """Host could not be reached (network error)."""
    pass


class AuthFailed(HandshakeError):
    """
    Authentication failed.

    Raised when the server rejects the secret, or when a
    keyboard-interactive challenge contained prompts the mediator
    could not answer.
    """
    pass


class HostKeyRejected(HandshakeError):
    """
    The host trust policy refused the server's host key.

    The key was unknown to a strict policy, or differs from the key
    recorded for this host.
    """

    def __init__(
        self,
        message: str,
        fingerprint: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if fingerprint:
            context.extra["fingerprint"] = fingerprint
        super().__init__(message, context)
        self.fingerprint = fingerprint


class NoMutualKex(HandshakeError):
    """Client and server could not agree on a key exchange algorithm."""
    pass


# ---------------------------------------------------------------------------
# Session Errors
# ---------------------------------------------------------------------------

class StreamCreationError(SessionError):
    """The transport connected but the interactive shell could not be opened."""
    pass


class ConnectCancelled(SessionError):
    """A connect attempt was abandoned because of a disconnect or transport error."""
    pass


class ConnectionLostError(SessionError):
    """The transport or shell stream failed after the session was connected."""
    pass


class NotConnected(SessionError):
    """No connected session and automatic reconnect is disabled."""
    pass


class StreamNotWritable(SessionError):
    """Transport reports connected but the shell stream cannot be written."""
    pass


class SendError(SessionError):
    """
    Writing a command line onto the shell stream failed.

    connection_lost tells whether the failure was classified as a dead
    connection (session torn down) or a transient error (session kept).
    """

    def __init__(
        self,
        message: str,
        connection_lost: bool = False,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.extra["connection_lost"] = connection_lost
        super().__init__(message, context)
        self.connection_lost = connection_lost
