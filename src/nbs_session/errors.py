"""
Session error taxonomy with structured data for JSONL logging.

Every failure a session operation reports is one of these types. The
session records it as last_error, emits it as an ERROR event and delivers
it through the operation's future and completion callback.

Error hierarchy:
- SSHError (base)
  - SSHConnectionError: DNS, socket or handshake failure, or a lost transport
    - ConnectionRefused
    - ConnectionTimeout: connect deadline exceeded
    - HostUnreachable
  - StatePreconditionError: operation not allowed in the current state
  - AuthenticationError
    - AuthFailed: credentials rejected
    - KeyLoadError: key file missing, unreadable, encrypted or mismatched
    - AgentError: SSH agent unavailable or failed
  - HostKeyError
    - HostKeyMismatch
    - HostKeyNotFound
    - HostKeyStoreError: known_hosts could not be read or written
    - HostKeyRejected: the delegate declined the fingerprint
  - OperationCancelled: queued or running work aborted by disconnect
  - SSHProtocolError: transport failure not otherwise classified

Extra keyword arguments to any error land in its context:
    KeyLoadError("Missing key", key_path="/k", reason="file_not_found")
    -> {"error_type": "KeyLoadError", "message": "Missing key",
        "key_path": "/k", "reason": "file_not_found"}
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class DisconnectReason(str, Enum):
    """Why a session left the connected states, as logged in DISCONNECT events."""
    NORMAL = "normal"
    CONNECTION_LOST = "connection_lost"


@dataclass
class ErrorContext:
    """
    Where an error happened.

    The named fields cover the connection coordinates and the underlying
    library error; anything else goes in extra, flattened on output.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    auth_method: str | None = None
    key_path: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Flat dictionary of the set fields and extras."""
        named = {f.name for f in fields(self)} - {"extra"}
        # Precondition: an extra key must never shadow a named field
        collisions = named & self.extra.keys()
        assert not collisions, f"Extra keys collide with field names: {collisions}"

        result = {
            name: getattr(self, name)
            for name in _FIELD_ORDER
            if getattr(self, name) is not None
        }
        result.update(self.extra)
        return result


_FIELD_ORDER = ["host", "port", "username", "auth_method", "key_path", "original_error"]


class SSHError(Exception):
    """
    Base exception for all session errors.

    Args:
        message: Non-empty human readable description
        context: Connection coordinates; a fresh one if omitted
        **details: Named context fields or extras; None values are skipped
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        **details: Any,
    ) -> None:
        # Precondition: message must be non-empty
        assert isinstance(message, str) and message.strip(), (
            f"SSHError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context if context is not None else ErrorContext()
        for key, value in details.items():
            if value is None:
                continue
            if key in _FIELD_ORDER:
                setattr(self.context, key, value)
            else:
                self.context.extra[key] = value

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSONL logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class SSHConnectionError(SSHError):
    pass


class ConnectionRefused(SSHConnectionError):
    pass


class ConnectionTimeout(SSHConnectionError):
    """The connect deadline passed before the handshake finished."""


class HostUnreachable(SSHConnectionError):
    """Host could not be reached or its name could not be resolved."""


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class StatePreconditionError(SSHError):
    """
    Operation invoked in a state that forbids it.

    For example authenticating before connecting, or asking for the
    transport handle before the session is authorized. Raising this never
    changes the session state. Pass state= to record the offending state.
    """


class OperationCancelled(SSHError):
    """A queued or in-flight operation was aborted by disconnect."""


class SSHProtocolError(SSHError):
    pass


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthenticationError(SSHError):
    pass


class AuthFailed(AuthenticationError):
    """
    The server rejected the credential: a wrong password, an unauthorized
    key, wrong keyboard-interactive answers, or no acceptable agent key.
    """


class KeyLoadError(AuthenticationError):
    """
    A key file could not be used.

    reason is one of file_not_found, permission_denied,
    passphrase_required, wrong_passphrase, invalid_format,
    public_key_mismatch or unknown.
    """

    def __init__(
        self,
        message: str,
        key_path: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        # Precondition: key_path must be None or a non-empty string
        assert key_path is None or (isinstance(key_path, str) and key_path.strip()), (
            f"key_path must be None or a non-empty string, got {key_path!r}"
        )
        super().__init__(message, context, key_path=key_path, reason=reason)


class AgentError(AuthenticationError):
    """
    The SSH agent could not be used.

    reason is one of no_auth_sock, socket_not_found, connection_failed,
    communication_error or no_identities.
    """


# ---------------------------------------------------------------------------
# Host keys
# ---------------------------------------------------------------------------

class HostKeyError(SSHError):
    pass


class HostKeyMismatch(HostKeyError):
    """
    The server's host key differs from the one recorded for it.

    This could indicate a man-in-the-middle attack or server reconfiguration.
    """


class HostKeyNotFound(HostKeyError):
    pass


class HostKeyStoreError(HostKeyError):
    """
    A known_hosts file could not be read or written, or a salt was not
    valid base64. Carries path= and reason= in its context.
    """


class HostKeyRejected(HostKeyError):
    """The session delegate declined to connect to the presented fingerprint."""
