"""
Authentication methods and credential providers.

Provides:
- AuthMethod: Server-advertised authentication mechanism names
- AuthOffer: The material one credential presents to the transport
- PasswordCredential, KeyPairCredential, KeyboardInteractiveCredential,
  AgentCredential: One credential provider per mechanism
- load_key_pair: Key file loading with structured KeyLoadError reasons

Each credential carries only the data its mechanism needs and exposes a
single coroutine, attempt(transport), which presents that material to the
transport exactly once and returns when the server accepts it. Rejection
surfaces as the transport's failure exception (asyncssh.PermissionDenied).

Usage:
    await PasswordCredential("secret").attempt(client)
    await KeyPairCredential("~/.ssh/id_ed25519").attempt(client)
    await KeyboardInteractiveCredential(lambda prompt: "123456").attempt(client)
    await AgentCredential().attempt(client)
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

import asyncssh

from nbs_session.errors import AgentError, KeyLoadError
from nbs_session.platform import expand_path, get_agent_path

if TYPE_CHECKING:
    from nbs_session.client import SessionClient

logger = logging.getLogger(__name__)

# Keyboard-interactive responder: server prompt text -> response text
Responder = Callable[[str], "str | None"]


class AuthMethod(str, Enum):
    """SSH user authentication methods, by their wire names."""
    NONE = "none"
    PASSWORD = "password"
    PUBLICKEY = "publickey"
    KEYBOARD_INTERACTIVE = "keyboard-interactive"
    HOSTBASED = "hostbased"
    GSSAPI_WITH_MIC = "gssapi-with-mic"
    GSSAPI_KEYEX = "gssapi-keyex"

    @classmethod
    def from_names(cls, names: Iterable[str | bytes]) -> list["AuthMethod"]:
        """
        Convert server-advertised method names, preserving order.

        Unknown names are dropped.
        """
        known = {m.value: m for m in cls}
        methods = []
        for name in names:
            if isinstance(name, bytes):
                name = name.decode("ascii", errors="replace")
            method = known.get(name)
            if method is None:
                logger.debug("Ignoring unknown auth method %r", name)
            elif method not in methods:
                methods.append(method)
        return methods


@dataclass
class AuthOffer:
    """
    Authentication material handed to the transport for one attempt.

    The transport delivers it at most once, to the first matching request
    from the server.
    """
    method: AuthMethod
    password: str | None = None
    keys: list[Any] = field(default_factory=list)
    responder: Responder | None = None
    delivered: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (excludes secrets)."""
        result: dict[str, Any] = {"method": self.method.value}
        if self.keys:
            result["key_count"] = len(self.keys)
        return result


def load_key_pair(
    private_key: Path | str,
    public_key: Path | str | None = None,
    passphrase: str | None = None,
) -> asyncssh.SSHKey:
    """
    Load a private key, optionally checking it against a public key file.

    Args:
        private_key: Path to the private key file
        public_key: Path to the matching public key file, or None
        passphrase: Passphrase for an encrypted key; None for an unencrypted key

    Returns:
        Loaded private key

    Raises:
        KeyLoadError: With reason file_not_found, permission_denied,
            passphrase_required, wrong_passphrase, invalid_format,
            public_key_mismatch or unknown
    """
    key_path = expand_path(private_key)
    _check_readable(key_path, "Private key")

    try:
        key = asyncssh.read_private_key(str(key_path), passphrase=passphrase)
    except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as e:
        error_msg = str(e).lower()
        if "passphrase" in error_msg and passphrase is None:
            reason = "passphrase_required"
        elif "passphrase" in error_msg or "decrypt" in error_msg:
            reason = "wrong_passphrase"
        else:
            reason = "invalid_format"
        raise KeyLoadError(
            f"Failed to load private key {key_path}: {e}",
            key_path=str(key_path),
            reason=reason,
        ) from e
    except (OSError, ValueError) as e:
        raise KeyLoadError(
            f"Unexpected error loading private key {key_path}: {e}",
            key_path=str(key_path),
            reason="unknown",
        ) from e

    if public_key is not None:
        pub_path = expand_path(public_key)
        _check_readable(pub_path, "Public key")
        try:
            pub = asyncssh.read_public_key(str(pub_path))
        except (asyncssh.KeyImportError, OSError, ValueError) as e:
            raise KeyLoadError(
                f"Failed to load public key {pub_path}: {e}",
                key_path=str(pub_path),
                reason="invalid_format",
            ) from e
        if pub.public_data != key.public_data:
            raise KeyLoadError(
                f"Public key {pub_path} does not match private key {key_path}",
                key_path=str(pub_path),
                reason="public_key_mismatch",
            )

    return key


def _check_readable(path: Path, description: str) -> None:
    if not path.exists():
        raise KeyLoadError(
            f"{description} file not found: {path}",
            key_path=str(path),
            reason="file_not_found",
        )
    if not os.access(path, os.R_OK):
        raise KeyLoadError(
            f"{description} file not readable: {path}",
            key_path=str(path),
            reason="permission_denied",
        )


@dataclass
class PasswordCredential:
    """Username + password authentication."""
    password: str

    method = AuthMethod.PASSWORD

    def __post_init__(self) -> None:
        assert isinstance(self.password, str), "password must be a string"

    async def attempt(self, transport: "SessionClient") -> None:
        await transport.present(AuthOffer(self.method, password=self.password))

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method.value}


@dataclass
class KeyPairCredential:
    """
    Public key authentication from key files.

    A passphrase of None means the private key is unencrypted.
    """
    private_key: Path | str
    public_key: Path | str | None = None
    passphrase: str | None = None

    method = AuthMethod.PUBLICKEY

    def __post_init__(self) -> None:
        self.private_key = expand_path(self.private_key)
        if self.public_key is not None:
            self.public_key = expand_path(self.public_key)

    async def attempt(self, transport: "SessionClient") -> None:
        loop = asyncio.get_running_loop()
        key = await loop.run_in_executor(
            None, load_key_pair, self.private_key, self.public_key, self.passphrase,
        )
        await transport.present(AuthOffer(self.method, keys=[key]))

    def to_dict(self) -> dict[str, Any]:
        result = {"method": self.method.value, "key_path": str(self.private_key)}
        if self.public_key:
            result["public_key_path"] = str(self.public_key)
        return result


@dataclass
class KeyboardInteractiveCredential:
    """
    Keyboard-interactive challenge-response.

    The responder is called synchronously once per server prompt, in the
    order the server sends them. A responder returning None aborts the
    attempt.
    """
    responder: Responder

    method = AuthMethod.KEYBOARD_INTERACTIVE

    def __post_init__(self) -> None:
        assert callable(self.responder), "responder must be callable"

    async def attempt(self, transport: "SessionClient") -> None:
        await transport.present(AuthOffer(self.method, responder=self.responder))

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method.value}


@dataclass
class AgentCredential:
    """
    Public key authentication through a running SSH agent.

    Signing is done by the agent; no key material passes through here.
    The agent connection stays open until the server has answered.
    """
    agent_path: str | None = None

    method = AuthMethod.PUBLICKEY

    def resolve_path(self) -> str:
        """
        Raises:
            AgentError: If no agent socket is configured or it does not exist
        """
        path = self.agent_path or get_agent_path()
        if not path:
            raise AgentError(
                "SSH agent not available: SSH_AUTH_SOCK not set",
                reason="no_auth_sock",
            )
        if not Path(path).exists():
            raise AgentError(
                f"SSH agent socket not found: {path}",
                reason="socket_not_found",
            )
        return path

    async def attempt(self, transport: "SessionClient") -> None:
        path = self.resolve_path()

        try:
            agent = await asyncssh.connect_agent(path)
        except (OSError, asyncssh.Error) as e:
            raise AgentError(
                f"Failed to connect to SSH agent: {e}",
                reason="connection_failed",
            ) from e
        if agent is None:
            raise AgentError(
                f"Failed to connect to SSH agent at {path}",
                reason="connection_failed",
            )

        try:
            try:
                keys: Sequence[Any] = await agent.get_keys()
            except (OSError, ValueError, asyncssh.Error) as e:
                raise AgentError(
                    f"SSH agent communication failed: {e}",
                    reason="communication_error",
                ) from e
            if not keys:
                raise AgentError("SSH agent holds no identities", reason="no_identities")

            logger.debug("Offering %d agent key(s)", len(keys))
            await transport.present(AuthOffer(self.method, keys=list(keys)))
        finally:
            agent.close()
            await agent.wait_closed()

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method.value, "agent": True}


Credential = (
    PasswordCredential | KeyPairCredential | KeyboardInteractiveCredential | AgentCredential
)
