"""
SSH session lifecycle and authentication state machine.

Provides:
- SessionState: Lifecycle states
- HashType: Fingerprint hash algorithms
- Session: Connect, verify the host, authenticate, disconnect
- TransportHandle: Non-owning reference to an authorized transport

State transitions:
    DISCONNECTED -> CONNECTING (connect)
    FAILED -> CONNECTING (connect again)
    CONNECTING -> CONNECTED (handshake done, server ready for user auth)
    CONNECTING -> FAILED (socket, handshake or deadline failure)
    CONNECTED -> AUTHENTICATING (authenticate)
    AUTHENTICATING -> AUTHORIZED (credentials accepted)
    AUTHENTICATING -> FAILED (rejected, key/agent error, protocol error)
    any -> DISCONNECTED (disconnect, or the transport closing unexpectedly)

Every public operation is queued on the session's SerialExecutor and
returns an asyncio.Future; operations run one at a time in submission
order. Each also takes an optional complete callback that receives None on
success or the error. Errors are recorded as last_error before they are
delivered. An operation invoked in a state that forbids it fails with
StatePreconditionError and leaves the state unchanged.

Usage:
    import nbs_session

    nbs_session.initialize()

    async with nbs_session.Session("example.com:2222", "alice") as session:
        await session.connect()
        status = await session.known_host_status()
        if status == KnownHostStatus.NOT_FOUND:
            await session.add_known_host()
        await session.authenticate_by_password("secret")
        conn = session.transport.connection
"""
from __future__ import annotations

import asyncio
import getpass
import hashlib
import logging
import socket
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import asyncssh

from nbs_session.auth import (
    AgentCredential,
    AuthMethod,
    Credential,
    KeyboardInteractiveCredential,
    KeyPairCredential,
    PasswordCredential,
    Responder,
)
from nbs_session.client import BRIDGED_AUTH_METHODS, SessionClient
from nbs_session.config import SSHConfig
from nbs_session.delegate import SessionDelegate
from nbs_session.engine import require_initialized
from nbs_session.errors import (
    AuthFailed,
    ConnectionRefused,
    ConnectionTimeout,
    DisconnectReason,
    ErrorContext,
    HostKeyMismatch,
    HostKeyNotFound,
    HostKeyRejected,
    HostKeyStoreError,
    HostUnreachable,
    SSHConnectionError,
    SSHError,
    SSHProtocolError,
    StatePreconditionError,
)
from nbs_session.events import EventCollector, EventEmitter, EventType
from nbs_session.executor import Completion, SerialExecutor
from nbs_session.known_hosts import (
    KnownHostEntry,
    KnownHostStatus,
    append_known_host,
    check_known_hosts,
)
from nbs_session.platform import get_known_hosts_path, get_known_hosts_read_paths
from nbs_session.validation import (
    parse_host_string,
    validate_port,
    validate_timeout,
    validate_username,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PORT = 22
DEFAULT_TIMEOUT = 10.0
MAX_BANNER_LENGTH = 245


class SessionState(str, Enum):
    """Session lifecycle states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHORIZED = "authorized"
    FAILED = "failed"


_CONNECTED_STATES = frozenset({
    SessionState.CONNECTED,
    SessionState.AUTHENTICATING,
    SessionState.AUTHORIZED,
})


class HashType(str, Enum):
    """Fingerprint hash algorithms."""
    MD5 = "md5"
    SHA1 = "sha1"


def format_fingerprint(key: asyncssh.SSHKey, hash_type: HashType = HashType.MD5) -> str:
    """
    Fingerprint a public key as upper-case hex byte pairs joined by colons.

    Example: "5A:7B:0C:..." (16 pairs for MD5, 20 for SHA1)
    """
    digest = hashlib.new(hash_type.value, key.public_data, usedforsecurity=False).digest()
    return ":".join(f"{b:02X}" for b in digest)


class TransportHandle:
    """
    Non-owning reference to an authorized session's transport.

    Handed to channel and file-transfer collaborators. It becomes invalid
    when the session disconnects; anything that touches the connection
    should go through run() so it is serialised with the session's own
    operations.
    """

    def __init__(self, session: "Session", connection: asyncssh.SSHClientConnection) -> None:
        self._session = session
        self._connection: asyncssh.SSHClientConnection | None = connection

    @property
    def is_valid(self) -> bool:
        return self._connection is not None

    @property
    def session(self) -> "Session":
        return self._session

    @property
    def connection(self) -> asyncssh.SSHClientConnection:
        """
        Raises:
            StatePreconditionError: If the session has disconnected
        """
        if self._connection is None:
            raise StatePreconditionError(
                "Transport handle is no longer valid",
                state=self._session.state.value,
            )
        return self._connection

    def run(
        self,
        fn: Callable[[asyncssh.SSHClientConnection], Awaitable[T]],
        complete: Completion | None = None,
    ) -> asyncio.Future[T]:
        """
        Run fn(connection) on the session's serial worker.

        Returns:
            Future resolved with fn's result
        """
        async def _run() -> T:
            return await fn(self.connection)

        return self._session._submit("transport", _run, complete)

    def invalidate(self) -> None:
        self._connection = None


class Session:
    """
    One SSH transport session.

    host, port and username are fixed at construction. All other settings
    can be changed between connects.

    Args:
        host: Hostname or IP, optionally "host:port" or "[v6]:port"
        username: Remote user; defaults to the ssh_config User, then the
            local user
        port: Port; overrides a port in host
        timeout: Connect deadline in seconds (default 10)
        fingerprint_hash: Hash used by fingerprint() and the delegate check
        banner: Local identification string sent to the server
        known_hosts_files: Default files for known_host_status()
        agent_path: Agent socket for authenticate_by_agent()
        delegate: Optional SessionDelegate
        event_collector: Optional in-memory event sink
        event_log_path: Optional JSONL event file
        ssh_config: Optional SSHConfig supplying HostName, Port, User,
            ConnectTimeout, known_hosts files and IdentityAgent
    """

    def __init__(
        self,
        host: str,
        username: str | None = None,
        port: int | None = None,
        *,
        timeout: float | None = None,
        fingerprint_hash: HashType = HashType.MD5,
        banner: str | None = None,
        known_hosts_files: Sequence[Path | str] | None = None,
        agent_path: str | None = None,
        delegate: SessionDelegate | None = None,
        event_collector: EventCollector | None = None,
        event_log_path: Path | str | None = None,
        ssh_config: SSHConfig | None = None,
    ) -> None:
        require_initialized()

        hostname, host_port = parse_host_string(host)

        host_config = ssh_config.lookup(hostname) if ssh_config is not None else None
        if host_config is not None:
            hostname, _ = parse_host_string(host_config.get_hostname(hostname))
            if port is None and host_port is None:
                host_port = host_config.port
            if username is None:
                username = host_config.user
            if timeout is None and host_config.connect_timeout:
                timeout = float(host_config.connect_timeout)
            if known_hosts_files is None:
                known_hosts_files = host_config.known_hosts_files()
            if agent_path is None:
                agent_path = host_config.identity_agent

        self._host = hostname
        self._port = validate_port(port if port is not None else (host_port or DEFAULT_PORT))
        self._username = validate_username(username or getpass.getuser())
        self._timeout = validate_timeout(timeout if timeout is not None else DEFAULT_TIMEOUT)
        self._fingerprint_hash = HashType(fingerprint_hash)
        self._banner: str | None = None
        self.banner = banner
        self._known_hosts_files = (
            [Path(p) for p in known_hosts_files] if known_hosts_files is not None else None
        )
        self._agent_path = agent_path
        self.delegate = delegate

        self._state = SessionState.DISCONNECTED
        self._last_error: SSHError | None = None
        self._remote_banner: str | None = None
        self._server_host_key: asyncssh.SSHKey | None = None

        self._client: SessionClient | None = None
        self._connect_task: asyncio.Task[Any] | None = None
        self._handle: TransportHandle | None = None

        self._executor = SerialExecutor(name=f"{self._host}:{self._port}")
        self._emitter = EventEmitter(
            collector=event_collector,
            jsonl_path=event_log_path,
            session=f"{self._username}@{self._host}:{self._port}",
        )

    # -----------------------------------------------------------------------
    # Construction shortcut
    # -----------------------------------------------------------------------

    @classmethod
    async def connect_to_host(
        cls,
        host: str,
        username: str | None = None,
        port: int | None = None,
        **kwargs: Any,
    ) -> "Session":
        """
        Create a session and connect it.

        Raises:
            SSHError: If the connect fails
        """
        timeout = kwargs.pop("timeout", None)
        session = cls(host, username, port, timeout=timeout, **kwargs)
        await session.connect()
        return session

    # -----------------------------------------------------------------------
    # Properties
    # -----------------------------------------------------------------------

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def username(self) -> str:
        return self._username

    @property
    def timeout(self) -> float:
        """Default connect deadline in seconds."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        self._timeout = validate_timeout(value)

    @property
    def fingerprint_hash(self) -> HashType:
        return self._fingerprint_hash

    @fingerprint_hash.setter
    def fingerprint_hash(self, value: HashType) -> None:
        self._fingerprint_hash = HashType(value)

    @property
    def banner(self) -> str | None:
        """Local identification string, sent as "SSH-2.0-<banner>" on the next connect."""
        return self._banner

    @banner.setter
    def banner(self, value: str | None) -> None:
        if value is not None:
            if len(value) > MAX_BANNER_LENGTH:
                raise ValueError(f"banner must be at most {MAX_BANNER_LENGTH} characters")
            if any(not 0x20 <= ord(c) <= 0x7E for c in value):
                raise ValueError("banner must be printable ASCII")
        self._banner = value

    @property
    def remote_banner(self) -> str | None:
        """The server's identification string, e.g. "SSH-2.0-OpenSSH_9.6"."""
        return self._remote_banner

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_error(self) -> SSHError | None:
        return self._last_error

    @property
    def is_connected(self) -> bool:
        return self._state in _CONNECTED_STATES

    @property
    def is_authorized(self) -> bool:
        return self._state == SessionState.AUTHORIZED

    @property
    def server_host_key(self) -> asyncssh.SSHKey | None:
        return self._server_host_key

    @property
    def executor(self) -> SerialExecutor:
        return self._executor

    @property
    def transport(self) -> TransportHandle:
        """
        Handle for channel and file-transfer collaborators.

        Raises:
            StatePreconditionError: If the session is not authorized
        """
        self._require("use the transport", SessionState.AUTHORIZED)
        if self._handle is None:
            assert self._client is not None and self._client.connection is not None
            self._handle = TransportHandle(self, self._client.connection)
        return self._handle

    def __repr__(self) -> str:
        return (
            f"<Session {self._username}@{self._host}:{self._port} "
            f"state={self._state.value}>"
        )

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _submit(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        complete: Completion | None,
    ) -> asyncio.Future[T]:
        return self._executor.submit(fn, name, complete)

    def _context(self, **extra: Any) -> ErrorContext:
        return ErrorContext(
            host=self._host,
            port=self._port,
            username=self._username,
            extra=extra,
        )

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        old = self._state
        self._state = state
        logger.debug("%r: %s -> %s", self, old.value, state.value)
        self._emitter.emit(EventType.STATE, old=old.value, new=state.value, host=self._host)

    def _record_error(self, error: SSHError) -> SSHError:
        if error.context.host is None:
            error.context.host = self._host
            error.context.port = self._port
            error.context.username = self._username
        self._last_error = error
        self._emitter.emit(EventType.ERROR, **error.to_dict())
        return error

    def _require(self, operation: str, *states: SessionState) -> None:
        """
        Raises:
            StatePreconditionError: If the current state is not one of states
        """
        if self._state in states:
            return
        error = StatePreconditionError(
            f"Cannot {operation} while {self._state.value}",
            state=self._state.value,
        )
        self._record_error(error)
        raise error

    def _require_connected(self, operation: str) -> None:
        self._require(operation, *_CONNECTED_STATES)

    def _map_exception(self, exc: BaseException, ctx: ErrorContext) -> SSHError:
        """Map asyncssh and socket exceptions to the session error taxonomy."""
        ctx.original_error = str(exc) or type(exc).__name__

        if isinstance(exc, SSHError):
            return exc

        if isinstance(exc, asyncssh.PermissionDenied):
            return AuthFailed(f"Authentication failed: {exc}", context=ctx)

        if isinstance(exc, asyncssh.HostKeyNotVerifiable):
            return HostKeyMismatch(f"Host key verification failed: {exc}", context=ctx)

        if isinstance(exc, asyncssh.KeyExchangeFailed):
            return SSHConnectionError(f"Key exchange failed: {exc}", context=ctx)

        if isinstance(exc, asyncssh.ConnectionLost):
            return SSHConnectionError(f"Connection lost: {exc}", context=ctx)

        if isinstance(exc, asyncssh.DisconnectError):
            return SSHProtocolError(f"Protocol error: {exc}", context=ctx)

        if isinstance(exc, ConnectionRefusedError):
            return ConnectionRefused(f"Connection refused: {exc}", context=ctx)

        if isinstance(exc, socket.gaierror):
            return HostUnreachable(f"Cannot resolve {self._host}: {exc}", context=ctx)

        if isinstance(exc, asyncio.TimeoutError):
            return ConnectionTimeout(f"Connection timed out: {exc}", context=ctx)

        if isinstance(exc, OSError):
            error_str = str(exc).lower()
            if "connection refused" in error_str:
                return ConnectionRefused(f"Connection refused: {exc}", context=ctx)
            if "timed out" in error_str or "timeout" in error_str:
                return ConnectionTimeout(f"Connection timed out: {exc}", context=ctx)
            if "unreachable" in error_str or "no route" in error_str:
                return HostUnreachable(f"Host unreachable: {exc}", context=ctx)
            return SSHConnectionError(f"Connection failed: {exc}", context=ctx)

        return SSHProtocolError(f"Unexpected transport error: {exc!r}", context=ctx)

    @staticmethod
    def _reap_connect_task(task: asyncio.Task[Any]) -> None:
        if not task.cancelled():
            task.exception()

    def _on_connection_lost(self, client: SessionClient, exc: Exception | None) -> None:
        if client is not self._client or self._state not in (
            SessionState.CONNECTED, SessionState.AUTHORIZED,
        ):
            # Released by us, or the running connect/auth reports it
            return
        self._submit(
            "connection_lost",
            lambda: self._do_connection_lost(client, exc),
            lambda error: None,
        )

    async def _do_connection_lost(self, client: SessionClient, exc: Exception | None) -> None:
        if client is not self._client or self._state not in (
            SessionState.CONNECTED, SessionState.AUTHORIZED,
        ):
            return

        error = SSHConnectionError(
            f"Connection lost: {exc or 'closed by server'}",
            context=self._context(),
        )
        if exc is not None:
            error.context.original_error = str(exc)

        await self._release_transport()
        self._set_state(SessionState.DISCONNECTED)
        self._record_error(error)
        self._emitter.emit(
            EventType.DISCONNECT,
            host=self._host,
            port=self._port,
            reason=DisconnectReason.CONNECTION_LOST.value,
        )
        if self.delegate is not None:
            self.delegate.session_did_disconnect(self, error)

    async def _release_transport(self, abort: bool = False) -> None:
        """Close the connection and forget it. Safe to call when there is none."""
        if self._handle is not None:
            self._handle.invalidate()
            self._handle = None

        client, task = self._client, self._connect_task
        self._client = None
        self._connect_task = None
        self._server_host_key = None

        conn = client.connection if client is not None else None
        if conn is not None:
            if abort:
                conn.abort()
            else:
                conn.close()

        if task is not None and not task.done():
            task.cancel()
        if task is not None:
            await asyncio.wait([task])
        if conn is not None:
            await conn.wait_closed()

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def connect(
        self,
        timeout: float | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[None]:
        """
        Open the transport and run the handshake.

        Allowed from DISCONNECTED or FAILED. On success the state is
        CONNECTED, remote_banner is set and the server host key captured.
        On failure the state is FAILED and the transport is released.

        Args:
            timeout: Deadline in seconds; defaults to the session timeout
            complete: Optional completion callback

        Raises (through the future):
            StatePreconditionError, ConnectionTimeout, SSHConnectionError,
            HostKeyRejected, AuthFailed, SSHProtocolError
        """
        deadline = validate_timeout(timeout) if timeout is not None else None
        return self._submit("connect", lambda: self._do_connect(deadline), complete)

    async def _do_connect(self, timeout: float | None) -> None:
        self._require("connect", SessionState.DISCONNECTED, SessionState.FAILED)
        await self._release_transport(abort=True)

        deadline = timeout if timeout is not None else self._timeout
        ctx = self._context(timeout=deadline)
        self._remote_banner = None
        self._set_state(SessionState.CONNECTING)

        client = SessionClient(on_connection_lost=self._on_connection_lost)
        self._client = client

        options: dict[str, Any] = {
            "port": self._port,
            "username": self._username,
            "client_factory": lambda: client,
            "known_hosts": None,
            "config": None,
            "agent_path": None,
            "client_keys": None,
            "password": None,
            "gss_host": None,
            # Handshake deadline is ours; user auth waits on the caller
            "login_timeout": 0,
            "public_key_auth": True,
            "kbdint_auth": True,
            "password_auth": True,
            "preferred_auth": [m.value for m in BRIDGED_AUTH_METHODS],
        }
        if self._banner is not None:
            options["client_version"] = self._banner

        task = asyncio.ensure_future(asyncssh.connect(self._host, **options))
        task.add_done_callback(self._reap_connect_task)
        self._connect_task = task

        with self._emitter.timed_event(
            EventType.CONNECT,
            host=self._host,
            port=self._port,
            username=self._username,
            timeout=deadline,
        ) as data:
            try:
                done, _ = await asyncio.wait(
                    [client.handshake_done, task],
                    timeout=deadline,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            except asyncio.CancelledError:
                await self._release_transport(abort=True)
                raise

            error: SSHError | None = None
            if not done:
                error = ConnectionTimeout(
                    f"Connect to {self._host}:{self._port} timed out after {deadline}s",
                    context=ctx,
                )
            elif task.done() and not task.cancelled() and task.exception() is not None:
                error = self._map_exception(task.exception(), ctx)
            elif client.connection is None:
                error = SSHProtocolError("Handshake finished without a connection", context=ctx)

            if error is None:
                conn = client.connection
                self._server_host_key = conn.get_server_host_key()
                self._remote_banner = conn.get_extra_info("server_version")

                if self.delegate is not None and self._server_host_key is not None:
                    fingerprint = format_fingerprint(self._server_host_key, self._fingerprint_hash)
                    if not self.delegate.should_connect_to_host(self, fingerprint):
                        ctx.extra["fingerprint"] = fingerprint
                        error = HostKeyRejected(
                            f"Host key {fingerprint} for {self._host} was rejected",
                            context=ctx,
                        )

            if error is not None:
                data["status"] = "error"
                data["error_type"] = error.error_type
                await self._release_transport(abort=True)
                self._set_state(SessionState.FAILED)
                raise self._record_error(error)

            data["status"] = "connected"
            data["remote_banner"] = self._remote_banner
            self._set_state(SessionState.CONNECTED)

    def disconnect(self, complete: Completion | None = None) -> asyncio.Future[None]:
        """
        Release the transport and return to DISCONNECTED.

        Callable from any state. Queued operations fail with
        OperationCancelled and the running one is cancelled; an earlier
        disconnect still in the queue is left to finish. Calling it again is
        a no-op.
        """
        self._executor.cancel_all("disconnect", keep="disconnect")
        return self._submit("disconnect", self._do_disconnect, complete)

    async def _do_disconnect(self) -> None:
        previous = self._state
        await self._release_transport()
        self._set_state(SessionState.DISCONNECTED)
        if previous != SessionState.DISCONNECTED:
            self._emitter.emit(
                EventType.DISCONNECT,
                host=self._host,
                port=self._port,
                reason=DisconnectReason.NORMAL.value,
                previous_state=previous.value,
            )

    async def close(self) -> None:
        """Disconnect, stop the worker and close the event log."""
        await self.disconnect()
        await self._executor.close()
        self._emitter.close()

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # -----------------------------------------------------------------------
    # Host identity
    # -----------------------------------------------------------------------

    def fingerprint(
        self,
        hash_type: HashType | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[str]:
        """
        Fingerprint of the server host key.

        Args:
            hash_type: MD5 or SHA1; defaults to fingerprint_hash

        Returns (through the future):
            Upper-case hex byte pairs joined by colons
        """
        hash_type = HashType(hash_type) if hash_type is not None else self._fingerprint_hash

        async def _do_fingerprint() -> str:
            self._require_connected("compute a fingerprint")
            assert self._server_host_key is not None, "connected without a host key"
            result = format_fingerprint(self._server_host_key, hash_type)
            self._emitter.emit(
                EventType.HOST_KEY,
                action="fingerprint",
                hash=hash_type.value,
                fingerprint=result,
            )
            return result

        return self._submit("fingerprint", _do_fingerprint, complete)

    def known_host_status(
        self,
        files: Sequence[Path | str] | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[KnownHostStatus]:
        """
        Check the server host key against known_hosts files.

        Files are checked in order and the first MATCH or MISMATCH wins; an
        unreadable file does not stop the scan. A MISMATCH is reported, not
        acted on.

        Args:
            files: Files to check; defaults to the session's
                known_hosts_files, then the system and user files
        """
        async def _do_status() -> KnownHostStatus:
            self._require_connected("check known hosts")
            key = self._server_host_key
            assert key is not None, "connected without a host key"

            if files is not None:
                paths = [Path(f) for f in files]
            elif self._known_hosts_files is not None:
                paths = list(self._known_hosts_files)
            else:
                paths = get_known_hosts_read_paths()

            loop = asyncio.get_running_loop()
            status = await loop.run_in_executor(
                None, check_known_hosts, paths, self._host, self._port, key,
            )
            if status == KnownHostStatus.MISMATCH:
                logger.warning(
                    "Host key for %s:%d does not match known_hosts", self._host, self._port,
                )
            self._emitter.emit(
                EventType.HOST_KEY,
                action="check",
                status=status.value,
                files=[str(p) for p in paths],
            )
            return status

        return self._submit("known_host_status", _do_status, complete)

    def verify_host_key(
        self,
        files: Sequence[Path | str] | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[None]:
        """
        Like known_host_status(), but anything other than MATCH is an error.

        Raises (through the future):
            HostKeyMismatch, HostKeyNotFound, HostKeyStoreError
        """
        status_future = self.known_host_status(files)

        async def _do_verify() -> None:
            status = await status_future
            if status == KnownHostStatus.MATCH:
                return
            ctx = self._context(status=status.value)
            if status == KnownHostStatus.MISMATCH:
                error: SSHError = HostKeyMismatch(
                    f"Host key for {self._host}:{self._port} does not match known_hosts",
                    context=ctx,
                )
            elif status == KnownHostStatus.NOT_FOUND:
                error = HostKeyNotFound(
                    f"No known_hosts entry for {self._host}:{self._port}",
                    context=ctx,
                )
            else:
                error = HostKeyStoreError(
                    "known_hosts could not be searched",
                    reason="failure",
                    context=ctx,
                )
            raise self._record_error(error)

        return self._submit("verify_host_key", _do_verify, complete)

    def add_known_host(
        self,
        host_name: str | None = None,
        port: int | None = None,
        file: Path | str | None = None,
        salt: str | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[KnownHostEntry]:
        """
        Append the server host key to a known_hosts file.

        Args:
            host_name: Name or IP to record; defaults to the session host.
                With salt, the base64 HMAC-SHA1 of the name under that salt.
            port: Defaults to the session port; non-default ports are
                written "[host]:port"
            file: Defaults to the user's known_hosts
            salt: Base64 salt for a hashed entry

        Raises (through the future):
            StatePreconditionError, HostKeyStoreError
        """
        if port is not None:
            validate_port(port)

        async def _do_add() -> KnownHostEntry:
            self._require_connected("add a known host")
            key = self._server_host_key
            assert key is not None, "connected without a host key"

            path = Path(file) if file is not None else get_known_hosts_path()
            loop = asyncio.get_running_loop()
            try:
                entry = await loop.run_in_executor(
                    None,
                    append_known_host,
                    path,
                    host_name or self._host,
                    port if port is not None else self._port,
                    key,
                    salt,
                )
            except HostKeyStoreError as exc:
                raise self._record_error(exc)

            self._emitter.emit(
                EventType.HOST_KEY,
                action="add",
                file=str(path),
                hashed=salt is not None,
            )
            return entry

        return self._submit("add_known_host", _do_add, complete)

    # -----------------------------------------------------------------------
    # Authentication
    # -----------------------------------------------------------------------

    def supported_authentication_methods(
        self,
        complete: Completion | None = None,
    ) -> asyncio.Future[list[AuthMethod]]:
        """
        Ask the server which methods it accepts for this username.

        Uses a separate short-lived connection, so the session's own
        transport and state are untouched. That probe connection does not
        verify the server host key, so the answer may come from a different
        host than the one whose key the session captured; treat it as
        advisory.
        """
        async def _do_query() -> list[AuthMethod]:
            self._require_connected("query authentication methods")
            kwargs: dict[str, Any] = {"config": None}
            if self._banner is not None:
                kwargs["client_version"] = self._banner
            try:
                names = await asyncio.wait_for(
                    asyncssh.get_server_auth_methods(
                        self._host, self._port, self._username, **kwargs,
                    ),
                    timeout=self._timeout,
                )
            except (asyncssh.Error, OSError, asyncio.TimeoutError) as exc:
                raise self._record_error(self._map_exception(exc, self._context()))
            methods = AuthMethod.from_names(names)
            logger.debug("Server auth methods for %s: %s", self._username, names)
            return methods

        return self._submit("supported_authentication_methods", _do_query, complete)

    def authenticate(
        self,
        credential: Credential,
        complete: Completion | None = None,
    ) -> asyncio.Future[None]:
        """
        Authenticate with one credential provider.

        Requires CONNECTED. Success moves to AUTHORIZED; any failure moves
        to FAILED and releases the transport. Nothing is retried.

        Raises (through the future):
            StatePreconditionError, AuthFailed, KeyLoadError, AgentError,
            SSHConnectionError, SSHProtocolError
        """
        return self._submit(
            f"authenticate:{credential.method.value}",
            lambda: self._do_authenticate(credential),
            complete,
        )

    def authenticate_by_password(
        self,
        password: str,
        complete: Completion | None = None,
    ) -> asyncio.Future[None]:
        return self.authenticate(PasswordCredential(password), complete)

    def authenticate_by_key_pair(
        self,
        private_key: Path | str,
        public_key: Path | str | None = None,
        passphrase: str | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[None]:
        """A passphrase of None means the private key is unencrypted."""
        return self.authenticate(
            KeyPairCredential(private_key, public_key, passphrase), complete,
        )

    def authenticate_by_keyboard_interactive(
        self,
        responder: Responder | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[None]:
        """
        Answer each server prompt with responder(prompt), in server order.

        Without a responder, the delegate's keyboard_interactive_request
        answers instead.
        """
        if responder is None:
            delegate = self.delegate or SessionDelegate()

            def responder(prompt: str) -> str | None:
                return delegate.keyboard_interactive_request(self, prompt)

        return self.authenticate(KeyboardInteractiveCredential(responder), complete)

    def authenticate_by_agent(
        self,
        agent_path: str | None = None,
        complete: Completion | None = None,
    ) -> asyncio.Future[None]:
        return self.authenticate(
            AgentCredential(agent_path or self._agent_path), complete,
        )

    async def _do_authenticate(self, credential: Credential) -> None:
        self._require("authenticate", SessionState.CONNECTED)
        client = self._client
        assert client is not None, "connected without a client"

        ctx = self._context()
        ctx.auth_method = credential.method.value
        self._set_state(SessionState.AUTHENTICATING)

        with self._emitter.timed_event(EventType.AUTH, **credential.to_dict()) as data:
            error: SSHError | None = None
            try:
                if client.auth_complete:
                    logger.debug("Server accepted the connection without credentials")
                else:
                    await credential.attempt(client)
            except SSHError as exc:
                if exc.context.auth_method is None:
                    exc.context.auth_method = ctx.auth_method
                error = exc
            except (asyncssh.Error, OSError) as exc:
                error = self._map_exception(exc, ctx)

            if error is not None:
                data["status"] = "error"
                data["error_type"] = error.error_type
                await self._release_transport(abort=True)
                self._set_state(SessionState.FAILED)
                raise self._record_error(error)

            data["status"] = "success"
            self._set_state(SessionState.AUTHORIZED)
