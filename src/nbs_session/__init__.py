"""nbs-session: SSH session lifecycle and authentication on asyncssh."""

__version__ = "0.1.0"

from nbs_session.auth import (
    AgentCredential,
    AuthMethod,
    Credential,
    KeyboardInteractiveCredential,
    KeyPairCredential,
    PasswordCredential,
    load_key_pair,
)
from nbs_session.config import SSHConfig, SSHHostConfig
from nbs_session.delegate import SessionDelegate
from nbs_session.engine import initialize, is_initialized
from nbs_session.errors import (
    AgentError,
    AuthenticationError,
    AuthFailed,
    ConnectionRefused,
    ConnectionTimeout,
    DisconnectReason,
    ErrorContext,
    HostKeyError,
    HostKeyMismatch,
    HostKeyNotFound,
    HostKeyRejected,
    HostKeyStoreError,
    HostUnreachable,
    KeyLoadError,
    OperationCancelled,
    SSHConnectionError,
    SSHError,
    SSHProtocolError,
    StatePreconditionError,
)
from nbs_session.events import (
    Event,
    EventCollector,
    EventEmitter,
    EventType,
    JSONLEventSink,
    read_jsonl_events,
)
from nbs_session.executor import SerialExecutor
from nbs_session.known_hosts import (
    KnownHostEntry,
    KnownHostStatus,
    KnownHostsFile,
    append_known_host,
    check_known_hosts,
    format_known_host_name,
    hash_hostname,
)
from nbs_session.platform import (
    expand_path,
    get_agent_available,
    get_known_hosts_path,
    get_known_hosts_read_paths,
    get_ssh_dir,
    get_system_known_hosts_path,
    is_windows,
)
from nbs_session.session import (
    HashType,
    Session,
    SessionState,
    TransportHandle,
    format_fingerprint,
)
from nbs_session.validation import (
    parse_host_string,
    validate_hostname,
    validate_port,
    validate_username,
)

__all__ = [
    # Engine
    "initialize",
    "is_initialized",
    # Session
    "Session",
    "SessionState",
    "SessionDelegate",
    "HashType",
    "TransportHandle",
    "SerialExecutor",
    "format_fingerprint",
    # Config
    "SSHConfig",
    "SSHHostConfig",
    # Auth
    "AuthMethod",
    "Credential",
    "PasswordCredential",
    "KeyPairCredential",
    "KeyboardInteractiveCredential",
    "AgentCredential",
    "load_key_pair",
    # Known hosts
    "KnownHostStatus",
    "KnownHostEntry",
    "KnownHostsFile",
    "check_known_hosts",
    "append_known_host",
    "format_known_host_name",
    "hash_hostname",
    # Errors
    "SSHError",
    "SSHConnectionError",
    "ConnectionRefused",
    "ConnectionTimeout",
    "HostUnreachable",
    "StatePreconditionError",
    "OperationCancelled",
    "SSHProtocolError",
    "AuthenticationError",
    "AuthFailed",
    "KeyLoadError",
    "AgentError",
    "HostKeyError",
    "HostKeyMismatch",
    "HostKeyNotFound",
    "HostKeyStoreError",
    "HostKeyRejected",
    "ErrorContext",
    "DisconnectReason",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    "JSONLEventSink",
    "read_jsonl_events",
    # Platform
    "is_windows",
    "get_ssh_dir",
    "get_known_hosts_path",
    "get_known_hosts_read_paths",
    "get_system_known_hosts_path",
    "expand_path",
    "get_agent_available",
    # Validation
    "parse_host_string",
    "validate_hostname",
    "validate_port",
    "validate_username",
]
