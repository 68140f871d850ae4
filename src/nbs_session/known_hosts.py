"""
Known-hosts trust store in OpenSSH format.

Provides:
- KnownHostStatus: Outcome of checking a server key (match, mismatch,
  not found, failure)
- KnownHostEntry: One parsed known_hosts line
- KnownHostsFile: Reads one file and checks a key against it
- check_known_hosts: Ordered multi-file check, first conclusive file wins
- append_known_host: Appends a plain or salted+hashed entry

Line format:
    [@marker ]hostnames keytype base64-key [comment]

hostnames is a comma-separated list of patterns: a plain name (port 22),
"[name]:port", a hashed name "|1|salt|hash", or a wildcard pattern, any of
them optionally negated with "!". Hashed names hash the same text a plain
entry would hold, so "[name]:port" for non-default ports.

Checking is type-aware: a file that only lists the host under other key
types gives no decision, the same as a file without the host.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

import asyncssh

from nbs_session.errors import HostKeyStoreError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
HASH_MAGIC = "|1|"
SALT_LENGTH = 20

MARKER_REVOKED = "@revoked"
MARKER_CERT_AUTHORITY = "@cert-authority"
_MARKERS = frozenset({MARKER_REVOKED, MARKER_CERT_AUTHORITY})


class KnownHostStatus(str, Enum):
    """
    Result of checking a server key against known_hosts.

    FAILURE means the store could not be searched; NOT_FOUND means it was
    searched and the host is absent.
    """
    MATCH = "match"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"
    FAILURE = "failure"

    @property
    def is_conclusive(self) -> bool:
        return self in (KnownHostStatus.MATCH, KnownHostStatus.MISMATCH)


@dataclass(frozen=True)
class KnownHostEntry:
    """
    Parsed entry from a known_hosts file.

    Attributes:
        hostnames: Host patterns this entry applies to
        key_type: SSH key type (ssh-rsa, ssh-ed25519, ...)
        key_data: Base64-encoded public key blob
        marker: "@revoked", "@cert-authority" or None
        comment: Trailing comment, if any
    """
    hostnames: tuple[str, ...]
    key_type: str
    key_data: str
    marker: str | None = None
    comment: str | None = None

    @property
    def is_revoked(self) -> bool:
        return self.marker == MARKER_REVOKED

    @property
    def is_cert_authority(self) -> bool:
        return self.marker == MARKER_CERT_AUTHORITY

    @property
    def key_blob(self) -> bytes:
        return base64.b64decode(self.key_data)

    def matches_host(self, host: str, port: int) -> bool:
        """
        True if host:port matches at least one pattern and no negated one.
        """
        matched = False
        for pattern in self.hostnames:
            negated = pattern.startswith("!")
            if negated:
                pattern = pattern[1:]
            if _pattern_matches(pattern, host, port):
                if negated:
                    return False
                matched = True
        return matched

    def to_line(self) -> str:
        parts = [",".join(self.hostnames), self.key_type, self.key_data]
        if self.marker:
            parts.insert(0, self.marker)
        if self.comment:
            parts.append(self.comment)
        return " ".join(parts)


def format_known_host_name(host: str, port: int = DEFAULT_PORT) -> str:
    """
    Format host/port the way known_hosts stores it.

    Returns:
        "host" for port 22, "[host]:port" otherwise
    """
    if port == DEFAULT_PORT:
        return host
    return f"[{host}]:{port}"


def hash_hostname(host_name: str, salt: bytes | None = None) -> str:
    """
    Hash a known_hosts name with OpenSSH's HMAC-SHA1 scheme.

    Args:
        host_name: Text to hash, already formatted by format_known_host_name
        salt: 20-byte salt; a random one is generated when None

    Returns:
        "|1|<base64-salt>|<base64-hash>"
    """
    if salt is None:
        salt = secrets.token_bytes(SALT_LENGTH)
    digest = hmac.new(salt, host_name.encode("utf-8"), hashlib.sha1).digest()
    salt_b64 = base64.b64encode(salt).decode("ascii")
    hash_b64 = base64.b64encode(digest).decode("ascii")
    return f"{HASH_MAGIC}{salt_b64}|{hash_b64}"


def _hashed_pattern_matches(pattern: str, host_name: str) -> bool:
    parts = pattern.split("|")
    if len(parts) != 4:
        return False
    try:
        salt = base64.b64decode(parts[2], validate=True)
        stored = base64.b64decode(parts[3], validate=True)
    except binascii.Error:
        return False
    computed = hmac.new(salt, host_name.encode("utf-8"), hashlib.sha1).digest()
    return hmac.compare_digest(stored, computed)


def _wildcard_matches(pattern: str, host: str) -> bool:
    # known_hosts wildcards are only * and ?
    regex = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.fullmatch(regex, host) is not None


def _pattern_matches(pattern: str, host: str, port: int) -> bool:
    host = host.lower()
    if pattern.startswith(HASH_MAGIC):
        return _hashed_pattern_matches(pattern, format_known_host_name(host, port))

    pattern = pattern.lower()
    if pattern.startswith("["):
        name, sep, pattern_port = pattern[1:].partition("]:")
        if not sep or not pattern_port.isdigit():
            return False
        return int(pattern_port) == port and _wildcard_matches(name, host)
    return port == DEFAULT_PORT and _wildcard_matches(pattern, host)


def parse_known_hosts_line(line: str) -> KnownHostEntry | None:
    """
    Parse a single known_hosts line.

    Args:
        line: Line from a known_hosts file

    Returns:
        KnownHostEntry, or None for blank and comment lines

    Raises:
        ValueError: If the line is malformed
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    marker = None
    if line.startswith("@"):
        marker, _, line = line.partition(" ")
        if marker not in _MARKERS:
            raise ValueError(f"unknown marker {marker!r}")

    parts = line.split(None, 3)
    if len(parts) < 3:
        raise ValueError("expected hostnames, key type and key data")

    hostnames = tuple(h for h in parts[0].split(",") if h)
    if not hostnames:
        raise ValueError("empty hostnames field")

    key_data = parts[2]
    try:
        base64.b64decode(key_data, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"key data is not valid base64: {exc}") from exc

    return KnownHostEntry(
        hostnames=hostnames,
        key_type=parts[1],
        key_data=key_data,
        marker=marker,
        comment=parts[3] if len(parts) > 3 else None,
    )


def _key_type(key: asyncssh.SSHKey) -> str:
    algorithm = key.algorithm
    return algorithm.decode("ascii") if isinstance(algorithm, bytes) else algorithm


class KnownHostsFile:
    """
    One known_hosts file.

    Usage:
        store = KnownHostsFile("~/.ssh/known_hosts")
        status = store.check("example.com", 22, server_key)
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> list[KnownHostEntry]:
        """
        Read and parse every entry in the file.

        Raises:
            FileNotFoundError: If the file does not exist
            HostKeyStoreError: If the file is unreadable or a line is malformed
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except FileNotFoundError:
            raise
        except (OSError, UnicodeDecodeError) as exc:
            raise HostKeyStoreError(
                f"Cannot read known_hosts file {self.path}: {exc}",
                path=str(self.path),
                reason="unreadable",
            ) from exc

        entries = []
        for line_no, line in enumerate(lines, 1):
            try:
                entry = parse_known_hosts_line(line)
            except ValueError as exc:
                raise HostKeyStoreError(
                    f"Malformed known_hosts line {self.path}:{line_no}: {exc}",
                    path=str(self.path),
                    reason="malformed_line",
                ) from exc
            if entry is not None:
                entries.append(entry)
        return entries

    def check(self, host: str, port: int, key: asyncssh.SSHKey) -> KnownHostStatus:
        """
        Check a server key against this file.

        Returns:
            MATCH if an entry for the host holds this exact key
            MISMATCH if the key is revoked, or the host is listed with a
                different key of the same type
            NOT_FOUND if the file is absent or has no entry of this key
                type for the host
            FAILURE if the file cannot be read or parsed
        """
        try:
            entries = self.load()
        except FileNotFoundError:
            return KnownHostStatus.NOT_FOUND
        except HostKeyStoreError as exc:
            logger.debug("known_hosts check failed: %s", exc)
            return KnownHostStatus.FAILURE

        key_type = _key_type(key)
        blob = key.public_data
        same_type_seen = False

        for entry in entries:
            if entry.is_cert_authority or not entry.matches_host(host, port):
                continue
            if entry.key_type != key_type:
                continue
            if entry.key_blob == blob:
                if entry.is_revoked:
                    logger.warning("Host key for %s:%d is revoked in %s", host, port, self.path)
                    return KnownHostStatus.MISMATCH
                return KnownHostStatus.MATCH
            if not entry.is_revoked:
                same_type_seen = True

        return KnownHostStatus.MISMATCH if same_type_seen else KnownHostStatus.NOT_FOUND


def check_known_hosts(
    paths: Iterable[Path | str],
    host: str,
    port: int,
    key: asyncssh.SSHKey,
) -> KnownHostStatus:
    """
    Check a server key against several known_hosts files in order.

    The first file that yields MATCH or MISMATCH decides. A file that
    yields FAILURE does not stop the scan. When no file is conclusive the
    result is FAILURE if any file failed, otherwise NOT_FOUND.

    Args:
        paths: Files to check, most authoritative first
        host: Server hostname as the session was created with
        port: Server port
        key: Server's host key

    Returns:
        KnownHostStatus
    """
    failed = False
    for path in paths:
        status = KnownHostsFile(path).check(host, port, key)
        logger.debug("known_hosts %s for %s:%d -> %s", path, host, port, status.value)
        if status.is_conclusive:
            return status
        if status == KnownHostStatus.FAILURE:
            failed = True

    return KnownHostStatus.FAILURE if failed else KnownHostStatus.NOT_FOUND


def append_known_host(
    path: Path | str,
    host_name: str,
    port: int,
    key: asyncssh.SSHKey,
    salt: str | None = None,
    comment: str | None = None,
) -> KnownHostEntry:
    """
    Append an entry for a key to a known_hosts file.

    The file and its directory are created if absent (directory mode 0700,
    file mode 0600). Existing content is never rewritten.

    Args:
        path: known_hosts file to append to
        host_name: Plain host name or IP; or, when salt is given, the
            base64 HMAC-SHA1 of the host name under that salt
        port: Server port; non-default ports are written "[host]:port".
            Ignored when salt is given, since the hash already covers it.
        key: The host key to trust
        salt: Base64-encoded salt for a hashed entry
        comment: Optional trailing comment

    Returns:
        The entry that was written

    Raises:
        HostKeyStoreError: On a malformed salt or hash, or an I/O failure
    """
    path = Path(path).expanduser()

    if salt is not None:
        try:
            base64.b64decode(salt, validate=True)
            base64.b64decode(host_name, validate=True)
        except binascii.Error as exc:
            raise HostKeyStoreError(
                f"Salt and hashed host name must be base64: {exc}",
                path=str(path),
                reason="malformed_salt",
            ) from exc
        pattern = f"{HASH_MAGIC}{salt}|{host_name}"
    else:
        pattern = format_known_host_name(host_name, port)

    key_type, key_data = key.export_public_key("openssh").decode("ascii").split()[:2]
    entry = KnownHostEntry(
        hostnames=(pattern,),
        key_type=key_type,
        key_data=key_data,
        comment=comment,
    )

    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        needs_newline = path.exists() and path.stat().st_size > 0 and not _ends_with_newline(path)
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            if needs_newline:
                f.write("\n")
            f.write(entry.to_line() + "\n")
    except OSError as exc:
        raise HostKeyStoreError(
            f"Cannot write known_hosts file {path}: {exc}",
            path=str(path),
            reason="permission_denied" if isinstance(exc, PermissionError) else "io_error",
        ) from exc

    logger.debug("Added %s %s to %s", pattern, key_type, path)
    return entry


def _ends_with_newline(path: Path) -> bool:
    with open(path, "rb") as f:
        f.seek(-1, os.SEEK_END)
        return f.read(1) == b"\n"
