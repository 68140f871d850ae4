"""
Input validation for session construction parameters.

Validates hostnames (DNS names or IP literals), usernames, ports and
timeouts, and splits "host:port" / "[v6]:port" host strings. Values that
could smuggle control characters into known_hosts lines or log records are
rejected up front.

Every validator returns the (possibly normalised) value and raises
ValueError with a readable message otherwise.
"""

import ipaddress
import math
import re
from typing import Final

MAX_HOSTNAME_LENGTH: Final[int] = 253
MAX_LABEL_LENGTH: Final[int] = 63
MAX_USERNAME_LENGTH: Final[int] = 32

# Never valid in a hostname or username: control characters, shell
# metacharacters, whitespace and the known_hosts pattern separator
DANGEROUS_CHARS: Final[frozenset[str]] = frozenset(
    "\x00\n\r\t ,`$(){}[]|;&<>\\'\""
)

_CHAR_NAMES: Final[dict[str, str]] = {
    "\x00": "null byte",
    "\n": "newline",
    "\r": "carriage return",
    "\t": "tab",
    " ": "space",
}

_LABEL_CHARS: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9-]+$")
_USERNAME_CHARS: Final[frozenset[str]] = frozenset("_.-")


def _reject_dangerous(value: str, what: str) -> None:
    bad = next((c for c in value if c in DANGEROUS_CHARS), None)
    if bad is not None:
        raise ValueError(f"{what} contains forbidden character: {_CHAR_NAMES.get(bad, repr(bad))}")


def _require_str(value: object, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a string, got {type(value).__name__}")
    if not value:
        raise ValueError(f"{what} must not be empty")
    return value


def is_ip_address(value: str) -> bool:
    """Return True if value is an IPv4 or IPv6 literal."""
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _label_problem(label: str, position: int, count: int) -> str | None:
    if not label:
        if position == 0:
            return "must not start with a dot"
        if position == count - 1:
            return "must not end with a dot"
        return "must not contain consecutive dots"
    if len(label) > MAX_LABEL_LENGTH:
        return (
            f"label '{label}' exceeds maximum length of {MAX_LABEL_LENGTH} "
            f"characters (got {len(label)})"
        )
    if label.startswith("-"):
        return f"label '{label}' must not start with a hyphen"
    if label.endswith("-"):
        return f"label '{label}' must not end with a hyphen"
    if not _LABEL_CHARS.match(label):
        return (
            f"label '{label}' contains invalid characters "
            "(only alphanumeric and hyphens allowed)"
        )
    return None


def validate_hostname(hostname: str) -> str:
    """
    Validate a DNS name (RFC 952/1123) or an IP literal.

    Names are at most 253 characters of dot-separated labels; each label is
    1-63 letters, digits or hyphens and neither starts nor ends with a
    hyphen. IP literals skip the label rules.

    Returns:
        The hostname in lower case
    """
    _require_str(hostname, "hostname")

    if is_ip_address(hostname):
        return hostname.lower()

    _reject_dangerous(hostname, "hostname")

    if len(hostname) > MAX_HOSTNAME_LENGTH:
        raise ValueError(
            f"hostname exceeds maximum length of {MAX_HOSTNAME_LENGTH} characters "
            f"(got {len(hostname)})"
        )

    labels = hostname.split(".")
    for position, label in enumerate(labels):
        problem = _label_problem(label, position, len(labels))
        if problem is not None:
            raise ValueError(f"hostname {problem}")

    return hostname.lower()


def validate_username(username: str) -> str:
    """
    Validate a POSIX-style username.

    At most 32 characters, starting with a letter or underscore, followed by
    letters, digits, dots, underscores or hyphens. Case is preserved.
    """
    _require_str(username, "username")
    _reject_dangerous(username, "username")

    if len(username) > MAX_USERNAME_LENGTH:
        raise ValueError(
            f"username exceeds maximum length of {MAX_USERNAME_LENGTH} characters "
            f"(got {len(username)})"
        )

    first = username[0]
    if not (first.isascii() and first.isalpha()) and first != "_":
        raise ValueError(f"username must start with a letter or underscore, got '{first}'")

    bad = next(
        (c for c in username if not (c.isascii() and c.isalnum()) and c not in _USERNAME_CHARS),
        None,
    )
    if bad is not None:
        raise ValueError(f"username contains invalid character: {bad!r}")

    return username


def validate_port(port: int) -> int:
    """Validate a TCP port number (1-65535)."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")
    if not 1 <= port <= 65535:
        raise ValueError(f"port must be between 1 and 65535, got {port}")
    return port


def validate_timeout(timeout: float) -> float:
    """
    Validate a timeout in seconds: a finite number greater than zero.

    Raises:
        ValueError: If the timeout is invalid
    """
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ValueError(f"timeout must be a number, got {type(timeout).__name__}")

    if not math.isfinite(timeout) or timeout <= 0:
        raise ValueError(f"timeout must be a positive finite number, got {timeout}")

    return float(timeout)


def parse_host_string(host: str) -> tuple[str, int | None]:
    """
    Split a host string into hostname and optional port.

    Accepted forms:
    - "example.com" -> ("example.com", None)
    - "example.com:2222" -> ("example.com", 2222)
    - "[::1]:2222" -> ("::1", 2222)
    - "[::1]" -> ("::1", None)
    - "::1" (bare IPv6 literal) -> ("::1", None)

    The hostname part is validated with validate_hostname and the port with
    validate_port.

    Raises:
        ValueError: If the string is malformed
    """
    if not isinstance(host, str):
        raise ValueError(f"host must be a string, got {type(host).__name__}")

    host = host.strip()
    if not host:
        raise ValueError("host must not be empty")

    port_str: str | None = None
    if host.startswith("["):
        close = host.find("]")
        if close == -1:
            raise ValueError(f"unterminated '[' in host: {host!r}")
        name = host[1:close]
        rest = host[close + 1:]
        if rest:
            if not rest.startswith(":"):
                raise ValueError(f"unexpected text after ']' in host: {host!r}")
            port_str = rest[1:]
    elif host.count(":") == 1:
        name, port_str = host.split(":")
    else:
        # No colon, or a bare IPv6 literal
        name = host

    port: int | None = None
    if port_str is not None:
        if not port_str.isdigit():
            raise ValueError(f"port must be numeric in host: {host!r}")
        port = validate_port(int(port_str))

    return validate_hostname(name), port
