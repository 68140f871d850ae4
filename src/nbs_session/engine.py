"""
Process-wide engine setup.

initialize() must run once per process before any Session is created. It
configures asyncssh's logger and checks that the digests used for
fingerprints and hashed known_hosts names are available. It is thread-safe
and idempotent; later calls only adjust the log level.
"""
from __future__ import annotations

import hashlib
import logging
import threading

import asyncssh

from nbs_session.errors import StatePreconditionError

logger = logging.getLogger(__name__)

REQUIRED_DIGESTS = ("md5", "sha1")

_lock = threading.Lock()
_initialized = False


def initialize(log_level: int = logging.WARNING, debug_level: int = 1) -> None:
    """
    Initialise the SSH engine for this process.

    Args:
        log_level: Level for asyncssh's logger
        debug_level: asyncssh debug verbosity (1-3) used when log_level is DEBUG

    Raises:
        RuntimeError: If a required digest is unavailable
    """
    global _initialized

    assert 1 <= debug_level <= 3, f"debug_level must be 1-3, got {debug_level}"

    with _lock:
        asyncssh.set_log_level(log_level)
        if log_level <= logging.DEBUG:
            asyncssh.set_debug_level(debug_level)

        if _initialized:
            return

        for name in REQUIRED_DIGESTS:
            try:
                # FIPS builds refuse md5 unless usedforsecurity=False
                hashlib.new(name, usedforsecurity=False)
            except ValueError as exc:
                raise RuntimeError(f"Digest {name} is unavailable: {exc}") from exc

        _initialized = True
        logger.debug("SSH engine initialised (asyncssh %s)", asyncssh.__version__)


def is_initialized() -> bool:
    return _initialized


def require_initialized() -> None:
    """
    Raises:
        StatePreconditionError: If initialize() has not been called
    """
    if not _initialized:
        raise StatePreconditionError(
            "nbs_session.initialize() must be called before creating a Session",
            state="uninitialized",
        )


def _reset_for_tests() -> None:
    global _initialized
    with _lock:
        _initialized = False
