"""
Cross-platform path handling and agent discovery.

Provides:
- Platform-appropriate SSH directory, known_hosts and config paths
- The default ordered list of known_hosts files to verify against
- SSH agent socket lookup
- Path expansion
"""
from __future__ import annotations

import os
import sys
from pathlib import Path


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_ssh_dir() -> Path:
    """
    Get the platform-appropriate per-user SSH directory.

    Returns:
        ~/.ssh on Unix, %USERPROFILE%\\.ssh on Windows
    """
    if is_windows():
        userprofile = os.environ.get("USERPROFILE")
        if userprofile:
            return Path(userprofile) / ".ssh"
        home = os.environ.get("HOME")
        if home:
            return Path(home) / ".ssh"
    return Path.home() / ".ssh"


def get_system_ssh_dir() -> Path:
    """
    Get the system-wide SSH configuration directory.

    Returns:
        /etc/ssh on Unix, %ProgramData%\\ssh on Windows
    """
    if is_windows():
        program_data = os.environ.get("ProgramData", "C:\\ProgramData")
        return Path(program_data) / "ssh"
    return Path("/etc/ssh")


def get_known_hosts_path() -> Path:
    """Get the user's known_hosts file path. This is where new hosts are added."""
    return get_ssh_dir() / "known_hosts"


def get_system_known_hosts_path() -> Path:
    """Get the system-wide known_hosts file path."""
    return get_system_ssh_dir() / "ssh_known_hosts"


def get_known_hosts_read_paths() -> list[Path]:
    """
    Get the default ordered list of known_hosts files to verify against.

    The system file comes first so that an administrator's entry is
    authoritative over a stale per-user one.

    Returns:
        [system known_hosts, user known_hosts]
    """
    return [get_system_known_hosts_path(), get_known_hosts_path()]


def get_config_path() -> Path:
    """Get the user's SSH client config file path."""
    return get_ssh_dir() / "config"


def get_system_config_path() -> Path:
    """Get the system-wide SSH client config file path."""
    return get_system_ssh_dir() / "ssh_config"


def expand_path(path: str | Path) -> Path:
    """
    Expand a path, handling ~ and environment variables.

    On Unix: expands ~ to $HOME
    On Windows: also expands %VAR% syntax

    Args:
        path: Path string or Path object to expand

    Returns:
        Expanded Path object
    """
    path_str = str(path)
    if is_windows():
        path_str = os.path.expandvars(path_str)
    return Path(path_str).expanduser()


def get_agent_path() -> str | None:
    """
    Get the SSH agent socket path from the environment.

    Returns:
        Value of SSH_AUTH_SOCK, or None if unset or empty
    """
    return os.environ.get("SSH_AUTH_SOCK") or None


def get_agent_available(agent_path: str | None = None) -> bool:
    """
    Check whether an SSH agent socket appears to be available.

    Args:
        agent_path: Explicit socket path, or None to use SSH_AUTH_SOCK

    Returns:
        True if the socket path is set and exists
    """
    path = agent_path or get_agent_path()
    if not path:
        return False
    return Path(path).exists()
