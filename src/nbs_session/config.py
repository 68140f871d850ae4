"""
OpenSSH client config lookup for session defaults.

Provides:
- SSHConfig: Parser for ~/.ssh/config and /etc/ssh/ssh_config
- SSHHostConfig: The options that apply to one host

Only the options a session consumes are interpreted: HostName, Port, User,
ConnectTimeout, UserKnownHostsFile, GlobalKnownHostsFile and IdentityAgent.
Other options are parsed and ignored. Host blocks are matched in file order
with * and ? wildcards and ! negation; the first value seen wins.
"""
from __future__ import annotations

import fnmatch
import getpass
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from nbs_session.platform import expand_path, get_config_path, get_system_config_path

logger = logging.getLogger(__name__)

# "Option value", "Option=value" or "Option = value"
_OPTION_LINE = re.compile(r"^([A-Za-z]+)\s*(?:=\s*|\s+)(.*)$")


@dataclass
class SSHHostConfig:
    """
    Resolved configuration for a specific host.

    Every field is None (or empty) when the config does not set it, so the
    caller's own defaults apply.
    """
    hostname: str | None = None
    port: int | None = None
    user: str | None = None
    connect_timeout: int | None = None
    user_known_hosts_files: list[Path] = field(default_factory=list)
    global_known_hosts_files: list[Path] = field(default_factory=list)
    identity_agent: str | None = None

    def get_hostname(self, original_host: str) -> str:
        """Get the real hostname to connect to."""
        return self.hostname if self.hostname else original_host

    def get_port(self, default: int = 22) -> int:
        return self.port if self.port is not None else default

    def known_hosts_files(self) -> list[Path] | None:
        """
        Ordered known_hosts files to verify against: global files then user
        files. None when the config names neither.
        """
        files = self.global_known_hosts_files + self.user_known_hosts_files
        return files or None


@dataclass
class _HostBlock:
    patterns: list[str]
    options: dict[str, str] = field(default_factory=dict)


class SSHConfig:
    """
    Parser for SSH client config files.

    Usage:
        config = SSHConfig()  # user config, then system config
        host_config = config.lookup("myserver")

        config = SSHConfig(config_files=["/path/to/config"])
    """

    OPTION_NAMES = frozenset({
        "hostname",
        "port",
        "user",
        "connecttimeout",
        "userknownhostsfile",
        "globalknownhostsfile",
        "identityagent",
    })

    def __init__(
        self,
        config_files: list[Path | str] | None = None,
        load_system_config: bool = True,
    ) -> None:
        """
        Args:
            config_files: Specific config files to load (overrides default)
            load_system_config: Whether to also load the system config
        """
        self._global_options: dict[str, str] = {}
        self._host_blocks: list[_HostBlock] = []

        if config_files is not None:
            for config_file in config_files:
                self._load_file(Path(config_file))
        else:
            self._load_file(get_config_path())
            if load_system_config:
                self._load_file(get_system_config_path())

    @classmethod
    def from_string(cls, content: str) -> "SSHConfig":
        """Build a config from literal text."""
        config = cls(config_files=[])
        config._parse(content)
        return config

    def _load_file(self, config_path: Path) -> None:
        if not config_path.exists():
            return

        try:
            with open(config_path, "r", encoding="utf-8", errors="replace") as f:
                self._parse(f.read())
        except OSError as exc:
            logger.debug("Skipping unreadable ssh config %s: %s", config_path, exc)

    def _parse(self, content: str) -> None:
        current: _HostBlock | None = None
        skipping_match = False

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            comment_idx = line.find(" #")
            if comment_idx >= 0:
                line = line[:comment_idx].rstrip()

            match = _OPTION_LINE.match(line)
            if match is None:
                continue
            option, value = match.groups()

            option = option.strip().lower()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]

            if option == "host":
                current = _HostBlock(patterns=value.split())
                self._host_blocks.append(current)
                skipping_match = False
            elif option == "match":
                # Match criteria are not evaluated; their options are ignored
                current = None
                skipping_match = True
            elif option in self.OPTION_NAMES and not skipping_match:
                target = current.options if current is not None else self._global_options
                target.setdefault(option, value)

    @staticmethod
    def _matches(host: str, patterns: list[str]) -> bool:
        """
        A host matches when it matches at least one positive pattern and no
        negated pattern.
        """
        host = host.lower()
        matched = False
        for pattern in patterns:
            if pattern.startswith("!"):
                if fnmatch.fnmatch(host, pattern[1:].lower()):
                    return False
            elif fnmatch.fnmatch(host, pattern.lower()):
                matched = True
        return matched

    @staticmethod
    def _expand_tokens(value: str, host: str, user: str | None, port: int) -> str:
        """
        Expand %h, %p, %r, %u, %n and %% in a value.
        """
        local_user = getpass.getuser()
        result = value.replace("%%", "\x00")
        result = result.replace("%h", host)
        result = result.replace("%p", str(port))
        result = result.replace("%n", host)
        result = result.replace("%r", user or local_user)
        result = result.replace("%u", local_user)
        return result.replace("\x00", "%")

    def lookup(self, host: str) -> SSHHostConfig:
        """
        Look up configuration for a specific host.

        Args:
            host: The hostname as given by the caller

        Returns:
            SSHHostConfig with all applicable options
        """
        merged: dict[str, str] = {}
        for block in self._host_blocks:
            if self._matches(host, block.patterns):
                for key, value in block.options.items():
                    merged.setdefault(key, value)
        for key, value in self._global_options.items():
            merged.setdefault(key, value)

        return self._build_host_config(merged, host)

    def _build_host_config(self, options: dict[str, str], host: str) -> SSHHostConfig:
        config = SSHHostConfig()

        if "user" in options:
            config.user = options["user"]

        if "port" in options:
            try:
                config.port = int(options["port"])
            except ValueError:
                logger.debug("Ignoring non-numeric Port %r for %s", options["port"], host)

        port = config.get_port()

        if "hostname" in options:
            config.hostname = self._expand_tokens(options["hostname"], host, config.user, port)

        if "connecttimeout" in options:
            try:
                config.connect_timeout = int(options["connecttimeout"])
            except ValueError:
                logger.debug("Ignoring non-numeric ConnectTimeout for %s", host)

        for option, target in (
            ("userknownhostsfile", config.user_known_hosts_files),
            ("globalknownhostsfile", config.global_known_hosts_files),
        ):
            if option in options and options[option].lower() != "none":
                for path_str in options[option].split():
                    expanded = self._expand_tokens(path_str, host, config.user, port)
                    target.append(expand_path(expanded))

        if "identityagent" in options:
            agent = options["identityagent"]
            if agent.lower() != "none":
                config.identity_agent = str(
                    expand_path(self._expand_tokens(agent, host, config.user, port))
                )

        return config
