"""
Pytest fixtures for nbs-session tests.

Provides:
- Engine initialisation for every test
- SSH server fixture (MockSSHServer-based, no Docker required)
- Event capture fixture for asserting event sequences
- Known hosts fixture pointing at a temporary file
- Key pair fixture written to disk
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator, Generator

import asyncssh
import pytest

import nbs_session

if TYPE_CHECKING:
    from nbs_session.events import EventCollector
    from nbs_session.testing.mock_server import MockSSHServer


@dataclass
class KeyPairFiles:
    """A generated key pair and where it was written."""
    key: asyncssh.SSHKey
    private_path: Path
    public_path: Path


@pytest.fixture(autouse=True)
def initialized_engine() -> None:
    """Every Session requires the engine to be initialised."""
    nbs_session.initialize()


@pytest.fixture
async def mock_ssh_server() -> AsyncGenerator["MockSSHServer", None]:
    """
    Fixture providing a MockSSHServer that accepts test/test by password.

    Usage:
        async def test_example(mock_ssh_server):
            session = Session("127.0.0.1", "test", port=mock_ssh_server.port)
            await session.connect()
            await session.authenticate_by_password("test")
    """
    from nbs_session.testing.mock_server import MockServerConfig, MockSSHServer

    config = MockServerConfig(username="test", password="test")

    async with MockSSHServer(config) as server:
        yield server


@pytest.fixture
def event_collector() -> Generator["EventCollector", None, None]:
    """
    Fixture for capturing and asserting event sequences.

    Usage:
        def test_example(event_collector):
            session = Session(..., event_collector=event_collector)
            ...
            assert event_collector.get_by_type("CONNECT")
    """
    from nbs_session.events import EventCollector

    collector = EventCollector()
    yield collector
    collector.clear()


@pytest.fixture
def known_hosts_path(tmp_path: Path) -> Path:
    """A known_hosts path inside the test's temporary directory (not created)."""
    return tmp_path / "ssh" / "known_hosts"


@pytest.fixture
def key_pair(tmp_path: Path) -> KeyPairFiles:
    """An unencrypted ed25519 key pair written to disk."""
    key = asyncssh.generate_private_key("ssh-ed25519", comment="test@nbs")
    private_path = tmp_path / "id_ed25519"
    public_path = tmp_path / "id_ed25519.pub"
    key.write_private_key(private_path)
    key.write_public_key(public_path)
    return KeyPairFiles(key=key, private_path=private_path, public_path=public_path)


@pytest.fixture
def temp_jsonl_path(tmp_path: Path) -> Path:
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"
