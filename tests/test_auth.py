"""
Tests for authentication methods and credential providers.

Tests cover:
- AuthMethod name conversion
- Key pair loading and its failure reasons
- Agent resolution failures and a real ssh-agent login
- Password, key pair, keyboard-interactive and agent authentication
  against MockSSHServer
- Supported method discovery
"""
from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import asyncssh
import pytest

from nbs_session.auth import (
    AgentCredential,
    AuthMethod,
    AuthOffer,
    KeyboardInteractiveCredential,
    KeyPairCredential,
    PasswordCredential,
    load_key_pair,
)
from nbs_session.delegate import SessionDelegate
from nbs_session.errors import AgentError, AuthFailed, KeyLoadError, StatePreconditionError
from nbs_session.events import EventType
from nbs_session.session import Session, SessionState
from nbs_session.testing.mock_server import MockServerConfig, MockSSHServer


def make_session(server: MockSSHServer, **kwargs) -> Session:
    return Session("127.0.0.1", "test", port=server.port, **kwargs)


# ---------------------------------------------------------------------------
# AuthMethod
# ---------------------------------------------------------------------------

class TestAuthMethod:
    """AuthMethod.from_names converts server-advertised names."""

    def test_known_names_in_order(self) -> None:
        methods = AuthMethod.from_names(["publickey", "password", "keyboard-interactive"])
        assert methods == [
            AuthMethod.PUBLICKEY,
            AuthMethod.PASSWORD,
            AuthMethod.KEYBOARD_INTERACTIVE,
        ]

    def test_bytes_names(self) -> None:
        assert AuthMethod.from_names([b"password"]) == [AuthMethod.PASSWORD]

    def test_unknown_names_dropped(self) -> None:
        assert AuthMethod.from_names(["password", "x-custom@example.com"]) == [
            AuthMethod.PASSWORD,
        ]

    def test_duplicates_collapsed(self) -> None:
        assert AuthMethod.from_names(["password", "password"]) == [AuthMethod.PASSWORD]

    def test_empty(self) -> None:
        assert AuthMethod.from_names([]) == []


class TestAuthOffer:
    """AuthOffer.to_dict never includes secrets."""

    def test_password_not_logged(self) -> None:
        offer = AuthOffer(AuthMethod.PASSWORD, password="hunter2")
        assert "hunter2" not in str(offer.to_dict())
        assert offer.to_dict() == {"method": "password"}

    def test_key_count(self) -> None:
        offer = AuthOffer(AuthMethod.PUBLICKEY, keys=["k1", "k2"])
        assert offer.to_dict()["key_count"] == 2


# ---------------------------------------------------------------------------
# Key loading
# ---------------------------------------------------------------------------

class TestLoadKeyPair:
    """load_key_pair reports a specific reason for each failure."""

    def test_loads_unencrypted_key(self, key_pair) -> None:
        key = load_key_pair(key_pair.private_path)
        assert key.public_data == key_pair.key.public_data

    def test_checks_public_key(self, key_pair) -> None:
        key = load_key_pair(key_pair.private_path, key_pair.public_path)
        assert key.public_data == key_pair.key.public_data

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(KeyLoadError) as exc_info:
            load_key_pair(tmp_path / "nope")
        assert exc_info.value.context.extra["reason"] == "file_not_found"
        assert exc_info.value.context.key_path == str(tmp_path / "nope")

    def test_invalid_format(self, tmp_path: Path) -> None:
        path = tmp_path / "garbage"
        path.write_text("this is not a key\n")
        with pytest.raises(KeyLoadError) as exc_info:
            load_key_pair(path)
        assert exc_info.value.context.extra["reason"] == "invalid_format"

    def test_passphrase_required(self, tmp_path: Path) -> None:
        path = tmp_path / "encrypted"
        asyncssh.generate_private_key("ssh-ed25519").write_private_key(
            path, passphrase="correct horse",
        )
        with pytest.raises(KeyLoadError) as exc_info:
            load_key_pair(path)
        assert exc_info.value.context.extra["reason"] == "passphrase_required"

    def test_wrong_passphrase(self, tmp_path: Path) -> None:
        path = tmp_path / "encrypted"
        asyncssh.generate_private_key("ssh-ed25519").write_private_key(
            path, passphrase="correct horse",
        )
        with pytest.raises(KeyLoadError) as exc_info:
            load_key_pair(path, passphrase="battery staple")
        assert exc_info.value.context.extra["reason"] == "wrong_passphrase"

    def test_right_passphrase(self, tmp_path: Path) -> None:
        path = tmp_path / "encrypted"
        original = asyncssh.generate_private_key("ssh-ed25519")
        original.write_private_key(path, passphrase="correct horse")
        key = load_key_pair(path, passphrase="correct horse")
        assert key.public_data == original.public_data

    def test_public_key_mismatch(self, key_pair, tmp_path: Path) -> None:
        other = tmp_path / "other.pub"
        asyncssh.generate_private_key("ssh-ed25519").write_public_key(other)
        with pytest.raises(KeyLoadError) as exc_info:
            load_key_pair(key_pair.private_path, other)
        assert exc_info.value.context.extra["reason"] == "public_key_mismatch"

    @pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="needs POSIX non-root")
    def test_unreadable(self, key_pair) -> None:
        key_pair.private_path.chmod(0o000)
        try:
            with pytest.raises(KeyLoadError) as exc_info:
                load_key_pair(key_pair.private_path)
            assert exc_info.value.context.extra["reason"] == "permission_denied"
        finally:
            key_pair.private_path.chmod(0o600)


class TestAgentCredential:
    """Agent resolution fails cleanly without a usable socket."""

    def test_no_auth_sock(self, monkeypatch) -> None:
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        with pytest.raises(AgentError) as exc_info:
            AgentCredential().resolve_path()
        assert exc_info.value.context.extra["reason"] == "no_auth_sock"

    def test_socket_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(AgentError) as exc_info:
            AgentCredential(str(tmp_path / "agent.sock")).resolve_path()
        assert exc_info.value.context.extra["reason"] == "socket_not_found"

    def test_env_socket_used(self, monkeypatch, tmp_path: Path) -> None:
        sock = tmp_path / "agent.sock"
        sock.touch()
        monkeypatch.setenv("SSH_AUTH_SOCK", str(sock))
        assert AgentCredential().resolve_path() == str(sock)


class TestCredentialDicts:
    """Credential to_dict output is safe to log."""

    def test_password(self) -> None:
        assert PasswordCredential("s3cret").to_dict() == {"method": "password"}

    def test_key_pair(self, key_pair) -> None:
        data = KeyPairCredential(key_pair.private_path, key_pair.public_path).to_dict()
        assert data["method"] == "publickey"
        assert data["key_path"] == str(key_pair.private_path)
        assert data["public_key_path"] == str(key_pair.public_path)

    def test_keyboard_interactive(self) -> None:
        credential = KeyboardInteractiveCredential(lambda prompt: "x")
        assert credential.to_dict() == {"method": "keyboard-interactive"}


# ---------------------------------------------------------------------------
# Integration: password
# ---------------------------------------------------------------------------

class TestPasswordAuthentication:
    """Password authentication through a Session."""

    async def test_success(self, mock_ssh_server: MockSSHServer, event_collector) -> None:
        session = make_session(mock_ssh_server, event_collector=event_collector)
        await session.connect()
        await session.authenticate_by_password("test")

        assert session.state == SessionState.AUTHORIZED
        assert session.is_authorized
        assert session.last_error is None

        auth_events = event_collector.get_by_type(EventType.AUTH)
        assert len(auth_events) == 1
        assert auth_events[0].data["method"] == "password"
        assert auth_events[0].data["status"] == "success"
        assert "duration_ms" in auth_events[0].data
        await session.close()

    async def test_wrong_password(self, mock_ssh_server: MockSSHServer, event_collector) -> None:
        session = make_session(mock_ssh_server, event_collector=event_collector)
        await session.connect()

        with pytest.raises(AuthFailed):
            await session.authenticate_by_password("wrong")

        assert session.state == SessionState.FAILED
        assert isinstance(session.last_error, AuthFailed)
        assert session.last_error.context.auth_method == "password"
        assert event_collector.get_by_type(EventType.AUTH)[0].data["status"] == "error"
        await session.close()

    async def test_password_not_in_events(
        self, mock_ssh_server: MockSSHServer, temp_jsonl_path: Path,
    ) -> None:
        session = make_session(mock_ssh_server, event_log_path=temp_jsonl_path)
        await session.connect()
        with pytest.raises(AuthFailed):
            await session.authenticate_by_password("super-secret-value")
        await session.close()

        assert "super-secret-value" not in temp_jsonl_path.read_text()

    async def test_no_retry_after_failure(self, mock_ssh_server: MockSSHServer) -> None:
        session = make_session(mock_ssh_server)
        await session.connect()
        with pytest.raises(AuthFailed):
            await session.authenticate_by_password("wrong")

        with pytest.raises(StatePreconditionError):
            await session.authenticate_by_password("test")

        password_attempts = [
            e for e in mock_ssh_server.events_of("SERVER_AUTH")
            if e["data"]["method"] == "password"
        ]
        assert len(password_attempts) == 1
        await session.close()

    async def test_method_not_offered(self) -> None:
        key = asyncssh.generate_private_key("ssh-ed25519")
        config = MockServerConfig(password=None, authorized_keys=[key])
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            with pytest.raises(AuthFailed):
                await session.authenticate_by_password("test")
            assert session.state == SessionState.FAILED
            await session.close()

    async def test_complete_callback(self, mock_ssh_server: MockSSHServer) -> None:
        session = make_session(mock_ssh_server)
        seen: list[BaseException | None] = []
        await session.connect()
        await session.authenticate_by_password("test", complete=seen.append)
        await asyncio.sleep(0)
        assert seen == [None]
        await session.close()


# ---------------------------------------------------------------------------
# Integration: key pair
# ---------------------------------------------------------------------------

class TestKeyPairAuthentication:
    """Public key authentication from files through a Session."""

    async def test_success(self, key_pair) -> None:
        config = MockServerConfig(password=None, authorized_keys=[key_pair.key])
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            await session.authenticate_by_key_pair(key_pair.private_path, key_pair.public_path)
            assert session.state == SessionState.AUTHORIZED
            await session.close()

    async def test_unauthorized_key(self, key_pair) -> None:
        other = asyncssh.generate_private_key("ssh-ed25519")
        config = MockServerConfig(password=None, authorized_keys=[other])
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            with pytest.raises(AuthFailed):
                await session.authenticate_by_key_pair(key_pair.private_path)
            assert session.state == SessionState.FAILED
            await session.close()

    async def test_missing_key_file_fails_session(self, tmp_path: Path) -> None:
        key = asyncssh.generate_private_key("ssh-ed25519")
        config = MockServerConfig(password=None, authorized_keys=[key])
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            with pytest.raises(KeyLoadError) as exc_info:
                await session.authenticate_by_key_pair(tmp_path / "missing")
            assert exc_info.value.context.extra["reason"] == "file_not_found"
            assert exc_info.value.context.auth_method == "publickey"
            assert session.state == SessionState.FAILED
            assert session.last_error is exc_info.value
            await session.close()

    async def test_encrypted_key(self, tmp_path: Path) -> None:
        key = asyncssh.generate_private_key("ssh-ed25519")
        path = tmp_path / "id_encrypted"
        key.write_private_key(path, passphrase="open sesame")
        config = MockServerConfig(password=None, authorized_keys=[key])
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            await session.authenticate_by_key_pair(path, passphrase="open sesame")
            assert session.is_authorized
            await session.close()


# ---------------------------------------------------------------------------
# Integration: keyboard-interactive
# ---------------------------------------------------------------------------

class TestKeyboardInteractiveAuthentication:
    """Keyboard-interactive prompts are answered in server order."""

    PROMPTS = [("Password: ", "test"), ("Verification code: ", "123456"), ("PIN: ", "0000")]

    async def test_prompts_answered_in_order(self) -> None:
        answers = dict(self.PROMPTS)
        asked: list[str] = []

        def responder(prompt: str) -> str:
            asked.append(prompt)
            return answers[prompt]

        config = MockServerConfig(password=None, kbdint_prompts=self.PROMPTS)
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            await session.authenticate_by_keyboard_interactive(responder)

            assert session.is_authorized
            assert asked == [p for p, _ in self.PROMPTS]
            assert server.kbdint_responses == [["test", "123456", "0000"]]
            await session.close()

    async def test_wrong_answer(self) -> None:
        config = MockServerConfig(password=None, kbdint_prompts=self.PROMPTS)
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            with pytest.raises(AuthFailed):
                await session.authenticate_by_keyboard_interactive(lambda prompt: "nope")
            assert session.state == SessionState.FAILED
            await session.close()

    async def test_responder_declining_fails(self) -> None:
        config = MockServerConfig(password=None, kbdint_prompts=self.PROMPTS)
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            with pytest.raises(AuthFailed):
                await session.authenticate_by_keyboard_interactive(lambda prompt: None)
            assert session.state == SessionState.FAILED
            await session.close()

    async def test_delegate_answers_without_responder(self) -> None:
        asked: list[str] = []

        class Answering(SessionDelegate):
            def keyboard_interactive_request(self, session, prompt):
                asked.append(prompt)
                return "123456"

        config = MockServerConfig(password=None, kbdint_prompts=[("Code: ", "123456")])
        async with MockSSHServer(config) as server:
            session = make_session(server, delegate=Answering())
            await session.connect()
            await session.authenticate_by_keyboard_interactive()
            assert session.is_authorized
            assert asked == ["Code: "]
            await session.close()

    async def test_default_delegate_declines(self) -> None:
        config = MockServerConfig(password=None, kbdint_prompts=[("Code: ", "123456")])
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            with pytest.raises(AuthFailed):
                await session.authenticate_by_keyboard_interactive()
            await session.close()


# ---------------------------------------------------------------------------
# Integration: agent
# ---------------------------------------------------------------------------

@pytest.fixture
async def ssh_agent(key_pair) -> AsyncGenerator[str, None]:
    """
    A running ssh-agent holding the fixture key.

    The socket lives in a short /tmp directory because unix socket paths
    are length-limited. Yields the socket path.
    """
    sock_dir = tempfile.mkdtemp(prefix="nbs-agent-")
    sock = os.path.join(sock_dir, "a.sock")
    proc = await asyncio.create_subprocess_exec(
        "ssh-agent", "-D", "-a", sock,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        for _ in range(100):
            if os.path.exists(sock):
                break
            await asyncio.sleep(0.05)
        else:
            pytest.fail("ssh-agent did not create its socket")

        agent = await asyncssh.connect_agent(sock)
        try:
            await agent.add_keys([key_pair.key])
        finally:
            agent.close()
            await agent.wait_closed()

        yield sock
    finally:
        proc.terminate()
        await proc.wait()
        shutil.rmtree(sock_dir, ignore_errors=True)


class TestAgentAuthentication:
    """Agent authentication against a real agent, and when none is usable."""

    @pytest.mark.skipif(shutil.which("ssh-agent") is None, reason="ssh-agent not installed")
    async def test_agent_login(self, key_pair, ssh_agent: str) -> None:
        config = MockServerConfig(password=None, authorized_keys=[key_pair.key])
        async with MockSSHServer(config) as server:
            session = make_session(server, agent_path=ssh_agent)
            await session.connect()
            await session.authenticate_by_agent()

            assert session.state == SessionState.AUTHORIZED
            assert session.last_error is None
            await session.close()

    async def test_agent_unavailable(self, mock_ssh_server: MockSSHServer, monkeypatch) -> None:
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        session = make_session(mock_ssh_server)
        await session.connect()

        with pytest.raises(AgentError) as exc_info:
            await session.authenticate_by_agent()

        assert exc_info.value.context.extra["reason"] == "no_auth_sock"
        assert session.state == SessionState.FAILED
        assert isinstance(session.last_error, AgentError)
        await session.close()

    async def test_agent_socket_missing(self, mock_ssh_server: MockSSHServer, tmp_path: Path) -> None:
        session = make_session(mock_ssh_server, agent_path=str(tmp_path / "gone.sock"))
        await session.connect()
        with pytest.raises(AgentError) as exc_info:
            await session.authenticate_by_agent()
        assert exc_info.value.context.extra["reason"] == "socket_not_found"
        await session.close()


# ---------------------------------------------------------------------------
# Supported methods
# ---------------------------------------------------------------------------

class TestSupportedAuthenticationMethods:
    """supported_authentication_methods reports what the server offers."""

    async def test_password_only(self, mock_ssh_server: MockSSHServer) -> None:
        session = make_session(mock_ssh_server)
        await session.connect()
        methods = await session.supported_authentication_methods()
        assert methods == [AuthMethod.PASSWORD]
        assert session.state == SessionState.CONNECTED
        await session.close()

    async def test_all_methods(self, key_pair) -> None:
        config = MockServerConfig(
            password="test",
            authorized_keys=[key_pair.key],
            kbdint_prompts=[("Code: ", "1")],
        )
        async with MockSSHServer(config) as server:
            session = make_session(server)
            await session.connect()
            methods = await session.supported_authentication_methods()
            assert set(methods) == {
                AuthMethod.PASSWORD,
                AuthMethod.PUBLICKEY,
                AuthMethod.KEYBOARD_INTERACTIVE,
            }
            # The session can still authenticate afterwards
            await session.authenticate_by_password("test")
            assert session.is_authorized
            await session.close()

    async def test_requires_connection(self, mock_ssh_server: MockSSHServer) -> None:
        session = make_session(mock_ssh_server)
        with pytest.raises(StatePreconditionError):
            await session.supported_authentication_methods()
        await session.close()
