"""
Testing utilities for nbs-session.

Provides MockSSHServer for falsifiable integration testing without Docker.
"""
from nbs_session.testing.mock_server import MockServerConfig, MockSSHServer, SilentServer

__all__ = ["MockSSHServer", "MockServerConfig", "SilentServer"]
