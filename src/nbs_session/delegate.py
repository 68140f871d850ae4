"""
Optional session callbacks.

Subclass SessionDelegate and pass an instance to Session(delegate=...) to
answer keyboard-interactive prompts, vet the server fingerprint while
connecting, and hear about unexpected disconnects. Every method has a
permissive default.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nbs_session.errors import SSHError
    from nbs_session.session import Session


class SessionDelegate:
    """Default delegate: no prompt answers, trusts every fingerprint."""

    def keyboard_interactive_request(self, session: "Session", prompt: str) -> str | None:
        """
        Answer one keyboard-interactive prompt.

        Used when authenticate_by_keyboard_interactive() is called without
        a responder. Returning None aborts the attempt.
        """
        return None

    def should_connect_to_host(self, session: "Session", fingerprint: str) -> bool:
        """
        Decide whether to keep a freshly connected transport.

        Called once per connect with the server fingerprint in the session's
        fingerprint_hash. Returning False fails the connect with
        HostKeyRejected.
        """
        return True

    def session_did_disconnect(self, session: "Session", error: "SSHError | None") -> None:
        """
        Called when the transport closes without disconnect() being called.
        """
