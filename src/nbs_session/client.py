"""
asyncssh client object that splits connecting from authenticating.

asyncssh.connect() runs the handshake and user authentication as one call.
SessionClient parks that call at its first authentication callback, which
asyncssh only makes once the key exchange is done and the server has
answered the initial "none" probe. At that point handshake_done resolves
and the session is connected. The connect call then waits there until the
caller presents credentials with present().
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import asyncssh

from nbs_session.auth import AuthMethod, AuthOffer

logger = logging.getLogger(__name__)

# Methods the bridge answers, in asyncssh's default preference order
BRIDGED_AUTH_METHODS = (
    AuthMethod.PUBLICKEY,
    AuthMethod.KEYBOARD_INTERACTIVE,
    AuthMethod.PASSWORD,
)


class SessionClient(asyncssh.SSHClient):
    """
    Bridge between a Session and one asyncssh client connection.

    Attributes:
        handshake_done: Resolves when the server is ready for user auth
        connection: The asyncssh connection, once made
        auth_complete: True once the server accepted a credential
        auth_banner: The server's userauth banner, if it sent one
        lost_error: Why the connection closed, once it has
    """

    def __init__(
        self,
        on_connection_lost: Callable[["SessionClient", Exception | None], None] | None = None,
    ) -> None:
        super().__init__()
        loop = asyncio.get_running_loop()
        self.handshake_done: asyncio.Future[None] = loop.create_future()
        self.connection: asyncssh.SSHClientConnection | None = None
        self.auth_complete = False
        self.auth_banner: str | None = None
        self.closed = False
        self.lost_error: Exception | None = None

        self._on_connection_lost = on_connection_lost
        self._offer: AuthOffer | None = None
        self._offer_ready = asyncio.Event()
        self._auth_waiter: asyncio.Future[None] | None = None

    # -----------------------------------------------------------------------
    # Connection callbacks
    # -----------------------------------------------------------------------

    def connection_made(self, conn: asyncssh.SSHClientConnection) -> None:
        self.connection = conn

    def connection_lost(self, exc: Exception | None) -> None:
        self.closed = True
        self.lost_error = exc
        # Release any callback still waiting for credentials
        self._offer_ready.set()

        if self._auth_waiter is not None and not self._auth_waiter.done():
            self._auth_waiter.set_exception(
                exc or asyncssh.ConnectionLost("Connection lost")
            )

        if self._on_connection_lost is not None:
            self._on_connection_lost(self, exc)

    def auth_banner_received(self, msg: str, lang: str) -> None:
        self.auth_banner = msg

    def auth_completed(self) -> None:
        self.auth_complete = True
        if self._auth_waiter is not None and not self._auth_waiter.done():
            self._auth_waiter.set_result(None)

    # -----------------------------------------------------------------------
    # Credential side
    # -----------------------------------------------------------------------

    async def present(self, offer: AuthOffer) -> None:
        """
        Present credentials and wait for the server's verdict.

        Raises:
            asyncssh.PermissionDenied: If the server rejected the offer
            asyncssh.DisconnectError: If the connection failed meanwhile
        """
        assert self._offer is None, "Credentials already presented on this connection"
        self._offer = offer
        self._offer_ready.set()
        await self.wait_authenticated()

    async def wait_authenticated(self) -> None:
        if self.auth_complete:
            return
        if self.closed:
            raise self.lost_error or asyncssh.ConnectionLost("Connection lost")

        self._auth_waiter = asyncio.get_running_loop().create_future()
        await self._auth_waiter

    async def _take_offer(self, method: AuthMethod) -> AuthOffer | None:
        """
        Wait for credentials, then hand them out once if the method matches.
        """
        if not self.handshake_done.done():
            self.handshake_done.set_result(None)

        await self._offer_ready.wait()

        offer = self._offer
        if offer is None or offer.delivered or offer.method != method:
            return None

        logger.debug("Presenting %s credentials", method.value)
        offer.delivered = True
        return offer

    # -----------------------------------------------------------------------
    # asyncssh auth callbacks
    # -----------------------------------------------------------------------

    async def public_key_auth_requested(self) -> Any:
        offer = await self._take_offer(AuthMethod.PUBLICKEY)
        return offer.keys if offer else None

    async def password_auth_requested(self) -> str | None:
        offer = await self._take_offer(AuthMethod.PASSWORD)
        return offer.password if offer else None

    async def kbdint_auth_requested(self) -> str | None:
        offer = await self._take_offer(AuthMethod.KEYBOARD_INTERACTIVE)
        return "" if offer else None

    def kbdint_challenge_received(
        self,
        name: str,
        instructions: str,
        lang: str,
        prompts: list[tuple[str, bool]],
    ) -> list[str] | None:
        offer = self._offer
        if offer is None or offer.responder is None:
            return None

        responses = []
        for prompt, _echo in prompts:
            response = offer.responder(prompt)
            if response is None:
                logger.debug("Responder declined prompt %r", prompt)
                return None
            responses.append(response)
        return responses
