from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from .errors import AuthError
from .policy import ConnectionOptions

if TYPE_CHECKING:
    from .session import PeerSession
    from .storage import AccountStore

log: Final = logging.getLogger("relay-hub")

SessionFactory = Callable[[ConnectionOptions, object], "PeerSession"]


class SessionRegistry:
    """Process-wide table of live peer sessions, one per peer id.

    Installing a session for a peer that already has one closes the older
    session; the registry never holds more than one entry per peer.
    """

    def __init__(self, store: AccountStore, session_factory: SessionFactory) -> None:
        self._store = store
        self._session_factory = session_factory
        self._sessions: dict[str, PeerSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._sessions

    def lookup(self, peer_id: str | int | None) -> PeerSession | None:
        if peer_id is None:
            return None
        return self._sessions.get(str(peer_id))

    def sessions(self) -> list[PeerSession]:
        return list(self._sessions.values())

    async def authenticate(
        self, options: ConnectionOptions, connection
    ) -> PeerSession:
        if not options.token:
            raise AuthError(f"Peer {options.peer_id} did not provide a token")

        identity = await self._store.find_peer_identity(options.peer_id, options.token)
        if identity is None:
            raise AuthError(f"Invalid token for peer {options.peer_id}")

        # The connection may have dropped while the token was being checked.
        if getattr(connection, "closed", False):
            raise AuthError(f"Connection for {options.peer_id} closed during authentication")

        session = self._session_factory(options, connection)
        # Another authentication may install a session while the previous one closes.
        while (previous := self._sessions.pop(options.peer_id, None)) is not None:
            await previous.close(reason="superseded by new connection")
        self._sessions[options.peer_id] = session
        log.info(
            "Peer %s connected with %d channel(s)", options.peer_id, len(session.channels)
        )
        return session

    def unregister(self, session: PeerSession) -> bool:
        """Drop ``session`` if it is still the live one for its peer."""
        if self._sessions.get(session.peer_id) is not session:
            return False
        del self._sessions[session.peer_id]
        log.info("Peer %s disconnected", session.peer_id)
        return True

    async def close_all(self, reason: str = "shutting down") -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close(reason=reason)


__all__ = ["SessionRegistry"]
