from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

from .errors import UNEXPECTED_ERRORS, NotFoundError, RelayError, ValidationError

if TYPE_CHECKING:
    from .platform import DiscordPlatform
    from .session import PeerSession
    from .storage import AccountStore
    from .verification import VerificationWorkflow

log: Final = logging.getLogger("relay-hub")

SUCCESS: Final[str] = "Success!"
INVALID_TYPE: Final[str] = "invalid request type"
DUPLICATE_ID: Final[str] = "duplicate request id"
INTERNAL_ERROR: Final[str] = "internal error"
NO_USER_FOUND: Final[str] = "No user found!"

Handler = Callable[["PeerSession", Mapping[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(slots=True)
class CorrelatedRequest:
    type: str
    correlation_id: Any
    payload: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, data: Any) -> CorrelatedRequest:
        if not isinstance(data, Mapping):
            return cls(type="", correlation_id=None)
        return cls(
            type=str(data.get("type") or ""),
            correlation_id=data.get("id"),
            payload=data,
        )

    def success(self, **extra: Any) -> dict[str, Any]:
        reply: dict[str, Any] = {"id": self.correlation_id, "error": False, "message": SUCCESS}
        reply.update(extra)
        return reply

    def failure(self, message: str, **extra: Any) -> dict[str, Any]:
        reply: dict[str, Any] = {"id": self.correlation_id, "error": True, "message": message}
        reply.update(extra)
        return reply


def _embed(payload: Mapping[str, Any]) -> Mapping[str, Any] | None:
    embed = payload.get("embed")
    if embed is not None and not isinstance(embed, Mapping):
        raise ValidationError("embed must be an object")
    return embed or None


def _required(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    if value is None or str(value) == "":
        raise ValidationError(f"Missing {name}")
    return str(value)


class RequestCorrelator:
    """Answers every ``request`` frame with exactly one ``callback`` payload.

    Ids of requests being processed are tracked per peer; a second request
    reusing an id that is still in flight is refused instead of producing a
    second reply for that id.
    """

    def __init__(
        self,
        store: AccountStore,
        platform: DiscordPlatform,
        workflow: VerificationWorkflow,
    ) -> None:
        self._store = store
        self._platform = platform
        self._workflow = workflow
        self._in_flight: set[tuple[str, str]] = set()
        self._handlers: dict[str, Handler] = {
            "user": self._handle_user,
            "dm": self._handle_dm,
            "verify": self._handle_verify,
            "embed": self._handle_embed,
            "react": self._handle_react,
            "delete": self._handle_delete,
        }

    @property
    def request_types(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    async def handle(self, session: PeerSession, data: Any) -> dict[str, Any]:
        request = CorrelatedRequest.from_wire(data)
        if request.correlation_id is None:
            return await self._run(session, request)

        key = (session.peer_id, str(request.correlation_id))
        if key in self._in_flight:
            log.warning(
                "Peer %s reused in-flight request id %r", session.peer_id, request.correlation_id
            )
            return request.failure(DUPLICATE_ID, type=request.type)

        self._in_flight.add(key)
        try:
            return await self._run(session, request)
        finally:
            self._in_flight.discard(key)

    async def _run(
        self, session: PeerSession, request: CorrelatedRequest
    ) -> dict[str, Any]:
        handler = self._handlers.get(request.type)
        if handler is None:
            log.warning("Invalid request type %r from %s", request.type, session.peer_id)
            return request.failure(INVALID_TYPE, type=request.type)

        try:
            extra = await handler(session, request.payload)
        except UNEXPECTED_ERRORS as exc:
            log.exception(
                "Request %s (%r) from %s failed: %s",
                request.type,
                request.correlation_id,
                session.peer_id,
                exc,
            )
            return request.failure(INTERNAL_ERROR)
        except RelayError as exc:
            return request.failure(str(exc))
        return request.success(**extra)

    async def _lookup_user(self, session: PeerSession, username: str):
        accounts = await self._store.find_linked_accounts_by_usernames(
            session.peer_id, [username]
        )
        if not accounts:
            raise NotFoundError(NO_USER_FOUND)
        return accounts[0]

    async def _handle_user(
        self, session: PeerSession, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        account = await self._lookup_user(session, _required(payload, "username"))
        return {"user": account.to_wire()}

    async def _handle_dm(
        self, session: PeerSession, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        text = payload.get("message")
        embed = _embed(payload)
        if payload.get("userID") is not None:
            receipt = await self._platform.send_direct_message(
                str(payload["userID"]), text, embed
            )
            return {"res": receipt}
        if payload.get("username") is not None:
            account = await self._lookup_user(session, str(payload["username"]))
            receipt = await self._platform.send_direct_message(
                account.platform_user_id, text, embed
            )
            return {"res": receipt, "username": account.external_username}
        raise ValidationError("userID or username is required")

    async def _handle_verify(
        self, session: PeerSession, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        account = await self._workflow.confirm(
            session,
            external_uuid=_required(payload, "uuid"),
            external_username=_required(payload, "username"),
            code=_required(payload, "code"),
        )
        return {"user": account.to_wire()}

    async def _handle_embed(
        self, session: PeerSession, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        receipt = await self._platform.send_message(
            _required(payload, "channelID"), payload.get("message"), _embed(payload)
        )
        receipt = receipt or {}
        return {"messageID": receipt.get("id"), "channelID": receipt.get("channel_id")}

    async def _handle_react(
        self, session: PeerSession, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        await self._platform.add_reaction(
            _required(payload, "channelID"),
            _required(payload, "messageID"),
            _required(payload, "reaction"),
        )
        return {}

    async def _handle_delete(
        self, session: PeerSession, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        await self._platform.delete_message(
            _required(payload, "channelID"), _required(payload, "messageID")
        )
        return {"message": "deleted message!"}


__all__ = [
    "CorrelatedRequest",
    "DUPLICATE_ID",
    "INTERNAL_ERROR",
    "INVALID_TYPE",
    "NO_USER_FOUND",
    "RequestCorrelator",
]
