from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, Final

from .errors import UNEXPECTED_ERRORS, RelayError, ValidationError
from .logging_utils import CONSOLE_AVATAR_URL, CONSOLE_USERNAME, player_avatar_url
from .mentions import resolve_mentions
from .policy import ChannelPolicy, ConnectionOptions

if TYPE_CHECKING:
    from .correlator import RequestCorrelator
    from .platform import DiscordPlatform
    from .storage import AccountStore
    from .verification import VerificationWorkflow

log: Final = logging.getLogger("relay-hub")

INTERNAL_ERROR: Final[str] = "internal error"
VERIFICATION_UNAVAILABLE: Final[str] = (
    "Verification is temporarily unavailable, please try again later."
)

EventHandler = Callable[[Mapping[str, Any]], Awaitable[None]]


class PeerSession:
    """One authenticated connection to one game server.

    Inbound frames are dispatched by event name; each runs as its own task so
    a slow store or platform call does not hold up later frames. Closing the
    session stops further dispatch but leaves running tasks alone.
    """

    def __init__(
        self,
        options: ConnectionOptions,
        connection,
        *,
        store: AccountStore,
        platform: DiscordPlatform,
        workflow: VerificationWorkflow,
        correlator: RequestCorrelator,
    ) -> None:
        self.peer_id = options.peer_id
        self.channels: dict[str, ChannelPolicy] = dict(options.channels)
        self.default_role = options.default_role
        self.enforce_nickname = options.enforce_nickname
        self.log_channel_id = options.log_channel_id
        self.connection = connection
        self._store = store
        self._platform = platform
        self._workflow = workflow
        self._correlator = correlator
        self._closed = False
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[str, EventHandler] = {
            "info": self.on_info,
            "chat": self.on_chat,
            "bot": self.on_bot,
            "cnf": self.on_command_not_found,
            "vcb": self.on_verification_result,
            "verify": self.on_verify,
            "unlink": self.on_unlink,
            "addrole": self.on_add_role,
            "removerole": self.on_remove_role,
            "getuser": self.on_get_user,
            "request": self.on_request,
        }
        self._failure_replies: dict[
            str, Callable[[Mapping[str, Any], str], Awaitable[None]]
        ] = {
            "vcb": self._fail_verification_result,
            "verify": self._fail_verify,
            "unlink": self._fail_unlink,
            "addrole": self._fail_add_role,
            "removerole": self._fail_remove_role,
            "getuser": self._fail_get_user,
            "request": self._fail_request,
        }

    def __repr__(self) -> str:
        return f"<PeerSession peer={self.peer_id} channels={len(self.channels)}>"

    @property
    def closed(self) -> bool:
        return self._closed or bool(getattr(self.connection, "closed", False))

    @property
    def events(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def channels_with(self, flag: str) -> list[ChannelPolicy]:
        return [policy for policy in self.channels.values() if getattr(policy, flag)]

    # ----- Lifecycle -----
    async def emit(self, event: str, data: Mapping[str, Any]) -> bool:
        if self.closed:
            log.debug("Dropping %s for closed session %s", event, self.peer_id)
            return False
        try:
            await self.connection.send(event, dict(data))
        except ConnectionError as exc:
            log.warning("Failed to send %s to %s: %s", event, self.peer_id, exc)
            return False
        return True

    def spawn(self, event: str, data: Any) -> asyncio.Task | None:
        if self.closed:
            log.debug("Ignoring %s on closed session %s", event, self.peer_id)
            return None
        task = asyncio.create_task(self.dispatch(event, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched event to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, reason: str = "closed") -> None:
        if self._closed:
            return
        self._closed = True
        log.info("Closing session for %s (%s)", self.peer_id, reason)
        await self.connection.close()

    # ----- Dispatch -----
    async def dispatch(self, event: str, data: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            log.warning("Unknown event %r from %s", event, self.peer_id)
            return
        payload: Mapping[str, Any] = data if isinstance(data, Mapping) else {}
        try:
            if not isinstance(data, Mapping):
                raise ValidationError(f"{event} payload must be an object")
            await handler(payload)
        except UNEXPECTED_ERRORS as exc:
            log.exception("Handling %s from %s failed: %s", event, self.peer_id, exc)
            await self._reply_failure(event, payload, INTERNAL_ERROR)
        except RelayError as exc:
            log.warning("Rejected %s from %s: %s", event, self.peer_id, exc)
            await self._reply_failure(event, payload, str(exc))
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Unhandled error in %s from %s: %s", event, self.peer_id, exc)
            await self._reply_failure(event, payload, INTERNAL_ERROR)

    async def _reply_failure(
        self, event: str, data: Mapping[str, Any], message: str
    ) -> None:
        reply = self._failure_replies.get(event)
        if reply is None:
            return
        try:
            await reply(data, message)
        except RelayError as exc:
            log.warning("Could not report %s failure to %s: %s", event, self.peer_id, exc)

    # ----- Relay -----
    async def _relay(
        self, flag: str, text: str, *, username: str, avatar_url: str | None
    ) -> int:
        delivered = 0
        for policy in self.channels_with(flag):
            if policy.relay_endpoint is None:
                log.debug("Channel %s has no relay endpoint", policy.channel_id)
                continue
            try:
                await self._platform.send_webhook(
                    policy.relay_endpoint, text, username=username, avatar_url=avatar_url
                )
                delivered += 1
            except RelayError as exc:
                log.warning("Relay to channel %s failed: %s", policy.channel_id, exc)
        return delivered

    async def on_info(self, data: Mapping[str, Any]) -> None:
        text = str(data.get("message") or "")
        if not text:
            return
        await self._relay(
            "info", text, username=CONSOLE_USERNAME, avatar_url=CONSOLE_AVATAR_URL
        )

    async def on_chat(self, data: Mapping[str, Any]) -> None:
        text = str(data.get("message") or "")
        if not text or not self.channels_with("chat"):
            return
        uuid = str(data.get("uuid") or "")
        text = await resolve_mentions(text, self.lookup_usernames)
        await self._relay(
            "chat",
            text,
            username=str(data.get("username") or "Player"),
            avatar_url=player_avatar_url(uuid) if uuid else None,
        )

    async def lookup_usernames(self, names):
        return await self._store.find_linked_accounts_by_usernames(self.peer_id, names)

    async def on_bot(self, data: Mapping[str, Any]) -> None:
        channel_id = data.get("channelID")
        if not channel_id:
            raise ValidationError("Missing channelID")
        text = str(data.get("message") or "")
        if not text:
            return
        await self._platform.send_message(str(channel_id), text)

    async def on_command_not_found(self, data: Mapping[str, Any]) -> None:
        channel_id = data.get("channelID")
        if not channel_id:
            raise ValidationError("Missing channelID")
        await self._platform.send_message(
            str(channel_id), f"`!{data.get('command', '')}` is not a valid command!"
        )

    # ----- Verification -----
    async def on_verification_result(self, data: Mapping[str, Any]) -> None:
        await self._workflow.record_lookup(self, data)

    async def on_verify(self, data: Mapping[str, Any]) -> None:
        account = await self._workflow.confirm(
            self,
            external_uuid=str(data.get("uuid") or ""),
            external_username=str(data.get("username") or ""),
            code=str(data.get("code") or ""),
        )
        await self.emit(
            "vcb",
            {
                "user": account.platform_username,
                "userID": account.platform_user_id,
                "uuid": account.external_uuid,
                "username": account.external_username,
                "error": False,
                "message": "Success!",
            },
        )

    async def _fail_verification_result(
        self, data: Mapping[str, Any], message: str
    ) -> None:
        channel_id = data.get("channelID")
        if channel_id:
            await self._platform.send_message(str(channel_id), VERIFICATION_UNAVAILABLE)

    async def _fail_verify(self, data: Mapping[str, Any], message: str) -> None:
        await self.emit("vcb", {"uuid": data.get("uuid"), "error": True, "message": message})

    # ----- Account administration -----
    async def on_unlink(self, data: Mapping[str, Any]) -> None:
        uuid = str(data.get("uuid") or "")
        if not uuid:
            raise ValidationError("Missing uuid")
        account = await self._store.find_linked_account(self.peer_id, uuid)
        removed = account is not None and await self._store.delete_linked_account(
            self.peer_id, uuid
        )
        await self.emit("unlinkcb", {"uuid": uuid, "success": removed})
        if removed:
            await self._platform.audit(
                self.peer_id,
                self.log_channel_id,
                f"<@{account.platform_user_id}> unlinked from player "
                f"{account.external_username} ({uuid}).",
            )

    async def _fail_unlink(self, data: Mapping[str, Any], message: str) -> None:
        await self.emit("unlinkcb", {"uuid": data.get("uuid"), "success": False})

    @staticmethod
    def _role_id(data: Mapping[str, Any]) -> str | None:
        role = data.get("roleID", data.get("role"))
        return str(role) if role not in (None, "") else None

    async def _change_role(self, data: Mapping[str, Any], *, add: bool) -> None:
        event = "addrolecb" if add else "removerolecb"
        uuid = str(data.get("uuid") or "")
        role_id = self._role_id(data)
        if not uuid or role_id is None:
            raise ValidationError("uuid and roleID are required")

        account = await self._store.find_linked_account(self.peer_id, uuid)
        if account is None:
            await self.emit(event, {"uuid": uuid, "roleID": role_id, "success": False})
            return

        if add:
            await self._platform.add_role(self.peer_id, account.platform_user_id, role_id)
        else:
            await self._platform.remove_role(self.peer_id, account.platform_user_id, role_id)
        await self.emit(event, {"uuid": uuid, "roleID": role_id, "success": True})

    async def on_add_role(self, data: Mapping[str, Any]) -> None:
        await self._change_role(data, add=True)

    async def on_remove_role(self, data: Mapping[str, Any]) -> None:
        await self._change_role(data, add=False)

    async def _fail_add_role(self, data: Mapping[str, Any], message: str) -> None:
        await self.emit(
            "addrolecb",
            {"uuid": data.get("uuid"), "roleID": self._role_id(data), "success": False},
        )

    async def _fail_remove_role(self, data: Mapping[str, Any], message: str) -> None:
        await self.emit(
            "removerolecb",
            {"uuid": data.get("uuid"), "roleID": self._role_id(data), "success": False},
        )

    async def on_get_user(self, data: Mapping[str, Any]) -> None:
        username = str(data.get("req") or "")
        accounts = await self.lookup_usernames([username]) if username else []
        await self.emit(
            "usercb", {"req": username, "res": [account.to_wire() for account in accounts]}
        )

    async def _fail_get_user(self, data: Mapping[str, Any], message: str) -> None:
        await self.emit(
            "usercb", {"req": data.get("req"), "res": [], "error": True, "message": message}
        )

    # ----- Correlated requests -----
    async def on_request(self, data: Mapping[str, Any]) -> None:
        reply = await self._correlator.handle(self, data)
        await self.emit("callback", reply)

    async def _fail_request(self, data: Mapping[str, Any], message: str) -> None:
        await self.emit(
            "callback", {"id": data.get("id"), "error": True, "message": message}
        )


__all__ = ["PeerSession"]
