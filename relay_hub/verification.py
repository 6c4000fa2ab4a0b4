"""Account-linking workflow between a chat user and an in-game player.

``initiate`` handles ``!verify <name>`` on the platform side and asks the peer
to look the player up. ``record_lookup`` stores the peer's answer as a pending
verification. ``confirm`` completes the link once the player submits the code
in game; it is the single confirmation path used both by the ``verify`` peer
event and by ``request{type: "verify"}``.
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from .errors import (
    UNEXPECTED_ERRORS,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from .models import LinkedAccount, PendingVerification, utc_now_iso

if TYPE_CHECKING:
    from .platform import DiscordPlatform
    from .session import PeerSession
    from .storage import AccountStore

log: Final = logging.getLogger("relay-hub")

CODE_BYTES: Final[int] = 16
DEFAULT_TTL_SECONDS: Final[int] = 15 * 60

VERIFY_USAGE: Final[str] = "Usage: !verify <username>"
ALREADY_LINKED_USER: Final[str] = "You are already verified!"
ALREADY_LINKED_PLAYER: Final[str] = "That player is already verified!"
NO_PENDING_VERIFICATION: Final[str] = "no user to be verified"
DUPLICATE_ACCOUNT: Final[str] = "User already exists!"
REQUEST_SENT: Final[str] = (
    "Verification request sent! Please complete verification process in game!"
)
PLAYER_NOT_FOUND: Final[str] = (
    "That username doesn't exist or the player is not in game! "
    "Please make sure you are logged into the server and the username matches!"
)

_USERNAME_STRIP = re.compile(r"[^A-Za-z0-9_]")


def generate_code() -> str:
    return secrets.token_hex(CODE_BYTES)


def sanitize_username(raw: str) -> str:
    return _USERNAME_STRIP.sub("", raw)


def linked_message(platform_user_id: str, external_username: str) -> str:
    return (
        f"<@{platform_user_id}> Your Discord account is now linked to "
        f"Minecraft player {external_username}!"
    )


@dataclass(slots=True)
class VerificationRequest:
    peer_id: str
    platform_user_id: str
    platform_username: str
    discriminator: str
    channel_id: str
    external_username: str
    code: str

    def to_wire(self) -> dict[str, object]:
        return {
            "discord": {
                "username": self.platform_username,
                "discriminator": self.discriminator,
            },
            "user": self.platform_username,
            "userID": self.platform_user_id,
            "channelID": self.channel_id,
            "username": self.external_username,
            "code": self.code,
        }


def _field(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    if value is None or str(value) == "":
        raise ValidationError(f"Missing {name}")
    return str(value)


class VerificationWorkflow:
    def __init__(
        self,
        store: AccountStore,
        platform: DiscordPlatform,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._platform = platform
        self._ttl_seconds = ttl_seconds

    async def initiate(
        self,
        session: PeerSession,
        *,
        user_id: str,
        username: str,
        discriminator: str,
        channel_id: str,
        args: Sequence[str],
    ) -> VerificationRequest:
        if len(args) != 1:
            raise ValidationError(VERIFY_USAGE)
        external_username = sanitize_username(args[0])
        if not external_username:
            raise ValidationError(VERIFY_USAGE)

        if await self._store.find_linked_account_by_user(session.peer_id, user_id):
            raise DuplicateError(ALREADY_LINKED_USER)
        if await self._store.find_linked_accounts_by_usernames(
            session.peer_id, [external_username]
        ):
            raise DuplicateError(ALREADY_LINKED_PLAYER)

        request = VerificationRequest(
            peer_id=session.peer_id,
            platform_user_id=user_id,
            platform_username=username,
            discriminator=discriminator,
            channel_id=channel_id,
            external_username=external_username,
            code=generate_code(),
        )
        await session.emit("verify", request.to_wire())
        log.info(
            "Verification requested by %s for player %s on %s",
            user_id,
            external_username,
            session.peer_id,
        )
        return request

    async def record_lookup(
        self, session: PeerSession, data: Mapping[str, Any]
    ) -> PendingVerification | None:
        """Handle the peer's answer to a ``verify`` request."""
        channel_id = _field(data, "channelID")
        if data.get("error"):
            await self._platform.send_message(channel_id, PLAYER_NOT_FOUND)
            return None

        now = time.time()
        pending = PendingVerification(
            platform_user_id=_field(data, "userID"),
            platform_username=str(data.get("user") or ""),
            peer_id=session.peer_id,
            channel_id=channel_id,
            external_uuid=_field(data, "uuid"),
            code=_field(data, "code"),
            created_at=utc_now_iso(),
            expires_at=int(now + self._ttl_seconds),
        )
        await self._store.insert_pending_verification(pending)
        await self._platform.send_message(channel_id, REQUEST_SENT)
        return pending

    async def confirm(
        self,
        session: PeerSession,
        *,
        external_uuid: str,
        external_username: str,
        code: str,
    ) -> LinkedAccount:
        peer_id = session.peer_id
        if not external_uuid or not external_username or not code:
            raise ValidationError("uuid, username and code are required")

        pending = await self._store.find_pending_verification(peer_id, external_uuid, code)
        if pending is None:
            if await self._store.find_linked_account(peer_id, external_uuid):
                raise DuplicateError(DUPLICATE_ACCOUNT)
            raise NotFoundError(NO_PENDING_VERIFICATION)

        if await self._store.find_linked_account(peer_id, external_uuid):
            raise DuplicateError(DUPLICATE_ACCOUNT)

        account = LinkedAccount(
            platform_user_id=pending.platform_user_id,
            platform_username=pending.platform_username,
            peer_id=peer_id,
            external_username=external_username,
            external_uuid=external_uuid,
            role=session.default_role,
            linked_at=utc_now_iso(),
        )
        try:
            await self._store.insert_linked_account(account)
        except DuplicateError as exc:
            raise DuplicateError(DUPLICATE_ACCOUNT) from exc

        if not await self._store.delete_pending_verification(pending):
            log.debug("Pending verification for %s already consumed", external_uuid)

        log.info(
            "Linked %s to player %s (%s) on %s",
            account.platform_user_id,
            account.external_username,
            external_uuid,
            peer_id,
        )
        await self._announce(session, pending, account)
        return account

    async def _announce(
        self,
        session: PeerSession,
        pending: PendingVerification,
        account: LinkedAccount,
    ) -> None:
        # The link is already stored; platform failures past this point are logged only.
        try:
            await self._platform.send_message(
                pending.channel_id,
                linked_message(account.platform_user_id, account.external_username),
            )
        except (NotFoundError, *UNEXPECTED_ERRORS) as exc:
            log.warning("Could not announce link in %s: %s", pending.channel_id, exc)

        if session.default_role:
            try:
                await self._platform.add_role(
                    session.peer_id, account.platform_user_id, session.default_role
                )
            except (NotFoundError, *UNEXPECTED_ERRORS) as exc:
                log.warning(
                    "Could not grant role %s to %s: %s",
                    session.default_role,
                    account.platform_user_id,
                    exc,
                )

        if session.enforce_nickname:
            try:
                await self._platform.set_nickname(
                    session.peer_id, account.platform_user_id, account.external_username
                )
            except (NotFoundError, *UNEXPECTED_ERRORS) as exc:
                log.warning("Could not rename %s: %s", account.platform_user_id, exc)

        await self._platform.audit(
            session.peer_id,
            session.log_channel_id,
            f"<@{account.platform_user_id}> linked to player "
            f"{account.external_username} ({account.external_uuid}).",
        )


__all__ = [
    "ALREADY_LINKED_PLAYER",
    "ALREADY_LINKED_USER",
    "DUPLICATE_ACCOUNT",
    "NO_PENDING_VERIFICATION",
    "PLAYER_NOT_FOUND",
    "REQUEST_SENT",
    "VERIFY_USAGE",
    "VerificationRequest",
    "VerificationWorkflow",
    "generate_code",
    "linked_message",
    "sanitize_username",
]
