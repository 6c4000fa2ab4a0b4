"""Routes Discord messages and reactions to the owning peer session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final

import discord

from .errors import (
    UNEXPECTED_ERRORS,
    NotFoundError,
    RelayError,
    TransportError,
    ValidationError,
)
from .models import LinkedAccount

if TYPE_CHECKING:
    from .platform import DiscordPlatform
    from .policy import ChannelPolicy
    from .registry import SessionRegistry
    from .session import PeerSession
    from .storage import AccountStore
    from .verification import VerificationWorkflow

log: Final = logging.getLogger("relay-hub")

COMMAND_PREFIX: Final[str] = "!"
REACTION_TYPES: Final[dict[str, str]] = {
    "REACTION_ADD": "MESSAGE_REACTION_ADD",
    "REACTION_REMOVE": "MESSAGE_REACTION_REMOVE",
}

UNLINKED: Final[str] = "Successfully unlinked your account!"
NOT_VERIFIED: Final[str] = "Cannot unlink account. You are not verified!"
COMMANDS_DISABLED: Final[str] = "Commands are not enabled in this channel!"
VERIFY_FIRST: Final[str] = (
    "You must first verify your account before you can send messages here!"
)
GENERIC_FAILURE: Final[str] = "Something went wrong, please try again later."


def _author_wire(author: discord.abc.User) -> dict[str, Any]:
    return {
        "id": str(author.id),
        "username": author.name,
        "discriminator": str(getattr(author, "discriminator", "0")),
        "bot": bool(getattr(author, "bot", False)),
    }


def _sender(author: discord.abc.User, account: LinkedAccount | None) -> dict[str, Any]:
    return {
        "user": author.name,
        "userID": str(author.id),
        "username": account.external_username if account else None,
        "uuid": account.external_uuid if account else None,
    }


def _emoji_wire(emoji: discord.PartialEmoji) -> dict[str, Any]:
    return {
        "id": str(emoji.id) if emoji.id else None,
        "name": emoji.name,
        "animated": bool(emoji.animated),
    }


def _reaction_user(user_id: str, account: LinkedAccount | None) -> dict[str, Any]:
    if account is None:
        return {"verified": False, "userID": user_id}
    return {
        "verified": True,
        "user": account.platform_username,
        "userID": account.platform_user_id,
        "username": account.external_username,
        "uuid": account.external_uuid,
    }


class PlatformDispatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        store: AccountStore,
        platform: DiscordPlatform,
        workflow: VerificationWorkflow,
    ) -> None:
        self._registry = registry
        self._store = store
        self._platform = platform
        self._workflow = workflow

    def _is_relay_echo(self, message: discord.Message, policy: ChannelPolicy) -> bool:
        if str(message.author.id) == self._platform.user_id:
            return True
        webhook_id = getattr(message, "webhook_id", None)
        return bool(webhook_id) and str(webhook_id) == policy.webhook_id

    async def _notify(self, channel_id: str, text: str) -> None:
        try:
            await self._platform.send_message(channel_id, text)
        except RelayError as exc:
            log.warning("Could not notify channel %s: %s", channel_id, exc)

    # ----- Messages -----
    async def on_message(self, message: discord.Message) -> None:
        if message.guild is None:
            return
        session = self._registry.lookup(message.guild.id)
        if session is None:
            return
        channel_id = str(message.channel.id)
        policy = session.channels.get(channel_id)
        if policy is None or self._is_relay_echo(message, policy):
            return

        content = message.content or ""
        try:
            if content.startswith(COMMAND_PREFIX):
                await self._handle_command(session, policy, message, content)
            elif policy.chat:
                await self._relay_chat(session, policy, message, content)
        except UNEXPECTED_ERRORS as exc:
            log.exception(
                "Handling message %s in %s failed: %s", message.id, channel_id, exc
            )
            await self._notify(channel_id, GENERIC_FAILURE)
        except RelayError as exc:
            await self._notify(channel_id, str(exc))

    async def _handle_command(
        self,
        session: PeerSession,
        policy: ChannelPolicy,
        message: discord.Message,
        content: str,
    ) -> None:
        parts = content[len(COMMAND_PREFIX) :].split()
        if not parts:
            return
        command = parts[0].lower()
        args = parts[1:]
        author = message.author
        channel_id = policy.channel_id

        if command == "verify":
            await self._workflow.initiate(
                session,
                user_id=str(author.id),
                username=author.name,
                discriminator=str(getattr(author, "discriminator", "0")),
                channel_id=channel_id,
                args=args,
            )
            return

        if command == "unlink":
            account = await self._store.delete_linked_account_by_user(
                session.peer_id, str(author.id)
            )
            if account is None:
                await self._platform.send_message(channel_id, NOT_VERIFIED)
                return
            await self._platform.send_message(channel_id, UNLINKED)
            await self._platform.audit(
                session.peer_id,
                session.log_channel_id,
                f"{author.mention} unlinked from player {account.external_username}.",
            )
            return

        if not policy.admin_commands:
            raise ValidationError(COMMANDS_DISABLED)

        account = await self._store.find_linked_account_by_user(
            session.peer_id, str(author.id)
        )
        await session.emit(
            "command",
            {
                "sender": _sender(author, account),
                "author": _author_wire(author),
                "command": command,
                "channelID": channel_id,
                "messageID": str(message.id),
                "args": args,
            },
        )

    async def _relay_chat(
        self,
        session: PeerSession,
        policy: ChannelPolicy,
        message: discord.Message,
        content: str,
    ) -> None:
        author = message.author
        account = None
        if policy.require_verification:
            account = await self._store.find_linked_account_by_user(
                session.peer_id, str(author.id)
            )
            if account is None:
                try:
                    await self._platform.delete_message(policy.channel_id, message.id)
                except (NotFoundError, TransportError) as exc:
                    log.warning("Could not delete unverified message %s: %s", message.id, exc)
                await self._platform.send_message(policy.channel_id, VERIFY_FIRST)
                return

        await session.emit(
            "message",
            {
                "sender": _sender(author, account),
                "message": content,
                "channelID": policy.channel_id,
            },
        )

    # ----- Reactions -----
    async def on_reaction(self, payload: discord.RawReactionActionEvent) -> None:
        user_id = str(payload.user_id)
        if user_id == self._platform.user_id:
            return
        event = {
            "messageID": str(payload.message_id),
            "channelID": str(payload.channel_id),
            "emoji": _emoji_wire(payload.emoji),
            "type": REACTION_TYPES.get(payload.event_type, payload.event_type),
        }
        try:
            if payload.guild_id is None:
                await self._relay_direct_reaction(user_id, event)
                return

            session = self._registry.lookup(payload.guild_id)
            if session is None:
                return
            account = await self._store.find_linked_account_by_user(
                session.peer_id, user_id
            )
            await session.emit(
                "reactionEvent", {"user": _reaction_user(user_id, account), **event}
            )
        except UNEXPECTED_ERRORS as exc:
            log.exception("Relaying reaction on %s failed: %s", payload.message_id, exc)

    async def _relay_direct_reaction(self, user_id: str, event: dict[str, Any]) -> None:
        for account in await self._store.find_linked_accounts_for_user(user_id):
            session = self._registry.lookup(account.peer_id)
            if session is None:
                continue
            await session.emit(
                "reactionEvent", {"user": _reaction_user(user_id, account), **event}
            )


__all__ = ["PlatformDispatcher", "REACTION_TYPES"]
