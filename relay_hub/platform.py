"""Discord adapter used by sessions, the workflow and the dispatcher."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Final

import discord

from .errors import NotFoundError, TransportError, ValidationError
from .logging_utils import find_audit_channel
from .policy import RelayEndpoint

log: Final = logging.getLogger("relay-hub")


def _snowflake(value: str | int, what: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise NotFoundError(f"Invalid {what} id: {value!r}") from exc


def _receipt(message: discord.Message | None) -> dict[str, str] | None:
    if message is None:
        return None
    return {"id": str(message.id), "channel_id": str(message.channel.id)}


class DiscordPlatform:
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    @property
    def user_id(self) -> str | None:
        user = self._client.user
        return str(user.id) if user is not None else None

    @contextmanager
    def _translate(self, description: str) -> Iterator[None]:
        try:
            yield
        except discord.NotFound as exc:
            raise NotFoundError(f"{description}: not found") from exc
        except discord.HTTPException as exc:
            raise TransportError(f"{description} failed: {exc}") from exc

    def _channel(self, channel_id: str | int):
        cid = _snowflake(channel_id, "channel")
        return self._client.get_channel(cid) or self._client.get_partial_messageable(cid)

    async def _member(self, guild_id: str | int, user_id: str | int) -> discord.Member:
        gid = _snowflake(guild_id, "guild")
        uid = _snowflake(user_id, "user")
        guild = self._client.get_guild(gid) or await self._client.fetch_guild(gid)
        return guild.get_member(uid) or await guild.fetch_member(uid)

    async def send_message(
        self,
        channel_id: str | int,
        text: str | None,
        embed: Mapping[str, Any] | None = None,
    ) -> dict[str, str] | None:
        kwargs: dict[str, Any] = {"content": text}
        if embed:
            if not isinstance(embed, Mapping):
                raise ValidationError("embed must be an object")
            try:
                kwargs["embed"] = discord.Embed.from_dict(dict(embed))
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"Invalid embed: {exc}") from exc
        with self._translate(f"Sending message to {channel_id}"):
            message = await self._channel(channel_id).send(**kwargs)
        return _receipt(message)

    async def create_dm_channel(self, user_id: str | int) -> str:
        uid = _snowflake(user_id, "user")
        with self._translate(f"Opening DM with {user_id}"):
            user = self._client.get_user(uid) or await self._client.fetch_user(uid)
            channel = await user.create_dm()
        return str(channel.id)

    async def send_direct_message(
        self,
        user_id: str | int,
        text: str | None,
        embed: Mapping[str, Any] | None = None,
    ) -> dict[str, str] | None:
        channel_id = await self.create_dm_channel(user_id)
        return await self.send_message(channel_id, text, embed)

    async def send_webhook(
        self,
        endpoint: RelayEndpoint,
        text: str,
        *,
        username: str,
        avatar_url: str | None = None,
    ) -> None:
        webhook = discord.Webhook.partial(
            _snowflake(endpoint.webhook_id, "webhook"),
            endpoint.webhook_token,
            client=self._client,
        )
        with self._translate(f"Relaying through webhook {endpoint.webhook_id}"):
            await webhook.send(text, username=username, avatar_url=avatar_url)

    async def add_role(
        self, guild_id: str | int, user_id: str | int, role_id: str | int
    ) -> None:
        with self._translate(f"Adding role {role_id} to {user_id}"):
            member = await self._member(guild_id, user_id)
            await member.add_roles(
                discord.Object(id=_snowflake(role_id, "role")),
                reason="Linked game account",
            )

    async def remove_role(
        self, guild_id: str | int, user_id: str | int, role_id: str | int
    ) -> None:
        with self._translate(f"Removing role {role_id} from {user_id}"):
            member = await self._member(guild_id, user_id)
            await member.remove_roles(
                discord.Object(id=_snowflake(role_id, "role")),
                reason="Requested by game server",
            )

    async def set_nickname(
        self, guild_id: str | int, user_id: str | int, nickname: str
    ) -> None:
        with self._translate(f"Renaming {user_id}"):
            member = await self._member(guild_id, user_id)
            await member.edit(nick=nickname)

    async def add_reaction(
        self, channel_id: str | int, message_id: str | int, reaction: str
    ) -> None:
        with self._translate(f"Reacting to message {message_id}"):
            message = self._channel(channel_id).get_partial_message(
                _snowflake(message_id, "message")
            )
            await message.add_reaction(reaction)

    async def delete_message(self, channel_id: str | int, message_id: str | int) -> None:
        with self._translate(f"Deleting message {message_id}"):
            message = self._channel(channel_id).get_partial_message(
                _snowflake(message_id, "message")
            )
            await message.delete()

    async def audit(self, guild_id: str, log_channel_id: str | None, text: str) -> None:
        """Best-effort post to a peer's log channel."""
        if not log_channel_id:
            return
        channel = await find_audit_channel(self._client, guild_id, log_channel_id)
        if channel is None:
            return
        try:
            await channel.send(text)
        except discord.Forbidden:
            log.warning("No send permission in log channel %s", log_channel_id)
        except discord.HTTPException as exc:
            log.exception("Failed to write audit log: %s", exc)


__all__ = ["DiscordPlatform"]
