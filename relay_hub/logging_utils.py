from __future__ import annotations

import logging
from typing import Final

import discord

log: Final = logging.getLogger("relay-hub")

CONSOLE_USERNAME: Final[str] = "Console"
CONSOLE_AVATAR_URL: Final[str] = (
    "https://icons-for-free.com/iconfiles/png/128/"
    "command+line+console+icon-1320183824883548925.png"
)


def player_avatar_url(uuid: str) -> str:
    return f"https://minotar.net/cube/{uuid}/128.png"


async def find_audit_channel(
    client: discord.Client, peer_id: str, log_channel_id: str
) -> discord.TextChannel | None:
    """Return the peer's audit channel, or None when it cannot be used.

    The peer id is the guild id, so a channel from another guild is refused.
    """
    try:
        guild_id, channel_id = int(peer_id), int(log_channel_id)
    except ValueError:
        log.warning("Invalid log channel %r for peer %s", log_channel_id, peer_id)
        return None

    guild = client.get_guild(guild_id)
    channel = guild.get_channel(channel_id) if guild is not None else None
    if channel is None:
        try:
            channel = await client.fetch_channel(channel_id)
        except discord.HTTPException as exc:
            log.warning(
                "Log channel %s of peer %s is unavailable: %s", channel_id, peer_id, exc
            )
            return None

    if not isinstance(channel, discord.TextChannel) or channel.guild.id != guild_id:
        log.warning("Log channel %s is not a text channel of peer %s", channel_id, peer_id)
        return None
    return channel


__all__ = [
    "CONSOLE_AVATAR_URL",
    "CONSOLE_USERNAME",
    "find_audit_channel",
    "player_avatar_url",
]
