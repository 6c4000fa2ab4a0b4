"""Connection options and per-channel relay policy declared by a peer."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError


@dataclass(frozen=True, slots=True)
class RelayEndpoint:
    """Webhook credentials used to post relayed messages into a channel."""

    webhook_id: str
    webhook_token: str


@dataclass(frozen=True, slots=True)
class ChannelPolicy:
    channel_id: str
    relay_endpoint: RelayEndpoint | None = None
    chat: bool = False
    info: bool = False
    death_messages: bool = False
    join_quit_messages: bool = False
    require_verification: bool = False
    admin_commands: bool = False

    @property
    def webhook_id(self) -> str | None:
        return self.relay_endpoint.webhook_id if self.relay_endpoint else None

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> ChannelPolicy:
        channel_id = _require_id(data, "channelID")
        endpoint = None
        webhook_id = data.get("webhookID")
        webhook_token = data.get("webhookToken")
        if webhook_id and webhook_token:
            endpoint = RelayEndpoint(str(webhook_id), str(webhook_token))
        return cls(
            channel_id=channel_id,
            relay_endpoint=endpoint,
            chat=bool(data.get("chat", False)),
            info=bool(data.get("info", False)),
            death_messages=bool(data.get("deathMessages", False)),
            join_quit_messages=bool(data.get("joinQuitMessages", False)),
            require_verification=bool(data.get("requireVerification", False)),
            admin_commands=bool(data.get("adminCommands", False)),
        )


@dataclass(frozen=True, slots=True)
class ConnectionOptions:
    peer_id: str
    token: str | None
    default_role: str | None = None
    enforce_nickname: bool = False
    log_channel_id: str | None = None
    channels: dict[str, ChannelPolicy] = field(default_factory=dict)


def _require_id(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    if value is None or str(value).strip() == "":
        raise ValidationError(f"Missing {name}")
    return str(value).strip()


def _optional_id(value: Any) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    return str(value).strip()


def parse_channels(declared: Iterable[Mapping[str, Any]]) -> dict[str, ChannelPolicy]:
    channels: dict[str, ChannelPolicy] = {}
    for entry in declared:
        if not isinstance(entry, Mapping):
            raise ValidationError("Channel declarations must be objects")
        policy = ChannelPolicy.from_wire(entry)
        channels[policy.channel_id] = policy
    return channels


def parse_options(data: Any) -> ConnectionOptions:
    """Build :class:`ConnectionOptions` from an ``options`` frame payload."""
    if not isinstance(data, Mapping):
        raise ValidationError("Options payload must be an object")

    peer_id = _optional_id(data.get("peerID", data.get("serverID")))
    if peer_id is None:
        raise ValidationError("Missing serverID")

    declared = data.get("channels") or []
    if not isinstance(declared, list):
        raise ValidationError("channels must be a list")

    token = data.get("token")
    return ConnectionOptions(
        peer_id=peer_id,
        token=str(token) if token else None,
        default_role=_optional_id(data.get("defaultRole")),
        enforce_nickname=bool(data.get("enforceNickname", False)),
        log_channel_id=_optional_id(data.get("logChannelID")),
        channels=parse_channels(declared),
    )


__all__ = [
    "ChannelPolicy",
    "ConnectionOptions",
    "RelayEndpoint",
    "parse_channels",
    "parse_options",
]
