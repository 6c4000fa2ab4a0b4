from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ClassVar

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
PK_TEMPLATE = "PEER#%s"


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format (ms precision)."""
    return datetime.now(UTC).strftime(ISO_FORMAT)


def peer_pk(peer_id: str) -> str:
    return PK_TEMPLATE % peer_id


@dataclass(slots=True)
class PeerIdentity:
    peer_id: str
    token: str
    registered_at: str = ""

    SK_VALUE: ClassVar[str] = "IDENTITY"

    @classmethod
    def key(cls, peer_id: str) -> dict[str, str]:
        return {"pk": peer_pk(peer_id), "sk": cls.SK_VALUE}

    def to_item(self) -> dict[str, object]:
        item = self.key(self.peer_id)
        item.update(
            {
                "peer_id": self.peer_id,
                "token": self.token,
                "registered_at": self.registered_at or utc_now_iso(),
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> PeerIdentity:
        return cls(
            peer_id=str(item["peer_id"]),
            token=str(item["token"]),
            registered_at=str(item.get("registered_at", "")),
        )


@dataclass(slots=True)
class LinkedAccount:
    platform_user_id: str
    platform_username: str
    peer_id: str
    external_username: str
    external_uuid: str
    role: str | None = None
    linked_at: str = ""

    ACCOUNT_SK_TEMPLATE: ClassVar[str] = "ACCOUNT#%s"
    USER_SK_TEMPLATE: ClassVar[str] = "USER#%s"
    ACCOUNT_PREFIX: ClassVar[str] = "ACCOUNT#"

    @classmethod
    def key(cls, peer_id: str, external_uuid: str) -> dict[str, str]:
        return {"pk": peer_pk(peer_id), "sk": cls.ACCOUNT_SK_TEMPLATE % external_uuid}

    @classmethod
    def user_key(cls, peer_id: str, platform_user_id: str) -> dict[str, str]:
        return {"pk": peer_pk(peer_id), "sk": cls.USER_SK_TEMPLATE % platform_user_id}

    def _attributes(self) -> dict[str, object]:
        attributes: dict[str, object] = {
            "platform_user_id": self.platform_user_id,
            "platform_username": self.platform_username,
            "peer_id": self.peer_id,
            "external_username": self.external_username,
            "external_username_lower": self.external_username.lower(),
            "external_uuid": self.external_uuid,
            "linked_at": self.linked_at or utc_now_iso(),
        }
        if self.role is not None:
            attributes["role"] = self.role
        return attributes

    def to_item(self) -> dict[str, object]:
        item = self.key(self.peer_id, self.external_uuid)
        item.update(self._attributes())
        return item

    def to_user_item(self) -> dict[str, object]:
        """Return the guard item that keeps one link per platform user."""
        item = self.user_key(self.peer_id, self.platform_user_id)
        item.update(self._attributes())
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> LinkedAccount:
        role = item.get("role")
        return cls(
            platform_user_id=str(item["platform_user_id"]),
            platform_username=str(item.get("platform_username", "")),
            peer_id=str(item["peer_id"]),
            external_username=str(item["external_username"]),
            external_uuid=str(item["external_uuid"]),
            role=str(role) if role is not None else None,
            linked_at=str(item.get("linked_at", "")),
        )

    def to_wire(self) -> dict[str, object]:
        """Row shape the peers expect in `usercb` and `callback` payloads."""
        return {
            "user": self.platform_username,
            "userID": self.platform_user_id,
            "roleID": self.role,
            "serverID": self.peer_id,
            "username": self.external_username,
            "uuid": self.external_uuid,
        }


@dataclass(slots=True)
class PendingVerification:
    platform_user_id: str
    platform_username: str
    peer_id: str
    channel_id: str
    external_uuid: str
    code: str
    created_at: str = ""
    expires_at: int = 0

    SK_TEMPLATE: ClassVar[str] = "PENDING#%s"

    @classmethod
    def key(cls, peer_id: str, external_uuid: str) -> dict[str, str]:
        return {"pk": peer_pk(peer_id), "sk": cls.SK_TEMPLATE % external_uuid}

    def to_item(self) -> dict[str, object]:
        item = self.key(self.peer_id, self.external_uuid)
        item.update(
            {
                "platform_user_id": self.platform_user_id,
                "platform_username": self.platform_username,
                "peer_id": self.peer_id,
                "channel_id": self.channel_id,
                "external_uuid": self.external_uuid,
                "code": self.code,
                "created_at": self.created_at or utc_now_iso(),
                "expires_at": int(self.expires_at),
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> PendingVerification:
        try:
            expires_at = int(item.get("expires_at", 0))
        except (TypeError, ValueError):  # pragma: no cover
            expires_at = 0
        return cls(
            platform_user_id=str(item["platform_user_id"]),
            platform_username=str(item.get("platform_username", "")),
            peer_id=str(item["peer_id"]),
            channel_id=str(item["channel_id"]),
            external_uuid=str(item["external_uuid"]),
            code=str(item["code"]),
            created_at=str(item.get("created_at", "")),
            expires_at=expires_at,
        )

    def is_expired(self, now: float | None = None) -> bool:
        if not self.expires_at:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at


__all__ = [
    "ISO_FORMAT",
    "LinkedAccount",
    "PeerIdentity",
    "PendingVerification",
    "peer_pk",
    "utc_now_iso",
]
