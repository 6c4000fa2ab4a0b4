from __future__ import annotations

import asyncio
import base64
import hmac
import logging
import secrets
import time
from collections.abc import Iterable
from typing import Any, Final

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from .errors import DuplicateError, StoreError
from .models import LinkedAccount, PeerIdentity, PendingVerification, peer_pk

log: Final = logging.getLogger("relay-hub")

CONDITION_FAILED: Final[str] = "ConditionalCheckFailedException"
TOKEN_BYTES: Final[int] = 32


def _error_code(exc: ClientError) -> str | None:
    return exc.response.get("Error", {}).get("Code")


def generate_token() -> str:
    return base64.b64encode(secrets.token_bytes(TOKEN_BYTES)).decode("ascii")


class AccountStore:
    """Named, parameterised operations over the hub's DynamoDB table.

    Every boto3 call runs in a worker thread. Conditional-check failures are
    translated by the individual operations; any other boto failure surfaces
    as :class:`StoreError`.
    """

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise StoreError("Account table is not configured")

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        self.ensure_table()
        method = getattr(self._table, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError as exc:
            if _error_code(exc) == CONDITION_FAILED:
                raise
            raise StoreError(f"{operation} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc

    async def _get(self, key: dict[str, str]) -> dict[str, Any] | None:
        resp = await self._call("get_item", Key=key)
        return resp.get("Item")

    async def _query_all(self, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            resp = await self._call("query", **kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    async def _scan_all(self, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            resp = await self._call("scan", **kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    # ----- Peer identities -----
    async def find_peer_identity_by_id(self, peer_id: str) -> PeerIdentity | None:
        item = await self._get(PeerIdentity.key(peer_id))
        if not item:
            return None
        return PeerIdentity.from_item(item)

    async def find_peer_identity(self, peer_id: str, token: str) -> PeerIdentity | None:
        """Return the identity only when ``token`` matches exactly."""
        identity = await self.find_peer_identity_by_id(peer_id)
        if identity is None:
            return None
        if not hmac.compare_digest(identity.token.encode(), token.encode()):
            return None
        return identity

    async def register_peer_identity(
        self, peer_id: str, token: str | None = None
    ) -> PeerIdentity:
        identity = PeerIdentity(peer_id=peer_id, token=token or generate_token())
        try:
            await self._call(
                "put_item",
                Item=identity.to_item(),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as exc:
            raise DuplicateError(f"Peer {peer_id} is already registered") from exc
        log.info("Registered peer %s", peer_id)
        return identity

    # ----- Linked accounts -----
    async def find_linked_account(
        self, peer_id: str, external_uuid: str
    ) -> LinkedAccount | None:
        item = await self._get(LinkedAccount.key(peer_id, external_uuid))
        if not item:
            return None
        return LinkedAccount.from_item(item)

    async def find_linked_account_by_user(
        self, peer_id: str, platform_user_id: str
    ) -> LinkedAccount | None:
        item = await self._get(LinkedAccount.user_key(peer_id, platform_user_id))
        if not item:
            return None
        return LinkedAccount.from_item(item)

    async def find_linked_accounts_by_usernames(
        self, peer_id: str, usernames: Iterable[str]
    ) -> list[LinkedAccount]:
        """Case-insensitive batch lookup of accounts on one peer."""
        wanted = {name.lower() for name in usernames if name}
        if not wanted:
            return []
        items = await self._query_all(
            KeyConditionExpression=Key("pk").eq(peer_pk(peer_id))
            & Key("sk").begins_with(LinkedAccount.ACCOUNT_PREFIX),
        )
        accounts = [
            LinkedAccount.from_item(item)
            for item in items
            if str(item.get("external_username", "")).lower() in wanted
        ]
        accounts.sort(key=lambda account: account.external_username.lower())
        return accounts

    async def find_linked_accounts_for_user(
        self, platform_user_id: str
    ) -> list[LinkedAccount]:
        """Every link the platform user holds, across all peers."""
        items = await self._scan_all(
            FilterExpression=Attr("sk").eq(
                LinkedAccount.USER_SK_TEMPLATE % platform_user_id
            ),
        )
        return [LinkedAccount.from_item(item) for item in items]

    async def insert_linked_account(self, account: LinkedAccount) -> None:
        """Insert a link atomically; raise DuplicateError if either side is taken."""
        try:
            await self._call(
                "put_item",
                Item=account.to_item(),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as exc:
            raise DuplicateError(
                f"Player {account.external_uuid} is already linked"
            ) from exc

        try:
            await self._call(
                "put_item",
                Item=account.to_user_item(),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as exc:
            await self._call(
                "delete_item", Key=LinkedAccount.key(account.peer_id, account.external_uuid)
            )
            raise DuplicateError(
                f"User {account.platform_user_id} is already linked"
            ) from exc

    async def _delete_account_items(self, account: LinkedAccount) -> bool:
        try:
            await self._call(
                "delete_item",
                Key=LinkedAccount.key(account.peer_id, account.external_uuid),
                ConditionExpression="attribute_exists(pk)",
            )
        except ClientError:
            return False
        await self._call(
            "delete_item",
            Key=LinkedAccount.user_key(account.peer_id, account.platform_user_id),
        )
        return True

    async def delete_linked_account(self, peer_id: str, external_uuid: str) -> bool:
        account = await self.find_linked_account(peer_id, external_uuid)
        if account is None:
            return False
        return await self._delete_account_items(account)

    async def delete_linked_account_by_user(
        self, peer_id: str, platform_user_id: str
    ) -> LinkedAccount | None:
        account = await self.find_linked_account_by_user(peer_id, platform_user_id)
        if account is None:
            return None
        if not await self._delete_account_items(account):
            return None
        return account

    # ----- Pending verifications -----
    async def find_pending_verification(
        self, peer_id: str, external_uuid: str, code: str
    ) -> PendingVerification | None:
        item = await self._get(PendingVerification.key(peer_id, external_uuid))
        if not item:
            return None
        pending = PendingVerification.from_item(item)
        if not hmac.compare_digest(pending.code.encode(), str(code).encode()):
            return None
        if pending.is_expired(time.time()):
            log.info("Ignoring expired verification for %s on %s", external_uuid, peer_id)
            return None
        return pending

    async def insert_pending_verification(self, pending: PendingVerification) -> None:
        """Store ``pending``, replacing any older attempt for the same player."""
        await self._call("put_item", Item=pending.to_item())

    async def delete_pending_verification(self, pending: PendingVerification) -> bool:
        """Consume ``pending``; False when it was already consumed or replaced."""
        try:
            await self._call(
                "delete_item",
                Key=PendingVerification.key(pending.peer_id, pending.external_uuid),
                ConditionExpression="code = :code",
                ExpressionAttributeValues={":code": pending.code},
            )
        except ClientError:
            return False
        return True


__all__ = ["AccountStore", "generate_token"]
