from __future__ import annotations

import threading
from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError

from relay_hub.correlator import RequestCorrelator
from relay_hub.models import LinkedAccount, PendingVerification
from relay_hub.policy import parse_options
from relay_hub.session import PeerSession
from relay_hub.storage import AccountStore
from relay_hub.verification import VerificationWorkflow

PEER_ID = "1000"
BOT_USER_ID = "999"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeTable:
    """In-memory stand-in for the DynamoDB table resource."""

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], dict[str, object]] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def _check_failure(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise _client_error("InternalServerError", operation)

    def _condition_holds(self, key, condition, values) -> bool:
        existing = self.items.get(key)
        if condition is None:
            return True
        if condition == "attribute_not_exists(pk)":
            return existing is None
        if condition == "attribute_exists(pk)":
            return existing is not None
        if condition == "code = :code":
            return existing is not None and existing.get("code") == values[":code"]
        raise AssertionError(f"Unsupported condition {condition!r}")

    def get_item(self, *, Key):
        self._check_failure("get_item")
        with self._lock:
            item = self.items.get((Key["pk"], Key["sk"]))
            return {"Item": dict(item)} if item else {}

    def put_item(self, *, Item, ConditionExpression=None):
        self._check_failure("put_item")
        key = (Item["pk"], Item["sk"])
        with self._lock:
            if not self._condition_holds(key, ConditionExpression, {}):
                raise _client_error("ConditionalCheckFailedException", "PutItem")
            self.items[key] = dict(Item)

    def delete_item(
        self, *, Key, ConditionExpression=None, ExpressionAttributeValues=None
    ):
        self._check_failure("delete_item")
        key = (Key["pk"], Key["sk"])
        with self._lock:
            if not self._condition_holds(
                key, ConditionExpression, ExpressionAttributeValues or {}
            ):
                raise _client_error("ConditionalCheckFailedException", "DeleteItem")
            self.items.pop(key, None)

    def query(self, *, KeyConditionExpression, **_kwargs):
        self._check_failure("query")
        pk_value = None
        sk_prefix = ""
        for condition in KeyConditionExpression._values:  # type: ignore[attr-defined]
            key, value = condition._values  # type: ignore[attr-defined]
            if key.name == "pk":
                pk_value = value
            elif key.name == "sk":
                sk_prefix = value
        with self._lock:
            items = [
                dict(self.items[key])
                for key in sorted(self.items)
                if key[0] == pk_value and key[1].startswith(sk_prefix)
            ]
        return {"Items": items, "Count": len(items)}

    def scan(self, *, FilterExpression, **_kwargs):
        self._check_failure("scan")
        attribute, value = FilterExpression._values  # type: ignore[attr-defined]
        with self._lock:
            items = [
                dict(item)
                for item in self.items.values()
                if item.get(attribute.name) == value
            ]
        return {"Items": items, "Count": len(items)}


class FakeConnection:
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []
        self.closed = False

    async def send(self, event, data):
        if self.closed:
            raise ConnectionResetError("closed")
        self.sent.append((event, data))

    async def close(self):
        self.closed = True

    def events(self, name: str) -> list[dict]:
        return [data for event, data in self.sent if event == name]


def make_options(**overrides):
    data = {
        "serverID": PEER_ID,
        "token": "secret",
        "defaultRole": "2000",
        "enforceNickname": False,
        "channels": [
            {
                "channelID": "10",
                "webhookID": "501",
                "webhookToken": "hook-token",
                "chat": True,
                "info": True,
                "requireVerification": False,
                "adminCommands": True,
            },
            {
                "channelID": "11",
                "webhookID": "502",
                "webhookToken": "hook-token-2",
                "chat": False,
                "info": False,
                "requireVerification": True,
                "adminCommands": False,
            },
        ],
    }
    data.update(overrides)
    return parse_options(data)


def make_account(
    *,
    user_id: str = "42",
    username: str = "Steve",
    uuid: str = "uuid-steve",
    peer_id: str = PEER_ID,
) -> LinkedAccount:
    return LinkedAccount(
        platform_user_id=user_id,
        platform_username=f"discord-{username.lower()}",
        peer_id=peer_id,
        external_username=username,
        external_uuid=uuid,
        role="2000",
    )


def make_pending(
    *, code: str = "abc123", uuid: str = "uuid-steve", expires_at: int = 0
) -> PendingVerification:
    return PendingVerification(
        platform_user_id="42",
        platform_username="discord-steve",
        peer_id=PEER_ID,
        channel_id="10",
        external_uuid=uuid,
        code=code,
        expires_at=expires_at,
    )


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def store(table) -> AccountStore:
    return AccountStore(table)


@pytest.fixture
def platform() -> AsyncMock:
    mock = AsyncMock()
    mock.user_id = BOT_USER_ID
    mock.send_message.return_value = {"id": "555", "channel_id": "10"}
    mock.send_direct_message.return_value = {"id": "556", "channel_id": "77"}
    return mock


@pytest.fixture
def workflow(store, platform) -> VerificationWorkflow:
    return VerificationWorkflow(store, platform, ttl_seconds=900)


@pytest.fixture
def correlator(store, platform, workflow) -> RequestCorrelator:
    return RequestCorrelator(store, platform, workflow)


@pytest.fixture
def session_factory(store, platform, workflow, correlator):
    def factory(options, connection):
        return PeerSession(
            options,
            connection,
            store=store,
            platform=platform,
            workflow=workflow,
            correlator=correlator,
        )

    return factory


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def session(session_factory, connection) -> PeerSession:
    return session_factory(make_options(), connection)
