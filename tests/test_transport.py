import asyncio

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, test_utils

from relay_hub.errors import ValidationError
from relay_hub.registry import SessionRegistry
from relay_hub.transport import PeerServer, decode_frame, encode_frame

from .conftest import PEER_ID

OPTIONS = {"serverID": PEER_ID, "token": "secret", "channels": [{"channelID": "10"}]}
CLOSED_TYPES = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)


class TestFrames:
    def test_encode_decode(self):
        event, data = decode_frame(encode_frame("chat", {"message": "hi"}))
        assert event == "chat"
        assert data == {"message": "hi"}

    def test_missing_data_is_none(self):
        assert decode_frame('{"event": "info"}') == ("info", None)

    @pytest.mark.parametrize("raw", ["not json", "[]", '{"data": {}}', '{"event": 5}'])
    def test_malformed(self, raw):
        with pytest.raises(ValidationError):
            decode_frame(raw)


@pytest.fixture
def registry(store, session_factory):
    return SessionRegistry(store, session_factory)


@pytest_asyncio.fixture
async def client(store, registry):
    await store.register_peer_identity(PEER_ID, token="secret")
    server = PeerServer(registry, path="/socket", heartbeat=None)
    async with test_utils.TestClient(
        test_utils.TestServer(server.make_app())
    ) as test_client:
        yield test_client


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestPeerServer:
    @pytest.mark.asyncio
    async def test_authenticated_request_round_trip(self, client, registry):
        ws = await client.ws_connect("/socket")
        await ws.send_str(encode_frame("options", OPTIONS))
        await ws.send_str(encode_frame("request", {"type": "bogus", "id": 1}))

        frame = await ws.receive_json(timeout=5)

        assert frame["event"] == "callback"
        assert frame["data"]["id"] == 1
        assert frame["data"]["error"] is True
        assert registry.lookup(PEER_ID) is not None
        await ws.close()
        await wait_for(lambda: registry.lookup(PEER_ID) is None)

    @pytest.mark.asyncio
    async def test_invalid_token_closes(self, client, registry):
        ws = await client.ws_connect("/socket")
        await ws.send_str(encode_frame("options", {**OPTIONS, "token": "guess"}))

        msg = await ws.receive(timeout=5)

        assert msg.type in CLOSED_TYPES
        assert registry.lookup(PEER_ID) is None

    @pytest.mark.asyncio
    async def test_first_frame_must_be_options(self, client, registry):
        ws = await client.ws_connect("/socket")
        await ws.send_str(encode_frame("chat", {"message": "hi"}))

        msg = await ws.receive(timeout=5)

        assert msg.type in CLOSED_TYPES

    @pytest.mark.asyncio
    async def test_malformed_frame_after_auth_is_skipped(self, client):
        ws = await client.ws_connect("/socket")
        await ws.send_str(encode_frame("options", OPTIONS))
        await ws.send_str("garbage")
        await ws.send_str(encode_frame("getuser", {"req": "nobody"}))

        frame = await ws.receive_json(timeout=5)

        assert frame == {"event": "usercb", "data": {"req": "nobody", "res": []}}
        await ws.close()

    @pytest.mark.asyncio
    async def test_reconnect_closes_previous_socket(self, client, registry):
        first = await client.ws_connect("/socket")
        await first.send_str(encode_frame("options", OPTIONS))
        await wait_for(lambda: registry.lookup(PEER_ID) is not None)
        original = registry.lookup(PEER_ID)

        second = await client.ws_connect("/socket")
        await second.send_str(encode_frame("options", OPTIONS))
        await wait_for(lambda: registry.lookup(PEER_ID) is not original)

        msg = await first.receive(timeout=5)
        assert msg.type in CLOSED_TYPES
        assert registry.lookup(PEER_ID) is not None
        await second.close()
