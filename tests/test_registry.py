import pytest
import pytest_asyncio

from relay_hub.errors import AuthError
from relay_hub.registry import SessionRegistry

from .conftest import PEER_ID, FakeConnection, make_options


@pytest_asyncio.fixture
async def registered(store):
    await store.register_peer_identity(PEER_ID, token="secret")
    return store


@pytest.fixture
def registry(store, session_factory):
    return SessionRegistry(store, session_factory)


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_valid_token(self, registered, registry):
        session = await registry.authenticate(make_options(), FakeConnection())

        assert registry.lookup(PEER_ID) is session
        assert registry.lookup(int(PEER_ID)) is session
        assert PEER_ID in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_missing_token(self, registered, registry):
        with pytest.raises(AuthError):
            await registry.authenticate(make_options(token=None), FakeConnection())

    @pytest.mark.asyncio
    async def test_wrong_token(self, registered, registry):
        with pytest.raises(AuthError):
            await registry.authenticate(make_options(token="guess"), FakeConnection())
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_unregistered_peer(self, registry):
        with pytest.raises(AuthError):
            await registry.authenticate(make_options(), FakeConnection())

    @pytest.mark.asyncio
    async def test_connection_closed_during_auth(self, registered, registry):
        connection = FakeConnection()
        connection.closed = True

        with pytest.raises(AuthError):
            await registry.authenticate(make_options(), connection)
        assert registry.lookup(PEER_ID) is None

    @pytest.mark.asyncio
    async def test_reconnect_supersedes_previous(self, registered, registry):
        first_connection = FakeConnection()
        first = await registry.authenticate(make_options(), first_connection)
        second = await registry.authenticate(make_options(), FakeConnection())

        assert registry.lookup(PEER_ID) is second
        assert first.closed is True
        assert first_connection.closed is True
        assert len(registry) == 1


    @pytest.mark.asyncio
    async def test_previous_session_closed_before_install(self, registered, registry):
        first = await registry.authenticate(make_options(), FakeConnection())
        seen_during_close = []
        close = first.close

        async def recording_close(reason="closed"):
            seen_during_close.append(registry.lookup(PEER_ID))
            await close(reason=reason)

        first.close = recording_close
        second = await registry.authenticate(make_options(), FakeConnection())

        assert seen_during_close == [None]
        assert registry.lookup(PEER_ID) is second


class TestUnregister:
    @pytest.mark.asyncio
    async def test_stale_session_does_not_evict_live_one(self, registered, registry):
        first = await registry.authenticate(make_options(), FakeConnection())
        second = await registry.authenticate(make_options(), FakeConnection())

        assert registry.unregister(first) is False
        assert registry.lookup(PEER_ID) is second
        assert registry.unregister(second) is True
        assert registry.lookup(PEER_ID) is None

    @pytest.mark.asyncio
    async def test_close_all(self, registered, registry):
        session = await registry.authenticate(make_options(), FakeConnection())

        await registry.close_all()

        assert session.closed is True
        assert registry.sessions() == []

    def test_lookup_none(self, registry):
        assert registry.lookup(None) is None
