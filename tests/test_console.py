import io
from unittest.mock import AsyncMock

import pytest

from relay_hub.console import INVALID_COMMAND, REGISTER_USAGE, OperatorConsole

from .conftest import PEER_ID


@pytest.fixture
def output():
    return []


@pytest.fixture
def on_exit():
    return AsyncMock()


@pytest.fixture
def console(store, on_exit, output):
    return OperatorConsole(store, on_exit, output=output.append)


class TestOperatorConsole:
    """Test the operator commands."""

    @pytest.mark.asyncio
    async def test_register(self, console, store, output):
        """Should print the new token once."""
        await console.handle_line(f"register {PEER_ID}\n")

        identity = await store.find_peer_identity_by_id(PEER_ID)
        assert output == [f"The token for server '{PEER_ID}' is '{identity.token}'"]

    @pytest.mark.asyncio
    async def test_register_twice(self, console, output):
        """Should refuse to overwrite an existing token."""
        await console.handle_line(f"register {PEER_ID}")
        await console.handle_line(f"register {PEER_ID}")

        assert output[-1] == "That server is already registered!"

    @pytest.mark.asyncio
    async def test_register_usage(self, console, output):
        await console.handle_line("register")
        assert output == [REGISTER_USAGE]

    @pytest.mark.asyncio
    async def test_register_store_failure(self, console, table, output):
        table.failing.add("put_item")

        await console.handle_line(f"register {PEER_ID}")

        assert output == [f"Could not register '{PEER_ID}', see logs."]

    @pytest.mark.asyncio
    async def test_invalid_and_blank(self, console, output):
        await console.handle_line("   ")
        await console.handle_line("launch rockets")
        assert output == [INVALID_COMMAND]

    @pytest.mark.asyncio
    async def test_exit(self, console, on_exit):
        await console.handle_line("EXIT")

        assert console.stopped is True
        on_exit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_reads_stream_until_exit(self, console, on_exit, output):
        stream = io.StringIO(f"register {PEER_ID}\nexit\nregister 2\n")

        await console.run(stream)

        assert output[0].startswith(f"The token for server '{PEER_ID}'")
        assert output[-1] == "Shutting down..."
        on_exit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_stops_at_end_of_input(self, console, on_exit):
        await console.run(io.StringIO("bogus\n"))

        on_exit.assert_not_awaited()
        assert console.stopped is False
