"""Line-oriented operator console (``register <peerID>`` and ``exit``)."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Final

from .errors import UNEXPECTED_ERRORS, DuplicateError

if TYPE_CHECKING:
    from .storage import AccountStore

log: Final = logging.getLogger("relay-hub")

REGISTER_USAGE: Final[str] = "register <peerID>"
INVALID_COMMAND: Final[str] = "Invalid command!"


class OperatorConsole:
    def __init__(
        self,
        store: AccountStore,
        on_exit: Callable[[], Awaitable[None]],
        *,
        output: Callable[[str], None] = print,
    ) -> None:
        self._store = store
        self._on_exit = on_exit
        self._output = output
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def handle_line(self, line: str) -> None:
        parts = line.strip().split()
        if not parts:
            return
        command, args = parts[0].lower(), parts[1:]

        if command == "register":
            await self._register(args)
        elif command == "exit":
            self._stopped = True
            self._output("Shutting down...")
            await self._on_exit()
        else:
            self._output(INVALID_COMMAND)

    async def _register(self, args: list[str]) -> None:
        if len(args) != 1:
            self._output(REGISTER_USAGE)
            return
        peer_id = args[0]
        try:
            identity = await self._store.register_peer_identity(peer_id)
        except DuplicateError:
            self._output("That server is already registered!")
            return
        except UNEXPECTED_ERRORS as exc:
            log.exception("Registering %s failed: %s", peer_id, exc)
            self._output(f"Could not register '{peer_id}', see logs.")
            return
        self._output(f"The token for server '{peer_id}' is '{identity.token}'")

    async def run(self, stream=None) -> None:
        """Read commands until ``exit`` or end of input.

        Lines are read on a daemon thread so a blocked read never keeps the
        process alive after shutdown.
        """
        stream = stream if stream is not None else sys.stdin
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue[str] = asyncio.Queue()

        def reader() -> None:
            for line in iter(stream.readline, ""):
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, "")

        threading.Thread(target=reader, name="operator-console", daemon=True).start()
        while not self._stopped:
            line = await lines.get()
            if not line:
                log.info("Console input closed")
                return
            await self.handle_line(line)


__all__ = ["OperatorConsole"]
