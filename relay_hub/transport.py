"""WebSocket endpoint the game servers connect to.

Each text frame carries one event: ``{"event": <name>, "data": <object>}``.
The first frame on a connection must be ``options``; the connection is closed
if it is anything else or if authentication fails.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Final

from aiohttp import WSMsgType, web

from .errors import UNEXPECTED_ERRORS, AuthError, ValidationError
from .policy import parse_options

if TYPE_CHECKING:
    from .registry import SessionRegistry
    from .session import PeerSession

log: Final = logging.getLogger("relay-hub")

OPTIONS_EVENT: Final[str] = "options"


def encode_frame(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data}, default=str)


def decode_frame(raw: str) -> tuple[str, Any]:
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Malformed frame: {exc}") from exc
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValidationError("Frame must be an object with an event name")
    return frame["event"], frame.get("data")


class WebSocketConnection:
    def __init__(self, ws: web.WebSocketResponse) -> None:
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, event: str, data: Any) -> None:
        await self._ws.send_str(encode_frame(event, data))

    async def close(self) -> None:
        await self._ws.close()


class PeerServer:
    def __init__(
        self,
        registry: SessionRegistry,
        *,
        path: str = "/socket",
        heartbeat: float | None = 30.0,
    ) -> None:
        self._registry = registry
        self._path = path
        self._heartbeat = heartbeat
        self._runner: web.AppRunner | None = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self._path, self.handle_socket)
        return app

    async def start(self, host: str, port: int) -> None:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        log.info("Listening for game servers on %s:%s%s", host, port, self._path)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def _authenticate(
        self, request: web.Request, event: str, data: Any, connection: WebSocketConnection
    ) -> PeerSession | None:
        if event != OPTIONS_EVENT:
            log.warning("%s: expected options, got %r", request.remote, event)
            return None
        try:
            options = parse_options(data)
            return await self._registry.authenticate(options, connection)
        except (AuthError, ValidationError) as exc:
            log.warning("%s: Failed authentication: %s", request.remote, exc)
        except UNEXPECTED_ERRORS as exc:
            log.exception("%s: authentication error: %s", request.remote, exc)
        return None

    async def handle_socket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self._heartbeat)
        await ws.prepare(request)
        connection = WebSocketConnection(ws)
        session: PeerSession | None = None

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    log.warning("Connection error from %s: %s", request.remote, ws.exception())
                    break
                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    event, data = decode_frame(msg.data)
                except ValidationError as exc:
                    log.warning("Dropping frame from %s: %s", request.remote, exc)
                    if session is None:
                        break
                    continue

                if session is None:
                    session = await self._authenticate(request, event, data, connection)
                    if session is None:
                        break
                    continue

                session.spawn(event, data)
        finally:
            if session is not None:
                self._registry.unregister(session)
                await session.close(reason="connection lost")
            if not ws.closed:
                await ws.close()
        return ws


__all__ = ["PeerServer", "WebSocketConnection", "decode_frame", "encode_frame"]
