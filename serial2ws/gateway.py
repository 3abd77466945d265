"""WebSocket side of the relay: token-gated client connections and fan-out broadcast."""

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional, Set, Union
from urllib.parse import parse_qs, urlsplit

from websockets.asyncio.server import broadcast, serve
from websockets.exceptions import ConnectionClosedError
from websockets.protocol import State

from serial2ws.poller import POLL_COMMAND

logger = logging.getLogger("serial2ws")


def client_address(websocket) -> str:
    """Remote IP of a connection, with the IPv4-mapped IPv6 prefix removed."""
    remote = getattr(websocket, "remote_address", None)
    if not remote:
        return "?"
    ip = str(remote[0])
    if ip.startswith("::ffff:"):
        ip = ip[len("::ffff:"):]
    return ip


def request_token(path: str) -> Optional[str]:
    """Return the ``token`` query parameter of a request path, if any."""
    values = parse_qs(urlsplit(path).query).get("token")
    return values[0] if values else None


@dataclass(eq=False)
class ClientConnection:
    """One accepted WebSocket; ``authenticated`` is decided once, at connect."""

    websocket: Any
    address: str
    authenticated: bool = False

    @property
    def is_open(self) -> bool:
        return self.websocket.state is State.OPEN

    async def close(self):
        await self.websocket.close()


class Broadcaster:
    """Holds the active client set and fans messages out to it."""

    def __init__(self):
        self.clients: Set[ClientConnection] = set()

    def add(self, conn: ClientConnection):
        self.clients.add(conn)

    def discard(self, conn: ClientConnection):
        self.clients.discard(conn)

    def broadcast(self, message: str, exclude: Optional[ClientConnection] = None) -> int:
        """Send ``message`` to every open, authenticated client except ``exclude``.

        A failing client is logged by websockets and does not stop delivery
        to the others. Returns the number of clients targeted.
        """
        targets = [
            conn.websocket
            for conn in list(self.clients)
            if conn is not exclude and conn.authenticated and conn.is_open
        ]
        if targets:
            broadcast(targets, message)
        return len(targets)


class ConnectionGateway:
    """Accepts WebSocket clients, checks their token and feeds their messages to the link."""

    def __init__(self, link, broadcaster: Broadcaster, token: str, host: str, port: int):
        self.host = host
        self.port = port
        self._link = link
        self._broadcaster = broadcaster
        self._token = token.encode("utf-8")
        self._server = None

    @property
    def serving(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port, useful when ``port`` is 0."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self):
        if self._server is not None:
            return
        self._server = await serve(self._handle, self.host, self.port)
        logger.info("WebSocket server started on %s:%s", self.host, self.bound_port)

    async def stop(self):
        server, self._server = self._server, None
        if server is not None:
            server.close()
            await server.wait_closed()
            logger.info("WebSocket server stopped")

    async def on_connect(self, conn: ClientConnection, token: Optional[str]) -> bool:
        """Authenticate a new connection; close it right away on a bad token."""
        logger.info("WebSocket client connected from IP: %s", conn.address)
        if not self._token_matches(token):
            logger.warning("Invalid token from IP: %s", conn.address)
            await conn.close()
            return False

        conn.authenticated = True
        self._broadcaster.add(conn)
        if self._link.connected:
            self._link.write(POLL_COMMAND)
        return True

    def on_message(self, conn: ClientConnection, payload: Union[str, bytes]):
        """Forward a client payload to the device; dropped (not queued) while the link is down."""
        logger.debug("WS->COM | %s: %r", conn.address, payload)
        self._link.write(payload)

    def on_disconnect(self, conn: ClientConnection):
        self._broadcaster.discard(conn)
        logger.debug("WebSocket client from %s disconnected", conn.address)

    def _token_matches(self, token: Optional[str]) -> bool:
        if token is None:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._token)

    async def _handle(self, websocket):
        conn = ClientConnection(websocket, client_address(websocket))
        if not await self.on_connect(conn, request_token(websocket.request.path)):
            return
        try:
            async for message in websocket:
                self.on_message(conn, message)
        except ConnectionClosedError as e:
            logger.debug("WebSocket client from %s dropped: %s", conn.address, e)
        finally:
            self.on_disconnect(conn)
