"""Bridge Server Implementation.

Loopback HTTP/SSE server that carries JSON-RPC between the editor and
command-line agents. GET opens a notification stream, POST carries one
request. The embedding application supplies the request handler and owns
the server's lifetime.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Optional

import structlog

from idebridge.ide.connection import (
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_PATH,
    CloseCallback,
    Connection,
    RequestCallback,
)
from idebridge.ide.errors import CloseReason

if TYPE_CHECKING:
    from idebridge.config import BridgeConfig

log = structlog.get_logger()

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_BACKLOG = 64


class BridgeServer:
    """Accepts agent connections and pushes notifications to streams.

    Connections are keyed by a monotonically increasing id that is never
    reused, so the newest stream is the one with the highest id.
    """

    def __init__(
        self,
        on_request: RequestCallback,
        on_close: Optional[CloseCallback] = None,
        path: str = DEFAULT_PATH,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        backlog: int = DEFAULT_BACKLOG,
        host: str = LOOPBACK_HOST,
    ):
        """Initialize bridge server.

        Args:
            on_request: Called with ``(connection, message)`` for each POST
            on_close: Called with the connection whenever one closes
            path: Request target served (all others are rejected)
            keepalive_interval: Seconds between keep-alive checks on streams
            backlog: Pending connection queue length
            host: Bind address; loopback unless you know better
        """
        self.on_request = on_request
        self.on_close = on_close
        self.path = path
        self.keepalive_interval = keepalive_interval
        self.backlog = backlog
        self.host = host
        self._connections: dict[int, Connection] = {}
        self._next_id = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._port: Optional[int] = None

    @classmethod
    def from_config(
        cls,
        config: "BridgeConfig",
        on_request: RequestCallback,
        on_close: Optional[CloseCallback] = None,
    ) -> "BridgeServer":
        """Create a server from loaded configuration."""
        return cls(
            on_request=on_request,
            on_close=on_close,
            path=config.path,
            keepalive_interval=config.keepalive_interval,
            backlog=config.backlog,
        )

    @property
    def port(self) -> Optional[int]:
        """Bound port, or None before ``start``."""
        return self._port

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def connections(self) -> dict[int, Connection]:
        """Snapshot of open connections keyed by id."""
        return dict(self._connections)

    async def start(self, port: int = 0) -> int:
        """Bind and start accepting connections.

        Args:
            port: Port to bind; 0 picks an ephemeral port

        Returns:
            The bound port
        """
        if self._server is not None:
            raise RuntimeError("Bridge server already started")

        loop = asyncio.get_running_loop()
        self._server = await loop.create_server(
            self._accept, host=self.host, port=port, backlog=self.backlog
        )
        self._port = self._server.sockets[0].getsockname()[1]
        log.info("bridge_server_listening", host=self.host, port=self._port, path=self.path)
        return self._port

    def _accept(self) -> Connection:
        connection_id = self._next_id
        self._next_id += 1
        connection = Connection(
            connection_id,
            on_request=self.on_request,
            on_close=self._connection_closed,
            path=self.path,
            keepalive_interval=self.keepalive_interval,
        )
        self._connections[connection_id] = connection
        log.info("connection_accepted", connection_id=connection_id)
        return connection

    def _connection_closed(self, connection: Connection) -> None:
        self._connections.pop(connection.id, None)
        if self.on_close is not None:
            self.on_close(connection)

    def stream_connections(self) -> list[Connection]:
        """Open streaming connections, oldest first."""
        return [
            self._connections[cid]
            for cid in sorted(self._connections)
            if self._connections[cid].is_stream
        ]

    def broadcast_to_streams(self, message: dict[str, Any]) -> int:
        """Send a message to every streaming connection.

        Args:
            message: JSON-RPC message

        Returns:
            Number of streams the message was written to
        """
        delivered = 0
        for connection in self.stream_connections():
            if connection.send(message):
                delivered += 1
        log.debug("broadcast_sent", method=message.get("method"), delivered=delivered)
        return delivered

    def send_to_last_stream(self, message: dict[str, Any]) -> bool:
        """Send a message to the most recently accepted streaming connection.

        Returns:
            False if there is no stream to send to
        """
        streams = self.stream_connections()
        if not streams:
            log.debug("no_stream_for_send", method=message.get("method"))
            return False
        return streams[-1].send(message)

    def shutdown(self, final_message: Optional[dict[str, Any]] = None) -> None:
        """Close every connection, then the listening socket.

        Safe to call more than once.

        Args:
            final_message: Optional message broadcast to streams before they close
        """
        if final_message is not None:
            self.broadcast_to_streams(final_message)

        for connection in list(self._connections.values()):
            connection.close(CloseReason.SHUTDOWN)

        if self._server is not None and self._server.is_serving():
            self._server.close()
            log.info("bridge_server_closed", port=self._port)

    async def wait_closed(self) -> None:
        """Wait until the listening socket is fully closed."""
        if self._server is not None:
            await self._server.wait_closed()
