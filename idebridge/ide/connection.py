"""Per-socket connection state machine.

A connection starts in ``READING`` and is routed by its first complete HTTP
message:

    READING -> STREAMING            (GET: long-lived SSE stream)
    READING -> REQUEST -> CLOSED    (POST: one JSON-RPC message)

Any protocol error short-circuits to ``CLOSED``. Every transition happens
inside an event-loop callback, so no locking is needed.
"""

import asyncio
import inspect
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from idebridge.ide.errors import (
    BridgeError,
    CloseReason,
    EncodeError,
    InvalidJsonBodyError,
    MalformedRequestError,
    ProtocolViolationError,
    UnsupportedMethodError,
    UnsupportedPathError,
    classify_disconnect,
)
from idebridge.ide.http import HttpDecoder, HttpMessage
from idebridge.ide.protocol import KEEPALIVE_FRAME, RequestMethod, encode_sse

log = structlog.get_logger()

DEFAULT_PATH = "/mcp"
DEFAULT_KEEPALIVE_INTERVAL = 30.0

STREAM_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: text/event-stream\r\n"
    b"Cache-Control: no-cache\r\n"
    b"Connection: keep-alive\r\n"
    b"\r\n"
)

STATUS_OK = "200 OK"
STATUS_ACCEPTED = "202 Accepted"


class ConnectionState(str, Enum):
    """Lifecycle phase of a connection."""

    READING = "reading"
    STREAMING = "streaming"
    REQUEST = "request"
    CLOSED = "closed"


RequestCallback = Callable[
    ["Connection", dict[str, Any]], Union[None, Awaitable[Any]]
]
CloseCallback = Callable[["Connection"], None]


def request_response_head(status: str) -> bytes:
    """Response head written before a POST is handed to the handler."""
    return (
        f"HTTP/1.1 {status}\r\n"
        "Connection: close\r\n"
        "Content-Type: text/event-stream\r\n"
        "\r\n"
    ).encode("ascii")


class Connection(asyncio.Protocol):
    """One accepted socket speaking the bridge's HTTP subset."""

    def __init__(
        self,
        connection_id: int,
        on_request: RequestCallback,
        on_close: Optional[CloseCallback] = None,
        path: str = DEFAULT_PATH,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize connection.

        Args:
            connection_id: Identifier assigned by the server
            on_request: Called with ``(connection, message)`` for a POST body
            on_close: Called exactly once when the connection closes
            path: The only request target accepted
            keepalive_interval: Seconds between keep-alive checks on streams
            loop: Event loop for timers (defaults to the running loop)
        """
        self.id = connection_id
        self.path = path
        self.keepalive_interval = keepalive_interval
        self.state = ConnectionState.READING
        self.close_reason: Optional[CloseReason] = None
        self.transport: Optional[asyncio.Transport] = None
        self.last_read_time = 0.0
        self.last_write_time = 0.0

        self._loop = loop or asyncio.get_running_loop()
        self._on_request: Optional[RequestCallback] = on_request
        self._on_close: Optional[CloseCallback] = on_close
        self._decoder = HttpDecoder()
        self._keepalive: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[asyncio.Future] = None

    def __repr__(self) -> str:
        return f"<Connection c-{self.id} {self.state.value}>"

    @property
    def request_processed(self) -> bool:
        """True once the first message has been routed (or the socket closed)."""
        return self.state is not ConnectionState.READING

    @property
    def is_stream(self) -> bool:
        """True while this is an open SSE stream."""
        return self.state is ConnectionState.STREAMING

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    # asyncio.Protocol callbacks
    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]
        self.last_read_time = self._loop.time()
        log.debug(
            "connection_opened",
            connection_id=self.id,
            peer=transport.get_extra_info("peername"),
        )

    def data_received(self, data: bytes) -> None:
        if self.is_closed:
            return
        self.last_read_time = self._loop.time()

        # Streams expect nothing but transport-level EOF from the peer
        if self.is_stream:
            log.debug("stream_data_ignored", connection_id=self.id, size=len(data))
            return

        message = self._decoder.feed(data)
        if message is None:
            log.debug("http_message_incomplete", connection_id=self.id, buffered=len(self._decoder.pending))
            return

        try:
            if self.state is ConnectionState.REQUEST:
                raise ProtocolViolationError("received another request after response")
            self._route(message)
            if self.state is ConnectionState.REQUEST and self._decoder.next_message() is not None:
                raise ProtocolViolationError("pipelined request after response")
        except BridgeError as e:
            log.error(
                "connection_protocol_error",
                connection_id=self.id,
                reason=e.reason.value,
                error=str(e),
                detail=e.detail,
            )
            self.close(e.reason)

    def eof_received(self) -> Optional[bool]:
        # Keep the write side open while an async handler is still answering
        return self._pending is not None

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if self.is_closed:
            return
        reason = classify_disconnect(exc)
        if reason is CloseReason.EOF:
            log.info("client_disconnected", connection_id=self.id)
        else:
            log.error("connection_transport_error", connection_id=self.id, error=str(exc))
        self.close(reason)

    # Routing
    def _route(self, message: HttpMessage) -> None:
        if message.is_malformed:
            raise MalformedRequestError("malformed request line or framing")
        if message.path != self.path:
            raise UnsupportedPathError(
                f"invalid url {message.url}, only {self.path} supported"
            )

        if message.method == "GET":
            self._open_stream()
        elif message.method == "POST":
            self._handle_post(message)
        else:
            raise UnsupportedMethodError(
                f"invalid method {message.method}, only GET and POST supported"
            )

    def _open_stream(self) -> None:
        self._write(STREAM_RESPONSE)
        self.state = ConnectionState.STREAMING
        self._schedule_keepalive()
        log.info("stream_opened", connection_id=self.id)

    def _handle_post(self, message: HttpMessage) -> None:
        try:
            decoded = json.loads(message.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidJsonBodyError(
                "json decode error for message body", detail=str(e)
            ) from e
        if not isinstance(decoded, dict):
            raise InvalidJsonBodyError("message body is not a JSON object")

        method = decoded.get("method")
        status = STATUS_ACCEPTED if method == RequestMethod.INITIALIZED.value else STATUS_OK
        self._write(request_response_head(status))
        self.state = ConnectionState.REQUEST
        log.debug("request_received", connection_id=self.id, method=method, status=status)

        handler = self._on_request
        try:
            result = handler(self, decoded) if handler is not None else None
        except Exception as e:
            log.error(
                "request_handler_error",
                connection_id=self.id,
                method=method,
                error=str(e),
                exc_info=True,
            )
            self.close(CloseReason.HANDLER_ERROR)
            return

        if inspect.isawaitable(result):
            if self.is_closed:
                # Handler closed the connection itself; nothing left to await
                if inspect.iscoroutine(result):
                    result.close()
                return
            self._pending = asyncio.ensure_future(result)
            self._pending.add_done_callback(self._on_handler_done)
        else:
            # transport.close() flushes buffered writes before the socket goes
            self.close(CloseReason.COMPLETED)

    def _on_handler_done(self, future: asyncio.Future) -> None:
        self._pending = None
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            log.error("request_handler_error", connection_id=self.id, error=str(exc))
            self.close(CloseReason.HANDLER_ERROR)
        else:
            self.close(CloseReason.COMPLETED)

    # Keep-alive
    def _schedule_keepalive(self) -> None:
        self._keepalive = self._loop.call_later(self.keepalive_interval, self._on_keepalive)

    def _on_keepalive(self) -> None:
        self._keepalive = None
        if not self.is_stream:
            return

        now = self._loop.time()
        if (
            now - self.last_read_time < self.keepalive_interval
            or now - self.last_write_time < self.keepalive_interval
        ):
            log.debug("keepalive_skipped", connection_id=self.id)
        elif self._write(KEEPALIVE_FRAME):
            log.debug("keepalive_sent", connection_id=self.id)

        self._schedule_keepalive()

    # Outbound
    def _write(self, data: bytes) -> bool:
        if self.transport is None or self.transport.is_closing():
            return False
        self.transport.write(data)
        return True

    def send(self, message: dict[str, Any]) -> bool:
        """Send a JSON-RPC message as an SSE data frame.

        Encoding failures drop this send only; the connection stays open.

        Args:
            message: JSON-serializable message

        Returns:
            True if the frame was handed to the transport
        """
        if self.state in (ConnectionState.READING, ConnectionState.CLOSED):
            log.debug("send_skipped", connection_id=self.id, state=self.state.value)
            return False

        try:
            frame = encode_sse(message)
        except EncodeError as e:
            log.error("message_encode_failed", connection_id=self.id, error=str(e))
            return False

        if not self._write(frame):
            log.warning("send_on_closing_transport", connection_id=self.id)
            return False
        self.last_write_time = self._loop.time()
        log.debug("message_sent", connection_id=self.id, size=len(frame))
        return True

    def close(self, reason: CloseReason = CloseReason.CLOSED_BY_OWNER) -> None:
        """Close the connection. Safe to call more than once.

        Args:
            reason: Why the connection is being closed
        """
        if self.is_closed:
            return
        previous = self.state
        self.state = ConnectionState.CLOSED
        self.close_reason = reason
        log.info(
            "connection_closed",
            connection_id=self.id,
            reason=reason.value,
            previous_state=previous.value,
        )

        if self._keepalive is not None:
            self._keepalive.cancel()
            self._keepalive = None
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

        if self.transport is not None and not self.transport.is_closing():
            self.transport.close()
        self.transport = None

        on_close = self._on_close
        self._on_close = None
        self._on_request = None
        if on_close is not None:
            try:
                on_close(self)
            except Exception as e:
                log.error("close_callback_error", connection_id=self.id, error=str(e))
