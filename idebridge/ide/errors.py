"""Error taxonomy for the bridge transport.

Every error is local to the connection that produced it. The connection
turns these exceptions into a logged close with a matching ``CloseReason``;
nothing here ever propagates to the server or to sibling connections.
"""

import errno
from enum import Enum
from typing import Optional


class CloseReason(str, Enum):
    """Why a connection was closed."""

    COMPLETED = "completed"              # POST answered and flushed
    MALFORMED_REQUEST = "malformed_request"
    UNSUPPORTED_PATH = "unsupported_path"
    UNSUPPORTED_METHOD = "unsupported_method"
    INVALID_JSON = "invalid_json"
    PROTOCOL_VIOLATION = "protocol_violation"
    HANDLER_ERROR = "handler_error"
    CLOSED_BY_OWNER = "closed_by_owner"  # handler or embedding app
    EOF = "eof"
    TRANSPORT_ERROR = "transport_error"
    SHUTDOWN = "shutdown"


class BridgeError(Exception):
    """Base class for bridge transport errors."""

    reason: CloseReason = CloseReason.PROTOCOL_VIOLATION

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail


class MalformedRequestError(BridgeError):
    """The request line or a framing header could not be parsed."""

    reason = CloseReason.MALFORMED_REQUEST


class UnsupportedPathError(BridgeError):
    """The request targets a path other than the bridge endpoint."""

    reason = CloseReason.UNSUPPORTED_PATH


class UnsupportedMethodError(BridgeError):
    """The request used an HTTP method other than GET or POST."""

    reason = CloseReason.UNSUPPORTED_METHOD


class InvalidJsonBodyError(BridgeError):
    """A POST body is not a JSON-RPC object."""

    reason = CloseReason.INVALID_JSON


class ProtocolViolationError(BridgeError):
    """A message arrived on a connection that already handled its request."""

    reason = CloseReason.PROTOCOL_VIOLATION


class EncodeError(BridgeError):
    """An outbound message could not be serialized. Only the send is dropped."""


# Socket errors that just mean the peer went away
PEER_GONE_ERRNO = {
    errno.ECONNRESET,
    errno.EPIPE,
    errno.ECONNABORTED,
    errno.ESHUTDOWN,
}


def classify_disconnect(exc: Optional[BaseException]) -> CloseReason:
    """Map the exception passed to ``connection_lost`` to a close reason.

    Args:
        exc: ``None`` for a clean EOF, otherwise the transport error

    Returns:
        ``CloseReason.EOF`` for clean or peer-initiated disconnects,
        ``CloseReason.TRANSPORT_ERROR`` for anything else
    """
    if exc is None:
        return CloseReason.EOF
    if isinstance(exc, (ConnectionResetError, BrokenPipeError, ConnectionAbortedError)):
        return CloseReason.EOF
    if isinstance(exc, OSError) and exc.errno in PEER_GONE_ERRNO:
        return CloseReason.EOF
    return CloseReason.TRANSPORT_ERROR
