"""idebridge editor/agent transport.

Provides the loopback HTTP/SSE server that carries JSON-RPC between an editor
and command-line agents.

Features:
- POST /mcp carries one JSON-RPC request or notification
- GET /mcp opens a Server-Sent-Events stream for pushed notifications
- Keep-alive comments on idle streams
- Discovery files so agents can find the server for their workspace

Usage:
    idebridge serve              # Start the bridge for the current directory
    idebridge status             # Show the running bridge for this workspace
"""

from idebridge.ide.connection import Connection, ConnectionState
from idebridge.ide.errors import BridgeError, CloseReason
from idebridge.ide.handler import CompanionHandler
from idebridge.ide.protocol import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
)
from idebridge.ide.server import BridgeServer

__all__ = [
    "BridgeError",
    "BridgeServer",
    "CloseReason",
    "CompanionHandler",
    "Connection",
    "ConnectionState",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
]
