"""Bridge Protocol Definitions.

JSON-RPC 2.0 messages exchanged between the editor and a command-line agent:
- Requests and notifications arrive in POST bodies
- Responses go back over the same POST connection as SSE data frames
- Server notifications are pushed to every GET stream
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from idebridge.ide.errors import EncodeError

PROTOCOL_VERSION = "2025-06-18"
SERVER_NAME = "idebridge"
SERVER_VERSION = "0.1.0"


class RequestMethod(str, Enum):
    """Methods an agent may call."""

    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    PING = "ping"


class NotificationMethod(str, Enum):
    """Notifications the editor pushes to agents."""

    CONTEXT_UPDATE = "ide/contextUpdate"
    DIFF_ACCEPTED = "ide/diffAccepted"
    DIFF_CLOSED = "ide/diffClosed"


class ToolName(str, Enum):
    """Tools exposed through ``tools/call``."""

    OPEN_DIFF = "openDiff"
    CLOSE_DIFF = "closeDiff"


class DiffOutcome(str, Enum):
    """How a diff view was resolved."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CLOSED = "closed"


# Standard JSON-RPC error codes
class ErrorCode:
    """Standard JSON-RPC error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass
class Position:
    """Cursor position in a text document (1-indexed, as editors report it)."""

    line: int
    character: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"line": self.line, "character": self.character}


@dataclass
class JsonRpcRequest:
    """JSON-RPC request or notification received from an agent."""

    method: str
    params: Optional[dict[str, Any]] = None
    id: Union[str, int, None] = None

    @property
    def is_notification(self) -> bool:
        """Notifications carry no id and expect no answer."""
        return self.id is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JsonRpcRequest":
        """Parse from JSON-RPC format.

        Raises:
            ValueError: If ``method`` is missing or ``params`` is not an object
        """
        method = data.get("method")
        if not isinstance(method, str):
            raise ValueError("Missing 'method' field")
        params = data.get("params")
        if params is not None and not isinstance(params, dict):
            raise ValueError("'params' must be an object")
        return cls(method=method, params=params, id=data.get("id"))


@dataclass
class JsonRpcResponse:
    """JSON-RPC response message."""

    id: Union[str, int, None]
    result: Optional[Any] = None
    error_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        response: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self.id,
        }
        if self.error_data is not None:
            response["error"] = self.error_data
        else:
            response["result"] = self.result
        return response

    @classmethod
    def success(cls, id: Union[str, int, None], result: Any) -> "JsonRpcResponse":
        """Create a success response."""
        return cls(id=id, result=result)

    @classmethod
    def error(
        cls,
        id: Union[str, int, None],
        code: int,
        message: str,
        data: Any = None,
    ) -> "JsonRpcResponse":
        """Create an error response."""
        error_obj: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error_obj["data"] = data
        return cls(id=id, error_data=error_obj)


@dataclass
class JsonRpcNotification:
    """JSON-RPC notification pushed to agents (no response expected)."""

    method: str
    params: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        return result


def encode_sse(message: dict[str, Any]) -> bytes:
    """Frame a message as an SSE ``data:`` event with compact JSON.

    Raises:
        EncodeError: If the message is not JSON serializable
    """
    try:
        payload = json.dumps(message, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise EncodeError(f"cannot encode message: {e}") from e
    return f"data: {payload}\n\n".encode("utf-8")


KEEPALIVE_FRAME = b":keep-alive\n\n"


@dataclass
class ServerCapabilities:
    """Capabilities advertised in the ``initialize`` result."""

    tools_list_changed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"tools": {"listChanged": self.tools_list_changed}}


@dataclass
class InitializeResult:
    """Result for initialize request."""

    capabilities: ServerCapabilities = field(default_factory=ServerCapabilities)
    server_info: dict[str, str] = field(
        default_factory=lambda: {"name": SERVER_NAME, "version": SERVER_VERSION}
    )
    protocol_version: str = PROTOCOL_VERSION
    instructions: str = (
        "This is the idebridge editor companion. It can open and close diff "
        "views and sends context updates via the ide/contextUpdate notification."
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities.to_dict(),
            "serverInfo": self.server_info,
            "instructions": self.instructions,
        }


@dataclass
class ToolDefinition:
    """A tool listed by ``tools/list``."""

    name: str
    description: str
    properties: dict[str, dict[str, Any]]
    required: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.properties,
                "required": self.required,
            },
        }


TOOLS = [
    ToolDefinition(
        name=ToolName.OPEN_DIFF.value,
        description="Open a diff view",
        properties={
            "filePath": {"type": "string"},
            "newContent": {"type": "string"},
        },
        required=["filePath", "newContent"],
    ),
    ToolDefinition(
        name=ToolName.CLOSE_DIFF.value,
        description="Close a diff view",
        properties={"filePath": {"type": "string"}},
        required=["filePath"],
    ),
]


# Tool argument types
@dataclass
class OpenDiffParams:
    """Arguments for ``openDiff``."""

    file_path: str
    new_content: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OpenDiffParams":
        """Parse from dictionary."""
        file_path = data.get("filePath")
        new_content = data.get("newContent")
        if not isinstance(file_path, str) or not file_path:
            raise ValueError("filePath is required")
        if not isinstance(new_content, str):
            raise ValueError("newContent is required")
        return cls(file_path=file_path, new_content=new_content)


@dataclass
class CloseDiffParams:
    """Arguments for ``closeDiff``."""

    file_path: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CloseDiffParams":
        """Parse from dictionary."""
        file_path = data.get("filePath")
        if not isinstance(file_path, str) or not file_path:
            raise ValueError("filePath is required")
        return cls(file_path=file_path)


@dataclass
class DiffResultParams:
    """Parameters for ``ide/diffAccepted`` and ``ide/diffClosed``."""

    file_path: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"filePath": self.file_path, "content": self.content}
