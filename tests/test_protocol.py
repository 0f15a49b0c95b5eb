"""Tests for bridge protocol types."""

import pytest

from idebridge.ide.errors import EncodeError
from idebridge.ide.protocol import (
    KEEPALIVE_FRAME,
    PROTOCOL_VERSION,
    TOOLS,
    CloseDiffParams,
    DiffResultParams,
    ErrorCode,
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    NotificationMethod,
    OpenDiffParams,
    Position,
    RequestMethod,
    ServerCapabilities,
    encode_sse,
)


class TestJsonRpcRequest:
    """Tests for JsonRpcRequest class."""

    def test_to_dict(self):
        """Test conversion to JSON-RPC format."""
        request = JsonRpcRequest(method="initialize", params={"clientInfo": {}}, id=1)
        result = request.to_dict()

        assert result["jsonrpc"] == "2.0"
        assert result["method"] == "initialize"
        assert result["params"] == {"clientInfo": {}}
        assert result["id"] == 1

    def test_to_dict_no_params(self):
        """Test conversion without params."""
        result = JsonRpcRequest(method="ping", id=2).to_dict()

        assert "params" not in result
        assert result["id"] == 2

    def test_from_dict(self):
        """Test parsing from JSON-RPC format."""
        request = JsonRpcRequest.from_dict(
            {"jsonrpc": "2.0", "method": "tools/call", "params": {"name": "openDiff"}, "id": "a"}
        )

        assert request.method == "tools/call"
        assert request.params == {"name": "openDiff"}
        assert request.id == "a"
        assert request.is_notification is False

    def test_from_dict_notification(self):
        """Test that a message without id is a notification."""
        request = JsonRpcRequest.from_dict({"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert request.is_notification is True
        assert request.params is None

    def test_from_dict_missing_method(self):
        """Test that a message without method is rejected."""
        with pytest.raises(ValueError, match="method"):
            JsonRpcRequest.from_dict({"jsonrpc": "2.0", "id": 1})

    def test_from_dict_params_not_object(self):
        """Test that positional params are rejected."""
        with pytest.raises(ValueError, match="params"):
            JsonRpcRequest.from_dict({"method": "ping", "params": [1, 2]})


class TestJsonRpcResponse:
    """Tests for JsonRpcResponse class."""

    def test_success_response(self):
        """Test creating a success response."""
        result = JsonRpcResponse.success(id=1, result={"status": "ok"}).to_dict()

        assert result == {"jsonrpc": "2.0", "id": 1, "result": {"status": "ok"}}

    def test_error_response(self):
        """Test creating an error response."""
        result = JsonRpcResponse.error(
            id=1, code=ErrorCode.METHOD_NOT_FOUND, message="Method not found"
        ).to_dict()

        assert "result" not in result
        assert result["error"] == {"code": -32601, "message": "Method not found"}

    def test_error_response_with_data(self):
        """Test creating an error response with data."""
        result = JsonRpcResponse.error(
            id=1, code=ErrorCode.INVALID_PARAMS, message="bad", data={"field": "filePath"}
        ).to_dict()

        assert result["error"]["data"] == {"field": "filePath"}


class TestJsonRpcNotification:
    """Tests for JsonRpcNotification class."""

    def test_to_dict(self):
        """Test conversion to JSON-RPC format."""
        notification = JsonRpcNotification(
            method=NotificationMethod.DIFF_CLOSED.value,
            params={"filePath": "/a.py", "content": ""},
        )

        assert notification.to_dict() == {
            "jsonrpc": "2.0",
            "method": "ide/diffClosed",
            "params": {"filePath": "/a.py", "content": ""},
        }

    def test_to_dict_no_params(self):
        """Test that params are omitted when absent."""
        assert "params" not in JsonRpcNotification(method="x").to_dict()


class TestEncodeSse:
    """Tests for SSE framing."""

    def test_compact_frame(self):
        """Test that messages are framed as compact JSON data events."""
        frame = encode_sse({"jsonrpc": "2.0", "id": 1, "result": {"a": [1, 2]}})

        assert frame == b'data: {"jsonrpc":"2.0","id":1,"result":{"a":[1,2]}}\n\n'

    def test_unicode_escaped(self):
        """Test that non-ASCII text stays on one line."""
        frame = encode_sse({"text": "café\nline"})

        assert frame.count(b"\n") == 2
        assert frame.endswith(b"\n\n")

    @pytest.mark.parametrize("bad", [{"x": float("inf")}, {"x": {1, 2}}, {"x": object()}])
    def test_unserializable(self, bad):
        """Test that unserializable messages raise EncodeError."""
        with pytest.raises(EncodeError):
            encode_sse(bad)

    def test_keepalive_is_comment(self):
        """Test that the keep-alive frame is an SSE comment."""
        assert KEEPALIVE_FRAME.startswith(b":")
        assert KEEPALIVE_FRAME.endswith(b"\n\n")


class TestInitializeResult:
    """Tests for InitializeResult."""

    def test_defaults(self):
        """Test default initialize payload."""
        result = InitializeResult().to_dict()

        assert result["protocolVersion"] == PROTOCOL_VERSION
        assert result["capabilities"] == {"tools": {"listChanged": False}}
        assert result["serverInfo"]["name"] == "idebridge"
        assert "ide/contextUpdate" in result["instructions"]

    def test_capabilities(self):
        """Test capability flags."""
        assert ServerCapabilities(tools_list_changed=True).to_dict() == {
            "tools": {"listChanged": True}
        }


class TestTools:
    """Tests for tool definitions and arguments."""

    def test_tool_schemas(self):
        """Test the advertised tools."""
        tools = {t.name: t.to_dict() for t in TOOLS}

        assert set(tools) == {"openDiff", "closeDiff"}
        assert tools["openDiff"]["inputSchema"]["required"] == ["filePath", "newContent"]
        assert tools["closeDiff"]["inputSchema"]["type"] == "object"

    def test_open_diff_params(self):
        """Test parsing openDiff arguments."""
        params = OpenDiffParams.from_dict({"filePath": "/a.py", "newContent": ""})

        assert params.file_path == "/a.py"
        assert params.new_content == ""

    @pytest.mark.parametrize(
        "arguments, missing",
        [
            ({"newContent": "x"}, "filePath"),
            ({"filePath": "", "newContent": "x"}, "filePath"),
            ({"filePath": "/a.py"}, "newContent"),
            ({"filePath": "/a.py", "newContent": 3}, "newContent"),
        ],
    )
    def test_open_diff_params_invalid(self, arguments, missing):
        """Test rejected openDiff arguments."""
        with pytest.raises(ValueError, match=missing):
            OpenDiffParams.from_dict(arguments)

    def test_close_diff_params(self):
        """Test parsing closeDiff arguments."""
        assert CloseDiffParams.from_dict({"filePath": "/a.py"}).file_path == "/a.py"
        with pytest.raises(ValueError):
            CloseDiffParams.from_dict({})

    def test_diff_result(self):
        """Test diff outcome payload."""
        assert DiffResultParams("/a.py", "new").to_dict() == {
            "filePath": "/a.py",
            "content": "new",
        }


class TestEnums:
    """Tests for protocol method names."""

    def test_request_methods(self):
        """Test request method strings."""
        assert RequestMethod.INITIALIZED.value == "notifications/initialized"
        assert RequestMethod.TOOLS_CALL.value == "tools/call"

    def test_position(self):
        """Test Position conversion."""
        assert Position(line=3, character=7).to_dict() == {"line": 3, "character": 7}
