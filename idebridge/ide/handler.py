"""Editor-side JSON-RPC request handling.

``CompanionHandler`` is the request callback handed to ``BridgeServer``. It
answers over the POST connection that carried the request and pushes
notifications (context snapshots, diff outcomes) to every open stream.
The diff view and workspace tracking live in the editor; they are reached
through the ``DiffViewer`` and ``ContextProvider`` interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

import structlog

from idebridge.ide.protocol import (
    TOOLS,
    CloseDiffParams,
    DiffOutcome,
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
    ToolName,
)

if TYPE_CHECKING:
    from idebridge.ide.connection import Connection
    from idebridge.ide.server import BridgeServer

log = structlog.get_logger()

DiffCallback = Callable[[str, DiffOutcome], None]

MAX_OPEN_FILES = 10


class DiffViewer(ABC):
    """Opens and closes editable comparison views in the editor."""

    @abstractmethod
    def open(self, file_path: str, new_content: str, on_resolved: DiffCallback) -> None:
        """Show ``new_content`` against ``file_path``.

        ``on_resolved(final_content, outcome)`` is called once when the view
        is accepted, rejected or closed.
        """

    @abstractmethod
    def close(self, file_path: str) -> None:
        """Close the view for ``file_path`` if one is open."""


class ContextProvider(ABC):
    """Reports what the user is looking at in the editor."""

    @abstractmethod
    def get_context(self) -> dict[str, Any]:
        """Return an ``ide/contextUpdate`` payload."""


@dataclass
class PendingDiff:
    """A diff view waiting for the user."""

    file_path: str
    content: str
    on_resolved: DiffCallback


class InMemoryDiffViewer(DiffViewer):
    """Diff viewer that keeps views in memory until resolved.

    Used when no editor UI is attached (headless ``serve``) and in tests.
    The final content can be edited before accepting.
    """

    def __init__(self):
        self.views: dict[str, PendingDiff] = {}

    def open(self, file_path: str, new_content: str, on_resolved: DiffCallback) -> None:
        if file_path in self.views:
            # Reopening replaces the old view, which counts as closed
            self._resolve(file_path, DiffOutcome.CLOSED)
        self.views[file_path] = PendingDiff(file_path, new_content, on_resolved)
        log.info("diff_opened", file_path=file_path)

    def close(self, file_path: str) -> None:
        self._resolve(file_path, DiffOutcome.CLOSED)

    def accept(self, file_path: str, content: Optional[str] = None) -> None:
        """Accept the view, optionally with user edits."""
        if content is not None and file_path in self.views:
            self.views[file_path].content = content
        self._resolve(file_path, DiffOutcome.ACCEPTED)

    def reject(self, file_path: str) -> None:
        self._resolve(file_path, DiffOutcome.REJECTED)

    def _resolve(self, file_path: str, outcome: DiffOutcome) -> None:
        view = self.views.pop(file_path, None)
        if view is None:
            log.debug("diff_not_open", file_path=file_path)
            return
        log.info("diff_resolved", file_path=file_path, outcome=outcome.value)
        view.on_resolved(view.content, outcome)


@dataclass
class OpenFile:
    """A file tracked in the workspace context."""

    path: str
    timestamp: float
    is_active: bool = False
    cursor: Optional[Position] = None
    selected_text: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "path": self.path,
            "timestamp": self.timestamp,
            "isActive": self.is_active,
        }
        if self.cursor is not None:
            data["cursor"] = self.cursor.to_dict()
        if self.selected_text:
            data["selectedText"] = self.selected_text
        return data


@dataclass
class WorkspaceContextProvider(ContextProvider):
    """Tracks recently opened files, most recent first."""

    is_trusted: bool = True
    open_files: list[OpenFile] = field(default_factory=list)

    def file_opened(
        self,
        path: str,
        timestamp: float,
        cursor: Optional[Position] = None,
        selected_text: Optional[str] = None,
    ) -> None:
        """Record ``path`` as the active file."""
        self.open_files = [f for f in self.open_files if f.path != path]
        for f in self.open_files:
            f.is_active = False
            f.cursor = None
            f.selected_text = None
        self.open_files.insert(
            0, OpenFile(path, timestamp, True, cursor, selected_text)
        )
        del self.open_files[MAX_OPEN_FILES:]

    def file_closed(self, path: str) -> None:
        self.open_files = [f for f in self.open_files if f.path != path]

    def get_context(self) -> dict[str, Any]:
        return {
            "workspaceState": {
                "openFiles": [f.to_dict() for f in self.open_files],
                "isTrusted": self.is_trusted,
            }
        }


class CompanionHandler:
    """Answers agent requests on behalf of the editor."""

    def __init__(
        self,
        server: Optional["BridgeServer"] = None,
        diff_viewer: Optional[DiffViewer] = None,
        context_provider: Optional[ContextProvider] = None,
        initialize_result: Optional[InitializeResult] = None,
    ):
        """Initialize handler.

        Args:
            server: Server used to push notifications (may be attached later)
            diff_viewer: Diff view backend for ``openDiff``/``closeDiff``
            context_provider: Source of ``ide/contextUpdate`` payloads
            initialize_result: Result returned for ``initialize``
        """
        self.server = server
        self.diff_viewer = diff_viewer or InMemoryDiffViewer()
        self.context_provider = context_provider or WorkspaceContextProvider()
        self.initialize_result = initialize_result or InitializeResult()
        self.initialized = False
        self.client_info: Optional[dict[str, Any]] = None
        self._handlers: dict[str, Callable] = {}
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register request handlers."""
        self._handlers = {
            RequestMethod.INITIALIZE.value: self._handle_initialize,
            RequestMethod.INITIALIZED.value: self._handle_initialized,
            RequestMethod.TOOLS_LIST.value: self._handle_tools_list,
            RequestMethod.TOOLS_CALL.value: self._handle_tools_call,
            RequestMethod.PING.value: self._handle_ping,
        }

    def __call__(self, connection: "Connection", message: dict[str, Any]) -> None:
        """Request callback for ``BridgeServer``."""
        try:
            request = JsonRpcRequest.from_dict(message)
        except ValueError as e:
            log.warning("invalid_request", connection_id=connection.id, error=str(e))
            self._reply(
                connection,
                JsonRpcResponse.error(message.get("id"), ErrorCode.INVALID_REQUEST, str(e)),
            )
            return

        log.debug("handling_request", connection_id=connection.id, method=request.method, id=request.id)

        handler = self._handlers.get(request.method)
        if handler is None:
            log.warning("unhandled_request", connection_id=connection.id, method=request.method)
            if request.is_notification:
                connection.close()
            else:
                self._reply(
                    connection,
                    JsonRpcResponse.error(
                        request.id,
                        ErrorCode.METHOD_NOT_FOUND,
                        f"Method not found: {request.method}",
                    ),
                )
            return

        handler(connection, request)

    def _reply(self, connection: "Connection", response: JsonRpcResponse) -> None:
        connection.send(response.to_dict())

    def notify(self, method: NotificationMethod, params: Optional[dict[str, Any]] = None) -> int:
        """Broadcast a notification to every stream.

        Returns:
            Number of streams reached (0 when no server is attached)
        """
        if self.server is None:
            log.warning("bridge_server_not_running", method=method.value)
            return 0
        notification = JsonRpcNotification(method=method.value, params=params)
        return self.server.broadcast_to_streams(notification.to_dict())

    def notify_context_changed(self) -> int:
        """Push a fresh context snapshot to every stream."""
        return self.notify(
            NotificationMethod.CONTEXT_UPDATE, self.context_provider.get_context()
        )

    # Lifecycle handlers
    def _handle_initialize(self, connection: "Connection", request: JsonRpcRequest) -> None:
        """Handle initialize request."""
        params = request.params or {}
        self.client_info = params.get("clientInfo")
        self.initialized = True
        log.info(
            "bridge_client_initialized",
            client=(self.client_info or {}).get("name", "unknown"),
        )
        self._reply(
            connection,
            JsonRpcResponse.success(request.id, self.initialize_result.to_dict()),
        )

    def _handle_initialized(self, connection: "Connection", request: JsonRpcRequest) -> None:
        """Handle the initialized notification: ack, then push initial context."""
        self._reply(connection, JsonRpcResponse.success(request.id, {}))
        self.notify_context_changed()

    def _handle_ping(self, connection: "Connection", request: JsonRpcRequest) -> None:
        self._reply(connection, JsonRpcResponse.success(request.id, {}))

    # Tool handlers
    def _handle_tools_list(self, connection: "Connection", request: JsonRpcRequest) -> None:
        """Handle tools/list request."""
        self._reply(
            connection,
            JsonRpcResponse.success(request.id, {"tools": [t.to_dict() for t in TOOLS]}),
        )

    def _handle_tools_call(self, connection: "Connection", request: JsonRpcRequest) -> None:
        """Handle tools/call request."""
        params = request.params or {}
        tool_name = params.get("name")
        arguments = params.get("arguments") or {}

        try:
            if not isinstance(arguments, dict):
                raise ValueError("arguments must be an object")
            if tool_name == ToolName.OPEN_DIFF.value:
                self._open_diff(OpenDiffParams.from_dict(arguments))
            elif tool_name == ToolName.CLOSE_DIFF.value:
                self.diff_viewer.close(CloseDiffParams.from_dict(arguments).file_path)
            else:
                log.warning("unhandled_tool_call", connection_id=connection.id, tool=tool_name)
                connection.close()
                return
        except ValueError as e:
            self._reply(
                connection,
                JsonRpcResponse.error(request.id, ErrorCode.INVALID_PARAMS, str(e)),
            )
            return

        self._reply(
            connection,
            JsonRpcResponse.success(
                request.id,
                {"content": [{"type": "text", "text": f"Tool called {tool_name}"}]},
            ),
        )

    def _open_diff(self, params: OpenDiffParams) -> None:
        def on_resolved(final_content: str, outcome: DiffOutcome) -> None:
            method = (
                NotificationMethod.DIFF_ACCEPTED
                if outcome is DiffOutcome.ACCEPTED
                else NotificationMethod.DIFF_CLOSED
            )
            self.notify(method, DiffResultParams(params.file_path, final_content).to_dict())

        self.diff_viewer.open(params.file_path, params.new_content, on_resolved)
