"""MCP server speaking JSON-RPC 2.0 over line-delimited stdio."""

import asyncio
import json
import sys
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TextIO

from pydantic import ValidationError

from . import __version__
from .logging_config import get_logger
from .models import (
    INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, JSONRPC_VERSION, METHOD_NOT_FOUND,
    PARSE_ERROR, PROTOCOL_VERSION, CallToolRequest, CallToolResult, InitializeParams,
    InitializeResult, ListToolsResult, MCPError, MCPRequest, MCPResponse, ServerInfo,
    TextContent, Tool
)
from .tools import ToolHandler


SERVER_NAME = "trakt-mcp-server"

NOTIFICATIONS = ("initialized", "notifications/initialized")


def _reconfigure(stream: TextIO, **options: Any) -> None:
    # StringIO and streams swapped in by test runners have no reconfigure
    reconfigure = getattr(stream, "reconfigure", None)
    if reconfigure is not None:
        reconfigure(**options)


def _feed(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, item: Any) -> bool:
    try:
        loop.call_soon_threadsafe(queue.put_nowait, item)
    except RuntimeError:
        # event loop already closed
        return False
    return True


def _echo_id(body: Dict[str, Any]) -> bool:
    """True when the body carries an id that can be echoed back."""
    if "id" not in body:
        return False
    request_id = body["id"]
    if isinstance(request_id, bool):
        return False
    return request_id is None or isinstance(request_id, (str, int, float))


class ProtocolError(Exception):
    """A request failed at the JSON-RPC level."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class Session:
    """Per-connection protocol state."""
    initialized: bool = False
    client_name: str = ""
    client_version: str = ""
    protocol_version: str = ""


class MCPServer:
    """MCP server over stdio.

    Requests are handled strictly one at a time, so responses leave in the
    order their requests arrived.
    """

    def __init__(self, require_initialization: bool = False, session: Optional[Session] = None):
        self.logger = get_logger("mcp_server")
        self.session = session or Session()
        self.require_initialization = require_initialization
        self._tools: Dict[str, Tool] = {}
        self._handlers: Dict[str, ToolHandler] = {}
        self._lock = threading.RLock()
        self._shutdown = asyncio.Event()

    def register_tool(self, tool: Tool, handler: ToolHandler) -> None:
        """Register a tool and its handler under the tool's name."""
        with self._lock:
            self._tools[tool.name] = tool
            self._handlers[tool.name] = handler
        self.logger.debug(f"registered tool name={tool.name}")

    def list_tools(self) -> List[Tool]:
        with self._lock:
            return list(self._tools.values())

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        with self._lock:
            return self._handlers.get(name)

    def shutdown(self) -> None:
        """Stop the read loop before the next line is handled."""
        self._shutdown.set()

    async def run(self) -> None:
        """Serve requests from stdin until end of input.

        Both streams are switched to UTF-8 whatever the locale says.
        """
        _reconfigure(sys.stdin, encoding="utf-8", errors="replace")
        _reconfigure(sys.stdout, encoding="utf-8")
        await self.run_with_io(sys.stdin, sys.stdout)

    async def run_with_io(self, reader: TextIO, writer: TextIO) -> None:
        """Serve requests read from ``reader``, writing responses to ``writer``.

        Returns at end of input. Raises ``asyncio.CancelledError`` when
        ``shutdown()`` was requested or the running task is cancelled.
        """
        # Undecodable bytes become U+FFFD so the line gets a parse error
        # instead of ending the session.
        _reconfigure(reader, errors="replace")
        self.logger.info(f"server starting version={__version__}")
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue = asyncio.Queue()
        threading.Thread(
            target=self._read_lines, args=(reader, loop, lines), name="mcp-reader", daemon=True
        ).start()

        while True:
            self._check_shutdown()
            line = await lines.get()
            if line is None:
                break
            if isinstance(line, Exception):
                raise line

            self._check_shutdown()
            line = line.strip()
            if not line:
                continue

            response = await self.handle_message(line)
            if response is not None:
                self._write_response(writer, response)

        self.logger.info("end of input, server stopping")

    def _read_lines(self, reader: TextIO, loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
        # Blocking reads live on a daemon thread so a pending stdin read never
        # keeps the process alive after the loop is cancelled.
        try:
            for line in iter(reader.readline, ""):
                if not _feed(loop, lines, line):
                    return
        except (OSError, ValueError) as e:
            _feed(loop, lines, ConnectionError(f"read error: {e}"))
            return
        _feed(loop, lines, None)

    def _check_shutdown(self) -> None:
        if self._shutdown.is_set():
            self.logger.info("shutdown requested")
            raise asyncio.CancelledError()

    def _write_response(self, writer: TextIO, response: MCPResponse) -> None:
        try:
            writer.write(json.dumps(response.to_wire(), ensure_ascii=False) + "\n")
            writer.flush()
        except (OSError, ValueError, TypeError) as e:
            self.logger.error(f"failed to write response error={e}")

    async def handle_message(self, line: str) -> Optional[MCPResponse]:
        """Handle one raw request line. Returns None for notifications."""
        try:
            body = json.loads(line)
        except json.JSONDecodeError as e:
            self.logger.error(f"failed to parse request error={e}")
            return MCPResponse(error=MCPError(code=PARSE_ERROR, message="Parse error"))

        if not isinstance(body, dict):
            return MCPResponse(error=MCPError(code=INVALID_REQUEST, message="Invalid request"))

        try:
            request = MCPRequest.model_validate(body)
        except ValidationError as e:
            self.logger.error(f"invalid request error={e}")
            return self._invalid_request(body, "Invalid request")

        if request.jsonrpc != JSONRPC_VERSION:
            return self._invalid_request(body, "Invalid JSON-RPC version")

        self.logger.debug(f"handling request method={request.method}")

        try:
            result = await self.dispatch(request)
        except ProtocolError as e:
            return self._create_error_response(request, e.code, e.message)
        except Exception as e:
            self.logger.exception(f"internal error method={request.method}")
            return self._create_error_response(request, INTERNAL_ERROR, f"Internal error: {e}")

        if request.method in NOTIFICATIONS:
            return None

        return self._create_response(request, result)

    async def dispatch(self, request: MCPRequest) -> Any:
        """Route a request to its method handler and return the result payload."""
        method = request.method
        if method == "initialize":
            return self._handle_initialize(request.params).model_dump()
        if method in NOTIFICATIONS:
            return None
        if method == "tools/list":
            return self._handle_list_tools().model_dump()
        if method == "tools/call":
            result = await self._handle_call_tool(request.params)
            return result.model_dump()
        raise ProtocolError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def _handle_initialize(self, params: Any) -> InitializeResult:
        """Handle initialize method."""
        if not isinstance(params, dict):
            raise ProtocolError(INVALID_PARAMS, "Invalid initialize params")
        try:
            init = InitializeParams.model_validate(params)
        except ValidationError:
            raise ProtocolError(INVALID_PARAMS, "Invalid initialize params")

        self.session.initialized = True
        self.session.client_name = init.clientInfo.name
        self.session.client_version = init.clientInfo.version
        self.session.protocol_version = init.protocolVersion

        self.logger.info(
            f"initialized client={init.clientInfo.name} clientVersion={init.clientInfo.version} "
            f"protocolVersion={init.protocolVersion}"
        )

        return InitializeResult(
            protocolVersion=PROTOCOL_VERSION,
            capabilities={
                "tools": {}
            },
            serverInfo=ServerInfo(
                name=SERVER_NAME,
                version=__version__
            )
        )

    def _handle_list_tools(self) -> ListToolsResult:
        """Handle tools/list method."""
        return ListToolsResult(tools=self.list_tools())

    async def _handle_call_tool(self, params: Any) -> CallToolResult:
        """Handle tools/call method."""
        if not isinstance(params, dict):
            raise ProtocolError(INVALID_PARAMS, "Invalid tools/call params")
        try:
            tool_request = CallToolRequest.model_validate(params)
        except ValidationError:
            raise ProtocolError(INVALID_PARAMS, "Invalid tools/call params")

        handler = self.get_handler(tool_request.name)
        if handler is None:
            raise ProtocolError(INVALID_PARAMS, f"Unknown tool: {tool_request.name}")

        if self.require_initialization and not self.session.initialized:
            raise ProtocolError(INTERNAL_ERROR, "Server not initialized")

        self.logger.debug(f"calling tool name={tool_request.name}")

        try:
            return await handler(tool_request.arguments)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"tool error name={tool_request.name} error={e}")
            return CallToolResult(content=[TextContent(text=str(e))], isError=True)

    def _invalid_request(self, body: Dict[str, Any], message: str) -> MCPResponse:
        error = MCPError(code=INVALID_REQUEST, message=message)
        if _echo_id(body):
            return MCPResponse(id=body["id"], error=error)
        return MCPResponse(error=error)

    def _create_response(self, request: MCPRequest, result: Any) -> MCPResponse:
        if request.is_notification:
            return MCPResponse(result=result)
        return MCPResponse(id=request.id, result=result)

    def _create_error_response(self, request: MCPRequest, code: int, message: str) -> MCPResponse:
        """Create an error response."""
        error = MCPError(code=code, message=message)
        if request.is_notification:
            return MCPResponse(error=error)
        return MCPResponse(id=request.id, error=error)
