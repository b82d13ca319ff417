"""MCP protocol models."""

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RequestId = Optional[Union[int, float, str]]


class MCPRequest(BaseModel):
    """MCP request model."""
    jsonrpc: Optional[str] = None
    id: RequestId = None
    method: str
    params: Optional[Any] = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


class MCPError(BaseModel):
    """MCP error model."""
    code: int
    message: str
    data: Optional[Any] = None


class MCPResponse(BaseModel):
    """MCP response model.

    ``id`` is only written back when it was explicitly set, so a request
    carrying ``"id": null`` is answered with ``"id": null`` while a request
    with no id at all gets a response with no id.
    """
    jsonrpc: str = JSONRPC_VERSION
    id: RequestId = None
    result: Optional[Any] = None
    error: Optional[MCPError] = None

    def to_wire(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if "id" in self.model_fields_set:
            data["id"] = self.id
        if self.error is not None:
            data["error"] = self.error.model_dump(exclude_none=True)
        else:
            data["result"] = self.result
        return data


class Implementation(BaseModel):
    """Client or server identity."""
    name: str = ""
    version: str = ""


class ServerInfo(BaseModel):
    """Server information model."""
    name: str
    version: str


class InitializeParams(BaseModel):
    """Initialize method params."""
    protocolVersion: str = ""
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    clientInfo: Implementation = Field(default_factory=Implementation)


class InitializeResult(BaseModel):
    """Initialize method result."""
    protocolVersion: str
    capabilities: Dict[str, Any]
    serverInfo: ServerInfo


class Tool(BaseModel):
    """Tool definition model."""
    name: str
    description: str
    inputSchema: Dict[str, Any]


class ListToolsResult(BaseModel):
    """List tools result."""
    tools: List[Tool]


class CallToolRequest(BaseModel):
    """Call tool request.

    ``arguments`` is kept raw; each tool handler parses its own arguments.
    """
    name: str
    arguments: Optional[Any] = None


class TextContent(BaseModel):
    """Plain text content item."""
    type: Literal["text"] = "text"
    text: str


# Content items are tagged by ``type``; new kinds are added to this union.
Content = Union[TextContent]


class CallToolResult(BaseModel):
    """Call tool result."""
    content: List[Content]
    isError: bool = False


def text_result(text: str) -> CallToolResult:
    """Build a successful result holding a single text item."""
    return CallToolResult(content=[TextContent(text=text)])


def error_result(text: str) -> CallToolResult:
    """Build a tool-logic error result holding a single text item."""
    return CallToolResult(content=[TextContent(text=text)], isError=True)
