"""
MCP Adapters: thin stdio tool servers in front of existing backends.

Architecture:
    ┌──────────────┐     stdio      ┌───────────────────────────────┐
    │ Calling peer │ ─────────────► │ ToolServer (one per process)  │
    │ (agent, CLI) │   JSON-RPC     │   validate → handler → wrap   │
    └──────────────┘     pipes      └───────────────┬───────────────┘
                                                    │ one unit of work
                                                    ▼
                                    ┌───────────────────────────────┐
                                    │ Backend adapter               │
                                    │ PostgreSQL · MySQL · AWS SM   │
                                    │ Datadog · npm · TempMail      │
                                    └───────────────────────────────┘

Each adapter server is a standalone process speaking newline-delimited
JSON-RPC 2.0 (the MCP protocol) on stdin/stdout. Every tool call answers
with the same text envelope; failures are a JSON payload with an
``error`` key inside it, never a protocol fault.

The ToolServer handles registration, validation and error wrapping.
Backends implement one method per operation.

The ToolServerManager launches servers as subprocesses, and the bridge
wraps their tools as LangChain tools.
"""

__version__ = "1.0.0"

from mcp_adapters.envelope import ToolResult, TextContent
from mcp_adapters.errors import BackendError, ConfigError, DuplicateToolError, UnknownToolError
from mcp_adapters.schema import PaginationParams, ToolParams
from mcp_adapters.server import ToolDescriptor, ToolHandler, ToolServer
from mcp_adapters.manager import ToolServerManager


# Bridge requires langchain; lazy import keeps servers standalone
def mcp_to_langchain_tool(*args, **kwargs):
    from mcp_adapters.bridge import mcp_to_langchain_tool as _impl
    return _impl(*args, **kwargs)


def register_mcp_tools(*args, **kwargs):
    from mcp_adapters.bridge import register_mcp_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "__version__",
    "BackendError",
    "ConfigError",
    "DuplicateToolError",
    "PaginationParams",
    "TextContent",
    "ToolDescriptor",
    "ToolHandler",
    "ToolParams",
    "ToolResult",
    "ToolServer",
    "ToolServerManager",
    "UnknownToolError",
    "mcp_to_langchain_tool",
    "register_mcp_tools",
]
