"""
Bridge between adapter servers and LangChain.

Wraps tools discovered on running adapter servers as LangChain
StructuredTools, so an agent can call a database, the npm registry or a
temporary inbox through the same stdio channel.

Usage:
    from mcp_adapters.bridge import mcp_to_langchain_tool, register_mcp_tools

    # Single tool
    lc_tool = mcp_to_langchain_tool(manager, "npm-registry", "get_package_info")

    # All tools from all running servers
    tools = register_mcp_tools(manager)
    agent = create_agent(model, tools=list(tools.values()))
"""

from __future__ import annotations

from typing import Any

from langchain_core.tools import StructuredTool

from mcp_adapters.manager import ToolServerManager


def mcp_to_langchain_tool(
    manager: ToolServerManager,
    server_id: str,
    tool_name: str,
    description_override: str | None = None,
    name_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that wraps an adapter tool call.

    The tool's input JSON schema (from tools/list) becomes the StructuredTool's
    ``args_schema``. When invoked, the tool returns the envelope's JSON text,
    which carries an ``error`` key if the call failed.

    Args:
        manager: The ToolServerManager running the server
        server_id: Which server the tool lives on
        tool_name: The tool name (as registered on the server)
        description_override: Optional override for the tool description
        name_override: Optional name for the LangChain tool

    Returns:
        A LangChain StructuredTool that proxies calls to the adapter server.
    """
    tools = manager.list_tools(server_id)
    tool_schema = next((t for t in tools if t["name"] == tool_name), None)

    if tool_schema:
        description = description_override or tool_schema.get("description") or tool_name
        args_schema = tool_schema.get("inputSchema") or {"type": "object", "properties": {}}
    else:
        description = description_override or f"MCP tool: {server_id}/{tool_name}"
        args_schema = {"type": "object", "properties": {}}

    def _call_mcp(**kwargs: Any) -> str:
        """Proxy call to the adapter server."""
        try:
            return manager.call_tool(server_id, tool_name, kwargs).text
        except Exception as e:
            return f"Error calling {server_id}/{tool_name}: {e}"

    return StructuredTool.from_function(
        func=_call_mcp,
        name=name_override or tool_name,
        description=description,
        args_schema=args_schema,
    )


def register_mcp_tools(
    manager: ToolServerManager,
    server_ids: list[str] | None = None,
) -> dict[str, StructuredTool]:
    """
    Wrap every tool of every running server.

    Tool ids are ``<server_id>__<tool_name>``, since several servers share
    tool names (both SQL servers have ``read_query``).

    Returns:
        {tool_id: StructuredTool}
    """
    wrapped: dict[str, StructuredTool] = {}

    for server_id, running in manager.list_servers().items():
        if not running or (server_ids is not None and server_id not in server_ids):
            continue

        for tool_schema in manager.list_tools(server_id):
            tool_name = tool_schema["name"]
            tool_id = f"{server_id}__{tool_name}"
            wrapped[tool_id] = mcp_to_langchain_tool(manager, server_id, tool_name, name_override=tool_id)

    return wrapped


def describe_tool(schema: dict) -> str:
    """Render a tool schema as plain-text usage notes (for prompts or --help output)."""
    name = schema.get("name", "unknown")
    title = schema.get("title")
    description = schema.get("description", "")
    input_schema = schema.get("inputSchema", {})
    params = input_schema.get("properties", {})
    required = set(input_schema.get("required", []))

    header = f"## Tool: {name}" + (f" ({title})" if title and title != name else "")
    lines = [header, description, ""]
    if params:
        lines.append("Parameters:")
        for pname, pinfo in params.items():
            ptype = pinfo.get("type", "any")
            pdesc = pinfo.get("description", "")
            flag = "" if pname in required else ", optional"
            lines.append(f"  - {pname} ({ptype}{flag}): {pdesc}")

    return "\n".join(lines)
