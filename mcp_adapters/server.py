"""
MCP tool server: registry, dispatcher and JSON-RPC router.

An adapter server is a standalone process that:
1. Reads JSON-RPC requests from its channel (stdin)
2. Validates tool arguments and dispatches to registered ToolHandlers
3. Writes JSON-RPC responses to the channel (stdout)

To create an adapter server:

    from mcp_adapters.schema import ToolParams
    from mcp_adapters.server import ToolServer, ToolHandler

    class LookupParams(ToolParams):
        package_name: str = Field(min_length=1)

    class LookupTool(ToolHandler):
        name = "lookup"
        title = "Lookup"
        description = "Looks something up"
        params_model = LookupParams
        context_fields = ("packageName",)

        async def handle(self, params: LookupParams) -> dict:
            return {"packageName": params.package_name}

    server = ToolServer("example-mcp-server")
    server.register(LookupTool())

Every tools/call answers with a result envelope. Validation failures,
backend faults and unexpected exceptions all come back as an envelope
whose JSON text has an ``error`` key; only an unknown tool name or a
malformed frame is reported as a JSON-RPC error.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from mcp_adapters.envelope import ToolResult, error_result, text_result
from mcp_adapters.errors import (
    CALL_TIMEOUT,
    BackendError,
    CallTimeoutError,
    DuplicateToolError,
    UnknownToolError,
)
from mcp_adapters.schema import EmptyParams, InvalidParams, ToolParams, input_schema, validate_params
from mcp_adapters.transport import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    Channel,
    FrameError,
    JsonRpcRequest,
    JsonRpcResponse,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"


@dataclass(frozen=True)
class ToolDescriptor:
    """Published description of one tool. Immutable once registered."""
    name: str
    title: str
    description: str
    input_schema: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": dict(self.input_schema),
        }


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles validation,
    error classification and transport.
    """

    # Subclasses must set these
    name: str = ""
    title: str = ""
    description: str = ""
    params_model: type[ToolParams] = EmptyParams
    # Wire names of request fields echoed back in error payloads
    context_fields: tuple[str, ...] = ()

    @abstractmethod
    async def handle(self, params: Any) -> Any:
        """
        Execute the tool with validated parameters.

        Args:
            params: An instance of ``params_model``

        Returns:
            The domain result (JSON-serialized into the envelope)
        """
        ...

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            title=self.title or self.name,
            description=self.description,
            input_schema=input_schema(self.params_model),
        )

    def get_schema(self) -> dict:
        """Return the tool schema for discovery."""
        return self.descriptor().to_dict()

    def error_context(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return {key: values[key] for key in self.context_fields if key in values}


class MethodNotFound(LookupError):
    pass


class ToolServer:
    """
    JSON-RPC tool server multiplexing every tool over one channel.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize" → server info and capabilities
        - "ping"       → health check
        - "tools/list" → registered tool schemas
        - "tools/call" → call a tool by name with arguments
    - Notifications (no id) are accepted and never answered
    """

    def __init__(self, name: str, version: str = "1.0.0", call_timeout: float | None = None):
        """
        Args:
            name: Server identity reported by initialize
            version: Server version reported by initialize
            call_timeout: Optional per-call deadline in seconds (None = no deadline)
        """
        self.name = name
        self.version = version
        self.call_timeout = call_timeout
        self._handlers: dict[str, ToolHandler] = {}
        self._descriptors: dict[str, ToolDescriptor] = {}
        self._in_flight: set[asyncio.Task] = set()

    # ── Registry ─────────────────────────────────────────

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler. Names must be unique."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        if handler.name in self._handlers:
            raise DuplicateToolError(
                f"Tool '{handler.name}' is already registered "
                f"by {self._handlers[handler.name].__class__.__name__}"
            )
        self._handlers[handler.name] = handler
        self._descriptors[handler.name] = handler.descriptor()
        logger.info(f"Registered tool: {handler.name}")

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def list_tools(self) -> list[dict]:
        return [d.to_dict() for d in self._descriptors.values()]

    # ── Dispatcher ───────────────────────────────────────

    async def dispatch(self, tool_name: str, arguments: Any) -> ToolResult:
        """
        Validate arguments, run the handler and wrap the outcome.

        Raises:
            UnknownToolError: if no tool is registered under ``tool_name``.
                Nothing else escapes: every handler failure becomes an envelope.
        """
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise UnknownToolError(tool_name, self.tool_names)

        try:
            params = validate_params(handler.params_model, arguments)
        except InvalidParams as e:
            logger.info(f"{tool_name}: {e}")
            raw = arguments if isinstance(arguments, Mapping) else {}
            return error_result(
                str(e),
                handler.error_context(raw),
                violations=[v.to_dict() for v in e.violations],
            )

        context = handler.error_context(params.model_dump(by_alias=True))

        try:
            if self.call_timeout:
                result = await asyncio.wait_for(self._invoke(handler, params), self.call_timeout)
            else:
                result = await self._invoke(handler, params)
            return text_result(result)
        except asyncio.TimeoutError:
            logger.warning(f"{tool_name} timed out after {self.call_timeout}s")
            return error_result(
                f"{CallTimeoutError.tag}: {tool_name} did not complete within {self.call_timeout}s",
                context,
                code=CALL_TIMEOUT,
            )
        except BackendError as e:
            logger.warning(f"{tool_name} failed: [{e.code}] {e.message}")
            return error_result(f"{e.tag}: {e.message}", context, code=e.code)
        except Exception as e:
            logger.exception(f"Unexpected error in {tool_name}")
            return error_result(f"Unexpected error: {e}", context)

    @staticmethod
    async def _invoke(handler: ToolHandler, params: Any) -> Any:
        # Only the dispatcher deadline may surface as TimeoutError
        try:
            return await handler.handle(params)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise RuntimeError(str(e) or "operation timed out") from e

    # ── JSON-RPC routing ─────────────────────────────────

    async def handle_message(self, message: Any) -> dict | None:
        """Answer one decoded frame. Returns None for notifications."""
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            request_id = message.get("id") if isinstance(message, dict) else None
            return JsonRpcResponse.failure(request_id, INVALID_REQUEST, "Invalid request").to_dict()

        request = JsonRpcRequest.from_dict(message)
        method, request_id = request.method, request.id

        if request.is_notification:
            logger.debug(f"Notification: {method}")
            return None

        try:
            result = await self._route(method, request.params)
        except UnknownToolError as e:
            return JsonRpcResponse.failure(request_id, INVALID_PARAMS, str(e)).to_dict()
        except MethodNotFound as e:
            return JsonRpcResponse.failure(request_id, METHOD_NOT_FOUND, str(e)).to_dict()
        except Exception as e:
            logger.exception(f"Internal error handling '{method}'")
            return JsonRpcResponse.failure(request_id, INTERNAL_ERROR, str(e)).to_dict()

        return JsonRpcResponse(id=request_id, result=result).to_dict()

    async def _route(self, method: str, params: dict) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {"status": "ok", "tools": self.tool_names}

        if method == "tools/list":
            return {"tools": self.list_tools()}

        if method == "tools/call":
            tool_name = params.get("name", "")
            arguments = params.get("arguments")
            result = await self.dispatch(tool_name, arguments)
            return result.to_dict()

        raise MethodNotFound(f"Unknown method: '{method}'")

    # ── Serve loop ───────────────────────────────────────

    async def serve(self, channel: Channel) -> None:
        """
        Read frames until the peer closes the channel.

        Each request runs in its own task so pipelined calls proceed
        concurrently; responses go out in completion order.
        """
        logger.info(f"{self.name} serving {len(self._handlers)} tools: {self.tool_names}")

        while True:
            try:
                message = await channel.read_frame()
            except FrameError as e:
                await channel.write_frame(JsonRpcResponse.failure(None, PARSE_ERROR, str(e)).to_dict())
                continue

            if message is None:
                break

            task = asyncio.create_task(self._respond(channel, message))
            self._in_flight.add(task)
            task.add_done_callback(self._on_task_done)

        if self._in_flight:
            logger.debug(f"Input closed, waiting for {len(self._in_flight)} in-flight calls")
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _respond(self, channel: Channel, message: Any) -> None:
        response = await self.handle_message(message)
        if response is not None:
            await channel.write_frame(response)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Surfaces through the loop's exception handler (see lifecycle)
            task.get_loop().call_exception_handler({
                "message": "Failed to answer request",
                "exception": exc,
                "task": task,
            })

    async def close(self) -> None:
        """Cancel any calls still in flight."""
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
