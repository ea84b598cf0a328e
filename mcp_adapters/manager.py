"""
Tool Server Manager: launches adapter servers and calls their tools.

This is the calling peer of the stdio channel. Each registered server runs
as a subprocess; the manager performs the initialize handshake, discovers
tools with tools/list, and decodes tool-call envelopes.

Usage:
    manager = ToolServerManager()

    # Register a bundled server (python -m mcp_adapters.servers.tempmail)
    manager.register_builtin("tempmail", env={"TEMPMAIL_STORE": "memory"})

    # Or any command speaking the same protocol
    manager.register_server("custom", ["node", "dist/index.js"])

    manager.start("tempmail")
    payload = manager.call("tempmail", "create_email_account", {"username": "alice"})

    manager.stop_all()
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any

from mcp_adapters.envelope import ToolResult, result_from_dict
from mcp_adapters.server import PROTOCOL_VERSION
from mcp_adapters.servers import SERVER_MODULES
from mcp_adapters.transport import JsonRpcRequest, StdioTransport

logger = logging.getLogger(__name__)

CLIENT_INFO = {"name": "mcp-adapters-manager", "version": "1.0.0"}


class ToolCallError(RuntimeError):
    """A protocol-level failure (unknown tool, bad request) reported by a server."""

    def __init__(self, server_id: str, method: str, error: dict):
        self.server_id = server_id
        self.error = error
        self.code = error.get("code")
        super().__init__(f"{method} failed on {server_id}: [{self.code}] {error.get('message')}")


@dataclass
class ManagedServer:
    """Launch recipe and live state for one adapter process."""

    command: list[str]
    env: dict[str, str] | None = None
    cwd: str | None = None
    transport: StdioTransport | None = None
    server_info: dict = field(default_factory=dict)
    tools: list[dict] = field(default_factory=list)

    @property
    def alive(self) -> bool:
        return self.transport is not None and self.transport.is_alive()


class ToolServerManager:
    """
    Owns the adapter subprocesses started by this process.

    Each entry is launched over stdio, handshaken with ``initialize``,
    asked for its catalogue with ``tools/list`` and then used for
    ``tools/call`` until stopped.
    """

    def __init__(self):
        self._servers: dict[str, ManagedServer] = {}

    def register_server(
        self,
        server_id: str,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        """
        Record how to launch a server. Nothing is spawned until start().

        Args:
            server_id: Name the server is addressed by in later calls
            command: argv of the server process
            env: Extra environment variables, layered over this process's environment
            cwd: Working directory for the server process
        """
        self._servers[server_id] = ManagedServer(command=command, env=env, cwd=cwd)
        logger.info(f"Registered server: {server_id} ({' '.join(command)})")

    def register_builtin(
        self,
        server_id: str,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        """Register one of the bundled adapter servers by id (see SERVER_MODULES)."""
        module = SERVER_MODULES.get(server_id)
        if module is None:
            raise ValueError(f"Unknown server: {server_id}. Available: {sorted(SERVER_MODULES)}")
        self.register_server(server_id, [sys.executable, "-m", module], env=env, cwd=cwd)

    def _entry(self, server_id: str) -> ManagedServer:
        try:
            return self._servers[server_id]
        except KeyError:
            raise ValueError(f"Unknown server: {server_id}") from None

    def _request(self, server_id: str, method: str, params: dict) -> Any:
        entry = self._entry(server_id)
        if not entry.alive:
            raise RuntimeError(f"Server {server_id} is not running. Call start() first.")

        transport = entry.transport
        response = transport.send(JsonRpcRequest(method=method, params=params, id=transport.next_id()))
        if response.is_error:
            raise ToolCallError(server_id, method, response.error)
        return response.result

    def start(self, server_id: str) -> list[dict]:
        """
        Spawn the server, run the initialize handshake and fetch its tools.

        A server that is already alive is left alone. If the handshake
        fails the process is stopped before the error propagates.
        """
        entry = self._entry(server_id)
        if entry.alive:
            return entry.tools

        env = {**os.environ, **entry.env} if entry.env else None
        entry.transport = StdioTransport(entry.command, env=env, cwd=entry.cwd)
        entry.transport.start()

        try:
            entry.server_info = self._request(server_id, "initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            }) or {}
            entry.transport.notify(JsonRpcRequest(method="notifications/initialized", params={}))
            listing = self._request(server_id, "tools/list", {}) or {}
        except Exception:
            self.stop(server_id)
            raise

        entry.tools = listing.get("tools", [])
        logger.info(f"Started {server_id}: tools={[t['name'] for t in entry.tools]}")
        return entry.tools

    def start_all(self) -> dict[str, list[dict]]:
        """Start every registered server; one that fails maps to an empty tool list."""
        started: dict[str, list[dict]] = {}
        for server_id in self._servers:
            try:
                started[server_id] = self.start(server_id)
            except Exception as e:
                logger.error(f"Could not start {server_id}: {e}")
                started[server_id] = []
        return started

    def stop(self, server_id: str) -> None:
        entry = self._servers.get(server_id)
        if entry is None or entry.transport is None:
            return
        entry.transport.stop()
        entry.transport = None
        logger.info(f"Stopped {server_id}")

    def stop_all(self) -> None:
        for server_id in list(self._servers):
            self.stop(server_id)

    def ping(self, server_id: str) -> dict:
        return self._request(server_id, "ping", {})

    def call_tool(self, server_id: str, tool_name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """
        Call a tool and return its result envelope.

        Raises:
            ToolCallError: for protocol faults (e.g. unknown tool). Tool
                failures come back as an envelope with an ``error`` key.
        """
        result = self._request(server_id, "tools/call", {"name": tool_name, "arguments": arguments or {}})
        return result_from_dict(result or {})

    def call(self, server_id: str, tool_name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Call a tool and return the decoded JSON payload of its envelope."""
        return self.call_tool(server_id, tool_name, arguments).payload()

    def list_tools(self, server_id: str) -> list[dict]:
        entry = self._servers.get(server_id)
        return entry.tools if entry else []

    def server_info(self, server_id: str) -> dict:
        entry = self._servers.get(server_id)
        return entry.server_info if entry else {}

    def list_servers(self) -> dict[str, bool]:
        """Map of server id to whether its process is alive."""
        return {server_id: entry.alive for server_id, entry in self._servers.items()}

    def is_running(self, server_id: str) -> bool:
        entry = self._servers.get(server_id)
        return entry is not None and entry.alive

    def stderr_output(self, server_id: str) -> str:
        """Log output captured from a running server."""
        entry = self._servers.get(server_id)
        if entry is None or entry.transport is None:
            return ""
        return entry.transport.stderr_output()
