"""
Transport layer for MCP tool communication.

Both ends speak newline-delimited JSON-RPC 2.0: one line = one message.

Server side:
  - StdioChannel: async reader/writer bound to the process's stdin/stdout,
    held open for the lifetime of the adapter server.

Client side:
  - StdioTransport: launches an adapter server as a subprocess and talks
    to it through its stdin/stdout pipes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import IO, Any, TextIO

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Upper bound for a single inbound frame
MAX_FRAME_BYTES = 16 * 1024 * 1024


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""
    method: str
    params: dict[str, Any]
    id: int | str | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    @classmethod
    def from_dict(cls, message: dict) -> "JsonRpcRequest":
        """Build a request from a decoded frame that already has a string ``method``."""
        return cls(method=message["method"], params=message.get("params") or {}, id=message.get("id"))

    def to_dict(self) -> dict:
        message = {"jsonrpc": JSONRPC_VERSION, "method": self.method, "params": self.params}
        if self.id is not None:
            message["id"] = self.id
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        parsed = json.loads(data)
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=parsed.get("error"),
        )

    @classmethod
    def failure(cls, request_id: Any, code: int, message: str) -> "JsonRpcResponse":
        return cls(id=request_id, error={"code": code, "message": message})

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        message = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error
        else:
            message["result"] = self.result
        return message


class FrameError(ValueError):
    """An inbound line that is not a JSON document."""


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------

class Channel(ABC):
    """A single duplex, message-framed stream to one calling peer."""

    @abstractmethod
    async def read_frame(self) -> Any:
        """Return the next decoded frame, or None once the peer has closed."""
        ...

    @abstractmethod
    async def write_frame(self, frame: dict) -> None:
        ...

    async def close(self) -> None:
        pass


class StdioChannel(Channel):
    """
    Newline-delimited JSON frames over a StreamReader and a text stream.

    Writes are serialized with a lock, so responses produced by concurrent
    handlers never interleave on the output stream.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: TextIO,
        pipe_transport: asyncio.BaseTransport | None = None,
    ):
        self._reader = reader
        self._writer = writer
        self._pipe_transport = pipe_transport
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls) -> "StdioChannel":
        """Bind the channel to this process's stdin/stdout."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=MAX_FRAME_BYTES)
        pipe_transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
        )
        logger.debug("Stdio channel bound")
        return cls(reader, sys.stdout, pipe_transport)

    async def read_frame(self) -> Any:
        while True:
            try:
                line = await self._reader.readline()
            except ValueError as e:
                raise FrameError(f"Frame too large: {e}") from e
            if not line:
                return None
            line = line.strip()
            if not line:
                continue
            try:
                return json.loads(line)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise FrameError(f"Parse error: {e}") from e

    async def write_frame(self, frame: dict) -> None:
        data = json.dumps(frame, ensure_ascii=False, default=str) + "\n"
        async with self._write_lock:
            self._writer.write(data)
            self._writer.flush()

    async def close(self) -> None:
        if self._pipe_transport is not None:
            self._pipe_transport.close()
            self._pipe_transport = None


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------

class Transport(ABC):
    """Abstract client transport for MCP communication."""

    @abstractmethod
    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Send a request and return the response."""
        ...

    @abstractmethod
    def notify(self, request: JsonRpcRequest) -> None:
        """Send a notification (no response is read)."""
        ...

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to an adapter server subprocess.

    We write requests to its stdin and read responses from its stdout.
    Calls are issued one at a time, so each request reads exactly one line.
    """

    def __init__(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ):
        """
        Args:
            command: Command to launch the adapter server process.
                     e.g., [sys.executable, "-m", "mcp_adapters.servers.npm_registry"]
            env: Optional environment for the subprocess.
            cwd: Optional working directory for the subprocess.
        """
        self.command = command
        self.env = env
        self.cwd = cwd
        self._process: subprocess.Popen | None = None
        self._stderr: IO[str] | None = None
        self._request_id = 0

    def start(self) -> None:
        if self._process and self._process.poll() is None:
            logger.warning("Transport already running, stopping first")
            self.stop()

        logger.info(f"Starting stdio transport: {' '.join(self.command)}")
        # Server logs go to a file so a full stderr pipe can never block it
        self._stderr = tempfile.TemporaryFile(mode="w+")
        self._process = subprocess.Popen(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=self._stderr,
            text=True,
            env=self.env,
            cwd=self.cwd,
            bufsize=1,  # Line-buffered
        )

    def stop(self) -> None:
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait()
            for stream in (self._process.stdin, self._process.stdout):
                if stream:
                    stream.close()
            self._process = None
            logger.info("Stdio transport stopped")
        if self._stderr:
            self._stderr.close()
            self._stderr = None

    def stderr_output(self) -> str:
        """Everything the server has logged so far."""
        if not self._stderr:
            return ""
        self._stderr.flush()
        self._stderr.seek(0)
        return self._stderr.read()

    @property
    def returncode(self) -> int | None:
        return self._process.poll() if self._process else None

    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def _write(self, request: JsonRpcRequest) -> None:
        if not self.is_alive():
            raise RuntimeError("Transport not running. Call start() first.")
        self._process.stdin.write(request.to_json() + "\n")
        self._process.stdin.flush()

    def notify(self, request: JsonRpcRequest) -> None:
        self._write(request)

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        self._write(request)

        response_line = self._process.stdout.readline()
        if not response_line:
            # Process may have died
            self._process.wait(timeout=5)
            stderr = self.stderr_output()
            raise RuntimeError(
                f"Adapter server exited with status {self._process.returncode}. "
                f"stderr: {stderr[-500:]}"
            )

        return JsonRpcResponse.from_json(response_line.strip())

    def next_id(self) -> int:
        self._request_id += 1
        return self._request_id
