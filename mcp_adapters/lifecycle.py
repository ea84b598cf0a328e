"""
Process lifecycle for an adapter server.

    build backend ──► build ToolServer ──► probe backend
                                             │
                         fails ◄─────────────┤
                           │                 ▼ ok
                     close backend     bind stdio channel
                        exit 1               │
                                             ▼
                                       serve until EOF,
                                       signal or fatal error
                                             │
                                             ▼
                                     shutdown() (idempotent)
                                     close backend, exit 0/1

Usage (from a server module):

    def main() -> None:
        run_server(lambda: NPMRegistryBackend(NPMRegistryConfig.from_env()), build_server)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import Awaitable, Callable

from mcp_adapters.backends.base import Backend
from mcp_adapters.config import call_timeout_from_env, load_env_file
from mcp_adapters.errors import ConfigError, DuplicateToolError
from mcp_adapters.server import ToolServer
from mcp_adapters.transport import Channel, StdioChannel

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Send logs to stderr; stdout carries protocol frames only."""
    if level is None:
        level = os.getenv("MCP_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


class ServerLifecycle:
    """
    Owns the termination hooks and the ordered teardown of one server process.

    Exactly one instance per process. Every exit path (signal, end of
    input, fatal asynchronous error, failed probe) funnels into
    ``shutdown()``, which runs its body at most once.
    """

    def __init__(
        self,
        server: ToolServer,
        backend: Backend,
        channel_factory: Callable[[], Awaitable[Channel]] = StdioChannel.open,
    ):
        self.server = server
        self.backend = backend
        self.channel_factory = channel_factory
        self.channel: Channel | None = None
        self.exit_code: int | None = None
        self._stop: asyncio.Event | None = None
        self._serve_task: asyncio.Task | None = None
        self._shutdown_done = False
        self._signals: list[signal.Signals] = []

    async def run(self) -> int:
        """Run the server to completion and return the process exit code."""
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        self._install_hooks(loop)
        try:
            if not await self._probe():
                return 1
            if self.exit_code is not None:
                # Signalled during the probe
                return self.exit_code

            self.channel = await self.channel_factory()
            logger.info(f"{self.server.name} running on stdio")

            self._serve_task = asyncio.create_task(self.server.serve(self.channel))
            self._serve_task.add_done_callback(self._on_serve_done)

            await self._stop.wait()
            return self.exit_code or 0
        finally:
            await self.shutdown()
            self._remove_hooks(loop)

    async def _probe(self) -> bool:
        name = self.backend.display_name
        try:
            ok = await self.backend.test_connection()
        except Exception as e:
            logger.error(f"Failed to connect to {name}: {e}")
            return False
        if not ok:
            logger.error(f"Failed to connect to {name}")
            return False
        logger.info(f"Connected to {name}")
        return True

    # ── Termination paths ────────────────────────────────

    def request_stop(self, code: int) -> None:
        """Ask the run loop to exit. The first request decides the exit code."""
        if self.exit_code is not None:
            return
        self.exit_code = code
        if self._stop is not None:
            self._stop.set()

    def handle_signal(self, sig: signal.Signals) -> None:
        if self.exit_code is not None:
            logger.debug(f"Received {sig.name} during shutdown, ignoring")
            return
        logger.info(f"Received {sig.name}, shutting down gracefully...")
        self.request_stop(0)

    def _on_serve_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Serve loop failed: {exc!r}")
            self.request_stop(1)
        else:
            logger.info("Input closed, shutting down")
            self.request_stop(0)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        logger.error(
            f"Unhandled error: {context.get('message', 'unknown')}",
            exc_info=(type(exc), exc, exc.__traceback__) if exc else None,
        )
        self.request_stop(1)

    async def shutdown(self) -> None:
        """Cancel serving, close the channel and release the backend. Idempotent."""
        if self._shutdown_done:
            return
        self._shutdown_done = True

        if self._serve_task is not None and not self._serve_task.done():
            self._serve_task.cancel()
            try:
                await self._serve_task
            except asyncio.CancelledError:
                pass

        await self.server.close()

        if self.channel is not None:
            try:
                await self.channel.close()
            except Exception as e:
                logger.warning(f"Error closing channel: {e}")

        try:
            await self.backend.close()
        except Exception as e:
            logger.warning(f"Error closing {self.backend.display_name}: {e}")

        logger.info(f"{self.server.name} stopped")

    # ── Hooks ────────────────────────────────────────────

    def _install_hooks(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.set_exception_handler(self._on_loop_exception)
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                # No signal support (non-main thread or Windows)
                continue
            self._signals.append(sig)

    def _remove_hooks(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()
        loop.set_exception_handler(None)


def run_server(
    make_backend: Callable[[], Backend],
    make_server: Callable[..., ToolServer],
) -> None:
    """Entry point shared by every ``python -m mcp_adapters.servers.<name>``."""
    load_env_file()
    configure_logging()

    try:
        backend = make_backend()
        server = make_server(backend, call_timeout=call_timeout_from_env())
    except (ConfigError, DuplicateToolError) as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    lifecycle = ServerLifecycle(server, backend)
    sys.exit(asyncio.run(lifecycle.run()))
