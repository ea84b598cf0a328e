import asyncio
import signal

import pytest

from mcp_adapters.lifecycle import ServerLifecycle, run_server
from mcp_adapters.server import ToolHandler, ToolServer
from tests.fakes import FakeBackend, FakeChannel, call


class PingTool(ToolHandler):
    name = "ping_backend"
    description = "Answers pong"

    async def handle(self, params):
        return {"pong": True}


def make_server() -> ToolServer:
    server = ToolServer("lifecycle-mcp-server")
    server.register(PingTool())
    return server


class ChannelFactory:
    def __init__(self, channel: FakeChannel, on_open=None):
        self.channel = channel
        self.on_open = on_open
        self.opened = 0

    async def __call__(self) -> FakeChannel:
        self.opened += 1
        if self.on_open:
            self.on_open()
        return self.channel


def test_probe_failure_exits_before_binding_channel():
    backend = FakeBackend(reachable=False)
    factory = ChannelFactory(FakeChannel())
    lifecycle = ServerLifecycle(make_server(), backend, channel_factory=factory)

    code = asyncio.run(lifecycle.run())

    assert code == 1
    assert factory.opened == 0
    assert backend.closed == 1


def test_probe_exception_exits_with_one():
    backend = FakeBackend(probe_error=ConnectionRefusedError("refused"))
    lifecycle = ServerLifecycle(make_server(), backend, channel_factory=ChannelFactory(FakeChannel()))
    assert asyncio.run(lifecycle.run()) == 1
    assert backend.closed == 1


def test_end_of_input_exits_cleanly():
    backend = FakeBackend()
    channel = FakeChannel([call(1, "ping_backend")])
    lifecycle = ServerLifecycle(make_server(), backend, channel_factory=ChannelFactory(channel))

    code = asyncio.run(lifecycle.run())

    assert code == 0
    assert channel.written[0]["id"] == 1
    assert channel.closed == 1
    assert backend.closed == 1


def test_repeated_terminate_signal_shuts_down_once():
    backend = FakeBackend()
    channel = FakeChannel(block_at_end=True)
    lifecycle = None

    def send_signals():
        loop = asyncio.get_running_loop()
        loop.call_soon(lifecycle.handle_signal, signal.SIGTERM)
        loop.call_soon(lifecycle.handle_signal, signal.SIGTERM)

    lifecycle = ServerLifecycle(make_server(), backend, channel_factory=ChannelFactory(channel, send_signals))

    async def scenario():
        code = await lifecycle.run()
        await lifecycle.shutdown()
        return code

    assert asyncio.run(scenario()) == 0
    assert backend.closed == 1
    assert channel.closed == 1


def test_signal_during_probe_never_binds_channel():
    lifecycle = None

    class SlowProbeBackend(FakeBackend):
        async def test_connection(self):
            lifecycle.handle_signal(signal.SIGTERM)
            return await super().test_connection()

    backend = SlowProbeBackend()
    factory = ChannelFactory(FakeChannel(block_at_end=True))
    lifecycle = ServerLifecycle(make_server(), backend, channel_factory=factory)

    assert asyncio.run(lifecycle.run()) == 0
    assert factory.opened == 0
    assert backend.closed == 1


def test_unhandled_async_error_exits_with_one():
    class BrokenChannel(FakeChannel):
        async def write_frame(self, frame):
            raise BrokenPipeError("stdout closed")

    backend = FakeBackend()
    channel = BrokenChannel([call(1, "ping_backend")], block_at_end=True)
    lifecycle = ServerLifecycle(make_server(), backend, channel_factory=ChannelFactory(channel))

    assert asyncio.run(lifecycle.run()) == 1
    assert backend.closed == 1


def test_backend_close_error_does_not_escape():
    class StubbornBackend(FakeBackend):
        async def close(self):
            await super().close()
            raise RuntimeError("pool already closed")

    backend = StubbornBackend()
    lifecycle = ServerLifecycle(make_server(), backend, channel_factory=ChannelFactory(FakeChannel()))
    assert asyncio.run(lifecycle.run()) == 0
    assert backend.closed == 1


def test_duplicate_tool_aborts_startup(monkeypatch):
    def make_backend():
        return FakeBackend()

    def build(backend, call_timeout=None):
        server = ToolServer("dup-mcp-server")
        server.register(PingTool())
        server.register(PingTool())
        return server

    monkeypatch.setattr(
        "mcp_adapters.lifecycle.ServerLifecycle.run",
        lambda self: pytest.fail("lifecycle must not start"),
    )
    with pytest.raises(SystemExit) as exc:
        run_server(make_backend, build)
    assert exc.value.code == 1


def test_invalid_call_timeout_aborts_startup(monkeypatch):
    monkeypatch.setenv("MCP_CALL_TIMEOUT", "-1")
    with pytest.raises(SystemExit) as exc:
        run_server(FakeBackend, lambda backend, call_timeout=None: make_server())
    assert exc.value.code == 1
