"""
Run Tools: start adapter servers and call their tools from the command line.

It:
1. Starts adapter servers (stdio subprocesses)
2. Lists the tools they advertise
3. Optionally calls one tool and prints its envelope payload

Usage:
    # List bundled servers
    python run_tools.py --list

    # Show tools of a server
    python run_tools.py --server npm-registry --tools

    # Call a tool
    python run_tools.py --server npm-registry --call get_package_info --args '{"packageName": "react"}'

    # In-memory TempMail, no Cloudflare account needed
    python run_tools.py --server tempmail --env TEMPMAIL_STORE=memory --call get_domains
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))

from mcp_adapters.bridge import describe_tool
from mcp_adapters.manager import ToolCallError, ToolServerManager
from mcp_adapters.servers import SERVER_MODULES

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_env(pairs: list[str]) -> dict[str, str]:
    """Turn ``KEY=VALUE`` strings into a dict."""
    env = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


def start_servers(manager: ToolServerManager, server_ids: list[str], env: dict[str, str]) -> dict[str, list[dict]]:
    """Register and start bundled servers; return discovered tools per server."""
    discovered = {}

    for sid in server_ids:
        manager.register_builtin(sid, env=env or None, cwd=str(PROJECT_ROOT))
        try:
            tools = manager.start(sid)
            logger.info(f"  [{sid}] started, tools: {[t['name'] for t in tools]}")
            discovered[sid] = tools
        except Exception as e:
            logger.error(f"  [{sid}] failed to start: {e}")
            stderr = manager.stderr_output(sid)
            if stderr:
                logger.error(stderr.rstrip())

    return discovered


def main():
    parser = argparse.ArgumentParser(
        description="Start adapter servers and call their tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_tools.py --list
  python run_tools.py --server postgresql --tools
  python run_tools.py --server postgresql --call read_query --args '{"query": "SELECT 1"}'
        """,
    )
    parser.add_argument("--list", action="store_true", help="List bundled servers and exit")
    parser.add_argument("--server", "-s", type=str, nargs="*", default=None, help="Which servers to start")
    parser.add_argument("--tools", action="store_true", help="Print the tools each server advertises")
    parser.add_argument("--call", type=str, default=None, help="Tool to call (requires exactly one --server)")
    parser.add_argument("--args", type=str, default="{}", help="Tool arguments as a JSON object")
    parser.add_argument("--env", type=str, nargs="*", default=[], help="Extra KEY=VALUE environment for the servers")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.list:
        print(f"\nBundled servers ({len(SERVER_MODULES)}):\n")
        for sid, module in SERVER_MODULES.items():
            print(f"  {sid:<18} python -m {module}")
        return

    if not args.server:
        parser.error("--server is required (or use --list)")
    if args.call and len(args.server) != 1:
        parser.error("--call needs exactly one --server")

    try:
        env = parse_env(args.env)
        arguments = json.loads(args.args)
    except (ValueError, json.JSONDecodeError) as e:
        parser.error(str(e))
    if not isinstance(arguments, dict):
        parser.error("--args must be a JSON object")

    # ── Start servers ─────────────────────────────────────
    manager = ToolServerManager()

    # Graceful shutdown on Ctrl+C
    def shutdown(sig, frame):
        print("\nShutting down servers...")
        manager.stop_all()
        sys.exit(0)
    signal.signal(signal.SIGINT, shutdown)

    try:
        discovered = start_servers(manager, args.server, env)
    except ValueError as e:
        manager.stop_all()
        parser.error(str(e))

    try:
        if args.tools:
            for sid, tools in discovered.items():
                print(f"\n[{sid}] {len(tools)} tools\n")
                for schema in tools:
                    print(describe_tool(schema))
                    print()

        if args.call:
            sid = args.server[0]
            if sid not in discovered:
                sys.exit(1)
            try:
                result = manager.call_tool(sid, args.call, arguments)
            except ToolCallError as e:
                print(f"Error: {e}")
                sys.exit(1)
            print(json.dumps(result.payload(), indent=2))
            if result.is_error:
                sys.exit(1)
    finally:
        manager.stop_all()


if __name__ == "__main__":
    main()
