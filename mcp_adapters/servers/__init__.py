"""
Adapter servers, one module per backend.

Each module exposes ``build_server(backend, call_timeout=None)`` and a
``main()`` entry point, and runs as ``python -m mcp_adapters.servers.<name>``.
"""

# server id → module path, used by the client-side manager and run_tools.py
SERVER_MODULES = {
    "postgresql": "mcp_adapters.servers.postgresql",
    "mysql": "mcp_adapters.servers.mysql",
    "secrets-manager": "mcp_adapters.servers.secrets_manager",
    "datadog": "mcp_adapters.servers.datadog",
    "npm-registry": "mcp_adapters.servers.npm_registry",
    "tempmail": "mcp_adapters.servers.tempmail",
}
