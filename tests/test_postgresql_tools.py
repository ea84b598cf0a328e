import asyncio

from mcp_adapters.backends.postgresql import PostgreSQLBackend, PostgreSQLConfig
from mcp_adapters.backends.sql import QueryResult
from mcp_adapters.servers.postgresql import build_server


class FakeConnection:
    """Quacks like an asyncpg connection."""

    def __init__(self, results=None, error=None):
        self.results = list(results or [])
        self.error = error
        self.queries = []
        self.closed = 0

    async def fetch(self, query, *args):
        self.queries.append((query, args))
        if self.error:
            raise self.error
        return self.results.pop(0) if self.results else []

    async def close(self):
        self.closed += 1


class UndefinedTableError(Exception):
    sqlstate = "42P01"
    detail = None


def make_backend(conn: FakeConnection) -> tuple[PostgreSQLBackend, list]:
    connects = []

    async def connect():
        connects.append(1)
        return conn

    return PostgreSQLBackend(PostgreSQLConfig(), connect=connect), connects


def call_tool(backend, name, arguments):
    server = build_server(backend)
    return asyncio.run(server.dispatch(name, arguments)).payload()


def test_registers_all_tools():
    server = build_server(make_backend(FakeConnection())[0])
    assert server.tool_names == ["read_query", "list_tables", "describe_table", "list_databases", "list_schemas"]
    assert server.name == "postgresql-mcp-server"


def test_read_query_reports_rows_and_timing():
    class FixedTiming:
        async def execute_query(self, query):
            return QueryResult(data=[{"id": 1, "name": "ada"}, {"id": 2, "name": "grace"}], row_count=2, execution_time=15)

    payload = call_tool(FixedTiming(), "read_query", {"query": "SELECT * FROM users"})

    assert payload == {
        "query": "SELECT * FROM users",
        "rowCount": 2,
        "executionTime": "15ms",
        "data": [{"id": 1, "name": "ada"}, {"id": 2, "name": "grace"}],
    }


def test_write_statement_refused_without_connecting():
    conn = FakeConnection()
    backend, connects = make_backend(conn)

    payload = call_tool(backend, "read_query", {"query": "DROP TABLE users"})

    assert "read-only queries are allowed" in payload["error"]
    assert payload["error"].startswith("PostgreSQL Error:")
    assert payload["code"] == "WRITE_OPERATION_NOT_ALLOWED"
    assert payload["query"] == "DROP TABLE users"
    assert connects == []


def test_describe_missing_table_is_correlated():
    conn = FakeConnection(error=UndefinedTableError('relation "public.ghost" does not exist'))
    backend, _ = make_backend(conn)

    payload = call_tool(backend, "describe_table", {"tableName": "ghost"})

    assert payload["error"].startswith("PostgreSQL Error:")
    assert payload["code"] == "42P01"
    assert payload["tableName"] == "ghost"
    assert payload["schemaName"] == "public"
    assert conn.closed == 1


def test_describe_table_shapes_columns():
    conn = FakeConnection(results=[[
        {
            "column_name": "id",
            "data_type": "integer",
            "is_nullable": "NO",
            "column_default": "nextval('users_id_seq'::regclass)",
            "character_maximum_length": None,
            "constraint_type": "PRIMARY KEY",
        },
        {
            "column_name": "email",
            "data_type": "character varying",
            "is_nullable": "YES",
            "column_default": None,
            "character_maximum_length": 255,
            "constraint_type": None,
        },
    ]])
    backend, _ = make_backend(conn)

    payload = call_tool(backend, "describe_table", {"tableName": "users", "schemaName": "crm"})

    assert payload["tableName"] == "users"
    assert payload["schema"] == "crm"
    assert payload["columnCount"] == 2
    assert payload["columns"][0] == {
        "name": "id",
        "type": "integer",
        "nullable": False,
        "default": "nextval('users_id_seq'::regclass)",
        "constraint": "PRIMARY KEY",
        "maxLength": None,
    }
    assert payload["columns"][1]["nullable"] is True
    # Identifiers travel as bound parameters
    assert conn.queries[0][1] == ("crm", "users")


def test_list_tables_defaults_to_public():
    conn = FakeConnection(results=[[
        {"table_name": "orders", "table_type": "BASE TABLE", "table_schema": "public"},
        {"table_name": "recent_orders", "table_type": "VIEW", "table_schema": "public"},
    ]])
    backend, _ = make_backend(conn)

    payload = call_tool(backend, "list_tables", {})

    assert payload["tableCount"] == 2
    assert payload["schema"] == "public"
    assert payload["tables"][1] == {"name": "recent_orders", "type": "VIEW", "schema": "public"}
    assert conn.queries[0][1] == ("public",)


def test_list_databases_and_schemas():
    conn = FakeConnection(results=[
        [{"datname": "app"}, {"datname": "postgres"}],
        [{"schema_name": "crm"}, {"schema_name": "public"}],
    ])
    backend, connects = make_backend(conn)
    server = build_server(backend)

    async def scenario():
        databases = await server.dispatch("list_databases", {})
        schemas = await server.dispatch("list_schemas", {})
        return databases.payload(), schemas.payload()

    databases, schemas = asyncio.run(scenario())

    assert databases == {"databaseCount": 2, "databases": ["app", "postgres"]}
    assert schemas == {"schemaCount": 2, "schemas": ["crm", "public"]}
    # One connection per call, each closed
    assert len(connects) == 2
    assert conn.closed == 2


def test_connection_failure():
    async def refuse():
        raise ConnectionRefusedError("Connect call failed ('127.0.0.1', 5432)")

    backend = PostgreSQLBackend(PostgreSQLConfig(), connect=refuse)
    payload = call_tool(backend, "list_schemas", {})

    assert payload["error"].startswith("PostgreSQL Error: Failed to connect to PostgreSQL:")
    assert payload["code"] == "CONNECTION_ERROR"


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("POSTGRESQL_HOST", "db.internal")
    monkeypatch.setenv("POSTGRESQL_PORT", "6543")
    monkeypatch.setenv("POSTGRESQL_SSL", "true")
    monkeypatch.delenv("POSTGRESQL_DATABASE", raising=False)

    config = PostgreSQLConfig.from_env()

    assert config.host == "db.internal"
    assert config.port == 6543
    assert config.ssl is True
    assert config.database == "postgres"
    assert config.connection_timeout == 30000
