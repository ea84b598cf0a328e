"""
PostgreSQL MCP server: read-only access to one PostgreSQL database.

Every tool opens its own connection and closes it before answering.
Statements other than SELECT / SHOW / EXPLAIN / DESCRIBE / WITH...AS are
refused before a connection is attempted.

Launch:
    POSTGRESQL_HOST=localhost POSTGRESQL_DATABASE=app python -m mcp_adapters.servers.postgresql

Test:
    echo '{"jsonrpc":"2.0","method":"tools/list","params":{},"id":1}' | python -m mcp_adapters.servers.postgresql
"""

from __future__ import annotations

from pydantic import Field

from mcp_adapters import __version__
from mcp_adapters.backends.postgresql import PostgreSQLBackend, PostgreSQLConfig
from mcp_adapters.lifecycle import run_server
from mcp_adapters.schema import ToolParams
from mcp_adapters.server import ToolHandler, ToolServer


class ReadQueryParams(ToolParams):
    query: str = Field(min_length=1, description="Read-only SQL statement")


class SchemaParams(ToolParams):
    schema_name: str = Field("public", description="Schema to inspect")


class DescribeTableParams(ToolParams):
    table_name: str = Field(min_length=1, description="Table to describe")
    schema_name: str = Field("public", description="Schema containing the table")


class PostgreSQLTool(ToolHandler):
    def __init__(self, db: PostgreSQLBackend):
        self.db = db


class ReadQueryTool(PostgreSQLTool):
    name = "read_query"
    title = "Execute Read Query"
    description = "Execute a SELECT query on the PostgreSQL database"
    params_model = ReadQueryParams
    context_fields = ("query",)

    async def handle(self, params: ReadQueryParams) -> dict:
        result = await self.db.execute_query(params.query)
        return {
            "query": params.query,
            "rowCount": result.row_count,
            "executionTime": f"{result.execution_time}ms",
            "data": result.data,
        }


class ListTablesTool(PostgreSQLTool):
    name = "list_tables"
    title = "List Tables"
    description = "List all tables in the specified schema (default: public)"
    params_model = SchemaParams
    context_fields = ("schemaName",)

    async def handle(self, params: SchemaParams) -> dict:
        tables = await self.db.list_tables(params.schema_name)
        return {
            "tableCount": len(tables),
            "schema": params.schema_name,
            "tables": [{"name": t.name, "type": t.type, "schema": t.schema} for t in tables],
        }


class DescribeTableTool(PostgreSQLTool):
    name = "describe_table"
    title = "Describe Table"
    description = "Get the structure and schema information of a specific table"
    params_model = DescribeTableParams
    context_fields = ("tableName", "schemaName")

    async def handle(self, params: DescribeTableParams) -> dict:
        columns = await self.db.describe_table(params.table_name, params.schema_name)
        return {
            "tableName": params.table_name,
            "schema": params.schema_name,
            "columnCount": len(columns),
            "columns": [
                {
                    "name": c.name,
                    "type": c.type,
                    "nullable": c.nullable,
                    "default": c.default,
                    "constraint": c.constraint,
                    "maxLength": c.max_length,
                }
                for c in columns
            ],
        }


class ListDatabasesTool(PostgreSQLTool):
    name = "list_databases"
    title = "List Databases"
    description = "List all available databases on the PostgreSQL server"

    async def handle(self, params) -> dict:
        databases = await self.db.list_databases()
        return {"databaseCount": len(databases), "databases": databases}


class ListSchemasTool(PostgreSQLTool):
    name = "list_schemas"
    title = "List Schemas"
    description = "List all schemas in the current database"

    async def handle(self, params) -> dict:
        schemas = await self.db.list_schemas()
        return {"schemaCount": len(schemas), "schemas": schemas}


TOOLS = (ReadQueryTool, ListTablesTool, DescribeTableTool, ListDatabasesTool, ListSchemasTool)


def build_server(backend: PostgreSQLBackend, call_timeout: float | None = None) -> ToolServer:
    server = ToolServer("postgresql-mcp-server", __version__, call_timeout=call_timeout)
    for tool_class in TOOLS:
        server.register(tool_class(backend))
    return server


def main() -> None:
    run_server(lambda: PostgreSQLBackend(PostgreSQLConfig.from_env()), build_server)


if __name__ == "__main__":
    main()
