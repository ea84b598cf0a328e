"""
MySQL MCP server: read-only access to the database named by MYSQL_DATABASE.

Launch:
    MYSQL_DATABASE=app python -m mcp_adapters.servers.mysql
"""

from __future__ import annotations

from pydantic import Field

from mcp_adapters import __version__
from mcp_adapters.backends.mysql import MySQLBackend, MySQLConfig
from mcp_adapters.lifecycle import run_server
from mcp_adapters.schema import ToolParams
from mcp_adapters.server import ToolHandler, ToolServer


class ReadQueryParams(ToolParams):
    query: str = Field(min_length=1, description="Read-only SQL statement")


class DescribeTableParams(ToolParams):
    table_name: str = Field(min_length=1, description="Table to describe")


class MySQLTool(ToolHandler):
    def __init__(self, db: MySQLBackend):
        self.db = db


class ReadQueryTool(MySQLTool):
    name = "read_query"
    title = "Execute Read Query"
    description = "Execute a SELECT query on the MySQL database"
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


class ListTablesTool(MySQLTool):
    name = "list_tables"
    title = "List Tables"
    description = "List all tables in the current database"

    async def handle(self, params) -> dict:
        tables = await self.db.list_tables()
        return {
            "tableCount": len(tables),
            "tables": [{"name": t.name, "type": t.type, "schema": t.schema} for t in tables],
        }


class DescribeTableTool(MySQLTool):
    name = "describe_table"
    title = "Describe Table"
    description = "Get the structure and schema information of a specific table"
    params_model = DescribeTableParams
    context_fields = ("tableName",)

    async def handle(self, params: DescribeTableParams) -> dict:
        columns = await self.db.describe_table(params.table_name)
        return {
            "tableName": params.table_name,
            "columnCount": len(columns),
            "columns": [
                {
                    "name": c.name,
                    "type": c.type,
                    "nullable": c.nullable,
                    "default": c.default,
                    "key": c.key,
                    "extra": c.extra,
                    "comment": c.comment,
                }
                for c in columns
            ],
        }


class ShowDatabasesTool(MySQLTool):
    name = "show_databases"
    title = "Show Databases"
    description = "List all available databases on the MySQL server"

    async def handle(self, params) -> dict:
        databases = await self.db.show_databases()
        return {"databaseCount": len(databases), "databases": databases}


TOOLS = (ReadQueryTool, ListTablesTool, DescribeTableTool, ShowDatabasesTool)


def build_server(backend: MySQLBackend, call_timeout: float | None = None) -> ToolServer:
    server = ToolServer("mysql-mcp-server", __version__, call_timeout=call_timeout)
    for tool_class in TOOLS:
        server.register(tool_class(backend))
    return server


def main() -> None:
    run_server(lambda: MySQLBackend(MySQLConfig.from_env()), build_server)


if __name__ == "__main__":
    main()
