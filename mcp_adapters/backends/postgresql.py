"""PostgreSQL backend over asyncpg, one connection per call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import asyncpg
from pydantic import BaseModel, Field

from mcp_adapters.backends.sql import SQLBackend, TableInfo
from mcp_adapters.config import build_config, env_bool, env_int, env_str
from mcp_adapters.errors import PostgreSQLError

logger = logging.getLogger(__name__)


class PostgreSQLConfig(BaseModel):
    host: str = "localhost"
    port: int = Field(5432, ge=1, le=65535)
    user: str = "postgres"
    password: str = ""
    database: str = "postgres"
    ssl: bool = False
    connection_timeout: int = Field(30000, gt=0, description="Milliseconds")

    @classmethod
    def from_env(cls) -> "PostgreSQLConfig":
        return build_config(
            cls,
            host=env_str("POSTGRESQL_HOST"),
            port=env_int("POSTGRESQL_PORT"),
            user=env_str("POSTGRESQL_USER"),
            password=env_str("POSTGRESQL_PASSWORD"),
            database=env_str("POSTGRESQL_DATABASE"),
            ssl=env_bool("POSTGRESQL_SSL"),
            connection_timeout=env_int("POSTGRESQL_CONNECTION_TIMEOUT"),
        )


@dataclass
class PostgreSQLColumn:
    name: str
    type: str
    nullable: bool
    default: str | None
    constraint: str | None
    max_length: int | None


LIST_TABLES_SQL = """
    SELECT table_name, table_type, table_schema
    FROM information_schema.tables
    WHERE table_schema = $1
    ORDER BY table_name
"""

DESCRIBE_TABLE_SQL = """
    SELECT
        c.column_name,
        c.data_type,
        c.is_nullable,
        c.column_default,
        c.character_maximum_length,
        tc.constraint_type
    FROM information_schema.columns c
    LEFT JOIN information_schema.key_column_usage kcu
        ON c.table_schema = kcu.table_schema
        AND c.table_name = kcu.table_name
        AND c.column_name = kcu.column_name
    LEFT JOIN information_schema.table_constraints tc
        ON kcu.constraint_name = tc.constraint_name
        AND kcu.table_schema = tc.table_schema
    WHERE c.table_schema = $1
        AND c.table_name = $2
    ORDER BY c.ordinal_position
"""

LIST_DATABASES_SQL = """
    SELECT datname
    FROM pg_database
    WHERE datistemplate = false
    ORDER BY datname
"""

LIST_SCHEMAS_SQL = """
    SELECT schema_name
    FROM information_schema.schemata
    WHERE schema_name NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
    ORDER BY schema_name
"""


class PostgreSQLBackend(SQLBackend):
    display_name = "PostgreSQL"
    error_class = PostgreSQLError

    config: PostgreSQLConfig

    async def open_connection(self) -> asyncpg.Connection:
        return await asyncpg.connect(
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            database=self.config.database,
            timeout=self.config.connection_timeout / 1000,
            # "require" encrypts without verifying the server certificate
            ssl="require" if self.config.ssl else False,
        )

    async def fetch(self, conn: asyncpg.Connection, query: str, args: tuple) -> list[dict[str, Any]]:
        records = await conn.fetch(query, *args)
        return [dict(record) for record in records]

    async def release(self, conn: asyncpg.Connection) -> None:
        await conn.close()

    def native_error(self, exc: Exception) -> tuple[str | None, str | None]:
        return getattr(exc, "sqlstate", None), getattr(exc, "detail", None)

    async def list_tables(self, schema_name: str = "public") -> list[TableInfo]:
        result = await self.execute_query(LIST_TABLES_SQL, schema_name)
        return [
            TableInfo(name=row["table_name"], type=row["table_type"], schema=row["table_schema"])
            for row in result.data
        ]

    async def describe_table(self, table_name: str, schema_name: str = "public") -> list[PostgreSQLColumn]:
        result = await self.execute_query(DESCRIBE_TABLE_SQL, schema_name, table_name)
        return [
            PostgreSQLColumn(
                name=row["column_name"],
                type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default=row["column_default"],
                constraint=row["constraint_type"],
                max_length=row["character_maximum_length"],
            )
            for row in result.data
        ]

    async def list_databases(self) -> list[str]:
        result = await self.execute_query(LIST_DATABASES_SQL)
        return [row["datname"] for row in result.data]

    async def list_schemas(self) -> list[str]:
        result = await self.execute_query(LIST_SCHEMAS_SQL)
        return [row["schema_name"] for row in result.data]
