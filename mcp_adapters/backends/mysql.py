"""MySQL backend over aiomysql, one connection per call."""

from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import Any

import aiomysql
from pydantic import BaseModel, Field

from mcp_adapters.backends.sql import SQLBackend, TableInfo
from mcp_adapters.config import build_config, env_bool, env_int, env_str
from mcp_adapters.errors import MySQLError

logger = logging.getLogger(__name__)


class MySQLConfig(BaseModel):
    host: str = "localhost"
    port: int = Field(3306, ge=1, le=65535)
    user: str = "root"
    password: str = ""
    database: str = Field(min_length=1)
    ssl: bool = False
    connection_timeout: int = Field(30000, gt=0, description="Milliseconds")

    @classmethod
    def from_env(cls) -> "MySQLConfig":
        return build_config(
            cls,
            host=env_str("MYSQL_HOST"),
            port=env_int("MYSQL_PORT"),
            user=env_str("MYSQL_USER"),
            password=env_str("MYSQL_PASSWORD"),
            database=env_str("MYSQL_DATABASE", required=True),
            ssl=env_bool("MYSQL_SSL"),
            connection_timeout=env_int("MYSQL_CONNECTION_TIMEOUT"),
        )


@dataclass
class MySQLColumn:
    name: str
    type: str
    nullable: bool
    default: str | None
    key: str
    extra: str
    comment: str


LIST_TABLES_SQL = """
    SELECT TABLE_NAME, TABLE_TYPE, TABLE_SCHEMA
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = %s
    ORDER BY TABLE_NAME
"""

DESCRIBE_TABLE_SQL = """
    SELECT
        COLUMN_NAME,
        DATA_TYPE,
        IS_NULLABLE,
        COLUMN_DEFAULT,
        COLUMN_KEY,
        EXTRA,
        COLUMN_COMMENT
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = %s
        AND TABLE_NAME = %s
    ORDER BY ORDINAL_POSITION
"""


class MySQLBackend(SQLBackend):
    display_name = "MySQL"
    error_class = MySQLError

    config: MySQLConfig

    async def open_connection(self) -> aiomysql.Connection:
        return await aiomysql.connect(
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            db=self.config.database,
            connect_timeout=self.config.connection_timeout / 1000,
            ssl=ssl.create_default_context() if self.config.ssl else None,
            autocommit=True,
        )

    async def fetch(self, conn: aiomysql.Connection, query: str, args: tuple) -> list[dict[str, Any]]:
        async with conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(query, args or None)
            rows = await cursor.fetchall()
        return list(rows or [])

    async def release(self, conn: aiomysql.Connection) -> None:
        conn.close()

    def native_error(self, exc: Exception) -> tuple[str | None, str | None]:
        # pymysql errors carry (errno, message)
        if isinstance(exc, aiomysql.MySQLError) and exc.args and isinstance(exc.args[0], int):
            return str(exc.args[0]), None
        return None, None

    async def list_tables(self) -> list[TableInfo]:
        result = await self.execute_query(LIST_TABLES_SQL, self.config.database)
        return [
            TableInfo(name=row["TABLE_NAME"], type=row["TABLE_TYPE"], schema=row["TABLE_SCHEMA"])
            for row in result.data
        ]

    async def describe_table(self, table_name: str) -> list[MySQLColumn]:
        result = await self.execute_query(DESCRIBE_TABLE_SQL, self.config.database, table_name)
        return [
            MySQLColumn(
                name=row["COLUMN_NAME"],
                type=row["DATA_TYPE"],
                nullable=row["IS_NULLABLE"] == "YES",
                default=row["COLUMN_DEFAULT"],
                key=row["COLUMN_KEY"],
                extra=row["EXTRA"],
                comment=row["COLUMN_COMMENT"],
            )
            for row in result.data
        ]

    async def show_databases(self) -> list[str]:
        result = await self.execute_query("SHOW DATABASES")
        return [row["Database"] for row in result.data]
