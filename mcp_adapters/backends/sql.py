"""
Shared machinery for SQL backends: the read-only guard and the
connection-per-call template.

Every statement goes through ``execute_query``:

    ensure_read_only(query)      policy check, no I/O
          │
    connect()                    fresh connection for this call
          │
    fetch(conn, query, args)     one round trip
          │
    release(conn)                always, exactly once

The allow-list is a prefix match on the trimmed, lower-cased statement.
Anything that does not match is rejected; new statement kinds are added
as new exact prefixes.
"""

from __future__ import annotations

import logging
import re
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from mcp_adapters.backends.base import Backend, timed
from mcp_adapters.errors import (
    CONNECTION_ERROR,
    WRITE_OPERATION_NOT_ALLOWED,
    BackendError,
)

logger = logging.getLogger(__name__)

READ_ONLY_PATTERNS = (
    re.compile(r"^select\s"),
    re.compile(r"^show\s"),
    re.compile(r"^explain\s"),
    re.compile(r"^describe\s"),
    re.compile(r"^desc\s"),
    re.compile(r"^with\s+\w+\s+as\s*\("),
)

READ_ONLY_MESSAGE = "Only read-only queries are allowed (SELECT, SHOW, EXPLAIN, DESCRIBE, WITH...AS)"


def is_read_only(query: str) -> bool:
    normalized = query.strip().lower()
    return any(pattern.match(normalized) for pattern in READ_ONLY_PATTERNS)


def ensure_read_only(query: str, error_class: type[BackendError] = BackendError) -> None:
    if not is_read_only(query):
        raise error_class(READ_ONLY_MESSAGE, WRITE_OPERATION_NOT_ALLOWED)


@dataclass
class QueryResult:
    data: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    execution_time: int = 0


@dataclass
class TableInfo:
    name: str
    type: str
    schema: str


class SQLBackend(Backend):
    """
    Connection-per-call SQL adapter.

    Subclasses supply the driver: how to open a connection, run one
    statement and close it, and how to read the driver's error code.
    ``connect`` may be injected to substitute a fake driver.
    """

    error_class: type[BackendError] = BackendError

    def __init__(self, config: Any, connect: Callable[[], Awaitable[Any]] | None = None):
        self.config = config
        self._connect = connect or self.open_connection

    @abstractmethod
    async def open_connection(self) -> Any:
        ...

    @abstractmethod
    async def fetch(self, conn: Any, query: str, args: tuple) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def release(self, conn: Any) -> None:
        ...

    def native_error(self, exc: Exception) -> tuple[str | None, str | None]:
        """Return the driver's (code, detail) for a failed statement."""
        return None, None

    async def execute_query(self, query: str, *args: Any) -> QueryResult:
        ensure_read_only(query, self.error_class)

        with timed() as watch:
            conn = await self._open()
            try:
                rows = await self._run(conn, query, args)
            finally:
                await self._release_quietly(conn)

        logger.debug(f"{self.display_name} query returned {len(rows)} rows in {watch.elapsed_ms}ms")
        return QueryResult(data=rows, row_count=len(rows), execution_time=watch.elapsed_ms)

    async def _open(self) -> Any:
        try:
            return await self._connect()
        except Exception as e:
            raise self.error_class(
                f"Failed to connect to {self.display_name}: {e}",
                CONNECTION_ERROR,
                cause=e,
            ) from e

    async def _run(self, conn: Any, query: str, args: tuple) -> list[dict[str, Any]]:
        try:
            return await self.fetch(conn, query, args)
        except BackendError:
            raise
        except Exception as e:
            code, detail = self.native_error(e)
            raise self.error_class(
                f"Query execution failed: {e}",
                code,
                detail=detail,
                cause=e,
            ) from e

    async def _release_quietly(self, conn: Any) -> None:
        try:
            await self.release(conn)
        except Exception as e:
            logger.warning(f"Error closing {self.display_name} connection: {e}")

    async def test_connection(self) -> bool:
        try:
            conn = await self._open()
        except BackendError as e:
            logger.warning(e.message)
            return False
        try:
            await self.fetch(conn, "SELECT 1 AS test", ())
            return True
        except Exception as e:
            logger.warning(f"{self.display_name} probe query failed: {e}")
            return False
        finally:
            await self._release_quietly(conn)
