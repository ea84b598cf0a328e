"""
Backend adapters, one per wrapped system.

Driver imports (asyncpg, aiomysql, boto3, httpx) live in the individual
modules, so importing this package does not pull in every driver.
"""

from mcp_adapters.backends.base import Backend, Stopwatch, timed

__all__ = ["Backend", "Stopwatch", "timed"]
