"""
Query helpers for the repository layer.

Each helper runs on the supplied connection or borrows one from the shared
pool, and turns psycopg errors into DatabaseError.
"""

import asyncio
import functools
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from contact_push.db.pool import get_db_connection
from contact_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A query failed; ``operation`` names the helper that ran it."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation

    @property
    def transient(self) -> bool:
        return isinstance(self.__cause__, psycopg.OperationalError)


@asynccontextmanager
async def _borrowed(
    connection: psycopg.AsyncConnection | None, operation: str, query: str
) -> AsyncGenerator[psycopg.AsyncConnection, None]:
    try:
        if connection is not None:
            yield connection
        else:
            async with await get_db_connection() as conn:
                yield conn
    except psycopg.Error as e:
        logger.error("Database query failed", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """Run a query and return its first row as a dict, or None."""
    async with _borrowed(connection, "fetch_one", query) as conn:
        cursor = await conn.execute(query, params)
        return await cursor.fetchone()


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    async with _borrowed(connection, "fetch_all", query) as conn:
        cursor = await conn.execute(query, params)
        return await cursor.fetchall()


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a write and return the affected row count."""
    async with _borrowed(connection, "execute", query) as conn:
        cursor = await conn.execute(query, params)
        return cursor.rowcount


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository coroutine when the database connection drops.

    Only DatabaseError caused by psycopg.OperationalError is retried, with
    delays of base_delay * 2 ** attempt.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not e.transient or attempt >= max_retries:
                        raise
                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
