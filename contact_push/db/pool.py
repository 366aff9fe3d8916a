"""
PostgreSQL connection pool for the push feature's message store.
Opened by the app lifespan and the worker, probed by /readyz.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from contact_push.config import settings
from contact_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
STATEMENT_TIMEOUT = "30s"


class DatabasePoolManager:
    """Owns one AsyncConnectionPool handing out dict-row autocommit connections."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self.pool is not None and not self._closed

    async def initialize(self) -> None:
        if self.pool is not None:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")
        if not settings.DATABASE_URL:
            raise RuntimeError("DATABASE_URL not configured")

        pool_config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_config,
        )

        try:
            await pool.open(wait=True)
            self.pool = pool
            await self._probe()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self.pool = None
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool initialized",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
        )

    @staticmethod
    async def _configure_connection(conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        # Pooled connections must never sit in INTRANS
        await conn.set_autocommit(True)
        app_name = f"contact-push-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def _probe(self) -> float:
        """Run SELECT 1 and return the round trip in milliseconds."""
        started = time.perf_counter()
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database probe returned an unexpected result")
        return (time.perf_counter() - started) * 1000

    async def close(self) -> None:
        if self.pool is None or self._closed:
            return

        logger.info("Closing database connection pool")
        self._closed = True
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out")
        finally:
            self.pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        if self._closed:
            raise RuntimeError("Database pool is closed")
        if self.pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        """Readiness view of the pool: probe latency and current size."""
        if not self.initialized:
            error = "Pool is closed" if self._closed else "Pool not initialized"
            return {"healthy": False, "service": "database_pool", "error": error}

        try:
            latency_ms = await self._probe()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round(latency_ms, 2),
            "pool_stats": {
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Connection context manager from the shared pool."""
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
