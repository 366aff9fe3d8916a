# contact_push/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from contact_push.config import settings
from contact_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled Redis client backing the push job queue."""

    def __init__(self, url: str | None = None):
        self.url = url or settings.REDIS_URL
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:20] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=20,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Fast Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def push_job(self, queue: str, payload: str) -> int:
        """Append a job payload to a queue and return the queue length."""
        await self._ensure_initialized()
        return int(await self.client.lpush(queue, payload))

    async def pop_job(self, queue: str, timeout_s: int = 5) -> str | None:
        """Block until a job payload is available or the timeout elapses."""
        await self._ensure_initialized()
        result = await self.client.brpop([queue], timeout=timeout_s)
        if not result:
            return None
        _, payload = result
        return payload

    async def queue_length(self, queue: str) -> int:
        await self._ensure_initialized()
        return int(await self.client.llen(queue))


# Global instance
fast_redis = FastRedisClient()
