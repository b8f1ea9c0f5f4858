# attendance_engine/services/infrastructure/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from attendance_engine.config import settings
from attendance_engine.db.store import RedisRecordStore
from attendance_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _redact(url: str) -> str:
    # Keep scheme and host only; credentials sit between "//" and "@"
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("//")
    return f"{scheme}//***@{rest.split('@', 1)[1]}"


class FastRedisClient:
    """Pooled Redis connection shared by the record store and health checks."""

    def __init__(self, url: str | None = None, key_prefix: str | None = None):
        self.url = url or settings.REDIS_URL
        self.key_prefix = key_prefix or settings.REDIS_KEY_PREFIX
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return
        if not self.url:
            raise RuntimeError("REDIS_URL is not configured")

        pool_config = settings.get_redis_config()
        try:
            self.pool = ConnectionPool.from_url(
                self.url,
                retry_on_timeout=True,
                health_check_interval=30,
                decode_responses=True,
                **pool_config,
            )
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
        except Exception as e:
            logger.error("Redis connection failed", url=_redact(self.url), error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info(
            "Redis record store connected",
            url=_redact(self.url),
            max_connections=pool_config["max_connections"],
        )

    def record_store(self) -> RedisRecordStore:
        """Record store bound to this connection; call after initialize()."""
        if self.client is None:
            raise RuntimeError("Redis client is not initialized")
        return RedisRecordStore(self.client, self.key_prefix)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        if self.pool is not None:
            await self.pool.disconnect()
        self._initialized = False
        logger.info("Redis connection closed")

    async def ping(self) -> bool:
        """Readiness check; connection errors report False instead of raising."""
        if not self._initialized or self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except redis.RedisError as e:
            logger.warning("Redis ping failed", error=str(e))
            return False
