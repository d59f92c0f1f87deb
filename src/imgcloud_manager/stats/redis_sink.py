"""Redis-backed stats sink."""

import logging
from typing import Optional

import redis.asyncio as redis

from .base import StatsSink
from ..core.types import RequestStats
from ..core.exceptions import StatsSinkError


logger = logging.getLogger(__name__)


class RedisStatsSink(StatsSink):
    """Appends request statistics to Redis lists with RPUSH."""
    
    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "imgcloud",
        max_connections: int = 10
    ):
        """Initialize Redis stats sink.
        
        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix of every list key
            max_connections: Connection pool size
        """
        super().__init__(key_prefix)
        self.redis_url = redis_url
        self.max_connections = max_connections
        
        self._redis: Optional[redis.Redis] = None
        self._connection_pool: Optional[redis.ConnectionPool] = None
    
    async def start(self) -> None:
        """Open the connection pool."""
        if self._redis is not None:
            return
        
        self._connection_pool = redis.ConnectionPool.from_url(
            self.redis_url,
            max_connections=self.max_connections
        )
        self._redis = redis.Redis(connection_pool=self._connection_pool)
        logger.info(f"Redis stats sink using {self.redis_url}")
    
    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
        
        if self._connection_pool:
            await self._connection_pool.disconnect()
            self._connection_pool = None
    
    async def write_request_stats(self, stats: RequestStats) -> None:
        if self._redis is None:
            raise StatsSinkError("Redis stats sink is not started", error_code="SINK_NOT_STARTED")
        
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                for key, value in self.keys_for(stats).items():
                    pipe.rpush(key, value)
                await pipe.execute()
        except redis.RedisError as e:
            raise StatsSinkError(f"Failed to write stats for instance {stats.instance_id}: {e}") from e
