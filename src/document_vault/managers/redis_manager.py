"""Shared async Redis client."""

from typing import Optional

import redis.asyncio as redis

from document_vault.config import settings
from document_vault.managers.logging_manager import get_logger

logger = get_logger(prefix="[RedisManager]")


class RedisManager:
    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self._client: Optional[redis.Redis] = None

    async def get_redis(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True, socket_timeout=2, socket_connect_timeout=2)
            logger.info("Redis client created for %s", self.url.split("@")[-1])
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


redis_manager = RedisManager()
