"""
Request throttling and authentication lockout backed by Redis.

- Per-principal sliding window: at most `RATE_LIMIT_REQUESTS` requests per
  `RATE_LIMIT_PERIOD_SECONDS`, tracked in a sorted set of request timestamps.
- Failed-authentication lockout: `FAILED_AUTH_THRESHOLD` failures from one client inside
  `FAILED_AUTH_WINDOW_SECONDS` block that client for `AUTH_LOCKOUT_SECONDS`.

Redis errors are logged and the request is allowed through.
"""

import time
import uuid

from fastapi import Request
from redis.exceptions import RedisError

from document_vault.config import settings
from document_vault.managers.logging_manager import get_logger
from document_vault.managers.redis_manager import RedisManager, redis_manager
from document_vault.utils.error_handling import RateLimitExceeded
from document_vault.utils.logging_utils import log_security_event

logger = get_logger(prefix="[SecurityManager]")

KEY_PREFIX = "vault"


class SecurityManager:
    def __init__(self, redis: RedisManager = None, enabled: bool = None):
        self.redis_manager = redis or redis_manager
        self.enabled = settings.RATE_LIMIT_ENABLED if enabled is None else enabled

    @staticmethod
    def get_client_ip(request: Request) -> str:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def check_rate_limit(self, user_id: str, limit: int = None, period: int = None) -> None:
        """Sliding-window check for one principal; raises `RateLimitExceeded` (429)."""
        if not self.enabled:
            return
        limit = limit or settings.RATE_LIMIT_REQUESTS
        period = period or settings.RATE_LIMIT_PERIOD_SECONDS
        key = f"{KEY_PREFIX}:ratelimit:{user_id}"
        now = time.time()

        try:
            redis = await self.redis_manager.get_redis()
            pipe = redis.pipeline()
            pipe.zremrangebyscore(key, 0, now - period)
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.zcard(key)
            pipe.expire(key, period)
            results = await pipe.execute()
            current = results[2]

            if current > limit:
                oldest = await redis.zrange(key, 0, 0, withscores=True)
                retry_after = period
                if oldest:
                    retry_after = max(1, int(oldest[0][1] + period - now))
                logger.warning("Rate limit exceeded for user %s: %d/%d", user_id, current, limit)
                raise RateLimitExceeded(retry_after=retry_after)
        except RedisError as e:
            logger.error("Error checking rate limit for user %s: %s", user_id, e, exc_info=True)

    async def check_lockout(self, client_ip: str) -> None:
        if not self.enabled:
            return
        try:
            redis = await self.redis_manager.get_redis()
            remaining = await redis.ttl(f"{KEY_PREFIX}:lockout:{client_ip}")
        except RedisError as e:
            logger.error("Error checking lockout for %s: %s", client_ip, e, exc_info=True)
            return
        if remaining and remaining > 0:
            raise RateLimitExceeded("Too many failed authentication attempts", retry_after=remaining)

    async def record_failed_auth(self, client_ip: str, reason: str) -> None:
        if not self.enabled:
            return
        key = f"{KEY_PREFIX}:authfail:{client_ip}"
        try:
            redis = await self.redis_manager.get_redis()
            failures = await redis.incr(key)
            if failures == 1:
                await redis.expire(key, settings.FAILED_AUTH_WINDOW_SECONDS)
            if failures >= settings.FAILED_AUTH_THRESHOLD:
                await redis.set(f"{KEY_PREFIX}:lockout:{client_ip}", "1", ex=settings.AUTH_LOCKOUT_SECONDS)
                await redis.delete(key)
                log_security_event(
                    event_type="auth_lockout",
                    ip_address=client_ip,
                    success=False,
                    details={"failures": failures, "reason": reason},
                )
        except RedisError as e:
            logger.error("Error recording failed authentication for %s: %s", client_ip, e, exc_info=True)


security_manager = SecurityManager()
