import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from document_vault.managers.security_manager import SecurityManager
from document_vault.utils.error_handling import RateLimitExceeded


def _redis_with_count(count):
    redis = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, 1, count, True])
    redis.pipeline.return_value = pipe
    redis.zrange = AsyncMock(return_value=[("oldest", time.time() - 30)])
    return redis


def _security(redis):
    manager = MagicMock()
    manager.get_redis = AsyncMock(return_value=redis)
    return SecurityManager(redis=manager, enabled=True)


@pytest.mark.asyncio
async def test_rate_limit_allows_within_window():
    redis = _redis_with_count(3)
    security = _security(redis)

    await security.check_rate_limit("user-1", limit=5, period=60)

    redis.pipeline.return_value.zadd.assert_called_once()
    redis.zrange.assert_not_awaited()


@pytest.mark.asyncio
async def test_rate_limit_exceeded():
    security = _security(_redis_with_count(6))

    with pytest.raises(RateLimitExceeded) as exc_info:
        await security.check_rate_limit("user-1", limit=5, period=60)

    assert exc_info.value.status_code == 429
    assert 1 <= exc_info.value.retry_after <= 60


@pytest.mark.asyncio
async def test_rate_limit_fails_open_when_redis_down():
    manager = MagicMock()
    manager.get_redis = AsyncMock(side_effect=RedisConnectionError("refused"))
    security = SecurityManager(redis=manager, enabled=True)

    await security.check_rate_limit("user-1")
    await security.check_lockout("10.0.0.1")


@pytest.mark.asyncio
async def test_disabled_manager_skips_redis():
    manager = MagicMock()
    manager.get_redis = AsyncMock()
    security = SecurityManager(redis=manager, enabled=False)

    await security.check_rate_limit("user-1")
    await security.check_lockout("10.0.0.1")
    await security.record_failed_auth("10.0.0.1", "AUTH_TOKEN_INVALID")

    manager.get_redis.assert_not_awaited()


@pytest.mark.asyncio
async def test_lockout_blocks_client():
    redis = MagicMock()
    redis.ttl = AsyncMock(return_value=120)
    security = _security(redis)

    with pytest.raises(RateLimitExceeded) as exc_info:
        await security.check_lockout("10.0.0.1")
    assert exc_info.value.retry_after == 120

    redis.ttl = AsyncMock(return_value=-2)
    await security.check_lockout("10.0.0.1")


@pytest.mark.asyncio
async def test_failed_auth_threshold_sets_lockout():
    from document_vault.config import settings

    redis = MagicMock()
    redis.incr = AsyncMock(return_value=settings.FAILED_AUTH_THRESHOLD)
    redis.expire = AsyncMock()
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    security = _security(redis)

    await security.record_failed_auth("10.0.0.1", "AUTH_TOKEN_INVALID")

    redis.set.assert_awaited_once_with("vault:lockout:10.0.0.1", "1", ex=settings.AUTH_LOCKOUT_SECONDS)
    redis.delete.assert_awaited_once_with("vault:authfail:10.0.0.1")


@pytest.mark.asyncio
async def test_first_failure_starts_window():
    from document_vault.config import settings

    redis = MagicMock()
    redis.incr = AsyncMock(return_value=1)
    redis.expire = AsyncMock()
    redis.set = AsyncMock()
    security = _security(redis)

    await security.record_failed_auth("10.0.0.1", "AUTH_TOKEN_EXPIRED")

    redis.expire.assert_awaited_once_with("vault:authfail:10.0.0.1", settings.FAILED_AUTH_WINDOW_SECONDS)
    redis.set.assert_not_awaited()
