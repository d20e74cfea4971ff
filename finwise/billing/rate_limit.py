"""Sliding-window rate limiting for billing actions, backed by Redis sorted sets."""

import logging
import math
import time
import uuid
from dataclasses import dataclass

import redis.asyncio as redis
from fastapi import Depends, HTTPException, Request, status

from finwise.auth.dependencies import get_current_user
from finwise.config import Settings
from finwise.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int  # seconds until the oldest hit leaves the window


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` hits per ``window_seconds`` for each identifier.

    Each hit is a member of a sorted set scored by its timestamp; members older
    than the window are trimmed before counting.
    """

    def __init__(
        self,
        client: redis.Redis,
        limit: int,
        window_seconds: int,
        prefix: str = "ratelimit:billing",
    ) -> None:
        self._client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    async def hit(self, identifier: str) -> RateLimitResult:
        key = f"{self.prefix}:{identifier}"
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex}"

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, self.window_seconds)
            _, _, count, oldest, _ = await pipe.execute()

        if count <= self.limit:
            return RateLimitResult(allowed=True, remaining=self.limit - count, retry_after=0)

        # Rejected attempts do not count against the window.
        await self._client.zrem(key, member)
        oldest_score = oldest[0][1] if oldest else now
        retry_after = max(math.ceil(oldest_score + self.window_seconds - now), 1)
        return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)


def build_rate_limiter(client: redis.Redis, settings: Settings) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        client,
        limit=settings.billing_rate_limit_requests,
        window_seconds=settings.billing_rate_limit_window_seconds,
    )


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    """FastAPI dependency returning the limiter built at startup."""
    return request.app.state.rate_limiter


def billing_rate_limit(action: str):
    """Build a dependency that rate limits ``action`` per authenticated user.

    Usage::

        @router.post("/checkout", dependencies=[Depends(billing_rate_limit("checkout"))])
    """

    async def check(
        user: User = Depends(get_current_user),
        limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    ) -> None:
        try:
            result = await limiter.hit(f"{action}:{user.id}")
        except redis.RedisError:
            logger.warning("Rate limit store unavailable, allowing %s for user %s", action, user.id)
            return

        if not result.allowed:
            logger.warning("Rate limit exceeded for %s by user %s", action, user.id)
            minutes = math.ceil(limiter.window_seconds / 60)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many {action} attempts. Please wait {minutes} minutes before trying again.",
                headers={"Retry-After": str(result.retry_after)},
            )

    return check
