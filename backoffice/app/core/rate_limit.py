"""
Fixed-window rate limiting on Redis.

Each limited action keeps a counter per subject (client IP or user id) that
is opened with SET NX carrying a TTL equal to the window and then counted
with INCR. If Redis is unreachable the limiter fails open and logs a
warning.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import RateLimitExceeded
from backoffice.app.core.redis_client import get_redis

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "ratelimit:"


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    limit: int
    window_seconds: int
    message: str


LOGIN_RULE = RateLimitRule(
    name="login",
    limit=settings.login_rate_limit,
    window_seconds=settings.login_rate_window_seconds,
    message="Too many failed login attempts, please try again later",
)

PASSWORD_RESET_RULE = RateLimitRule(
    name="password_reset",
    limit=settings.password_reset_rate_limit,
    window_seconds=settings.password_reset_rate_window_seconds,
    message="Too many password reset requests, please try again later",
)

VERIFICATION_RULE = RateLimitRule(
    name="verification",
    limit=settings.verification_rate_limit,
    window_seconds=settings.verification_rate_window_seconds,
    message="Too many verification emails requested, please try again later",
)


class RateLimiter:
    """
    Counter operations for one rule.

    `check` rejects when the window is already full without counting;
    `hit` counts one attempt. `consume` counts and rejects in one step, for
    actions where every attempt counts (reset requests, verification
    resends). Login only calls `hit` on failure so successful logins never
    use up the allowance.
    """

    def __init__(self, redis_client, rule: RateLimitRule):
        self.redis = redis_client
        self.rule = rule

    def _key(self, subject: str) -> str:
        return f"{RATE_LIMIT_PREFIX}{self.rule.name}:{subject}"

    async def _count(self, subject: str) -> int:
        try:
            value = await self.redis.get(self._key(subject))
        except Exception as e:
            logger.warning("Rate limit read failed for %s: %s", self.rule.name, e)
            return 0
        return int(value) if value else 0

    async def check(self, subject: Optional[str]) -> None:
        """
        Raises:
            RateLimitExceeded: the subject has used up the window
        """
        if subject is None:
            return
        if await self._count(subject) >= self.rule.limit:
            logger.warning("Rate limit %s exceeded by %s", self.rule.name, subject)
            raise RateLimitExceeded(self.rule.message, retry_after=self.rule.window_seconds)

    async def hit(self, subject: Optional[str]) -> int:
        """Count one attempt; returns the new count (0 when Redis is down)."""
        if subject is None:
            return 0
        key = self._key(subject)
        try:
            # NX keeps an open window; INCR leaves its TTL in place
            await self.redis.set(key, 0, ex=self.rule.window_seconds, nx=True)
            return await self.redis.incr(key)
        except Exception as e:
            logger.warning("Rate limit write failed for %s: %s", self.rule.name, e)
            return 0

    async def consume(self, subject: Optional[str]) -> None:
        """
        Count the attempt, then reject it if the window is over the limit.

        Raises:
            RateLimitExceeded: the attempt is over the window's limit
        """
        if await self.hit(subject) > self.rule.limit:
            logger.warning("Rate limit %s exceeded by %s", self.rule.name, subject)
            raise RateLimitExceeded(self.rule.message, retry_after=self.rule.window_seconds)

    async def reset(self, subject: Optional[str]) -> None:
        if subject is None:
            return
        try:
            await self.redis.delete(self._key(subject))
        except Exception as e:
            logger.warning("Rate limit reset failed for %s: %s", self.rule.name, e)


def limiter_for(rule: RateLimitRule):
    """
    Dependency factory returning a RateLimiter for a rule.

    Usage:
        @router.post("/forgot-password")
        async def forgot_password(limiter: RateLimiter = Depends(limiter_for(PASSWORD_RESET_RULE))):
            ...
    """
    async def dependency(redis_client=Depends(get_redis)) -> RateLimiter:
        return RateLimiter(redis_client, rule)

    return dependency
