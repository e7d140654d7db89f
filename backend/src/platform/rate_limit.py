"""
Shared fixed-window rate limiting backed by Redis.

Counters live in Redis so every application instance sees the same
window. When REDIS_URL is unset the limiter allows everything (logged
once); a Redis error fails open with a warning.

Usage:
    from src.platform.rate_limit import rate_limit

    @router.post("/checkout", dependencies=[Depends(rate_limit("checkout"))])
    async def create_checkout(...):
        ...
"""

import logging
import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional

import redis
from fastapi import HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPreset:
    name: str
    limit: int
    window_seconds: int


PRESETS: Dict[str, RateLimitPreset] = {
    "auth": RateLimitPreset("auth", 10, 60),
    "password": RateLimitPreset("password", 5, 300),
    "api": RateLimitPreset("api", 100, 60),
    "webhook": RateLimitPreset("webhook", 200, 60),
    "checkout": RateLimitPreset("checkout", 10, 60),
}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """Fixed-window counter per (preset, identifier, window)."""

    KEY_PREFIX = "ratelimit"

    def __init__(
        self,
        redis_client: Optional["redis.Redis"] = None,
        redis_url: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._redis_client = redis_client
        self._redis_url = redis_url or os.getenv("REDIS_URL")
        self._clock = clock
        self._disabled_logged = False

    def _get_redis(self) -> Optional["redis.Redis"]:
        if self._redis_client is None and self._redis_url:
            self._redis_client = redis.from_url(self._redis_url, decode_responses=True)
        if self._redis_client is None and not self._disabled_logged:
            logger.info("REDIS_URL not set, rate limiting disabled")
            self._disabled_logged = True
        return self._redis_client

    def _key(self, preset: RateLimitPreset, identifier: str, window: int) -> str:
        return f"{self.KEY_PREFIX}:{preset.name}:{identifier}:{window}"

    def check(self, preset_name: str, identifier: str) -> RateLimitDecision:
        """
        Count one request against the preset's current window.

        Raises:
            KeyError: Unknown preset name
        """
        preset = PRESETS[preset_name]
        client = self._get_redis()
        if client is None:
            return RateLimitDecision(True, preset.limit, preset.limit)

        now = int(self._clock())
        window = now // preset.window_seconds
        key = self._key(preset, identifier, window)
        try:
            pipe = client.pipeline()
            pipe.incr(key)
            pipe.expire(key, preset.window_seconds)
            count, _ = pipe.execute()
        except redis.RedisError as e:
            logger.warning("Rate limiter unavailable, allowing request", extra={
                "preset": preset.name,
                "error": str(e),
            })
            return RateLimitDecision(True, preset.limit, preset.limit)

        count = int(count)
        if count > preset.limit:
            retry_after = preset.window_seconds - (now % preset.window_seconds)
            return RateLimitDecision(False, preset.limit, 0, retry_after=max(retry_after, 1))
        return RateLimitDecision(True, preset.limit, preset.limit - count)


_limiter: Optional[RateLimiter] = None
_limiter_lock = Lock()


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        with _limiter_lock:
            if _limiter is None:
                _limiter = RateLimiter()
    return _limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    """Install (or clear, with None) the process-wide limiter. Tests use this."""
    global _limiter
    _limiter = limiter


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(preset_name: str):
    """FastAPI dependency factory answering 429 with Retry-After when over the limit."""
    if preset_name not in PRESETS:
        raise ValueError(f"Unknown rate limit preset: {preset_name}")

    async def dependency(request: Request) -> None:
        identifier = client_identifier(request)
        decision = await run_in_threadpool(get_rate_limiter().check, preset_name, identifier)
        if not decision.allowed:
            logger.warning("Rate limit exceeded", extra={
                "preset": preset_name,
                "identifier": identifier,
                "path": request.url.path,
            })
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={"error": "rate_limited", "retry_after": decision.retry_after},
                headers={"Retry-After": str(decision.retry_after)},
            )

    return dependency
