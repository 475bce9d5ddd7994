#!/usr/bin/env python3
"""
Fixed-window rate limiting for the API.

Counters live in Redis when it is configured and reachable, otherwise in an
in-memory dict swept periodically. Stores are created in the application
lifespan and reach the routes through the dependencies at the bottom of this
module.
"""

import asyncio
import time
from dataclasses import dataclass
from math import ceil
from typing import Callable, Dict, List, Optional

import redis
import redis.asyncio as aioredis
from fastapi import Request, Response

from ..utils.logger import get_logger
from .config import Config
from .errors import ApiError

logger = get_logger()


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimitStore:
    """Counts hits per key in fixed windows of ``window_seconds``."""

    def __init__(self, window_seconds: int, max_requests: int, prefix: str = "ratelimit",
                 use_redis: Optional[bool] = None):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.prefix = prefix
        self.use_redis = Config.RATE_LIMIT_BACKEND == "redis" if use_redis is None else use_redis
        self.redis_client: Optional[aioredis.Redis] = None
        self.memory_counters: Dict[str, List[float]] = {}  # key -> [count, reset_at]
        self._sweeper: Optional[asyncio.Task] = None

    async def start(self):
        """Connect the backend and begin sweeping expired in-memory windows."""
        if self.use_redis:
            try:
                self.redis_client = aioredis.Redis(
                    host=Config.REDIS_HOST,
                    port=Config.REDIS_PORT,
                    db=Config.REDIS_DB,
                    decode_responses=True,
                )
                await self.redis_client.ping()
                logger.info(f"[RATELIMIT] Using Redis for '{self.prefix}' counters")
            except (redis.RedisError, OSError) as e:
                logger.warning(f"[RATELIMIT] Redis not available ({e}), using in-memory counters")
                await self._close_redis()
                self.use_redis = False

        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self._close_redis()
        self.memory_counters.clear()

    async def _close_redis(self):
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.window_seconds)
            self.sweep()

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop windows that have ended. Returns how many were dropped."""
        now = time.time() if now is None else now
        expired = [key for key, (_, reset_at) in self.memory_counters.items() if reset_at <= now]
        for key in expired:
            del self.memory_counters[key]
        return len(expired)

    def _result(self, count: int, reset_at: float, now: float) -> RateLimitResult:
        allowed = count <= self.max_requests
        return RateLimitResult(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
            retry_after=0 if allowed else max(1, ceil(reset_at - now)),
        )

    def _hit_memory(self, key: str, now: float) -> RateLimitResult:
        entry = self.memory_counters.get(key)
        if entry is None or entry[1] <= now:
            entry = [0, now + self.window_seconds]
            self.memory_counters[key] = entry
        entry[0] += 1
        return self._result(int(entry[0]), entry[1], now)

    async def _hit_redis(self, key: str, now: float) -> RateLimitResult:
        redis_key = f"{self.prefix}:{key}"
        count = await self.redis_client.incr(redis_key)
        if count == 1:
            await self.redis_client.expire(redis_key, self.window_seconds)
        ttl = await self.redis_client.ttl(redis_key)
        if ttl < 0:
            # key lost its expiry; start a fresh window
            await self.redis_client.expire(redis_key, self.window_seconds)
            ttl = self.window_seconds
        return self._result(count, now + ttl, now)

    async def hit(self, key: str) -> RateLimitResult:
        now = time.time()
        if self.use_redis and self.redis_client is not None:
            try:
                return await self._hit_redis(key, now)
            except redis.RedisError as e:
                logger.warning(f"[RATELIMIT] Redis error ({e}), counting in memory")
        return self._hit_memory(key, now)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip")
    address = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else "unknown")
    return f"{address}:{request.url.path}"


def chat_key(request: Request) -> str:
    return f"chat:{request.headers.get('x-user-id') or 'anonymous'}"


def rate_limit(store_name: str, key_func: Callable[[Request], str], message: str = "Too many requests, please try again later"):
    """Build a dependency that counts the request against ``app.state.<store_name>``."""

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        store: RateLimitStore = getattr(request.app.state, store_name)
        result = await store.hit(key_func(request))
        if not result.allowed:
            logger.warning(f"[RATELIMIT] Rejected {key_func(request)} ({store_name})")
            raise ApiError.too_many_requests(message, headers=result.headers())
        response.headers.update(result.headers())
        return result

    return dependency


chat_rate_limit = rate_limit("chat_limiter", chat_key, "You are sending messages too quickly. Please wait a moment.")
api_rate_limit = rate_limit("api_limiter", client_key)
