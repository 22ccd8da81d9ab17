"""Fixed-window rate limiting for spend endpoints, keyed by user when a session is present."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Tuple

from fastapi import Request
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from services.errors import RateLimited, ServiceError
from services.session_token import decode_session_token

logger = logging.getLogger(__name__)

# key -> (hits in window, window end as unix time)
_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _subject(request: Request) -> str:
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            return f"user:{decode_session_token(token.strip())['sub']}"
        except ServiceError:
            pass
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


async def _hit_local(key: str, window_seconds: int) -> Tuple[int, int]:
    now = time.time()
    async with _local_lock:
        hits, window_end = _local_counters.get(key, (0, now + window_seconds))
        if now >= window_end:
            hits, window_end = 0, now + window_seconds
        hits += 1
        _local_counters[key] = (hits, window_end)
    return hits, max(int(window_end - now), 1)


async def _hit_redis(key: str, window_seconds: int) -> Tuple[int, int]:
    timeout = float(settings.REDIS_TIMEOUT_SECONDS)
    client = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=timeout,
        socket_timeout=timeout,
    )
    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.incr(key)
            pipe.ttl(key)
            _, hits, ttl = await pipe.execute()
    finally:
        await client.aclose()
    return int(hits), int(ttl) if ttl and ttl > 0 else window_seconds


def rate_limit(scope: str, limit: int, window_seconds: int) -> Callable[[Request], Awaitable[None]]:
    """
    Build a dependency allowing ``limit`` calls per ``window_seconds`` for each caller.

    Counters live in Redis so every API worker shares them; when Redis cannot be
    reached the process-local counters are used instead.
    """

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"coffeepass:rate:{scope}:{_subject(request)}"
        try:
            hits, retry_after = await _hit_redis(key, window_seconds)
        except (RedisError, OSError) as exc:
            logger.debug("Redis rate limit unavailable, using local counters: %s", exc)
            hits, retry_after = await _hit_local(key, window_seconds)

        if hits > limit:
            logger.info("Rate limit hit scope=%s key=%s hits=%d", scope, key, hits)
            raise RateLimited(f"Too many {scope} requests. Try again in {retry_after} s.", retry_after=retry_after)

    return _dependency
