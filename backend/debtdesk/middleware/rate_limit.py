"""
Redis-backed sliding window rate limiter middleware.

Requests are counted per employee when a bearer token is present and per
client IP otherwise: branch staff sit behind shared NAT addresses, so an IP
bucket would throttle a whole branch for one busy user. The token is only
peeked at for its subject here; it is verified later by the auth dependency,
so a forged subject can at worst spend someone else's budget.

A limit of 0 turns the limiter off. Redis being unavailable fails open.
"""

import time
import logging

from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

import redis.asyncio as aioredis

from debtdesk.config import settings

logger = logging.getLogger(__name__)

# Paths exempt from rate limiting
EXEMPT_PATHS = frozenset({"/api/health", "/metrics"})

KEY_PREFIX = "debtdesk:ratelimit"


def bucket_key(request: Request) -> str:
    """Redis key of the window this request is counted in."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            subject = jwt.get_unverified_claims(auth_header[7:]).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"{KEY_PREFIX}:emp:{subject}"
    client_ip = request.client.host if request.client else "unknown"
    return f"{KEY_PREFIX}:ip:{client_ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        self._redis: aioredis.Redis | None = None
        self.limit = settings.rate_limit_per_minute
        self.window = 60  # seconds

    async def _get_redis(self) -> aioredis.Redis | None:
        if self._redis is None:
            try:
                self._redis = aioredis.from_url(
                    settings.redis_url, decode_responses=True
                )
                await self._redis.ping()
            except Exception as exc:
                logger.warning("Rate limiter: Redis unavailable (%s), passing through", exc)
                self._redis = None
        return self._redis

    async def dispatch(self, request: Request, call_next):
        if self.limit <= 0 or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        r = await self._get_redis()
        if r is None:
            return await call_next(request)

        key = bucket_key(request)
        now = time.time()
        try:
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window)
            pipe.zadd(key, {f"{now:.6f}": now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, self.window)
            _, _, request_count, oldest, _ = await pipe.execute()
        except Exception as exc:
            logger.warning("Rate limiter Redis error: %s", exc)
            return await call_next(request)

        if request_count > self.limit:
            # Seconds until the oldest request in the window ages out.
            oldest_ts = oldest[0][1] if oldest else now
            retry_after = max(1, int(oldest_ts + self.window - now) + 1)
            logger.warning("Rate limit exceeded for %s (%d in %ss)", key, request_count, self.window)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": {"code": "RATE_LIMITED", "message": "Too many requests. Please try again later."},
                },
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.limit - request_count))
        return response
