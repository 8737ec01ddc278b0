"""
Per-client throttling for the endpoints that call Stripe on the request path.

Opening a checkout session and finalizing one both make synchronous Stripe
calls; a client retrying in a tight loop would burn through our Stripe
request quota. Counts live in process memory, so each worker throttles
independently.
"""
import logging
import time
from collections import defaultdict, deque

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding window of request timestamps per key."""

    def __init__(self):
        self._hits: dict[str, deque] = defaultdict(deque)

    def _expire(self, key: str, window_seconds: int) -> deque:
        hits = self._hits[key]
        cutoff = time.monotonic() - window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def check(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Record a hit; False when the window is already full."""
        hits = self._expire(key, window_seconds)
        if len(hits) >= max_requests:
            return False
        hits.append(time.monotonic())
        return True

    def remaining(self, key: str, max_requests: int, window_seconds: int) -> int:
        return max(0, max_requests - len(self._expire(key, window_seconds)))

    def reset(self):
        self._hits.clear()


_limiter = RateLimiter()


def _client_key(request: Request) -> str:
    # Bearer tokens identify a caller better than a shared NAT address
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return "tok:" + auth[7:].strip()[-32:]
    return "ip:" + (request.client.host if request.client else "unknown")


def rate_limit(max_requests: int = 10, window_seconds: int = 60):
    """
    Dependency factory, e.g. ``Depends(rate_limit(30, 60))`` on a route.
    """
    async def _check_rate_limit(request: Request):
        key = f"{_client_key(request)}:{request.url.path}"
        if not _limiter.check(key, max_requests, window_seconds):
            logger.warning(f"Rate limit hit on {request.url.path} ({max_requests}/{window_seconds}s)")
            raise HTTPException(
                status_code=429,
                detail=f"Too many requests. Limit is {max_requests} per {window_seconds} seconds.",
                headers={
                    "Retry-After": str(window_seconds),
                    "X-RateLimit-Limit": str(max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _check_rate_limit
