"""Process-wide TTL cache for GET responses.

Keys are ``METHOD path?query|caller``. Writers call ``invalidate`` with a
path fragment (``"/posts"``) and every key containing it is dropped.
"""
import hashlib
import logging
import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

CACHE_HEADER = "X-Cache"


class ResponseCache:
    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, bytes, str]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Tuple[bytes, str]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[0] <= self._clock():
                self._entries.pop(key, None)
                return None
            return entry[1], entry[2]

    def set(self, key: str, body: bytes, media_type: str, ttl_seconds: Optional[int] = None) -> None:
        expires = self._clock() + (ttl_seconds or self.ttl_seconds)
        with self._lock:
            self._entries[key] = (expires, body, media_type)

    def invalidate(self, *fragments: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if any(f in key for f in fragments)]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Cache invalidated for %s (%d keys)", fragments, len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


def cache_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    caller = hashlib.sha256(auth.encode()).hexdigest()[:16] if auth else "anonymous"
    query = request.url.query
    path = request.url.path + (f"?{query}" if query else "")
    return f"{request.method} {path}|{caller}"


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve successful GET responses under ``prefix`` from the cache."""

    def __init__(self, app, cache: ResponseCache, prefix: str = ""):
        super().__init__(app)
        self.cache = cache
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next):
        if request.method != "GET" or not request.url.path.startswith(self.prefix):
            return await call_next(request)

        key = cache_key(request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit %s", key)
            body, media_type = cached
            return Response(content=body, media_type=media_type, headers={CACHE_HEADER: "HIT"})

        response = await call_next(request)
        if response.status_code != 200:
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        media_type = response.media_type or response.headers.get("content-type", "application/json")
        self.cache.set(key, body, media_type)
        headers = dict(response.headers)
        headers.pop("content-length", None)
        headers[CACHE_HEADER] = "MISS"
        return Response(content=body, status_code=response.status_code, headers=headers, media_type=media_type)
