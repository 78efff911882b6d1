"""Per-client-IP sliding window rate limiting.

Write endpoints (upload, paste) draw from a stricter budget than reads, and
path-prefix overrides take precedence over both.
"""

import json
import time

from litestar.types import ASGIApp, Receive, Scope, Send

WRITE_PATHS = ("/api/upload", "/api/paste")

WINDOW = 60.0


def get_client_ip(scope: Scope) -> str:
    """Extract client IP, checking x-forwarded-for first."""
    headers = dict(scope.get("headers", []))
    forwarded = headers.get(b"x-forwarded-for")
    if forwarded:
        return forwarded.decode().split(",")[0].strip()
    client = scope.get("client")
    if client:
        return client[0]
    return "unknown"


class RateLimitMiddleware:
    """ASGI middleware that enforces per-IP request rate limits.

    Args:
        app: The ASGI application to wrap.
        requests_per_minute: Default limit for all paths.
        write_requests_per_minute: Limit for POSTs to upload and paste.
        paths: Dict of path-prefix -> requests_per_minute overrides.
    """

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 60,
        write_requests_per_minute: int = 10,
        paths: dict[str, int] | None = None,
    ) -> None:
        self.app = app
        self.requests_per_minute = requests_per_minute
        self.write_requests_per_minute = write_requests_per_minute
        self.paths = paths or {}
        self._buckets: dict[str, list[float]] = {}
        self._last_cleanup = time.monotonic()

    def _get_limit(self, method: str, path: str) -> tuple[str, int]:
        """Return (bucket_suffix, limit_per_minute) for a request."""
        best_match = ""
        for prefix in self.paths:
            if path.startswith(prefix) and len(prefix) > len(best_match):
                best_match = prefix
        if best_match:
            return best_match, self.paths[best_match]

        if method == "POST" and path.rstrip("/") in WRITE_PATHS:
            return "write", self.write_requests_per_minute

        return "", self.requests_per_minute

    def _cleanup_stale(self, now: float) -> None:
        if now - self._last_cleanup < WINDOW:
            return
        self._last_cleanup = now
        cutoff = now - WINDOW
        for key in list(self._buckets):
            live = [t for t in self._buckets[key] if t > cutoff]
            if live:
                self._buckets[key] = live
            else:
                del self._buckets[key]

    def _check_rate(self, key: str, limit: int) -> tuple[bool, int]:
        """Record a hit for *key* if under *limit*. Returns (allowed, retry_after_seconds)."""
        now = time.monotonic()
        self._cleanup_stale(now)
        cutoff = now - WINDOW

        hits = [t for t in self._buckets.get(key, []) if t > cutoff]
        self._buckets[key] = hits

        if len(hits) >= limit:
            retry_after = int(hits[0] - cutoff) + 1
            return False, max(retry_after, 1)

        hits.append(now)
        return True, 0

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "/")
        bucket_suffix, limit = self._get_limit(scope.get("method", "GET"), path)
        allowed, retry_after = self._check_rate(f"{get_client_ip(scope)}:{bucket_suffix}", limit)

        if not allowed:
            body = json.dumps({"status_code": 429, "detail": "Too Many Requests"}).encode()
            await send({
                "type": "http.response.start",
                "status": 429,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode()),
                    (b"retry-after", str(retry_after).encode()),
                ],
            })
            await send({"type": "http.response.body", "body": body})
            return

        await self.app(scope, receive, send)
