"""
Fixed-window rate limiting for the HTTP surface.

Counters live in process memory, keyed per client IP and, when a request
carries one, per API key. The cache is bounded; expired windows are evicted
first, then the oldest entries.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Optional

import semantic_memory.config as config
from semantic_memory.mcp.auth_middleware import extract_api_key


EXEMPT_PATHS = ("/health",)


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool
    global_ip: RateLimitRule
    api_key: RateLimitRule
    max_cache_entries: int
    trusted_proxy_count: int


@dataclass
class _Window:
    started_at: float
    count: int


class InMemoryRateLimiter:
    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._windows: dict[str, _Window] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, rule: RateLimitRule, now: Optional[float] = None) -> tuple[bool, int]:
        """Count one request against ``key``. Returns (allowed, retry_after_seconds)."""
        now = time.monotonic() if now is None else now
        async with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.started_at >= rule.window_seconds:
                window = _Window(started_at=now, count=0)
                self._windows[key] = window
                self._evict(now, rule.window_seconds)
            window.count += 1
            retry_after = max(1, int(window.started_at + rule.window_seconds - now))
            return window.count <= rule.limit, retry_after

    def _evict(self, now: float, window_seconds: int) -> None:
        if len(self._windows) <= self.max_entries:
            return
        for key in [k for k, w in self._windows.items() if now - w.started_at >= window_seconds]:
            del self._windows[key]
        while len(self._windows) > self.max_entries:
            oldest = min(self._windows, key=lambda k: self._windows[k].started_at)
            del self._windows[oldest]

    def __len__(self) -> int:
        return len(self._windows)

    async def close(self) -> None:
        async with self._lock:
            self._windows.clear()


def _client_ip(scope, headers: dict[str, str], trusted_proxy_count: int) -> str:
    if trusted_proxy_count > 0:
        forwarded = [part.strip() for part in headers.get("x-forwarded-for", "").split(",") if part.strip()]
        if len(forwarded) >= trusted_proxy_count:
            return forwarded[-trusted_proxy_count]
    client = scope.get("client")
    return client[0] if client else "unknown"


class RateLimitMiddleware:
    """Pure ASGI middleware answering 429 once a window is exhausted."""

    def __init__(self, app, limiter: InMemoryRateLimiter, config: RateLimitConfig):
        self.app = app
        self.limiter = limiter
        self.config = config

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not self.config.enabled:
            await self.app(scope, receive, send)
            return
        if scope.get("path", "").startswith(EXEMPT_PATHS):
            await self.app(scope, receive, send)
            return

        headers = {}
        for header_name, header_value in scope.get("headers", []):
            headers[header_name.decode("latin1").lower()] = header_value.decode("latin1")

        client_ip = _client_ip(scope, headers, self.config.trusted_proxy_count)
        checks = [(f"ip:{client_ip}", self.config.global_ip)]
        api_key = extract_api_key(headers)
        if api_key:
            digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
            checks.append((f"key:{digest}", self.config.api_key))

        for key, rule in checks:
            allowed, retry_after = await self.limiter.hit(key, rule)
            if not allowed:
                config.logger.info("rate_limit_exceeded", extra={"client_host": client_ip, "bucket": key.split(":")[0]})
                await self._send_limited(send, retry_after)
                return

        await self.app(scope, receive, send)

    async def _send_limited(self, send, retry_after: int):
        body = json.dumps({
            "error": "rate_limit_exceeded",
            "retry_after_seconds": retry_after,
        }).encode("utf-8")
        await send({
            "type": "http.response.start",
            "status": 429,
            "headers": [
                [b"content-type", b"application/json"],
                [b"content-length", str(len(body)).encode("latin1")],
                [b"retry-after", str(retry_after).encode("latin1")],
            ],
        })
        await send({"type": "http.response.body", "body": body})


def load_rate_limit_config_from_env() -> RateLimitConfig:
    rule = RateLimitRule(limit=config.RATE_LIMIT_MAX, window_seconds=config.RATE_LIMIT_WINDOW_SECONDS)
    return RateLimitConfig(
        enabled=config.RATE_LIMIT_ENABLED,
        global_ip=rule,
        api_key=rule,
        max_cache_entries=config.RATE_LIMIT_MAX_ENTRIES,
        trusted_proxy_count=config.RATE_LIMIT_TRUSTED_PROXY_COUNT,
    )


def build_rate_limiter_from_env(rate_limit_config: Optional[RateLimitConfig] = None) -> InMemoryRateLimiter:
    rate_limit_config = rate_limit_config or load_rate_limit_config_from_env()
    return InMemoryRateLimiter(max_entries=rate_limit_config.max_cache_entries)
