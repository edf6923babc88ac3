from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request, Response

from backoffice.core.config import Settings, settings
from backoffice.core.exceptions import RateLimitError
from backoffice.core.logging import get_structlog_logger
from backoffice.middleware.auth import TokenManager

logger = get_structlog_logger(__name__)

INGESTION = "ingestion"
SENSITIVE = "sensitive"
GENERAL = "general"
STATUS_UPDATE = "status_update"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    current: int
    reset_time: float
    limit: int
    remaining: int
    retry_after: int

    def headers(self) -> Dict[str, str]:
        reset = datetime.fromtimestamp(self.reset_time, tz=timezone.utc)
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset.isoformat(),
        }


class FixedWindowRateLimiter:
    """Process-local fixed-window counter per key.

    The first request for a key, or the first after its window elapsed,
    opens a new window with count 1; later requests in the window increment
    it. A request is allowed while the count stays within ``max_requests``.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
        sweep_interval: Optional[float] = None,
    ):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.sweep_interval = sweep_interval or settings.rate_limit_sweep_interval_seconds
        # key -> (count, window_start)
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, key: str) -> RateLimitResult:
        now = self.clock()
        entry = self._entries.get(key)

        if entry is None or now >= entry[1] + self.window_seconds:
            count, window_start = 1, now
        else:
            count, window_start = entry[0] + 1, entry[1]
        self._entries[key] = (count, window_start)

        reset_time = window_start + self.window_seconds
        allowed = count <= self.max_requests
        return RateLimitResult(
            allowed=allowed,
            current=count,
            reset_time=reset_time,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            retry_after=0 if allowed else max(1, math.ceil(reset_time - now)),
        )

    def sweep(self) -> int:
        """Drop entries whose window has elapsed; returns how many were removed."""
        now = self.clock()
        expired = [key for key, (_, start) in self._entries.items() if now >= start + self.window_seconds]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("rate_limit.swept", limiter=self.name, removed=len(expired), remaining=len(self._entries))
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(), name=f"rate-limit-sweep:{self.name}")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    def reset(self) -> None:
        self._entries.clear()


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def api_key_or_ip(request: Request) -> str:
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"apikey:{api_key}"
    return f"ip:{client_ip(request)}"


def user_or_ip(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        payload = TokenManager.verify_token(auth_header[7:].strip())
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return f"ip:{client_ip(request)}"


class RateLimiterRegistry:
    """The named rate-limit policies of one application instance."""

    def __init__(self, config: Optional[Settings] = None, clock: Callable[[], float] = time.time):
        config = config or settings
        interval = config.rate_limit_sweep_interval_seconds
        self._policies: Dict[str, Tuple[FixedWindowRateLimiter, Callable[[Request], str]]] = {
            INGESTION: (
                FixedWindowRateLimiter(
                    INGESTION,
                    config.rate_limit_ingestion_requests,
                    config.rate_limit_ingestion_window_seconds,
                    clock,
                    interval,
                ),
                api_key_or_ip,
            ),
            SENSITIVE: (
                FixedWindowRateLimiter(
                    SENSITIVE,
                    config.rate_limit_sensitive_requests,
                    config.rate_limit_sensitive_window_seconds,
                    clock,
                    interval,
                ),
                user_or_ip,
            ),
            GENERAL: (
                FixedWindowRateLimiter(
                    GENERAL,
                    config.rate_limit_general_requests,
                    config.rate_limit_general_window_seconds,
                    clock,
                    interval,
                ),
                user_or_ip,
            ),
            STATUS_UPDATE: (
                FixedWindowRateLimiter(
                    STATUS_UPDATE,
                    config.rate_limit_status_update_requests,
                    config.rate_limit_status_update_window_seconds,
                    clock,
                    interval,
                ),
                user_or_ip,
            ),
        }

    def get(self, policy: str) -> FixedWindowRateLimiter:
        return self._policies[policy][0]

    def key_for(self, policy: str, request: Request) -> str:
        return self._policies[policy][1](request)

    def check(self, policy: str, request: Request) -> RateLimitResult:
        return self.get(policy).check(self.key_for(policy, request))

    def start(self) -> None:
        for limiter, _ in self._policies.values():
            limiter.start()
        logger.info("rate_limit.started", policies=sorted(self._policies))

    async def stop(self) -> None:
        for limiter, _ in self._policies.values():
            await limiter.stop()
        logger.info("rate_limit.stopped")

    def reset(self) -> None:
        for limiter, _ in self._policies.values():
            limiter.reset()


def rate_limit(policy: str):
    """Dependency enforcing ``policy``; rate-limit headers are set on every check."""

    async def _check(request: Request, response: Response) -> RateLimitResult:
        registry: RateLimiterRegistry = request.app.state.rate_limiters
        result = registry.check(policy, request)
        headers = result.headers()
        # Picked up by the exception handlers when the route fails later on
        request.state.rate_limit_headers = headers

        if not result.allowed:
            logger.warning(
                "rate_limit.exceeded",
                policy=policy,
                path=request.url.path,
                method=request.method,
                current=result.current,
                limit=result.limit,
                retry_after=result.retry_after,
            )
            raise RateLimitError(
                message="Too many requests, please try again later",
                retry_after=result.retry_after,
                headers=headers,
            )

        response.headers.update(headers)
        return result

    return _check
