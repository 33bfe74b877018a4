from __future__ import annotations

import asyncio
import time
from collections import deque

from fastapi import HTTPException


class ScannerRateLimiter:
    """Sliding one-window limiter keyed by scanner location."""

    def __init__(self, window_seconds: int = 60) -> None:
        self.window_seconds = window_seconds
        self._scans: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, scanner_location: str, limit: int) -> tuple[bool, int]:
        """Record one scan; returns (allowed, seconds until the next slot frees up)."""
        now = time.monotonic()
        async with self._lock:
            recent = self._scans.setdefault(scanner_location, deque())
            while recent and recent[0] <= now - self.window_seconds:
                recent.popleft()
            if len(recent) >= limit:
                return False, max(int(self.window_seconds - (now - recent[0])) + 1, 1)
            recent.append(now)
            return True, 0

    async def reset(self) -> None:
        async with self._lock:
            self._scans.clear()


_scanner_limiter = ScannerRateLimiter()


async def reset_rate_limiter_state() -> None:
    await _scanner_limiter.reset()


async def enforce_scan_rate_limit(scanner_location: str, *, limit: int) -> None:
    allowed, retry_after = await _scanner_limiter.allow(scanner_location, limit)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Too many scans from {scanner_location}. Retry in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )
