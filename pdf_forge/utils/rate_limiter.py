"""
Rate limiting utilities for API endpoints.

This module provides per-client sliding-window rate limiting so a single
client cannot monopolise the rendering workers.
"""

import logging
import time
from typing import Dict, Any, List, Tuple
import asyncio

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window rate limiter keyed by client identifier.

    A limit of 0 disables limiting entirely.
    """

    def __init__(self, limit: int, period: float = 60.0):
        self.limit = limit
        self.period = period
        self._requests: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    async def check(self, client_id: str) -> Tuple[bool, Dict[str, Any]]:
        """
        Check whether a request from a client is allowed and record it if so.

        Args:
            client_id: Client identifier (API key or remote address)

        Returns:
            Tuple[bool, Dict]: (allowed, limit_info)
        """
        if not self.enabled:
            return True, {"allowed": True, "limit": 0, "remaining": 0}

        async with self._lock:
            current_time = time.monotonic()

            # Clean up requests that fell out of the window
            window = [
                ts for ts in self._requests.get(client_id, [])
                if current_time - ts < self.period
            ]

            allowed = len(window) < self.limit
            if allowed:
                window.append(current_time)
            self._requests[client_id] = window

            limit_info = {
                "allowed": allowed,
                "limit": self.limit,
                "remaining": max(0, self.limit - len(window)),
                "reset_in_seconds": int(self.period - (current_time - window[0])) if window else int(self.period),
            }

        if not allowed:
            logger.warning(f"Rate limit exceeded for client {client_id}")

        return allowed, limit_info

    async def cleanup(self) -> int:
        """Drop clients with no requests in the current window. Returns the number removed."""
        async with self._lock:
            current_time = time.monotonic()
            stale = [
                client_id for client_id, stamps in self._requests.items()
                if not any(current_time - ts < self.period for ts in stamps)
            ]
            for client_id in stale:
                self._requests.pop(client_id, None)
        return len(stale)

    async def cleanup_loop(self, interval: float = 300.0):
        """Background task that periodically drops stale client entries."""
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.cleanup()
                if removed:
                    logger.debug(f"Rate limiter dropped {removed} idle clients")
            except Exception as e:
                logger.error(f"Error in rate limiter cleanup task: {e}")
