"""
Admission control for the rendering workers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from pdf_forge.utils.error_handler import AdmissionTimeoutError

logger = logging.getLogger(__name__)


class AdmissionGate:
    """
    Counting gate that bounds how many conversions render at once.

    Exactly ``max_workers`` slots exist. A slot is taken with
    ``async with gate.slot(timeout)`` and returned when the block exits,
    whatever the outcome. Waiters are served roughly in arrival order.
    """

    def __init__(self, max_workers: int):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self._semaphore = asyncio.Semaphore(max_workers)
        self._in_use = 0

    async def acquire(self) -> None:
        """Wait until a slot is free and take it."""
        await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        """Return a slot taken by ``acquire``."""
        if self._in_use <= 0:
            raise RuntimeError("AdmissionGate released more times than acquired")
        self._in_use -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """
        Hold one slot for the duration of the block.

        Args:
            timeout: Seconds to wait for a free slot; None waits forever and
                zero takes a slot only if one is free right now

        Raises:
            AdmissionTimeoutError: If no slot became free in time
        """
        try:
            if timeout is None:
                await self.acquire()
            elif timeout <= 0:
                if self._semaphore.locked():
                    raise asyncio.TimeoutError()
                await self.acquire()
            else:
                await asyncio.wait_for(self.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No rendering slot free after {timeout}s ({self.max_workers} in use)")
            raise AdmissionTimeoutError(details={"waited_seconds": timeout, "max_workers": self.max_workers})

        try:
            yield
        finally:
            self.release()

    @property
    def in_use(self) -> int:
        return self._in_use

    def status(self) -> Dict[str, int]:
        in_use = self._in_use
        return {
            "max": self.max_workers,
            "in_use": in_use,
            "available": self.max_workers - in_use,
        }
