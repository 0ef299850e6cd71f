"""
Concurrency control for identification requests.

Each identification runs the blocking pipeline (OCR, LLM, HTTP price
sources) in a worker thread; a semaphore caps how many run at once so a
burst of uploads cannot exhaust CPU or upstream quotas.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Set

from card_valuation.config import MAX_CONCURRENT_IDENTIFICATIONS

logger = logging.getLogger(__name__)


@dataclass
class QueueStatus:
    """Current queue status for monitoring."""
    active: int
    waiting: int
    max_concurrent: int
    available_slots: int


class IdentificationQueueManager:
    """
    Semaphore-based slot manager.

    Uses asyncio primitives that are initialized lazily inside the event loop
    to avoid issues with module-level initialization.
    """

    def __init__(self, max_concurrent: int = MAX_CONCURRENT_IDENTIFICATIONS):
        self.max_concurrent = max_concurrent
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._lock: Optional[asyncio.Lock] = None
        self._active: Set[str] = set()
        self._waiting: Set[str] = set()

    def _ensure_initialized(self):
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._lock = asyncio.Lock()

    @asynccontextmanager
    async def acquire_slot(self, request_id: str):
        """
        Acquire a processing slot, waiting if at capacity.

        Args:
            request_id: Identifier used for monitoring only
        """
        self._ensure_initialized()

        async with self._lock:
            self._waiting.add(request_id)
        logger.info(f"{request_id}: waiting for slot ({len(self._active)}/{self.max_concurrent} active)")

        try:
            async with self._semaphore:
                async with self._lock:
                    self._waiting.discard(request_id)
                    self._active.add(request_id)
                try:
                    yield
                finally:
                    async with self._lock:
                        self._active.discard(request_id)
                    logger.info(f"{request_id}: released slot ({len(self._active)}/{self.max_concurrent} active)")
        finally:
            async with self._lock:
                self._waiting.discard(request_id)

    def get_status(self) -> QueueStatus:
        return QueueStatus(
            active=len(self._active),
            waiting=len(self._waiting),
            max_concurrent=self.max_concurrent,
            available_slots=max(0, self.max_concurrent - len(self._active)),
        )


# Global queue manager instance
_queue_manager = IdentificationQueueManager()


def get_queue_status() -> QueueStatus:
    return _queue_manager.get_status()


async def run_with_concurrency_control(request_id: str, sync_func, *args, **kwargs):
    """
    Run a synchronous function in a worker thread once a slot is free.

    Args:
        request_id: Identifier for tracking
        sync_func: Blocking function to run
        *args, **kwargs: Arguments to pass to sync_func

    Returns:
        Result from sync_func
    """
    async with _queue_manager.acquire_slot(request_id):
        return await asyncio.to_thread(sync_func, *args, **kwargs)
