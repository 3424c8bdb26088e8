"""Inference concurrency layer.

Architecture:
    asyncio caller -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX inference

A call with its own deadline spends it on waiting for a slot and on the work
itself. Calls without one queue for at most the queue timeout.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from imagelens.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for blocking model calls."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="imagelens-inference",
        )
        self._queue_timeout = settings.queue_timeout

    async def run(self, func: Callable[..., T], *args: object, timeout: float | None = None) -> T:
        """Submit a synchronous function to the inference thread pool.

        Acquires the semaphore, runs the function in the executor, then
        releases. ``timeout`` bounds the whole call, the wait for a slot
        included; without it the wait is bounded by the queue timeout. A
        timed-out call keeps its worker thread until the function returns.

        Raises:
            TimeoutError: If no slot frees up in time or the call exceeds ``timeout``.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        await asyncio.wait_for(
            self._semaphore.acquire(),
            timeout=self._queue_timeout if timeout is None else timeout,
        )
        try:
            future = loop.run_in_executor(self._executor, func, *args)
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            return await asyncio.wait_for(future, timeout=remaining)
        finally:
            self._semaphore.release()

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("Inference pool shut down")
