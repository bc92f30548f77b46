"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX session.run

Each model stage is one suspension point. Stages waiting beyond the semaphore
limit time out after 5s and the API answers 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from sortify.config import Settings
    from sortify.ml.model_manager import ModelSession

logger = logging.getLogger(__name__)

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Runs model sessions on a bounded thread pool."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run_session(
        self, stage: str, session: ModelSession, batch: NDArray[np.float32]
    ) -> dict[str, NDArray[np.float32]]:
        """Run ``session`` on ``batch`` fed to its first input.

        Raises:
            TimeoutError: If no inference slot frees up within the timeout.
        """
        feeds = {session.input_names[0]: batch}

        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(),
                timeout=SEMAPHORE_TIMEOUT_SECONDS,
            )
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        started = time.perf_counter()
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, session.run, feeds)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1
            logger.debug("Stage %s finished in %.1f ms", stage, (time.perf_counter() - started) * 1000)

    @property
    def active_count(self) -> int:
        """Number of stages currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of stages waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
