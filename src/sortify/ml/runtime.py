"""Inference runtime bootstrap.

The runtime must expose the execution provider we are configured for before
any model is loaded. Availability is polled on a fixed interval for a bounded
number of attempts; the sleep function is injectable so the sequence can be
driven deterministically in tests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import onnxruntime

from sortify.errors import RuntimeBootstrapFailure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sortify.config import Settings

logger = logging.getLogger(__name__)

DEVICE_PROVIDERS: dict[str, str] = {
    "cpu": "CPUExecutionProvider",
    "cuda": "CUDAExecutionProvider",
    "openvino": "OpenVINOExecutionProvider",
}


def required_provider(device: str) -> str:
    return DEVICE_PROVIDERS[device]


def runtime_available(device: str) -> bool:
    """Return True if onnxruntime exposes the provider for ``device``."""
    return required_provider(device) in onnxruntime.get_available_providers()


@dataclass
class BootstrapPoller:
    """Bounded fixed-interval poll for runtime availability.

    Each call to :meth:`attempt` is one state transition: it either observes
    the runtime (done) or consumes one attempt. :meth:`wait` repeats attempts
    until success or exhaustion.
    """

    probe: Callable[[], bool]
    max_attempts: int = 50
    interval: float = 0.1
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep
    attempts: int = 0
    ready: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> BootstrapPoller:
        return cls(
            probe=lambda: runtime_available(settings.device),
            max_attempts=settings.bootstrap_max_attempts,
            interval=settings.bootstrap_interval,
        )

    @property
    def exhausted(self) -> bool:
        return not self.ready and self.attempts >= self.max_attempts

    def attempt(self) -> bool:
        if self.ready:
            return True
        if self.exhausted:
            return False
        self.attempts += 1
        self.ready = bool(self.probe())
        return self.ready

    async def wait(self) -> None:
        """Poll until the runtime is available.

        Raises:
            RuntimeBootstrapFailure: If every attempt failed.
        """
        while not self.attempt():
            if self.exhausted:
                logger.error("Inference runtime unavailable after %d attempts", self.attempts)
                raise RuntimeBootstrapFailure()
            logger.warning(
                "Inference runtime not available yet (attempt %d/%d), retrying in %.2fs",
                self.attempts,
                self.max_attempts,
                self.interval,
            )
            await self.sleep(self.interval)
        logger.info("Inference runtime ready after %d attempt(s)", self.attempts)
