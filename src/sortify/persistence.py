"""Client for the remote scan-history store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import httpx

from sortify.errors import PersistenceFailure

if TYPE_CHECKING:
    from sortify.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanRecord:
    """What gets saved for a scan that found waste."""

    image_url: str
    result: str
    confidence: float

    def to_payload(self) -> dict[str, object]:
        return {"imageUrl": self.image_url, "result": self.result, "confidence": self.confidence}


class ScanResultStore(Protocol):
    async def save_scan_result(self, record: ScanRecord) -> None: ...

    async def aclose(self) -> None: ...


class HttpScanResultStore:
    """POSTs scan records as JSON to ``{base_url}/scans``."""

    def __init__(self, base_url: str, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpScanResultStore | None:
        if settings.persistence_url is None:
            return None
        return cls(settings.persistence_url, timeout=settings.persistence_timeout)

    async def save_scan_result(self, record: ScanRecord) -> None:
        """Save one record.

        Raises:
            PersistenceFailure: On transport errors or a non-2xx response.
        """
        try:
            response = await self._client.post("/scans", json=record.to_payload())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PersistenceFailure(f"saving scan result failed: {exc}") from exc
        logger.info("Saved scan result %s (%.3f)", record.result, record.confidence)

    async def aclose(self) -> None:
        await self._client.aclose()
