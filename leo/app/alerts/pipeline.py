"""
pipeline.py — normalize → store → broadcast, shared by every producer.

Two entry points:

    ingest(raw)                 Synchronous path (write API). Errors propagate
                                to the caller as ValidationError /
                                PersistenceError.

    submit(raw, origin)         Asynchronous producers (MQTT, FIRMS). The raw
    submit_threadsafe(...)      map is queued; a single worker runs the chain
                                and logs-and-drops any per-alert failure.

Backpressure
============
The work queue is bounded (INGEST_QUEUE_SIZE). When it is full the OLDEST
pending item is discarded to make room: during a storage stall the newest
reports are the ones worth keeping, and memory stays bounded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from leo.app.alerts.broadcaster import Broadcaster
from leo.app.alerts.models import Alert
from leo.app.alerts.normalizer import normalize
from leo.app.alerts.store import AlertStore
from leo.app.core.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

WorkItem = Tuple[Any, str]


@dataclass
class PipelineStats:
    accepted: int = 0
    rejected: int = 0   # validation failures
    failed: int = 0     # persistence failures
    dropped: int = 0    # queue overflow

    def to_dict(self) -> Dict[str, int]:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "failed": self.failed,
            "dropped": self.dropped,
        }


class AlertPipeline:
    """Owns the ingestion chain and the bounded work queue."""

    def __init__(
        self,
        store: AlertStore,
        broadcaster: Broadcaster,
        *,
        queue_size: int = 1000,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._accepting = False
        self.stats = PipelineStats()

    # ── Synchronous chain ──

    async def ingest(self, raw: Any, origin: str = "api") -> Alert:
        """Normalize, persist, then fan out. Returns the persisted alert."""
        try:
            alert = normalize(raw)
        except ValidationError:
            self.stats.rejected += 1
            raise
        return await self.ingest_alert(alert, origin)

    async def ingest_alert(self, alert: Alert, origin: str = "api") -> Alert:
        try:
            saved = await self.store.store(alert)
        except PersistenceError:
            self.stats.failed += 1
            raise
        except ValidationError:
            self.stats.rejected += 1
            raise

        self.stats.accepted += 1
        # Only after the write succeeded
        self.broadcaster.broadcast(saved)
        logger.info(
            "Alert saved: %s %s (%.4f, %.4f) intensity=%s",
            saved.type, saved.id, saved.latitude, saved.longitude, saved.intensity,
            extra={
                "alert_id": saved.id,
                "alert_type": saved.type,
                "origin": origin,
                "latitude": saved.latitude,
                "longitude": saved.longitude,
                "intensity": saved.intensity,
            },
        )
        return saved

    # ── Asynchronous producers ──

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def submit(self, raw: Any, origin: str) -> bool:
        """Queue a raw map from an async producer. Must run on the event loop."""
        if not self._accepting:
            logger.warning(
                "Pipeline not accepting — dropped %s alert", origin,
                extra={"origin": origin},
            )
            self.stats.dropped += 1
            return False
        if self._queue.full():
            _, old_origin = self._queue.get_nowait()
            self._queue.task_done()
            self.stats.dropped += 1
            logger.warning(
                "Ingest queue full — dropped oldest %s alert", old_origin,
                extra={"origin": old_origin, "queue_depth": self._queue.qsize()},
            )
        self._queue.put_nowait((raw, origin))
        return True

    def submit_threadsafe(self, raw: Any, origin: str) -> bool:
        """Hand a raw map over from a foreign thread (e.g. the MQTT network loop)."""
        loop = self._loop
        if loop is None or loop.is_closed() or not self._accepting:
            logger.warning(
                "Pipeline not running — dropped %s alert", origin,
                extra={"origin": origin},
            )
            return False
        loop.call_soon_threadsafe(self.submit, raw, origin)
        return True

    async def process_one(self, raw: Any, origin: str) -> Optional[Alert]:
        """Run the chain for one queued item; failures are terminal for that item only."""
        try:
            return await self.ingest(raw, origin)
        except ValidationError as exc:
            logger.warning(
                "Bad %s payload dropped: %s", origin, exc.message,
                extra={"origin": origin},
            )
        except PersistenceError as exc:
            logger.error(
                "Persistence failed, %s alert dropped: %s", origin, exc.message,
                extra={"origin": origin},
            )
        except Exception:
            logger.exception("Unexpected error processing %s alert", origin)
        return None

    async def _run_worker(self) -> None:
        while True:
            raw, origin = await self._queue.get()
            try:
                await self.process_one(raw, origin)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._accepting = True
        self._worker = asyncio.create_task(self._run_worker())
        logger.info("Ingest pipeline started (queue size %d)", self._queue.maxsize)

    async def drain(self) -> None:
        """Wait until every queued item has been processed."""
        await self._queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting, finish what is queued (bounded by ``timeout``), stop the worker."""
        self._accepting = False
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Pipeline stop timed out with %d item(s) pending", self._queue.qsize(),
                extra={"queue_depth": self._queue.qsize()},
            )
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Ingest pipeline stopped: %s", self.stats.to_dict())
