"""
broadcaster.py — Real-time fan-out of persisted alerts to live viewers.

═══════════════════════════════════════════════════════════════════════════
DELIVERY MODEL
═══════════════════════════════════════════════════════════════════════════

    broadcast(alert)
          │  snapshot session set (lock held only for the copy)
          ▼
    ┌──────────────┐   ┌──────────────┐   ┌──────────────┐
    │ session A    │   │ session B    │   │ session C    │
    │ queue [■■■ ] │   │ queue [■   ] │   │ queue [■■■■] │  bounded, FIFO
    └──────┬───────┘   └──────┬───────┘   └──────┬───────┘
           ▼ pump()           ▼ pump()           ▼ pump()
        send(event)        send(event)        send(event)

    • broadcast() never awaits a viewer; it only enqueues
    • each session has a single pump, so per-session order is FIFO
    • a full queue drops its OLDEST event (slow viewer falls behind,
      others are unaffected); the authoritative history is list_recent()
    • a failing send() closes that session only

Only persisted alerts reach this module, so a viewer never sees an alert
that is not yet durable.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from leo.app.alerts.models import Alert

logger = logging.getLogger(__name__)

ALERT_EVENT = "alert"

SendFn = Callable[[Dict[str, Any]], Awaitable[None]]


def build_event(alert: Alert) -> Dict[str, Any]:
    """Wire envelope for one pushed alert."""
    return {"event": ALERT_EVENT, "data": alert.to_dict()}


class SubscriberSession:
    """One connected viewer: a bounded outbound queue drained by ``pump``."""

    def __init__(
        self,
        send: SendFn,
        *,
        max_pending: int = 256,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._send = send
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, max_pending))
        self._closed = False
        self._pump_task: Optional[asyncio.Task] = None
        self.delivered = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, event: Dict[str, Any]) -> bool:
        """Enqueue without blocking. Returns False if the session is closed."""
        if self._closed:
            return False
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(
                "Session %s queue full — dropped oldest event",
                self.session_id,
                extra={"session_id": self.session_id, "queue_depth": self._queue.qsize()},
            )
        self._queue.put_nowait(event)
        return True

    def start(self) -> asyncio.Task:
        """Spawn the pump on the running loop."""
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self.pump())
        return self._pump_task

    async def pump(self) -> None:
        """Deliver queued events in order until closed or a send fails."""
        while not self._closed:
            event = await self._queue.get()
            try:
                await self._send(event)
                self.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.info(
                    "Session %s send failed, closing: %s", self.session_id, exc,
                    extra={"session_id": self.session_id},
                )
                self._closed = True

    async def close(self) -> None:
        self._closed = True
        task = self._pump_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class Broadcaster:
    """
    Registry of live sessions plus fan-out.

    The session set may be mutated by connect/disconnect handlers while a
    broadcast is in flight; ``_lock`` guards only membership changes and
    the snapshot taken at the start of ``broadcast``.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SubscriberSession] = {}
        self._lock = threading.Lock()
        self.broadcast_count = 0

    def register(self, session: SubscriberSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session
            total = len(self._sessions)
        logger.info(
            "Viewer connected: %s (%d live)", session.session_id, total,
            extra={"session_id": session.session_id},
        )

    def unregister(self, session: SubscriberSession) -> None:
        with self._lock:
            removed = self._sessions.pop(session.session_id, None)
            total = len(self._sessions)
        if removed is not None:
            logger.info(
                "Viewer disconnected: %s (%d live)", session.session_id, total,
                extra={"session_id": session.session_id},
            )

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def sessions(self) -> List[SubscriberSession]:
        with self._lock:
            return list(self._sessions.values())

    def broadcast(self, alert: Alert) -> int:
        """
        Queue ``alert`` for every session registered right now.

        Returns the number of sessions that accepted the event.
        """
        if not alert.is_persisted:
            raise ValueError("only persisted alerts can be broadcast")

        event = build_event(alert)
        delivered = 0
        for session in self.sessions():
            if session.offer(event):
                delivered += 1
            else:
                self.unregister(session)
        self.broadcast_count += 1
        logger.debug(
            "Broadcast %s to %d session(s)", alert.id, delivered,
            extra={"alert_id": alert.id},
        )
        return delivered

    async def close_all(self) -> None:
        """Close every session (process shutdown)."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
        if sessions:
            logger.info("Closed %d viewer session(s)", len(sessions))
