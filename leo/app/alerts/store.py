"""
store.py — Persistence gateway for canonical alerts.

The rest of the pipeline sees two operations only:

    store(alert)        → persisted Alert (id + timestamp filled in)
    list_recent(limit)  → newest-first persisted Alerts, at most ``limit``

Each ``store`` call runs in its own transaction, so concurrent producers
(MQTT worker, FIRMS poller, write API) each see a single indivisible insert.
Any driver/connectivity failure is re-raised as ``PersistenceError``; there
is no retry queue — the caller decides whether to drop or report.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from leo.app.alerts.models import Alert, AlertRecord
from leo.app.core.database import (
    close_db,
    create_engine,
    create_session_factory,
    init_db,
    ping_db,
)
from leo.app.core.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 200


def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AlertStore:
    """
    SQLAlchemy-backed alert store.

    Usage:
        store = AlertStore("sqlite+aiosqlite:///alerts.db")
        await store.open()
        saved = await store.store(alert)
        recent = await store.list_recent(20)
        await store.close()
    """

    def __init__(self, url: str = "", *, engine: Optional[AsyncEngine] = None):
        self._engine = engine or create_engine(url)
        self._sessions: async_sessionmaker[AsyncSession] = create_session_factory(self._engine)
        self._closed = False

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def open(self) -> None:
        """Create tables and verify connectivity."""
        try:
            await init_db(self._engine)
            await ping_db(self._engine)
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError("open", str(exc)) from exc

    async def ping(self) -> None:
        try:
            await ping_db(self._engine)
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError("ping", str(exc)) from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await close_db(self._engine)

    async def store(self, alert: Alert) -> Alert:
        """
        Persist one alert and return the complete record.

        Assigns ``id`` if unset and ``timestamp`` (ingestion time) if unset.
        """
        if self._closed:
            raise PersistenceError("store", "store is closed")

        persisted = replace(
            alert,
            id=alert.id or _generate_id(),
            timestamp=alert.timestamp or _now(),
        )
        try:
            persisted.check_invariants()
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        try:
            async with self._sessions() as session:
                async with session.begin():
                    session.add(AlertRecord.from_alert(persisted))
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError("store", str(exc), alert_id=persisted.id) from exc

        return persisted

    async def list_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Alert]:
        """Return at most ``limit`` alerts, newest timestamp first."""
        if limit <= 0:
            return []
        if self._closed:
            raise PersistenceError("list_recent", "store is closed")

        query = (
            select(AlertRecord)
            .order_by(AlertRecord.timestamp.desc(), AlertRecord.id.desc())
            .limit(limit)
        )
        try:
            async with self._sessions() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError("list_recent", str(exc)) from exc

        return [row.to_alert() for row in rows]
