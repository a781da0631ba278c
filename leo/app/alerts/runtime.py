"""
runtime.py — Owns every long-lived component and their start/stop order.

    start:  store.open → pipeline → MQTT source → FIRMS poller
    stop:   MQTT source → FIRMS poller → pipeline → viewer sessions → store

Producers are stopped before the store closes so that no late write lands on
a closed store. Failing to open the store at startup is the only condition
that ends the process.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from leo.app.alerts.broadcaster import Broadcaster
from leo.app.alerts.pipeline import AlertPipeline
from leo.app.alerts.store import AlertStore
from leo.app.core.config import Settings, settings as default_settings
from leo.app.core.errors import PersistenceError
from leo.app.ingestion.firms_source import FirmsPoller
from leo.app.ingestion.mqtt_source import MqttAlertSource

logger = logging.getLogger(__name__)


class AlertRuntime:
    """Service container for one running instance."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        store: Optional[AlertStore] = None,
        mqtt_source: Optional[MqttAlertSource] = None,
        firms_poller: Optional[FirmsPoller] = None,
    ):
        self.config = config or default_settings
        self.store = store or AlertStore(self.config.DATABASE_URL)
        self.broadcaster = Broadcaster()
        self.pipeline = AlertPipeline(
            self.store, self.broadcaster, queue_size=self.config.INGEST_QUEUE_SIZE,
        )
        self.mqtt_source = mqtt_source
        if self.mqtt_source is None and self.config.MQTT_ENABLED:
            self.mqtt_source = MqttAlertSource(self.pipeline, self.config)
        self.firms_poller = firms_poller
        if self.firms_poller is None and self.config.FIRMS_ENABLED:
            self.firms_poller = FirmsPoller(self.pipeline, self.config)
        self.started = False

    async def start(self) -> None:
        try:
            await self.store.open()
        except PersistenceError as exc:
            logger.critical("[DB] Connection error: %s", exc.message)
            raise SystemExit(1) from exc
        logger.info("[DB] Connected")

        await self.pipeline.start()
        if self.mqtt_source is not None:
            self.mqtt_source.start()
        if self.firms_poller is not None:
            await self.firms_poller.start()
        self.started = True

    async def stop(self) -> None:
        if self.mqtt_source is not None:
            self.mqtt_source.stop()
        if self.firms_poller is not None:
            await self.firms_poller.stop()
        await self.pipeline.stop()
        await self.broadcaster.close_all()
        await self.store.close()
        self.started = False

    def describe(self) -> Dict[str, Any]:
        return {
            "viewers": self.broadcaster.session_count,
            "queue_depth": self.pipeline.queue_depth,
            "pipeline": self.pipeline.stats.to_dict(),
            "mqtt": {
                "enabled": self.mqtt_source is not None,
                "connected": bool(self.mqtt_source and self.mqtt_source.connected),
            },
            "firms": {
                "enabled": self.firms_poller is not None,
                "running": bool(self.firms_poller and self.firms_poller.running),
            },
        }
