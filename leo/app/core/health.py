"""
Health check aggregation — readiness probe for the ingestion service.

Checks:
    • Alert store connectivity
    • MQTT broker connection
    • FIRMS poller freshness
    • Ingest queue depth

Liveness (``/health``) is a trivial "process is up" answer and does not
run these checks.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from leo.app.core.config import settings
from leo.app.core.errors import PersistenceError

if TYPE_CHECKING:
    from leo.app.alerts.runtime import AlertRuntime

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_store(runtime: "AlertRuntime") -> ComponentHealth:
    """Round-trip the alert store."""
    comp = ComponentHealth(name="alert_store")
    start = time.monotonic()
    try:
        await runtime.store.ping()
        comp.message = "Store reachable"
    except PersistenceError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_mqtt(runtime: "AlertRuntime") -> ComponentHealth:
    comp = ComponentHealth(name="mqtt")
    source = runtime.mqtt_source
    if source is None:
        comp.message = "Disabled"
        return comp
    comp.details = {
        "broker": f"{source.address.host}:{source.address.port}",
        "topic": source.topic,
        "received": source.received,
    }
    if source.connected:
        comp.message = "Subscribed"
    else:
        # Transport reconnects on its own; the API still serves
        comp.status = HealthStatus.DEGRADED
        comp.message = "Broker not connected"
    return comp


def check_firms(runtime: "AlertRuntime") -> ComponentHealth:
    comp = ComponentHealth(name="firms")
    poller = runtime.firms_poller
    if poller is None:
        comp.message = "Disabled"
        return comp
    comp.details = {
        "cycles": poller.cycles,
        "last_success": poller.last_success.isoformat() if poller.last_success else None,
    }
    if poller.last_error:
        comp.status = HealthStatus.DEGRADED
        comp.message = poller.last_error
    else:
        comp.message = "Polling"
    return comp


def check_pipeline(runtime: "AlertRuntime") -> ComponentHealth:
    comp = ComponentHealth(name="pipeline")
    pipeline = runtime.pipeline
    depth = pipeline.queue_depth
    comp.details = {"queue_depth": depth, "viewers": runtime.broadcaster.session_count,
                    **pipeline.stats.to_dict()}
    if not pipeline.running:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Worker not running"
    elif depth >= runtime.config.INGEST_QUEUE_SIZE * 0.9:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Ingest queue nearly full ({depth})"
    else:
        comp.message = "Worker running"
    return comp


async def run_health_check(runtime: "AlertRuntime") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(await check_store(runtime))
    report.components.append(check_mqtt(runtime))
    report.components.append(check_firms(runtime))
    report.components.append(check_pipeline(runtime))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
