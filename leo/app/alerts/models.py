"""
models.py — Canonical alert record shared by every stage of the pipeline.

Defines:
    • AlertType   — declared alert categories
    • AlertSource — declared provenance tags
    • Alert       — the immutable, normalised alert record
    • AlertRecord — ORM row backing the alert store

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    raw map ──normalize()──► Alert(id=None)
                                  │
                          store.store()       assigns id, timestamp default
                                  ▼
                             Alert(id=…)  ──broadcast()──► live viewers

An Alert is write-once: there is no update or delete path. ``type`` and
``source`` are kept as plain strings so producers may send values outside
the declared enums (they are preserved, uppercased for ``type``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from leo.app.core.database import Base


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    """Declared alert categories."""
    SOS          = "SOS"
    TECH         = "TECH"
    FIRE         = "FIRE"
    MEDICAL      = "MEDICAL"
    RADIATION    = "RADIATION"
    DEBRIS       = "DEBRIS"
    LOW_POWER    = "LOW_POWER"
    SYSTEM_ALERT = "SYSTEM_ALERT"
    TEST         = "TEST"
    OTHER        = "OTHER"


class AlertSource(str, Enum):
    """Declared provenance tags."""
    SATELLITE = "satellite"
    STATION   = "station"
    MOBILE    = "mobile"
    TESTBENCH = "testbench"
    UNKNOWN   = "unknown"


DEFAULT_TYPE = AlertType.SOS.value
DEFAULT_MESSAGE = "Signal received"
DEFAULT_CITY = "Unknown"
DEFAULT_SOURCE = AlertSource.UNKNOWN.value
DEFAULT_INTENSITY = 1.0
MIN_INTENSITY = 0.0
MAX_INTENSITY = 5.0


# ═══════════════════════════════════════════════════════════════════════════
# Canonical record
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Alert:
    """
    A normalised alert.

    Attributes
    ----------
    type : str
        Category, uppercased. Usually one of ``AlertType``.
    message : str
        Free-text description.
    latitude, longitude : float
        Finite decimal degrees. Always present.
    city : str
        Free-text location label.
    intensity : float
        Severity on the 0–5 scale, already clamped.
    source : str
        Provenance tag. Usually one of ``AlertSource``.
    timestamp : datetime | None
        UTC event time; ``None`` until the store applies ingestion time.
    id : str | None
        Assigned once by the store.
    """
    latitude: float
    longitude: float
    type: str = DEFAULT_TYPE
    message: str = DEFAULT_MESSAGE
    city: str = DEFAULT_CITY
    intensity: float = DEFAULT_INTENSITY
    source: str = DEFAULT_SOURCE
    timestamp: Optional[datetime] = None
    id: Optional[str] = None

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @property
    def is_known_type(self) -> bool:
        return self.type in AlertType._value2member_map_

    @property
    def is_known_source(self) -> bool:
        return self.source in AlertSource._value2member_map_

    def check_invariants(self) -> None:
        """Raise ValueError if the record breaks a canonical-shape rule."""
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise ValueError("latitude/longitude must be finite")
        if not MIN_INTENSITY <= self.intensity <= MAX_INTENSITY:
            raise ValueError(f"intensity {self.intensity} outside [0, 5]")
        if self.timestamp is not None and self.timestamp.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "city": self.city,
            "intensity": self.intensity,
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# ═══════════════════════════════════════════════════════════════════════════
# ORM row
# ═══════════════════════════════════════════════════════════════════════════

class AlertRecord(Base):
    """Durable row for one persisted alert."""
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    type: Mapped[str] = mapped_column(String(64), index=True)
    message: Mapped[str] = mapped_column(Text)
    latitude: Mapped[float] = mapped_column(Float, index=True)
    longitude: Mapped[float] = mapped_column(Float, index=True)
    city: Mapped[str] = mapped_column(String(255))
    intensity: Mapped[float] = mapped_column(Float, index=True)
    source: Mapped[str] = mapped_column(String(64), index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertRecord":
        return cls(
            id=alert.id,
            type=alert.type,
            message=alert.message,
            latitude=alert.latitude,
            longitude=alert.longitude,
            city=alert.city,
            intensity=alert.intensity,
            source=alert.source,
            timestamp=alert.timestamp,
        )

    def to_alert(self) -> Alert:
        ts = self.timestamp
        # SQLite hands back naive datetimes; everything is stored as UTC
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return Alert(
            id=self.id,
            type=self.type,
            message=self.message,
            latitude=self.latitude,
            longitude=self.longitude,
            city=self.city,
            intensity=self.intensity,
            source=self.source,
            timestamp=ts,
        )
