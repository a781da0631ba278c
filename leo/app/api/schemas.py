"""
Pydantic schemas for the alert API.

Separated from the route handlers so they are reusable across the codebase
(WebSocket handler, tests). The write API deliberately accepts an untyped
JSON object; only responses are typed here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from leo.app.alerts.models import Alert


class AlertOut(BaseModel):
    """A persisted alert as returned by the read/write API and the push stream."""
    id: str
    type: str = Field(..., examples=["SOS"])
    message: str = Field(..., examples=["Signal received"])
    latitude: float = Field(..., examples=[48.85])
    longitude: float = Field(..., examples=[2.35])
    city: str = Field(..., examples=["Paris"])
    intensity: float = Field(..., ge=0, le=5, examples=[1])
    source: str = Field(..., examples=["station"])
    timestamp: datetime

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertOut":
        return cls(**alert.to_dict())


class LivenessResponse(BaseModel):
    status: str = "ok"


class ServiceInfo(BaseModel):
    service: str
    version: str
    environment: str
    runtime: Optional[Dict[str, Any]] = None
