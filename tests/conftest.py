"""
Shared fixtures for the alert relay test-suite.

Async components are driven with ``asyncio.run`` inside plain tests: every
engine / queue / task a test touches is created inside that single loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict

import pytest

from leo.app.core.config import Settings


def run(coro):
    """Run one coroutine on a fresh event loop."""
    return asyncio.run(coro)


def make_settings(tmp_path, **overrides: Any) -> Settings:
    """Settings pointing at a throwaway SQLite file with both sources off."""
    values: Dict[str, Any] = {
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}",
        "MQTT_ENABLED": False,
        "FIRMS_ENABLED": False,
        "LOG_LEVEL": "DEBUG",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}"


@pytest.fixture
def paris_raw() -> Dict[str, Any]:
    """Minimal valid sensor payload (wire aliases)."""
    return {"lat": 48.85, "lng": 2.35}


@pytest.fixture
def full_raw() -> Dict[str, Any]:
    """Fully populated sensor payload (wire aliases)."""
    return {
        "type": "medical",
        "msg": "Injured hiker near the ridge",
        "lat": "45.8326",
        "lng": 6.8652,
        "ville": "Chamonix",
        "intensity": 3,
        "source": "mobile",
        "ts": "2024-07-14T10:30:00Z",
    }
