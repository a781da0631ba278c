"""
test_firms_source.py — NASA FIRMS polling source.

HTTP is served by ``httpx.MockTransport``; no network access.

Covers:
    • Brightness → intensity mapping (half-up rounding, clamping)
    • CSV parsing: header, blank lines, batch limit, short rows
    • Fetch failures → TransportError → zero alerts for the cycle
    • Poller hand-off to the pipeline

Run with:
    pytest tests/test_firms_source.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from leo.app.alerts.normalizer import normalize
from leo.app.core.errors import TransportError, ValidationError
from leo.app.ingestion.firms_source import (
    FirmsClient,
    FirmsPoller,
    brightness_to_intensity,
    parse_fire_csv,
    row_to_raw_alert,
)

from conftest import make_settings, run


HEADER = "latitude,longitude,bright_ti4,scan,track,acq_date,acq_time,satellite,confidence"


def _csv(rows):
    return "\n".join([HEADER, *rows]) + "\n"


def _client(tmp_path, handler, **overrides):
    config = make_settings(tmp_path, FIRMS_ENABLED=True, **overrides)
    return FirmsClient(config, transport=httpx.MockTransport(handler)), config


class _RecordingPipeline:
    def __init__(self, accept: bool = True):
        self.accept = accept
        self.submitted = []

    def submit(self, raw, origin):
        self.submitted.append((raw, origin))
        return self.accept


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Row mapping
# ═══════════════════════════════════════════════════════════════════════════

class TestBrightness:

    @pytest.mark.parametrize("brightness,expected", [
        ("300", 0),
        ("350", 1),
        ("325", 1),      # half-up
        ("374.9", 1),
        ("375", 2),
        ("400", 2),
        ("550", 5),
        ("900", 5),
        ("250", 0),
        ("12", 0),
    ])
    def test_mapping(self, brightness, expected):
        assert brightness_to_intensity(brightness) == expected

    @pytest.mark.parametrize("brightness", ["", "n/a", None])
    def test_non_numeric(self, brightness):
        assert brightness_to_intensity(brightness) is None


class TestRowMapping:

    def test_documented_row(self):
        raw = row_to_raw_alert("10.0,20.0,350,1,1,2024-01-01".split(","))
        alert = normalize(raw)
        assert alert.type == "FIRE"
        assert alert.intensity == 1
        assert alert.latitude == 10.0
        assert alert.longitude == 20.0
        assert alert.source == "satellite"
        assert alert.message == "NASA FIRMS fire detected (2024-01-01)"
        assert alert.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_acquisition_time_used(self):
        raw = row_to_raw_alert("1,2,330,1,1,2024-03-05,0130".split(","))
        assert normalize(raw).timestamp == datetime(2024, 3, 5, 1, 30, tzinfo=timezone.utc)

    def test_short_acquisition_time_padded(self):
        raw = row_to_raw_alert("1,2,330,1,1,2024-03-05,5".split(","))
        assert normalize(raw).timestamp == datetime(2024, 3, 5, 0, 5, tzinfo=timezone.utc)

    def test_missing_brightness_uses_default_intensity(self):
        raw = row_to_raw_alert(["1", "2"])
        assert "intensity" not in raw
        assert "timestamp" not in raw
        assert normalize(raw).intensity == 1

    def test_custom_source_tag(self):
        raw = row_to_raw_alert("1,2,350,1,1,2024-01-01".split(","), "station")
        assert raw["source"] == "station"


class TestParseCsv:

    def test_header_skipped(self):
        rows = parse_fire_csv(_csv(["10.0,20.0,350,1,1,2024-01-01,0000,N,n"]))
        assert len(rows) == 1
        assert rows[0]["latitude"] == "10.0"

    def test_batch_limit(self):
        rows = parse_fire_csv(_csv([f"{i},{i},350,1,1,2024-01-01" for i in range(25)]))
        assert len(rows) == 10
        assert rows[-1]["latitude"] == "9"

    def test_blank_lines_ignored(self):
        text = _csv(["", "1,2,350,1,1,2024-01-01", "   ", "3,4,350,1,1,2024-01-01"])
        assert len(parse_fire_csv(text, limit=5)) == 2

    def test_empty_body(self):
        assert parse_fire_csv("") == []
        assert parse_fire_csv(HEADER) == []

    def test_bad_row_rejected_by_normaliser(self):
        rows = parse_fire_csv(_csv(["garbage-line"]))
        assert len(rows) == 1
        with pytest.raises(ValidationError):
            normalize(rows[0])


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: HTTP client
# ═══════════════════════════════════════════════════════════════════════════

class TestFirmsClient:

    def test_fetch_parses_response(self, tmp_path):
        body = _csv(["10.0,20.0,350,1,1,2024-01-01,0130,N,n"] * 3)
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text=body)

        client, config = _client(tmp_path, handler, FIRMS_URL="https://firms.test/csv")

        async def scenario():
            try:
                return await client.fetch_recent_fires()
            finally:
                await client.close()

        rows = run(scenario())
        assert seen == ["https://firms.test/csv"]
        assert len(rows) == 3
        assert rows[0]["type"] == "FIRE"

    def test_batch_limit_from_config(self, tmp_path):
        body = _csv([f"{i},{i},350,1,1,2024-01-01" for i in range(8)])
        client, _ = _client(
            tmp_path, lambda r: httpx.Response(200, text=body), FIRMS_BATCH_LIMIT=4,
        )

        async def scenario():
            try:
                return await client.fetch_recent_fires()
            finally:
                await client.close()

        assert len(run(scenario())) == 4

    def test_http_error_status(self, tmp_path):
        client, _ = _client(tmp_path, lambda r: httpx.Response(503, text="down"))

        async def scenario():
            try:
                await client.fetch_recent_fires()
            finally:
                await client.close()

        with pytest.raises(TransportError) as exc_info:
            run(scenario())
        assert exc_info.value.details["status_code"] == 503
        assert exc_info.value.details["service"] == "firms"

    def test_network_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _client(tmp_path, handler)

        async def scenario():
            try:
                await client.fetch_recent_fires()
            finally:
                await client.close()

        with pytest.raises(TransportError):
            run(scenario())


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Poller
# ═══════════════════════════════════════════════════════════════════════════

class TestFirmsPoller:

    def test_poll_once_submits_batch(self, tmp_path):
        body = _csv(["10.0,20.0,350,1,1,2024-01-01"] * 2)
        client, config = _client(tmp_path, lambda r: httpx.Response(200, text=body))
        pipeline = _RecordingPipeline()
        poller = FirmsPoller(pipeline, config, client=client)

        async def scenario():
            try:
                return await poller.poll_once()
            finally:
                await client.close()

        assert run(scenario()) == 2
        assert [origin for _, origin in pipeline.submitted] == ["firms", "firms"]
        assert poller.last_success is not None
        assert poller.last_error is None
        assert poller.cycles == 1

    def test_failed_cycle_yields_zero(self, tmp_path):
        client, config = _client(tmp_path, lambda r: httpx.Response(500))
        pipeline = _RecordingPipeline()
        poller = FirmsPoller(pipeline, config, client=client)

        async def scenario():
            try:
                return await poller.poll_once()
            finally:
                await client.close()

        assert run(scenario()) == 0
        assert pipeline.submitted == []
        assert "HTTP 500" in poller.last_error

    def test_recovery_clears_error(self, tmp_path):
        responses = iter([
            httpx.Response(500),
            httpx.Response(200, text=_csv(["1,2,350,1,1,2024-01-01"])),
        ])
        client, config = _client(tmp_path, lambda r: next(responses))
        poller = FirmsPoller(_RecordingPipeline(), config, client=client)

        async def scenario():
            try:
                return [await poller.poll_once(), await poller.poll_once()]
            finally:
                await client.close()

        assert run(scenario()) == [0, 1]
        assert poller.last_error is None

    def test_rejected_submissions_not_counted(self, tmp_path):
        body = _csv(["1,2,350,1,1,2024-01-01"])
        client, config = _client(tmp_path, lambda r: httpx.Response(200, text=body))
        poller = FirmsPoller(_RecordingPipeline(accept=False), config, client=client)

        async def scenario():
            try:
                return await poller.poll_once()
            finally:
                await client.close()

        assert run(scenario()) == 0

    def test_start_runs_first_cycle_then_stop(self, tmp_path):
        body = _csv(["1,2,350,1,1,2024-01-01"])
        client, config = _client(
            tmp_path, lambda r: httpx.Response(200, text=body),
            FIRMS_POLL_INTERVAL_SECONDS=3600,
        )
        pipeline = _RecordingPipeline()
        poller = FirmsPoller(pipeline, config, client=client)

        async def scenario():
            await poller.start()
            for _ in range(100):
                if poller.last_success:
                    break
                await asyncio.sleep(0.01)
            running = poller.running
            await poller.stop()
            return running

        assert run(scenario()) is True
        assert poller.running is False
        assert len(pipeline.submitted) == 1
