"""
firms_source.py — NASA FIRMS active-fire detections as FIRE alerts.

Fetches the VIIRS active-fire CSV on a fixed interval and turns the first
FIRMS_BATCH_LIMIT rows into canonical alert maps.

CSV layout (header skipped):

    latitude,longitude,bright_ti4,scan,track,acq_date,acq_time,...
    10.0,20.0,350,1,1,2024-01-01,0130,...

Brightness → intensity
======================
The brightness temperature (Kelvin) is the detection's confidence score:

    intensity = round((brightness - 300) / 50), clamped to [0, 5]

    300 K → 0      350 K → 1      400 K → 2      ≥ 550 K → 5

Rounding is half-up (325 K → 1), not Python's banker's rounding.

Failure policy
==============
A failed fetch (HTTP status, network, timeout) is logged and yields zero
alerts for that cycle; the next cycle runs as scheduled. The batch cap keeps
a recovery after an outage from bursting the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from leo.app.alerts.models import AlertType, MAX_INTENSITY, MIN_INTENSITY
from leo.app.alerts.normalizer import coerce_number
from leo.app.alerts.pipeline import AlertPipeline
from leo.app.core.config import Settings, settings as default_settings
from leo.app.core.errors import TransportError

logger = logging.getLogger(__name__)

ORIGIN = "firms"
DEFAULT_BATCH_LIMIT = 10
BRIGHTNESS_BASELINE_K = 300.0
BRIGHTNESS_STEP_K = 50.0


def brightness_to_intensity(brightness: Any) -> Optional[int]:
    """Affine brightness → 0–5 scale; None when brightness is not numeric."""
    value = coerce_number(brightness)
    if value is None or not math.isfinite(value):
        return None
    scaled = math.floor((value - BRIGHTNESS_BASELINE_K) / BRIGHTNESS_STEP_K + 0.5)
    return int(min(MAX_INTENSITY, max(MIN_INTENSITY, scaled)))


def _acquisition_time(acq_date: str, acq_time: str = "") -> Optional[str]:
    """``2024-01-01`` + ``0130`` → ISO-8601 UTC string, or None."""
    if not acq_date:
        return None
    try:
        day = datetime.strptime(acq_date.strip(), "%Y-%m-%d")
    except ValueError:
        return None
    hhmm = acq_time.strip()
    if hhmm.isdigit() and len(hhmm) <= 4:
        hhmm = hhmm.zfill(4)
        hour, minute = int(hhmm[:2]), int(hhmm[2:])
        if hour < 24 and minute < 60:
            day = day.replace(hour=hour, minute=minute)
    return day.replace(tzinfo=timezone.utc).isoformat()


def row_to_raw_alert(row: List[str], source_tag: str = "satellite") -> Dict[str, Any]:
    """One CSV row → raw alert map (still to be normalised)."""
    cells = [c.strip() for c in row] + [""] * max(0, 7 - len(row))
    latitude, longitude, brightness, _scan, _track, acq_date, acq_time = cells[:7]

    raw: Dict[str, Any] = {
        "type": AlertType.FIRE.value,
        "message": f"NASA FIRMS fire detected ({acq_date})",
        "latitude": latitude,
        "longitude": longitude,
        "source": source_tag,
    }
    intensity = brightness_to_intensity(brightness)
    if intensity is not None:
        raw["intensity"] = intensity
    timestamp = _acquisition_time(acq_date, acq_time)
    if timestamp:
        raw["timestamp"] = timestamp
    return raw


def parse_fire_csv(
    text: str,
    limit: int = DEFAULT_BATCH_LIMIT,
    source_tag: str = "satellite",
) -> List[Dict[str, Any]]:
    """Header skipped, blank lines ignored, at most ``limit`` data rows."""
    lines = text.splitlines()[1:]
    alerts: List[Dict[str, Any]] = []
    for line in lines:
        if len(alerts) >= limit:
            break
        if not line.strip():
            continue
        alerts.append(row_to_raw_alert(line.split(","), source_tag))
    return alerts


class FirmsClient:
    """Thin async HTTP client for the FIRMS CSV endpoint."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or default_settings
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.config.FIRMS_TIMEOUT_SECONDS,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def fetch_recent_fires(self) -> List[Dict[str, Any]]:
        """Fetch and parse one batch. Raises TransportError on any fetch failure."""
        client = await self._get_client()
        try:
            response = await client.get(self.config.FIRMS_URL)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                "firms", f"HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError("firms", str(exc) or type(exc).__name__) from exc

        alerts = parse_fire_csv(
            response.text,
            limit=self.config.FIRMS_BATCH_LIMIT,
            source_tag=self.config.FIRMS_SOURCE_TAG,
        )
        logger.info("Latest NASA fires: %d", len(alerts), extra={"origin": ORIGIN})
        return alerts


class FirmsPoller:
    """
    Runs ``poll_once`` every FIRMS_POLL_INTERVAL_SECONDS.

    Usage:
        poller = FirmsPoller(pipeline)
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        pipeline: AlertPipeline,
        config: Optional[Settings] = None,
        *,
        client: Optional[FirmsClient] = None,
    ):
        self.pipeline = pipeline
        self.config = config or default_settings
        self.client = client or FirmsClient(self.config)
        self.interval = self.config.FIRMS_POLL_INTERVAL_SECONDS
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0
        self.last_success: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    async def poll_once(self) -> int:
        """One cycle. Returns how many alerts were handed to the pipeline."""
        self.cycles += 1
        try:
            batch = await self.client.fetch_recent_fires()
        except TransportError as exc:
            self.last_error = exc.message
            logger.error("FIRMS fetch failed: %s", exc.message, extra={"origin": ORIGIN})
            return 0

        self.last_success = datetime.now(timezone.utc)
        self.last_error = None
        submitted = 0
        for raw in batch:
            if self.pipeline.submit(raw, ORIGIN):
                submitted += 1
        return submitted

    async def start(self) -> None:
        """Start the polling loop; the first cycle runs immediately."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("FIRMS poller started (every %.0fs)", self.interval)

    async def stop(self) -> None:
        """Stop the polling loop and release the HTTP client."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.client.close()
        logger.info("FIRMS poller stopped")

    async def _run(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("FIRMS poll error: %s", e)
            await asyncio.sleep(self.interval)
