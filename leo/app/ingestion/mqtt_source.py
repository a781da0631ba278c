"""
mqtt_source.py — Sensor-network alerts from one MQTT topic.

The paho client runs its own network thread (``loop_start``). Callbacks on
that thread only decode the payload and hand the resulting map to the
pipeline with ``submit_threadsafe``; normalisation, persistence and fan-out
all happen on the asyncio loop.

Connection handling
===================
    connect        → (re)subscribe to MQTT_TOPIC
    disconnect     → logged; paho reconnects on its own using
                     reconnect_delay_set(min, max)
    bad payload    → logged and dropped (never redelivered)

No retry/backoff is layered on top of the transport.
"""

from __future__ import annotations

import json
import logging
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from leo.app.alerts.pipeline import AlertPipeline
from leo.app.core.config import Settings, settings as default_settings
from leo.app.core.errors import TransportError, ValidationError

logger = logging.getLogger(__name__)

ORIGIN = "mqtt"


@dataclass(frozen=True)
class BrokerAddress:
    host: str
    port: int
    tls: bool = False
    username: Optional[str] = None
    password: Optional[str] = None


def parse_broker_url(url: str) -> BrokerAddress:
    """
    Parse ``mqtt://[user:pass@]host[:port]`` (``mqtts://`` enables TLS).

    A bare ``host[:port]`` is accepted as plain mqtt.
    """
    if "://" not in url:
        url = f"mqtt://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("mqtt", "tcp", "mqtts", "ssl"):
        raise TransportError("mqtt", f"unsupported broker scheme '{parsed.scheme}'")
    if not parsed.hostname:
        raise TransportError("mqtt", f"no host in broker url '{url}'")
    tls = parsed.scheme in ("mqtts", "ssl")
    return BrokerAddress(
        host=parsed.hostname,
        port=parsed.port or (8883 if tls else 1883),
        tls=tls,
        username=parsed.username,
        password=parsed.password,
    )


def decode_payload(payload: bytes) -> Dict[str, Any]:
    """UTF-8 JSON object or ValidationError."""
    try:
        decoded = json.loads(payload.decode("utf-8"))
    except (ValueError, RecursionError) as exc:
        # ValueError covers bad UTF-8, bad JSON and over-long integer literals
        raise ValidationError(f"undecodable payload: {type(exc).__name__}") from exc
    if not isinstance(decoded, dict):
        raise ValidationError("alert payload must be an object")
    return decoded


class MqttAlertSource:
    """
    Owns one paho client subscribed to one topic.

    Usage:
        source = MqttAlertSource(pipeline)
        source.start()
        ...
        source.stop()
    """

    def __init__(
        self,
        pipeline: AlertPipeline,
        config: Optional[Settings] = None,
        *,
        client: Optional[mqtt.Client] = None,
    ):
        self.pipeline = pipeline
        self.config = config or default_settings
        self.topic = self.config.MQTT_TOPIC
        self.qos = self.config.MQTT_QOS
        self.address = parse_broker_url(self.config.MQTT_BROKER)
        self._connected = False
        self._started = False
        self.received = 0
        self.undecodable = 0

        self._client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.MQTT_CLIENT_ID,
        )
        if self.address.username:
            self._client.username_pw_set(self.address.username, self.address.password)
        if self.address.tls:
            self._client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
        self._client.reconnect_delay_set(
            min_delay=self.config.MQTT_RECONNECT_MIN_DELAY,
            max_delay=self.config.MQTT_RECONNECT_MAX_DELAY,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_subscribe = self._on_subscribe
        self._client.on_message = self._on_message

    @property
    def connected(self) -> bool:
        return self._connected

    # ── Lifecycle ──

    def start(self) -> None:
        """Begin connecting in the background; never blocks on the broker."""
        if self._started:
            return
        self._client.connect_async(
            self.address.host, self.address.port, keepalive=self.config.MQTT_KEEPALIVE,
        )
        self._client.loop_start()
        self._started = True
        logger.info(
            "MQTT source connecting to %s:%d (topic %s)",
            self.address.host, self.address.port, self.topic,
        )

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._client.disconnect()
        self._client.loop_stop()
        self._connected = False
        logger.info("MQTT source stopped")

    # ── paho callbacks (network thread) ──

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            logger.error("[MQTT] Connection refused: %s", reason_code)
            return
        self._connected = True
        logger.info("[MQTT] Connected to %s:%d", self.address.host, self.address.port)
        result, _mid = client.subscribe(self.topic, qos=self.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error("[MQTT] Subscribe error for %s: %s", self.topic, mqtt.error_string(result))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None) -> None:
        failures = [rc for rc in reason_code_list if rc.is_failure]
        if failures:
            logger.error("[MQTT] Subscribe to %s rejected: %s", self.topic, failures[0])
        else:
            logger.info("[MQTT] Subscribed to topic: %s", self.topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected = False
        if self._started:
            logger.warning("[MQTT] Disconnected (%s) — transport will reconnect", reason_code)

    def _on_message(self, client, userdata, message) -> None:
        # An exception escaping here would end paho's network thread
        self.received += 1
        try:
            raw = decode_payload(message.payload)
            self.pipeline.submit_threadsafe(raw, ORIGIN)
        except ValidationError as exc:
            self.undecodable += 1
            logger.warning(
                "[MQTT] Bad payload on %s: %s", message.topic, exc.message,
                extra={"origin": ORIGIN},
            )
        except Exception:
            logger.exception(
                "[MQTT] Message on %s dropped", message.topic, extra={"origin": ORIGIN},
            )
