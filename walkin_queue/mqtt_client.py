"""Small MQTT helper built on top of paho-mqtt.

- `MqttClient` manages the connection and a background network loop.
- `request()` publishes a JSON message and waits for a correlated response
  (`corr_id` + `reply_to`), which is how customers and staff talk to the
  queue service.
- Live views are plain (retained) publications; observers subscribe and get
  the latest view straight away.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

log = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class PendingResponse:
    corr_id: str
    q: "queue.Queue[dict[str, Any]]"


class MqttClient:
    """Thin wrapper around paho-mqtt with JSON convenience APIs."""

    def __init__(
        self,
        *,
        client_id: str,
        host: str,
        port: int,
        keepalive: int = 30,
        connect_retries: int = 3,
        connect_backoff: float = 0.5,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.connect_retries = connect_retries
        self.connect_backoff = connect_backoff

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.on_message = self._on_message

        # External subscribers. Called with (topic, json_message).
        self._handlers: list[MessageHandler] = []

        # corr_id -> queue used by request()
        self._pending: dict[str, PendingResponse] = {}
        self._lock = threading.Lock()

        self._started = False

    def start(self) -> None:
        """Connect (retrying with backoff) and start the background network loop."""
        if self._started:
            return
        attempt = 0
        while True:
            try:
                self._client.connect(self.host, self.port, keepalive=self.keepalive)
                break
            except OSError as e:
                if attempt >= self.connect_retries:
                    raise
                delay = self.connect_backoff * (2**attempt)
                log.warning("MQTT connect to %s:%d failed (%s), retrying in %.1fs", self.host, self.port, e, delay)
                time.sleep(delay)
                attempt += 1
        self._client.loop_start()
        self._started = True

    def stop(self) -> None:
        """Stop and disconnect."""
        if not self._started:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self._started = False

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def subscribe(self, topic: str) -> None:
        self._client.subscribe(topic, qos=1)

    def unsubscribe(self, topic: str) -> None:
        self._client.unsubscribe(topic)

    def publish(self, topic: str, message: dict[str, Any], *, retain: bool = False) -> None:
        payload = json.dumps(message, separators=(",", ":")).encode("utf-8")
        self._client.publish(topic, payload=payload, qos=1, retain=retain)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish a message and wait for a correlated response.

        The caller must ensure we are subscribed to `response_topic`.
        """
        corr_id = str(uuid.uuid4())
        msg = dict(message)
        msg["corr_id"] = corr_id
        msg["reply_to"] = response_topic

        q: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        pending = PendingResponse(corr_id=corr_id, q=q)

        with self._lock:
            self._pending[corr_id] = pending

        self.publish(request_topic, msg)

        try:
            return q.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"No response for corr_id={corr_id}") from e
        finally:
            with self._lock:
                self._pending.pop(corr_id, None)

    # -------------------- internal callbacks --------------------

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        data = decode_payload(msg.payload)
        if data is None:
            log.debug("ignoring non-JSON message on %s", msg.topic)
            return

        # First, try to match pending request.
        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                pending = self._pending.get(corr_id)
            if pending is not None:
                try:
                    pending.q.put_nowait(data)
                except queue.Full:
                    pass
                return

        # Otherwise broadcast to handlers. A failing handler must not kill the
        # paho network thread.
        for h in list(self._handlers):
            try:
                h(msg.topic, data)
            except Exception:
                log.exception("handler failed for message on %s", msg.topic)


def decode_payload(raw: Any) -> dict[str, Any] | None:
    """Decode a JSON object payload; None for anything else."""
    try:
        payload = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
        data = json.loads(payload)
    except (UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None
