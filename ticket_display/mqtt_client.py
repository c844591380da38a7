"""Small MQTT helper built on top of paho-mqtt.

paho-mqtt is callback-based; this wrapper adds:
- JSON publish / dispatch to plain Python handlers
- a blocking request/response helper (`corr_id` + a dedicated reply topic)
- re-subscription of every topic after the broker connection comes back
- an optional last-will message, so the service learns about clients that
  vanish without saying goodbye

QoS 1 is used for everything: a ticket display may see a message twice
(updates replace the whole value), but should not miss one.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

log = logging.getLogger("ticket_display.mqtt")

MessageHandler = Callable[[str, dict[str, Any]], None]

QOS = 1


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
        will: tuple[str, dict[str, Any]] | None = None,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.on_message = self._on_message
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        if will is not None:
            will_topic, will_message = will
            self._client.will_set(will_topic, payload=_encode(will_message), qos=QOS)

        # External subscribers. Called with (topic, json_message).
        self._handlers: list[MessageHandler] = []

        # Called (no args) after every successful (re)connect.
        self._connect_handlers: list[Callable[[], None]] = []
        self._connected = threading.Event()

        # Topics to restore after a reconnect.
        self._subscriptions: set[str] = set()

        # corr_id -> queue used by request()
        self._pending: dict[str, PendingResponse] = {}
        self._lock = threading.Lock()

        self._started = False

    def start(self) -> None:
        """Connect and start the background network loop."""
        if self._started:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._started = True

    def stop(self) -> None:
        """Stop and disconnect."""
        if not self._started:
            return
        self._client.disconnect()
        self._client.loop_stop()
        self._started = False

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: MessageHandler) -> None:
        self._handlers = [h for h in self._handlers if h != handler]

    def add_connect_handler(self, handler: Callable[[], None]) -> None:
        self._connect_handlers.append(handler)

    def wait_until_connected(self, timeout: float = 5.0) -> None:
        if not self._connected.wait(timeout):
            raise TimeoutError(f"{self.client_id}: no broker connection after {timeout}s")

    def subscribe(self, topic: str) -> None:
        with self._lock:
            self._subscriptions.add(topic)
        self._client.subscribe(topic, qos=QOS)

    def unsubscribe(self, topic: str) -> None:
        with self._lock:
            self._subscriptions.discard(topic)
        self._client.unsubscribe(topic)

    def publish(self, topic: str, message: dict[str, Any]) -> None:
        self._client.publish(topic, payload=_encode(message), qos=QOS)

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

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            log.error("%s: broker refused connection: %s", self.client_id, reason_code)
            return
        with self._lock:
            topics = sorted(self._subscriptions)
        for topic in topics:
            client.subscribe(topic, qos=QOS)
        log.info("%s: connected to %s:%s (%d subscriptions)", self.client_id, self.host, self.port, len(topics))
        self._connected.set()
        for h in list(self._connect_handlers):
            try:
                h()
            except Exception:
                log.exception("%s: connect handler failed", self.client_id)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        self._connected.clear()
        if self._started:
            log.warning("%s: lost broker connection (%s), paho will reconnect", self.client_id, reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            raw = msg.payload
            payload = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError):
            log.warning("%s: dropping malformed message on %s", self.client_id, msg.topic)
            return
        if not isinstance(data, dict):
            log.warning("%s: dropping non-object message on %s", self.client_id, msg.topic)
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
                    log.debug("duplicate response for corr_id=%s", corr_id)
                return

        # Otherwise dispatch to handlers.
        for h in list(self._handlers):
            try:
                h(msg.topic, data)
            except Exception:
                # Keep the network loop alive; the handler owns its errors.
                log.exception("%s: handler failed for %s", self.client_id, msg.topic)


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")
