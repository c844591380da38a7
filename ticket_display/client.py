from __future__ import annotations

# Client side of the MQTT protocol.
#
# - `send_command()`: a short-lived operator client. Connect, publish one
#   command, wait for the correlated reply, exit.
# - `SessionClient`: a long-lived display/console. Connect a session, receive
#   the snapshot and every later update on a dedicated events topic.
# - `DisplayState`: last-value-wins view of the events, for displays.
# - `main()`: the `watch` CLI, printing every event of one session.

import argparse
import time
import uuid
from typing import Any, Callable

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, commands, responses, session_events, session_requests

EventHandler = Callable[[dict[str, Any]], None]


def send_command(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    op: str,
    token: str,
    payload: dict[str, Any] | None = None,
    timeout: float = 5.0,
) -> dict[str, Any]:
    """Send one operator command and return the reply (result or error)."""
    # Unique client id so several consoles can run concurrently.
    client_id = f"operator-{uuid.uuid4().hex[:12]}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)

    reply_topic = responses(client_id, namespace)
    mqtt.subscribe(reply_topic)
    mqtt.start()

    message: dict[str, Any] = dict(payload or {})
    message["type"] = op
    message["authorization"] = f"Bearer {token}"

    try:
        mqtt.wait_until_connected(timeout)
        return mqtt.request(
            request_topic=commands(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=timeout,
        )
    finally:
        mqtt.stop()


class SessionClient:
    """One connected display or console session."""

    def __init__(
        self,
        *,
        mqtt_host: str,
        mqtt_port: int,
        namespace: str = DEFAULT_NAMESPACE,
        token: str | None = None,
        on_event: EventHandler,
        session_id: str | None = None,
    ) -> None:
        self.namespace = namespace
        self.session_id = session_id or f"session-{uuid.uuid4().hex[:12]}"
        self._token = token
        self._on_event = on_event
        self._events_topic = session_events(self.session_id, namespace)

        # If we drop off the broker, it tells the service for us.
        will = (session_requests(namespace), {"type": "disconnect", "session_id": self.session_id})
        self.mqtt = MqttClient(
            client_id=self.session_id,
            host=mqtt_host,
            port=mqtt_port,
            will=will,
        )
        self.mqtt.add_handler(self._on_message)
        # Every broker (re)connect starts a fresh session with a new snapshot.
        self.mqtt.add_connect_handler(self.connect)

    def start(self) -> None:
        self.mqtt.subscribe(self._events_topic)
        self.mqtt.start()

    def connect(self) -> None:
        """Send the connect handshake; the service answers with a snapshot."""
        message: dict[str, Any] = {"type": "connect", "session_id": self.session_id}
        if self._token:
            message["token"] = self._token
        self.mqtt.publish(session_requests(self.namespace), message)

    def stop(self) -> None:
        try:
            self.mqtt.publish(session_requests(self.namespace), {"type": "disconnect", "session_id": self.session_id})
        finally:
            self.mqtt.stop()

    def _on_message(self, topic: str, msg: dict[str, Any]) -> None:
        if topic != self._events_topic:
            return
        self._on_event(msg)


class DisplayState:
    """Last values received for one display. Replaced wholesale per event."""

    def __init__(self) -> None:
        self.number: int | None = None
        self.passed: list[int] = []
        self.featured: list[dict[str, str]] = []
        self.sound_enabled = True
        self.public = True
        self.updated: str | None = None
        self.unavailable: str | None = None

    def apply(self, msg: dict[str, Any]) -> bool:
        """Apply one event; return True if the called number changed."""
        mtype = msg.get("type")
        before = self.number

        if mtype == "snapshot":
            self.number = msg.get("number")
            self.passed = list(msg.get("passed") or [])
            self.featured = list(msg.get("featured") or [])
            self.sound_enabled = bool(msg.get("sound_enabled", True))
            self.public = bool(msg.get("public", True))
            self.updated = msg.get("updated")
            self.unavailable = None
            # The first snapshot is not a "call".
            return False
        if mtype == "update_number":
            self.number = msg.get("value")
        elif mtype == "update_passed":
            self.passed = list(msg.get("value") or [])
        elif mtype == "update_featured":
            self.featured = list(msg.get("value") or [])
        elif mtype == "update_sound":
            self.sound_enabled = bool(msg.get("value"))
        elif mtype == "update_public":
            self.public = bool(msg.get("value"))
        elif mtype == "update_timestamp":
            self.updated = msg.get("value")
        elif mtype in ("state_unavailable", "error"):
            self.unavailable = str(msg.get("message") or mtype)

        return before is not None and self.number != before


def format_event(msg: dict[str, Any]) -> str:
    mtype = msg.get("type")
    if mtype == "snapshot":
        return (
            f"snapshot number={msg.get('number')} passed={msg.get('passed')} "
            f"featured={len(msg.get('featured') or [])} sound={msg.get('sound_enabled')} "
            f"public={msg.get('public')} updated={msg.get('updated')}"
        )
    if mtype == "admin_log":
        lines = msg.get("value") or []
        return f"admin_log ({len(lines)} lines) latest: {lines[0] if lines else '-'}"
    if mtype in ("state_unavailable", "error"):
        return f"{mtype}: {msg.get('message')}"
    return f"{mtype} {msg.get('value')!r}"


def main() -> None:
    parser = argparse.ArgumentParser(description="Watch live ticket display updates (MQTT)")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--token", default=None, help="operator credential (adds the activity log)")
    args = parser.parse_args()

    def show(msg: dict[str, Any]) -> None:
        print(f"[watch] {format_event(msg)}")

    client = SessionClient(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        token=args.token,
        on_event=show,
    )
    client.start()
    print(f"[watch] connected to MQTT {args.mqtt_host}:{args.mqtt_port} as {client.session_id}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        client.stop()


if __name__ == "__main__":
    main()
