from __future__ import annotations

# Ticket display sync service.
#
# This file contains two layers:
# 1) `MqttTicketService`: MQTT adapter around TicketOperations + SessionManager
# 2) `build_service()` + `main()`: wiring against a real broker and Redis
#
# The business logic lives in operations.py / session.py and is testable
# without a broker.

import argparse
import logging
import signal
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, TYPE_CHECKING

from .auth import Authorizer, ChainAuthorizer, JwtAuthorizer, SharedSecretAuthorizer, extract_credential
from .broadcast import Broadcaster, StatePublisher
from .config import Settings
from .errors import ConfigError, ErrorResponse, TicketDisplayError
from .mqtt_topics import commands, session_events, session_requests
from .operations import TicketOperations
from .session import SessionManager

if TYPE_CHECKING:
    from .mqtt_client import MqttClient
    from .store import StateStore

log = logging.getLogger("ticket_display.service")


class MqttTicketService:
    """MQTT adapter: operator commands in, session events out."""

    def __init__(
        self,
        *,
        mqtt: MqttClient,
        operations: TicketOperations,
        sessions: SessionManager,
        authorizer: Authorizer,
        namespace: str,
        executor: Executor | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.operations = operations
        self.sessions = sessions
        self.authorizer = authorizer
        self.namespace = namespace

        # Store calls block; keep them off the MQTT network thread.
        # None runs handlers inline (tests).
        self._executor = executor

    def start(self) -> None:
        self.mqtt.subscribe(commands(self.namespace))
        self.mqtt.subscribe(session_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)

    def stop(self) -> None:
        self.mqtt.remove_handler(self._handle_message)
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self.sessions.close_all()

    def _submit(self, fn: Any, *args: Any) -> None:
        if self._executor is None:
            fn(*args)
            return
        future = self._executor.submit(fn, *args)
        future.add_done_callback(_log_failure)

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        if topic == commands(self.namespace):
            self._submit(self._handle_command, msg)
        elif topic == session_requests(self.namespace):
            self._submit(self._handle_session_request, msg)

    # -------- operator commands --------

    def _handle_command(self, msg: dict[str, Any]) -> None:
        op = msg.get("type")
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None

        if not isinstance(op, str) or not op:
            if reply_to:
                self._reply(reply_to, corr_id, ErrorResponse("bad_request", "command type required").to_message())
            return

        try:
            identity = self.authorizer.authorize(extract_credential(msg))
            value = self.operations.run(op, identity, msg)
        except TicketDisplayError as e:
            log.info("command %s rejected: %s (%s)", op, e.message, e.code)
            if reply_to:
                self._reply(reply_to, corr_id, e.to_response().to_message())
            return
        except Exception:
            log.exception("command %s failed", op)
            if reply_to:
                error = ErrorResponse("internal_error", "internal error, see service log", status=500)
                self._reply(reply_to, corr_id, error.to_message())
            return

        if reply_to:
            self._reply(reply_to, corr_id, {"type": "result", "op": op, "value": value})

    # -------- sessions --------

    def _handle_session_request(self, msg: dict[str, Any]) -> None:
        mtype = msg.get("type")
        session_id = msg.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            log.warning("session request without session_id: %s", mtype)
            return

        if mtype == "connect":
            events = session_events(session_id, self.namespace)

            def send(message: dict[str, Any]) -> None:
                self.mqtt.publish(events, message)

            try:
                self.sessions.connect(session_id, send, extract_credential(msg))
            except TicketDisplayError as e:
                log.info("session %s rejected: %s", session_id, e.message)
                send(e.to_response().to_message())
            return

        if mtype == "disconnect":
            # Unauthenticated: session ids are only writable by their own
            # client (and its last will) under the broker ACL.
            self.sessions.disconnect(session_id)
            return

        log.warning("unknown session request %r from %s", mtype, session_id)


def _log_failure(future: Any) -> None:
    exc = future.exception()
    if exc is not None:
        log.error("request handler crashed", exc_info=exc)


def build_authorizer(settings: Settings) -> Authorizer:
    authorizers: list[Authorizer] = []
    if settings.jwt_secret:
        authorizers.append(JwtAuthorizer(settings.jwt_secret))
    if settings.admin_token:
        authorizers.append(SharedSecretAuthorizer(settings.admin_token))
    if not authorizers:
        raise ConfigError("no authorizer configured")
    if len(authorizers) == 1:
        return authorizers[0]
    return ChainAuthorizer(*authorizers)


def build_service(settings: Settings, *, mqtt: MqttClient, store: StateStore) -> MqttTicketService:
    broadcaster = Broadcaster()
    authorizer = build_authorizer(settings)
    operations = TicketOperations(store, StatePublisher(store, broadcaster))
    sessions = SessionManager(
        store=store,
        broadcaster=broadcaster,
        authorizer=authorizer,
        policy=settings.auth_policy,
    )
    return MqttTicketService(
        mqtt=mqtt,
        operations=operations,
        sessions=sessions,
        authorizer=authorizer,
        namespace=settings.namespace,
        executor=ThreadPoolExecutor(max_workers=settings.workers, thread_name_prefix="ticket"),
    )


def main() -> None:
    # Import network dependencies only when running the real service.
    from .logging_config import setup_logging
    from .mqtt_client import MqttClient
    from .store import StateStore

    defaults = Settings.from_env()

    parser = argparse.ArgumentParser(description="Ticket display sync service (Redis + MQTT)")
    parser.add_argument("--mqtt-host", default=defaults.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=defaults.mqtt_port)
    parser.add_argument("--namespace", default=defaults.namespace)
    parser.add_argument("--redis-url", default=defaults.redis_url)
    parser.add_argument("--key-prefix", default=defaults.key_prefix)
    parser.add_argument("--auth-policy", choices=["downgrade", "reject"], default=defaults.auth_policy)
    parser.add_argument("--recent-capacity", type=int, default=defaults.recent_capacity)
    parser.add_argument("--workers", type=int, default=defaults.workers)
    parser.add_argument("--log-level", default=defaults.log_level)
    args = parser.parse_args()

    settings = defaults
    settings.mqtt_host = args.mqtt_host
    settings.mqtt_port = args.mqtt_port
    settings.namespace = args.namespace
    settings.redis_url = args.redis_url
    settings.key_prefix = args.key_prefix
    settings.auth_policy = args.auth_policy
    settings.recent_capacity = args.recent_capacity
    settings.workers = args.workers
    settings.log_level = args.log_level

    setup_logging(settings.log_level)
    try:
        settings.validate()
    except ConfigError as e:
        parser.error(str(e))

    store = StateStore.from_url(
        settings.redis_url,
        prefix=settings.key_prefix,
        recent_capacity=settings.recent_capacity,
        log_capacity=settings.admin_log_capacity,
    )
    store.ping()

    mqtt_client = MqttClient(client_id="ticket-service", host=settings.mqtt_host, port=settings.mqtt_port)
    service = build_service(settings, mqtt=mqtt_client, store=store)
    service.start()
    mqtt_client.start()

    log.info(
        "serving namespace=%s on MQTT %s:%s, key prefix %s",
        settings.namespace,
        settings.mqtt_host,
        settings.mqtt_port,
        settings.key_prefix,
    )

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
