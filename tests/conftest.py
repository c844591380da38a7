from datetime import datetime, timezone

import fakeredis
import pytest

from ticket_display.auth import Identity
from ticket_display.broadcast import Broadcaster, StatePublisher
from ticket_display.operations import TicketOperations
from ticket_display.store import StateStore


class FakeMqtt:
    """In-memory stand-in for MqttClient: records publishes, replays deliveries."""

    def __init__(self):
        self.published = []
        self.subscriptions = []
        self._handlers = []

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def add_handler(self, handler):
        self._handlers.append(handler)

    def remove_handler(self, handler):
        self._handlers = [h for h in self._handlers if h != handler]

    def publish(self, topic, message):
        self.published.append((topic, dict(message)))

    def deliver(self, topic, message):
        for h in list(self._handlers):
            h(topic, message)

    def messages_on(self, topic):
        return [m for t, m in self.published if t == topic]


def fixed_clock():
    return datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def store(redis_client):
    return StateStore(redis_client, clock=fixed_clock)


@pytest.fixture
def broadcaster():
    return Broadcaster()


@pytest.fixture
def received(broadcaster):
    messages = []
    broadcaster.subscribe(messages.append)
    return messages


@pytest.fixture
def ops(store, broadcaster):
    return TicketOperations(store, StatePublisher(store, broadcaster))


@pytest.fixture
def operator():
    return Identity("alice", "operator")


@pytest.fixture
def fake_mqtt():
    return FakeMqtt()
