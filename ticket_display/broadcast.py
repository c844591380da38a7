"""Broadcast channel.

`Broadcaster` fans a message out to every subscribed session.
`StatePublisher` is the "re-read, then publish" half: after a mutation has
committed, it fetches the aggregate's current value from the store and
broadcasts the whole value. Messages never carry the caller's input or a
delta, so a client that misses or reorders one corrects itself on the next.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from .store import StateSnapshot, StateStore

log = logging.getLogger("ticket_display.broadcast")

Subscriber = Callable[[dict[str, Any]], None]

# Message types that only privileged sessions receive.
PRIVILEGED_TYPES = frozenset({"admin_log"})


class Broadcaster:
    """Thread-safe publish/subscribe fan-out."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers = [s for s in self._subscribers if s != subscriber]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, message: dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(message)
            except Exception:
                # One broken session must not starve the others.
                log.exception("subscriber failed on %s", message.get("type"))


class StatePublisher:
    """One re-read-then-publish function per aggregate.

    Each `publish_*` returns the value it broadcast, which is the committed
    value the caller should report back.
    """

    def __init__(self, store: StateStore, broadcaster: Broadcaster) -> None:
        self.store = store
        self.broadcaster = broadcaster

    def _publish(self, mtype: str, value: Any) -> Any:
        self.broadcaster.publish({"type": mtype, "value": value})
        return value

    def publish_number(self) -> int:
        return self._publish("update_number", self.store.get_number())

    def publish_recent_numbers(self) -> list[int]:
        return self._publish("update_passed", self.store.get_recent_numbers())

    def publish_featured_items(self) -> list[dict[str, str]]:
        items = [item.to_dict() for item in self.store.get_featured_items()]
        return self._publish("update_featured", items)

    def publish_sound_enabled(self) -> bool:
        return self._publish("update_sound", self.store.get_sound_enabled())

    def publish_public_visibility(self) -> bool:
        return self._publish("update_public", self.store.get_public_visibility())

    def publish_timestamp(self) -> str | None:
        return self._publish("update_timestamp", self.store.get_last_updated())

    def publish_admin_log(self) -> list[str]:
        return self._publish("admin_log", self.store.get_admin_log())

    def publish_snapshot(
        self, snapshot: StateSnapshot | None = None, *, include_admin_log: bool = True
    ) -> StateSnapshot:
        """Publish every aggregate from one atomic read (used after a reset).

        Pass include_admin_log=False when the caller publishes the log itself.
        """
        if snapshot is None:
            snapshot = self.store.snapshot(include_admin_log=include_admin_log)
        self.broadcaster.publish({"type": "update_number", "value": snapshot.number})
        self.broadcaster.publish({"type": "update_passed", "value": list(snapshot.recent_numbers)})
        self.broadcaster.publish(
            {"type": "update_featured", "value": [item.to_dict() for item in snapshot.featured_items]}
        )
        self.broadcaster.publish({"type": "update_sound", "value": snapshot.sound_enabled})
        self.broadcaster.publish({"type": "update_public", "value": snapshot.public_visible})
        self.broadcaster.publish({"type": "update_timestamp", "value": snapshot.last_updated})
        if snapshot.admin_log is not None:
            self.broadcaster.publish({"type": "admin_log", "value": list(snapshot.admin_log)})
        return snapshot
