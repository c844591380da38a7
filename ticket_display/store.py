from __future__ import annotations

# State Store access layer (Redis).
#
# Redis owns every durable value; this module only knows how to read and
# change them atomically:
# - counter: INCR, and a WATCH/MULTI transaction for the guarded decrement
# - recent ("passed") numbers: WATCH/MULTI for dedup + capacity, LTRIM as bound
# - featured items: a list of canonical JSON strings, removed by exact match
# - reset: one MULTI across all keys
#
# Every write also stamps the last-updated key inside the same transaction.
# Nothing here is cached between calls: each read is a fresh fetch.

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

import redis
from redis import exceptions as redis_errors

from .errors import StateInconsistencyError, StoreUnavailableError, ValidationError

log = logging.getLogger("ticket_display.store")

DEFAULT_RECENT_CAPACITY = 5
DEFAULT_LOG_CAPACITY = 50


@dataclass(frozen=True)
class StoreKeys:
    """Redis key names, all under one prefix."""

    number: str
    recent: str
    featured: str
    updated: str
    sound: str
    public: str
    admin_log: str

    @classmethod
    def for_prefix(cls, prefix: str = "callsys") -> StoreKeys:
        return cls(
            number=f"{prefix}:number",
            recent=f"{prefix}:passed",
            featured=f"{prefix}:featured",
            updated=f"{prefix}:updated",
            sound=f"{prefix}:soundEnabled",
            public=f"{prefix}:isPublic",
            admin_log=f"{prefix}:adminLog",
        )


@dataclass(frozen=True)
class FeaturedItem:
    text: str
    url: str

    def to_json(self) -> str:
        # Canonical form so LREM can match an item by content.
        return json.dumps(
            {"text": self.text, "url": self.url},
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "url": self.url}

    @classmethod
    def from_json(cls, raw: str) -> FeaturedItem:
        data = json.loads(raw)
        return cls(text=str(data["text"]), url=str(data["url"]))


@dataclass
class StateSnapshot:
    """One consistent read of every aggregate."""

    number: int
    recent_numbers: list[int]
    featured_items: list[FeaturedItem]
    sound_enabled: bool
    public_visible: bool
    last_updated: str | None
    admin_log: list[str] | None = field(default=None)

    def to_message(self) -> dict[str, Any]:
        msg: dict[str, Any] = {
            "type": "snapshot",
            "number": self.number,
            "passed": list(self.recent_numbers),
            "featured": [item.to_dict() for item in self.featured_items],
            "sound_enabled": self.sound_enabled,
            "public": self.public_visible,
            "updated": self.last_updated,
        }
        if self.admin_log is not None:
            msg["admin_log"] = list(self.admin_log)
        return msg


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StateStore:
    """Atomic reads and writes against the Redis keys of one display."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "callsys",
        recent_capacity: int = DEFAULT_RECENT_CAPACITY,
        log_capacity: int = DEFAULT_LOG_CAPACITY,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if recent_capacity <= 0:
            raise ValueError("recent_capacity must be > 0")
        if log_capacity <= 0:
            raise ValueError("log_capacity must be > 0")
        self._client = client
        self.keys = StoreKeys.for_prefix(prefix)
        self.recent_capacity = recent_capacity
        self.log_capacity = log_capacity
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> StateStore:
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, **kwargs)

    def now(self) -> str:
        return self._clock().isoformat(timespec="milliseconds")

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Translate Redis transport failures into StoreUnavailableError."""
        try:
            yield
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as e:
            log.error("state store unavailable: %s", e)
            raise StoreUnavailableError("state store unavailable, try again later") from e

    # -------------------- decoding --------------------

    def _checked_number(self, raw: Any) -> int:
        value = int(raw or 0)
        if value < 0:
            err = StateInconsistencyError(f"{self.keys.number} is negative ({value})")
            log.error("%s; clamping to 0", err)
            return 0
        return value

    def _decode_recent(self, raw: list[str]) -> list[int]:
        numbers: list[int] = []
        for entry in raw:
            try:
                numbers.append(int(entry))
            except ValueError:
                log.warning("skipping malformed entry %r in %s", entry, self.keys.recent)
        return numbers

    def _decode_featured(self, raw: list[str]) -> list[FeaturedItem]:
        items: list[FeaturedItem] = []
        for entry in raw:
            try:
                items.append(FeaturedItem.from_json(entry))
            except (ValueError, KeyError, TypeError):
                log.warning("skipping malformed entry %r in %s", entry, self.keys.featured)
        return items

    @staticmethod
    def _decode_flag(raw: str | None) -> bool:
        return raw is None or raw == "1"

    # -------------------- reads --------------------

    def get_number(self) -> int:
        with self._guard():
            return self._checked_number(self._client.get(self.keys.number))

    def get_recent_numbers(self) -> list[int]:
        with self._guard():
            raw = self._client.lrange(self.keys.recent, -self.recent_capacity, -1)
        return self._decode_recent(raw)

    def get_featured_items(self) -> list[FeaturedItem]:
        with self._guard():
            raw = self._client.lrange(self.keys.featured, 0, -1)
        return self._decode_featured(raw)

    def get_sound_enabled(self) -> bool:
        with self._guard():
            return self._decode_flag(self._client.get(self.keys.sound))

    def get_public_visibility(self) -> bool:
        with self._guard():
            return self._decode_flag(self._client.get(self.keys.public))

    def get_last_updated(self) -> str | None:
        with self._guard():
            return self._client.get(self.keys.updated)

    def get_admin_log(self) -> list[str]:
        with self._guard():
            return self._client.lrange(self.keys.admin_log, 0, self.log_capacity - 1)

    def snapshot(self, *, include_admin_log: bool = False) -> StateSnapshot:
        """Read every aggregate inside one MULTI/EXEC."""
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.get(self.keys.number)
            pipe.lrange(self.keys.recent, -self.recent_capacity, -1)
            pipe.lrange(self.keys.featured, 0, -1)
            pipe.get(self.keys.sound)
            pipe.get(self.keys.public)
            pipe.get(self.keys.updated)
            if include_admin_log:
                pipe.lrange(self.keys.admin_log, 0, self.log_capacity - 1)
            results = pipe.execute()

        return StateSnapshot(
            number=self._checked_number(results[0]),
            recent_numbers=self._decode_recent(results[1]),
            featured_items=self._decode_featured(results[2]),
            sound_enabled=self._decode_flag(results[3]),
            public_visible=self._decode_flag(results[4]),
            last_updated=results[5],
            admin_log=results[6] if include_admin_log else None,
        )

    # -------------------- counter --------------------

    def increment_number(self) -> int:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.incr(self.keys.number)
            pipe.set(self.keys.updated, self.now())
            value, _ = pipe.execute()
        return self._checked_number(value)

    def decrement_number_if_positive(self) -> int:
        """Decrement unless the counter is already 0; return the value after.

        The check and the DECR run in one WATCH/MULTI transaction, so a
        concurrent INCR either lands before the check or aborts the EXEC and
        we retry.
        """
        key = self.keys.number
        with self._guard(), self._client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    current = int(pipe.get(key) or 0)
                    pipe.multi()
                    if current > 0:
                        pipe.decr(key)
                    elif current < 0:
                        log.error(
                            "%s; resetting to 0",
                            StateInconsistencyError(f"{key} is negative ({current})"),
                        )
                        pipe.set(key, 0)
                    pipe.set(self.keys.updated, self.now())
                    results = pipe.execute()
                except redis_errors.WatchError:
                    log.debug("%s changed during retreat, retrying", key)
                    continue
                if current > 0:
                    return self._checked_number(results[0])
                return 0

    def set_number(self, number: int) -> None:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.set(self.keys.number, number)
            pipe.set(self.keys.updated, self.now())
            pipe.execute()

    # -------------------- recent numbers --------------------

    def add_recent_number(self, number: int) -> None:
        """Append `number`, rejecting duplicates and a full list.

        The membership and size checks are made under WATCH; the LTRIM is the
        last line of defence that keeps the newest `recent_capacity` entries.
        """
        key = self.keys.recent
        cap = self.recent_capacity
        with self._guard(), self._client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    current = pipe.lrange(key, 0, -1)
                    if str(number) in current:
                        raise ValidationError(f"{number} is already in the list")
                    if len(current) >= cap:
                        raise ValidationError(f"list full (max {cap}), remove a number first")
                    pipe.multi()
                    pipe.rpush(key, number)
                    pipe.ltrim(key, -cap, -1)
                    pipe.set(self.keys.updated, self.now())
                    pipe.execute()
                    return
                except redis_errors.WatchError:
                    log.debug("%s changed during add, retrying", key)
                    continue

    def remove_recent_number(self, number: int) -> int:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.lrem(self.keys.recent, 1, str(number))
            pipe.set(self.keys.updated, self.now())
            removed, _ = pipe.execute()
        return int(removed)

    def clear_recent_numbers(self) -> None:
        self._delete_and_stamp(self.keys.recent)

    # -------------------- featured items --------------------

    def add_featured_item(self, item: FeaturedItem) -> None:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.rpush(self.keys.featured, item.to_json())
            pipe.set(self.keys.updated, self.now())
            pipe.execute()

    def remove_featured_item(self, item: FeaturedItem) -> int:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.lrem(self.keys.featured, 1, item.to_json())
            pipe.set(self.keys.updated, self.now())
            removed, _ = pipe.execute()
        return int(removed)

    def clear_featured_items(self) -> None:
        self._delete_and_stamp(self.keys.featured)

    # -------------------- flags --------------------

    def set_sound_enabled(self, enabled: bool) -> None:
        self._set_flag(self.keys.sound, enabled)

    def set_public_visibility(self, visible: bool) -> None:
        self._set_flag(self.keys.public, visible)

    def _set_flag(self, key: str, value: bool) -> None:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.set(key, "1" if value else "0")
            pipe.set(self.keys.updated, self.now())
            pipe.execute()

    # -------------------- admin log --------------------

    def append_admin_log(self, line: str) -> None:
        """Push newest-first and drop lines past `log_capacity`."""
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.lpush(self.keys.admin_log, line)
            pipe.ltrim(self.keys.admin_log, 0, self.log_capacity - 1)
            pipe.execute()

    def clear_admin_log(self) -> None:
        with self._guard():
            self._client.delete(self.keys.admin_log)

    # -------------------- reset --------------------

    def reset_all(self) -> None:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.set(self.keys.number, 0)
            pipe.delete(self.keys.recent, self.keys.featured, self.keys.admin_log)
            pipe.set(self.keys.sound, "1")
            pipe.set(self.keys.public, "1")
            pipe.set(self.keys.updated, self.now())
            pipe.execute()

    def _delete_and_stamp(self, key: str) -> None:
        with self._guard():
            pipe = self._client.pipeline(transaction=True)
            pipe.delete(key)
            pipe.set(self.keys.updated, self.now())
            pipe.execute()

    def ping(self) -> bool:
        with self._guard():
            return bool(self._client.ping())
