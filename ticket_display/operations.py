from __future__ import annotations

# Mutation operations: the only code path that changes shared state.
#
# Every operation follows the same pipeline:
# 1) validate the input (ValidationError, nothing touched)
# 2) apply one atomic change in the store (which also stamps last-updated)
# 3) re-read the changed aggregate(s) and broadcast them, then the timestamp
# 4) append an audit line for the acting operator
#
# `TicketOperations` is pure logic over a StateStore + StatePublisher, so it
# can be tested without a broker.

import logging
from typing import Any

from .auth import Identity
from .broadcast import StatePublisher
from .errors import ValidationError
from .store import FeaturedItem, StateStore

log = logging.getLogger("ticket_display.operations")

ACCEPTED_URL_SCHEMES = ("http://", "https://")

# Redis integers are signed 64-bit.
MAX_NUMBER = 2**63 - 1


def parse_int(value: Any, *, what: str = "number") -> int:
    """Accept ints and integral strings/floats; reject everything else."""
    if isinstance(value, bool):
        raise ValidationError(f"{what} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{what} must be an integer")


def parse_bool(value: Any, *, what: str = "enabled") -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{what} must be true or false")
    return value


def parse_featured_item(text: Any, url: Any) -> FeaturedItem:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("text is required")
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("url is required")
    url = url.strip()
    if not url.lower().startswith(ACCEPTED_URL_SCHEMES):
        raise ValidationError("url must start with http:// or https://")
    return FeaturedItem(text=text.strip(), url=url)


class TicketOperations:
    """State-changing commands issued by an authenticated operator."""

    def __init__(self, store: StateStore, publisher: StatePublisher) -> None:
        self.store = store
        self.publisher = publisher

    # -------------------- counter --------------------

    def advance(self, identity: Identity) -> int:
        value = self.store.increment_number()
        self.publisher.publish_number()
        self._finish(identity, f"advanced number to {value}")
        return value

    def retreat(self, identity: Identity) -> int:
        value = self.store.decrement_number_if_positive()
        self.publisher.publish_number()
        self._finish(identity, f"moved number back to {value}")
        return value

    def set_number(self, identity: Identity, number: Any) -> int:
        n = parse_int(number)
        if n < 0:
            raise ValidationError("number must be a non-negative integer")
        if n > MAX_NUMBER:
            raise ValidationError(f"number must be at most {MAX_NUMBER}")
        self.store.set_number(n)
        self.publisher.publish_number()
        self._finish(identity, f"set number to {n}")
        return n

    # -------------------- recent ("passed") numbers --------------------

    def add_recent_number(self, identity: Identity, number: Any) -> list[int]:
        n = parse_int(number)
        if n <= 0:
            raise ValidationError("number must be a positive integer")
        if n > MAX_NUMBER:
            raise ValidationError(f"number must be at most {MAX_NUMBER}")
        self.store.add_recent_number(n)
        numbers = self.publisher.publish_recent_numbers()
        self._finish(identity, f"added {n} to passed numbers")
        return numbers

    def remove_recent_number(self, identity: Identity, number: Any) -> list[int]:
        n = parse_int(number)
        removed = self.store.remove_recent_number(n)
        numbers = self.publisher.publish_recent_numbers()
        if removed:
            self._finish(identity, f"removed {n} from passed numbers")
        else:
            self._finish(identity, f"tried to remove {n} from passed numbers (not present)")
        return numbers

    def clear_recent_numbers(self, identity: Identity) -> list[int]:
        self.store.clear_recent_numbers()
        numbers = self.publisher.publish_recent_numbers()
        self._finish(identity, "cleared passed numbers")
        return numbers

    # -------------------- featured items --------------------

    def add_featured_item(self, identity: Identity, text: Any, url: Any) -> list[dict[str, str]]:
        item = parse_featured_item(text, url)
        self.store.add_featured_item(item)
        items = self.publisher.publish_featured_items()
        self._finish(identity, f"added featured link {item.text!r} -> {item.url}")
        return items

    def remove_featured_item(self, identity: Identity, text: Any, url: Any) -> list[dict[str, str]]:
        if not isinstance(text, str) or not text or not isinstance(url, str) or not url:
            raise ValidationError("text and url are required")
        item = FeaturedItem(text=text.strip(), url=url.strip())
        self.store.remove_featured_item(item)
        items = self.publisher.publish_featured_items()
        self._finish(identity, f"removed featured link {item.text!r}")
        return items

    def clear_featured_items(self, identity: Identity) -> list[dict[str, str]]:
        self.store.clear_featured_items()
        items = self.publisher.publish_featured_items()
        self._finish(identity, "cleared featured links")
        return items

    # -------------------- flags --------------------

    def set_sound_enabled(self, identity: Identity, enabled: Any) -> bool:
        flag = parse_bool(enabled)
        self.store.set_sound_enabled(flag)
        value = self.publisher.publish_sound_enabled()
        self._finish(identity, f"turned sound {'on' if flag else 'off'}")
        return value

    def set_public_visibility(self, identity: Identity, visible: Any) -> bool:
        flag = parse_bool(visible, what="public")
        self.store.set_public_visibility(flag)
        value = self.publisher.publish_public_visibility()
        self._finish(identity, f"made display {'public' if flag else 'closed'}")
        return value

    # -------------------- reset & log --------------------

    def reset_all(self, identity: Identity) -> int:
        self.store.reset_all()
        snapshot = self.publisher.publish_snapshot(include_admin_log=False)
        self._audit(identity, "reset everything")
        log.warning("state reset by %s", identity)
        return snapshot.number

    def clear_admin_log(self, identity: Identity) -> list[str]:
        self.store.clear_admin_log()
        self._audit(identity, "cleared the activity log")
        return self.store.get_admin_log()

    def _finish(self, identity: Identity, action: str) -> None:
        self.publisher.publish_timestamp()
        self._audit(identity, action)

    def _audit(self, identity: Identity, action: str) -> None:
        self.store.append_admin_log(f"{self.store.now()} {identity}: {action}")
        self.publisher.publish_admin_log()
        log.info("%s: %s", identity, action)

    # -------------------- dispatch by name --------------------

    def run(self, op: str, identity: Identity, payload: dict[str, Any]) -> Any:
        """Execute the named command; returns the post-mutation value."""
        if op == "advance":
            return self.advance(identity)
        if op == "retreat":
            return self.retreat(identity)
        if op == "set_number":
            return self.set_number(identity, payload.get("number"))

        if op == "add_passed":
            return self.add_recent_number(identity, payload.get("number"))
        if op == "remove_passed":
            return self.remove_recent_number(identity, payload.get("number"))
        if op == "clear_passed":
            return self.clear_recent_numbers(identity)

        if op == "add_featured":
            return self.add_featured_item(identity, payload.get("text"), payload.get("url"))
        if op == "remove_featured":
            return self.remove_featured_item(identity, payload.get("text"), payload.get("url"))
        if op == "clear_featured":
            return self.clear_featured_items(identity)

        if op == "set_sound":
            return self.set_sound_enabled(identity, payload.get("enabled"))
        if op == "set_public":
            return self.set_public_visibility(identity, payload.get("enabled"))

        if op == "reset":
            return self.reset_all(identity)
        if op == "clear_log":
            return self.clear_admin_log(identity)

        if op == "check_token":
            return {"username": identity.username, "role": identity.role}

        raise ValidationError(f"unknown command {op!r}")
