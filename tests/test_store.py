import threading

import pytest

from ticket_display.errors import StoreUnavailableError, ValidationError
from ticket_display.store import FeaturedItem, StateStore, StoreKeys


def test_keys_share_prefix():
    keys = StoreKeys.for_prefix("room2")
    assert keys.number == "room2:number"
    assert keys.recent == "room2:passed"
    assert keys.featured == "room2:featured"
    assert keys.admin_log == "room2:adminLog"


def test_fresh_store_defaults(store):
    snap = store.snapshot()
    assert snap.number == 0
    assert snap.recent_numbers == []
    assert snap.featured_items == []
    assert snap.sound_enabled is True
    assert snap.public_visible is True
    assert snap.last_updated is None
    assert snap.admin_log is None


def test_increment_stamps_last_updated(store):
    assert store.increment_number() == 1
    assert store.get_last_updated() == "2026-10-19T09:30:00.000+00:00"


def test_concurrent_increments_are_not_lost(store):
    def work():
        for _ in range(25):
            store.increment_number()

    threads = [threading.Thread(target=work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get_number() == 200


def test_decrement_stops_at_zero(store):
    store.set_number(1)
    assert store.decrement_number_if_positive() == 0
    assert store.decrement_number_if_positive() == 0
    assert store.get_number() == 0


def test_decrement_never_goes_negative_under_contention(store):
    store.set_number(10)
    seen = []
    lock = threading.Lock()

    def retreat():
        for _ in range(10):
            v = store.decrement_number_if_positive()
            with lock:
                seen.append(v)

    def advance():
        for _ in range(5):
            store.increment_number()

    threads = [threading.Thread(target=retreat) for _ in range(4)]
    threads.append(threading.Thread(target=advance))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert min(seen) >= 0
    assert store.get_number() >= 0


def test_negative_counter_is_clamped_on_read(store, redis_client, caplog):
    redis_client.set(store.keys.number, -3)
    with caplog.at_level("ERROR", logger="ticket_display.store"):
        assert store.get_number() == 0
    assert "negative" in caplog.text


def test_decrement_repairs_negative_counter(store, redis_client):
    redis_client.set(store.keys.number, -2)
    assert store.decrement_number_if_positive() == 0
    assert redis_client.get(store.keys.number) == "0"


def test_add_recent_rejects_duplicate(store):
    store.add_recent_number(7)
    with pytest.raises(ValidationError, match="already"):
        store.add_recent_number(7)
    assert store.get_recent_numbers() == [7]


def test_add_recent_rejects_when_full(redis_client):
    store = StateStore(redis_client, recent_capacity=3)
    for n in (1, 2, 3):
        store.add_recent_number(n)
    with pytest.raises(ValidationError, match="list full"):
        store.add_recent_number(4)
    assert store.get_recent_numbers() == [1, 2, 3]


def test_concurrent_recent_adds_respect_capacity(store):
    def add(n):
        try:
            store.add_recent_number(n)
        except ValidationError:
            pass

    threads = [threading.Thread(target=add, args=(n,)) for n in range(1, 21)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    numbers = store.get_recent_numbers()
    assert len(numbers) == 5
    assert len(set(numbers)) == 5


def test_remove_recent_removes_one_occurrence(store, redis_client):
    redis_client.rpush(store.keys.recent, 4, 4)
    assert store.remove_recent_number(4) == 1
    assert store.get_recent_numbers() == [4]
    assert store.remove_recent_number(99) == 0


def test_featured_item_canonical_json_round_trips(store):
    item = FeaturedItem(text="Menu", url="https://example.com/menu")
    store.add_featured_item(item)
    store.add_featured_item(item)
    assert store.get_featured_items() == [item, item]
    assert store.remove_featured_item(item) == 1
    assert store.get_featured_items() == [item]


def test_malformed_featured_entry_is_skipped(store, redis_client):
    redis_client.rpush(store.keys.featured, "not json", FeaturedItem("A", "http://a").to_json())
    assert store.get_featured_items() == [FeaturedItem("A", "http://a")]


def test_flags_round_trip(store):
    store.set_sound_enabled(False)
    store.set_public_visibility(False)
    assert store.get_sound_enabled() is False
    assert store.get_public_visibility() is False


def test_admin_log_is_newest_first_and_bounded(redis_client):
    store = StateStore(redis_client, log_capacity=3)
    for i in range(5):
        store.append_admin_log(f"line {i}")
    assert store.get_admin_log() == ["line 4", "line 3", "line 2"]


def test_reset_all_clears_everything(store):
    store.set_number(42)
    store.add_recent_number(3)
    store.add_featured_item(FeaturedItem("A", "http://a"))
    store.set_sound_enabled(False)
    store.set_public_visibility(False)
    store.append_admin_log("x")

    store.reset_all()

    snap = store.snapshot(include_admin_log=True)
    assert snap.number == 0
    assert snap.recent_numbers == []
    assert snap.featured_items == []
    assert snap.sound_enabled is True
    assert snap.public_visible is True
    assert snap.admin_log == []


def test_snapshot_message_shape(store):
    store.set_number(5)
    store.add_featured_item(FeaturedItem("A", "http://a"))
    msg = store.snapshot(include_admin_log=True).to_message()
    assert msg["type"] == "snapshot"
    assert msg["number"] == 5
    assert msg["featured"] == [{"text": "A", "url": "http://a"}]
    assert msg["admin_log"] == []


def test_unreachable_store_raises_store_unavailable(store, redis_server):
    redis_server.connected = False
    with pytest.raises(StoreUnavailableError):
        store.increment_number()
    with pytest.raises(StoreUnavailableError):
        store.snapshot()


def test_capacity_must_be_positive(redis_client):
    with pytest.raises(ValueError):
        StateStore(redis_client, recent_capacity=0)
