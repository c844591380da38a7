import threading

import pytest

from ticket_display.auth import Identity
from ticket_display.errors import ValidationError
from ticket_display.operations import parse_bool, parse_int


def _of_type(messages, mtype):
    return [m["value"] for m in messages if m["type"] == mtype]


def test_advance_three_times_broadcasts_each_value(ops, operator, received):
    assert [ops.advance(operator) for _ in range(3)] == [1, 2, 3]
    assert _of_type(received, "update_number") == [1, 2, 3]
    assert len(_of_type(received, "update_timestamp")) == 3


def test_concurrent_advances_lose_nothing(ops, store):
    users = [Identity(f"op{i}") for i in range(4)]

    def work(identity):
        for _ in range(10):
            ops.advance(identity)

    threads = [threading.Thread(target=work, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get_number() == 40


def test_retreat_at_zero_is_a_noop(ops, operator, received):
    assert ops.retreat(operator) == 0
    assert _of_type(received, "update_number") == [0]


def test_retreat_decrements(ops, operator):
    ops.set_number(operator, 4)
    assert ops.retreat(operator) == 3


@pytest.mark.parametrize("bad", [-1, "abc", 1.5, None, True])
def test_set_number_rejects_invalid(ops, operator, received, bad):
    with pytest.raises(ValidationError):
        ops.set_number(operator, bad)
    assert received == []


def test_set_number_accepts_numeric_string(ops, operator, store):
    assert ops.set_number(operator, "12") == 12
    assert store.get_number() == 12


def test_numbers_beyond_64_bits_are_rejected(ops, operator, store, received):
    updated = store.get_last_updated()
    with pytest.raises(ValidationError, match="at most"):
        ops.set_number(operator, 2**64)
    with pytest.raises(ValidationError, match="at most"):
        ops.add_recent_number(operator, 2**63)
    assert received == []
    assert store.get_last_updated() == updated

    assert ops.advance(operator) == 1
    assert ops.set_number(operator, 2**63 - 1) == 2**63 - 1


def test_recent_list_full_scenario(ops, operator, store, received):
    for n in (1, 2, 3, 4, 5):
        ops.add_recent_number(operator, n)
    received.clear()

    with pytest.raises(ValidationError, match="list full"):
        ops.add_recent_number(operator, 6)

    assert store.get_recent_numbers() == [1, 2, 3, 4, 5]
    assert received == []


def test_add_recent_rejects_non_positive(ops, operator):
    with pytest.raises(ValidationError):
        ops.add_recent_number(operator, 0)


def test_add_recent_rejects_duplicate(ops, operator):
    ops.add_recent_number(operator, 9)
    with pytest.raises(ValidationError):
        ops.add_recent_number(operator, 9)


def test_remove_absent_recent_number_still_broadcasts(ops, operator, received):
    ops.add_recent_number(operator, 3)
    received.clear()

    assert ops.remove_recent_number(operator, 99) == [3]
    assert _of_type(received, "update_passed") == [[3]]


def test_clear_recent_numbers(ops, operator):
    ops.add_recent_number(operator, 3)
    assert ops.clear_recent_numbers(operator) == []


def test_featured_rejects_ftp_without_broadcast(ops, operator, store, received):
    with pytest.raises(ValidationError, match="http"):
        ops.add_featured_item(operator, "Promo", "ftp://x")
    assert store.get_featured_items() == []
    assert received == []


@pytest.mark.parametrize("text,url", [("", "http://a"), ("A", ""), (None, "http://a")])
def test_featured_requires_both_fields(ops, operator, text, url):
    with pytest.raises(ValidationError):
        ops.add_featured_item(operator, text, url)


def test_featured_add_and_remove_by_content(ops, operator, received):
    ops.add_featured_item(operator, "Menu", "https://example.com/menu")
    ops.add_featured_item(operator, "Map", "https://example.com/map")
    items = ops.remove_featured_item(operator, "Menu", "https://example.com/menu")
    assert items == [{"text": "Map", "url": "https://example.com/map"}]
    assert _of_type(received, "update_featured")[-1] == items

    # Removing again is a no-op.
    assert ops.remove_featured_item(operator, "Menu", "https://example.com/menu") == items


def test_flags_require_booleans(ops, operator):
    with pytest.raises(ValidationError):
        ops.set_sound_enabled(operator, "yes")
    assert ops.set_sound_enabled(operator, False) is False
    assert ops.set_public_visibility(operator, False) is False


def test_reset_all_restores_defaults(ops, operator, store, received):
    ops.set_number(operator, 30)
    ops.add_recent_number(operator, 28)
    ops.add_featured_item(operator, "A", "http://a")
    ops.set_sound_enabled(operator, False)
    ops.set_public_visibility(operator, False)
    received.clear()

    assert ops.reset_all(operator) == 0

    snap = store.snapshot()
    assert snap.number == 0
    assert snap.recent_numbers == []
    assert snap.featured_items == []
    assert snap.sound_enabled is True
    assert snap.public_visible is True

    assert _of_type(received, "update_number") == [0]
    assert _of_type(received, "update_passed") == [[]]
    assert _of_type(received, "update_featured") == [[]]
    assert _of_type(received, "update_sound") == [True]
    assert _of_type(received, "update_public") == [True]
    assert len(_of_type(received, "admin_log")) == 1
    assert _of_type(received, "admin_log")[0][0].endswith("reset everything")


def test_every_mutation_is_audited(ops, operator, store):
    ops.advance(operator)
    ops.add_recent_number(operator, 1)
    log_lines = store.get_admin_log()
    assert len(log_lines) == 2
    assert "alice (operator): added 1 to passed numbers" in log_lines[0]
    assert "advanced number to 1" in log_lines[1]


def test_clear_log_leaves_one_line(ops, operator):
    ops.advance(operator)
    lines = ops.clear_admin_log(operator)
    assert len(lines) == 1
    assert "cleared the activity log" in lines[0]


def test_run_dispatches_by_name(ops, operator):
    assert ops.run("advance", operator, {}) == 1
    assert ops.run("set_number", operator, {"number": 8}) == 8
    assert ops.run("add_passed", operator, {"number": 7}) == [7]
    assert ops.run("set_sound", operator, {"enabled": False}) is False
    assert ops.run("check_token", operator, {}) == {"username": "alice", "role": "operator"}


def test_run_rejects_unknown_command(ops, operator):
    with pytest.raises(ValidationError, match="unknown command"):
        ops.run("explode", operator, {})


def test_parse_helpers():
    assert parse_int(3.0) == 3
    assert parse_int(" 4 ") == 4
    with pytest.raises(ValidationError):
        parse_int(False)
    assert parse_bool(True) is True
    with pytest.raises(ValidationError):
        parse_bool(1)
