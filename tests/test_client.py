from ticket_display.client import DisplayState, format_event


def test_snapshot_replaces_everything_without_ringing():
    st = DisplayState()
    called = st.apply(
        {
            "type": "snapshot",
            "number": 12,
            "passed": [9, 10],
            "featured": [{"text": "A", "url": "http://a"}],
            "sound_enabled": False,
            "public": False,
            "updated": "2026-10-19T09:30:00.000+00:00",
        }
    )
    assert called is False
    assert st.number == 12
    assert st.passed == [9, 10]
    assert st.sound_enabled is False
    assert st.public is False


def test_number_change_is_a_call():
    st = DisplayState()
    st.apply({"type": "snapshot", "number": 1})
    assert st.apply({"type": "update_number", "value": 2}) is True
    # Same value again (at-least-once delivery) is not a new call.
    assert st.apply({"type": "update_number", "value": 2}) is False


def test_updates_replace_whole_values():
    st = DisplayState()
    st.apply({"type": "update_passed", "value": [1, 2]})
    st.apply({"type": "update_passed", "value": [2]})
    assert st.passed == [2]


def test_state_unavailable_is_remembered_until_next_snapshot():
    st = DisplayState()
    st.apply({"type": "state_unavailable", "message": "down"})
    assert st.unavailable == "down"
    st.apply({"type": "snapshot", "number": 0})
    assert st.unavailable is None


def test_format_event():
    assert format_event({"type": "update_number", "value": 3}) == "update_number 3"
    assert format_event({"type": "admin_log", "value": []}) == "admin_log (0 lines) latest: -"
    assert format_event({"type": "error", "message": "nope"}) == "error: nope"
