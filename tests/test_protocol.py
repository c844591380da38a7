from ticket_display.errors import AuthorizationError, ErrorResponse, StoreUnavailableError, ValidationError
from ticket_display.mqtt_topics import commands, responses, session_events, session_requests


def test_topic_helpers():
    ns = "demo/v1"
    assert commands(ns) == "demo/v1/commands"
    assert responses("c1", ns) == "demo/v1/responses/c1"
    assert session_requests(ns) == "demo/v1/sessions/requests"
    assert session_events("tv", ns) == "demo/v1/sessions/tv/events"


def test_default_namespace():
    assert commands() == "callsys/v1/commands"


def test_error_envelope():
    msg = ErrorResponse("bad_request", "nope").to_message(corr_id="x")
    assert msg == {"type": "error", "code": "bad_request", "message": "nope", "status": 400, "corr_id": "x"}


def test_exceptions_map_to_statuses():
    assert ValidationError("a").to_response().status == 400
    assert AuthorizationError("a").to_response().status == 401
    assert StoreUnavailableError("a").to_response().code == "store_unavailable"
