"""MQTT topic helpers.

We keep topic construction in one place so the service and every client agree
on naming.

Topic layout under a configurable namespace (default: `callsys/v1`):

Request/response:
- `<ns>/commands`
    Operator commands (advance, set_number, add_passed, reset, ...).
- `<ns>/responses/<client_id>`
    Replies to one operator client.

Sessions:
- `<ns>/sessions/requests`
    `connect` / `disconnect` requests from displays and consoles.
- `<ns>/sessions/<session_id>/events`
    Snapshot on connect, then every broadcast for that session.

Several independent displays can share one broker by changing the namespace
(e.g. `--namespace clinic/room-2`).
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "callsys/v1"


def commands(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/commands"


def responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/responses/{client_id}"


def session_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/sessions/requests"


def session_events(session_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Per-session event stream.

    The service publishes the connect snapshot and all later state updates
    for one session here. Only that session's client subscribes.
    """
    return f"{namespace}/sessions/{session_id}/events"
