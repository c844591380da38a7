"""Shared error envelope and exception taxonomy.

Every failure that reaches a client goes out as the same `ErrorResponse`
message, whichever layer raised it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str
    status: int = 400

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {
            "type": "error",
            "code": self.code,
            "message": self.message,
            "status": self.status,
        }
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class TicketDisplayError(Exception):
    """Base class for errors reported back to a caller."""

    code = "internal_error"
    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message, self.status)


class ValidationError(TicketDisplayError):
    """Malformed or out-of-range input. No state was changed."""

    code = "bad_request"
    status = 400


class AuthorizationError(TicketDisplayError):
    """Missing or invalid credential; the client should re-authenticate."""

    code = "unauthorized"
    status = 401


class StoreUnavailableError(TicketDisplayError):
    """The state store could not be reached. Not retried here."""

    code = "store_unavailable"
    status = 503


class StateInconsistencyError(TicketDisplayError):
    """A stored value broke an invariant (e.g. a negative counter).

    Logged and clamped where it is detected, never sent to displays.
    """

    code = "state_inconsistency"
    status = 500


class ConfigError(Exception):
    """Startup configuration is unusable."""
