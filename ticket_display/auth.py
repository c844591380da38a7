"""Authorization predicate.

The core never looks at a credential itself: it hands whatever the caller
presented to an `Authorizer` and gets back an `Identity` or an
`AuthorizationError`. Two credential styles are supported:

- a pre-shared admin token (`SharedSecretAuthorizer`)
- HS256 bearer tokens carrying `username` and `role` claims (`JwtAuthorizer`)

`extract_credential()` accepts either the token-in-body or the
`Authorization: Bearer ...` form, so transports need not care which one a
client uses.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Any

import jwt

from .errors import AuthorizationError

log = logging.getLogger("ticket_display.auth")

ROLE_OPERATOR = "operator"
ROLE_SUPEROPERATOR = "superoperator"
ROLES = (ROLE_OPERATOR, ROLE_SUPEROPERATOR)


@dataclass(frozen=True)
class Identity:
    username: str
    role: str = ROLE_OPERATOR

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


def extract_credential(message: dict[str, Any]) -> str | None:
    """Return the credential carried by a request, if any."""
    header = message.get("authorization")
    if isinstance(header, str) and header.strip():
        scheme, _, value = header.strip().partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
        return header.strip()

    token = message.get("token")
    if isinstance(token, str) and token:
        return token
    return None


class Authorizer:
    """Base class: `authorize()` returns an Identity or raises."""

    def authorize(self, credential: str | None) -> Identity:
        raise NotImplementedError


class SharedSecretAuthorizer(Authorizer):
    def __init__(self, secret: str, *, username: str = "admin") -> None:
        if not secret:
            raise ValueError("secret must not be empty")
        self._secret = secret.encode("utf-8")
        self._identity = Identity(username=username, role=ROLE_SUPEROPERATOR)

    def authorize(self, credential: str | None) -> Identity:
        if not credential or not hmac.compare_digest(credential.encode("utf-8"), self._secret):
            raise AuthorizationError("invalid admin token")
        return self._identity


class JwtAuthorizer(Authorizer):
    def __init__(self, secret: str, *, algorithms: tuple[str, ...] = ("HS256",)) -> None:
        if not secret:
            raise ValueError("secret must not be empty")
        self._secret = secret
        self._algorithms = list(algorithms)

    def authorize(self, credential: str | None) -> Identity:
        if not credential:
            raise AuthorizationError("missing bearer token")
        try:
            claims = jwt.decode(credential, self._secret, algorithms=self._algorithms)
        except jwt.ExpiredSignatureError as e:
            raise AuthorizationError("token expired, please log in again") from e
        except jwt.InvalidTokenError as e:
            raise AuthorizationError("invalid bearer token") from e

        username = claims.get("username") or claims.get("sub")
        if not isinstance(username, str) or not username:
            raise AuthorizationError("token has no username")
        role = claims.get("role", ROLE_OPERATOR)
        if role not in ROLES:
            raise AuthorizationError(f"unknown role {role!r}")
        return Identity(username=username, role=role)


class ChainAuthorizer(Authorizer):
    """Try each authorizer in order; the first acceptance wins."""

    def __init__(self, *authorizers: Authorizer) -> None:
        if not authorizers:
            raise ValueError("at least one authorizer is required")
        self._authorizers = authorizers

    def authorize(self, credential: str | None) -> Identity:
        last_error: AuthorizationError | None = None
        for authorizer in self._authorizers:
            try:
                return authorizer.authorize(credential)
            except AuthorizationError as e:
                last_error = e
        if last_error is None:
            raise AuthorizationError("invalid credential")
        raise last_error
