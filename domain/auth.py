"""Sign in.

The only strategy is the demo one: any credentials sign in as the same user.
Signed in users are handed a bearer token kept in memory.
"""

import logging
from typing import Mapping, Protocol
import uuid

from domain.models import Identity


logger = logging.getLogger(__name__)


TOKEN_PREFIX = "rcp_"


DEMO_IDENTITY = Identity(
    id="1",
    name="Demo User",
    email="demo@example.com",
    image="https://images.pexels.com/photos/771742/pexels-photo-771742.jpeg",
)


class AuthFailure:
    def __init__(self, reason: str) -> None:
        self.reason = reason

    def __repr__(self) -> str:
        return f"<AuthFailure(reason={self.reason})>"


class AuthStrategy(Protocol):
    name: str

    def authenticate(self, credentials: Mapping[str, str]) -> Identity | AuthFailure: ...


class DemoAuthStrategy:
    name = "Demo Account"

    def __init__(self, identity: Identity = DEMO_IDENTITY) -> None:
        self.identity = identity

    def authenticate(self, credentials: Mapping[str, str]) -> Identity | AuthFailure:
        return self.identity


class SessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, Identity] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def issue(self, identity: Identity) -> str:
        token = f"{TOKEN_PREFIX}{uuid.uuid4().hex}"
        self._sessions[token] = identity
        logger.info("Signed in user %s.", identity.id)
        return token

    def resolve(self, token: str) -> Identity | None:
        return self._sessions.get(token)

    def revoke(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None


def sign_in(
    credentials: Mapping[str, str],
    *,
    strategy: AuthStrategy,
    sessions: SessionStore,
) -> tuple[str, Identity] | AuthFailure:
    result = strategy.authenticate(credentials)
    if isinstance(result, AuthFailure):
        logger.info("Sign in with %s failed: %s", strategy.name, result.reason)
        return result
    return sessions.issue(result), result


def bearer_token(authorization: str | None) -> str | None:
    """Token from an `Authorization: Bearer <token>` header value."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.removeprefix("Bearer ").strip() or None
