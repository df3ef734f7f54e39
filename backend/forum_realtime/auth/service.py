"""Bearer-token authentication for sockets and history endpoints.

Tokens are HS256 JWTs signed by the forum's login endpoint with the shared
secret from ``forum.secrets.yaml``. The user id is the ``id`` claim
(``sub`` is accepted as a fallback).

Socket handshakes never fail on authentication: a missing or bad token
yields an anonymous connection, and the reason is logged. Privileged
actions are refused later, one by one.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import jwt

from ..chat.errors import DegradedReason

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """Outcome of verifying a connection's credential.

    Attributes:
        user_id: Resolved identity, None when the connection is anonymous.
        degraded: Why no identity was resolved (None on success).
    """
    user_id: Optional[str] = None
    degraded: Optional[DegradedReason] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


def _bearer(value: Optional[str]) -> Optional[str]:
    """Strip an optional ``Bearer`` prefix from a header value."""
    if not value:
        return None
    parts = value.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    if len(parts) == 1:
        return parts[0]
    return None


class ConnectionAuthenticator:
    """Verifies bearer tokens against the shared signing secret."""

    def __init__(self, secret_key: Optional[str], algorithm: str = "HS256") -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        if not secret_key:
            logger.warning("[Auth] No JWT secret configured; every socket will be anonymous")

    @staticmethod
    def extract_token(
        query_params: Mapping[str, str], headers: Mapping[str, str]
    ) -> Optional[str]:
        """Find the token in the ``token`` query parameter or the Authorization header."""
        token = query_params.get("token")
        if token:
            return token
        return _bearer(headers.get("authorization"))

    def verify(self, token: Optional[str]) -> AuthResult:
        """Verify a token. Never raises; failures come back as degraded results."""
        if not token:
            return AuthResult(degraded=DegradedReason.MISSING_TOKEN)
        if not self._secret_key:
            return AuthResult(degraded=DegradedReason.MISSING_SECRET)

        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.InvalidTokenError as exc:
            logger.info(f"[Auth] Token rejected: {exc}")
            return AuthResult(degraded=DegradedReason.INVALID_TOKEN)

        user_id = claims.get("id") or claims.get("sub")
        if not user_id:
            return AuthResult(degraded=DegradedReason.MISSING_IDENTITY)
        return AuthResult(user_id=str(user_id))

    def authenticate_handshake(
        self, query_params: Mapping[str, str], headers: Mapping[str, str]
    ) -> AuthResult:
        """Resolve the identity of a socket handshake (anonymous on failure)."""
        result = self.verify(self.extract_token(query_params, headers))
        if result.authenticated:
            logger.info(f"[Auth] Socket authenticated as {result.user_id}")
        else:
            logger.info(f"[Auth] Socket continues anonymously ({result.degraded.value})")
        return result

    def issue_token(self, user_id: str, expires_in: timedelta = timedelta(days=7), **claims: Any) -> str:
        """Sign a token for ``user_id``.

        The forum's login endpoint is the normal issuer; this is the same
        format, used by tools and tests.
        """
        if not self._secret_key:
            raise ValueError("JWT secret is not configured")
        payload = dict(claims)
        payload["id"] = user_id
        payload["exp"] = datetime.now(timezone.utc) + expires_in
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
