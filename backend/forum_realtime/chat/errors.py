"""Failure taxonomy for chat operations.

Every privileged chat action either succeeds or raises one of the
``ChatError`` subclasses below. The event dispatcher turns them into ack
payloads of the form ``{"success": False, "error": <code>}``.
"""
from enum import Enum
from typing import Any, Dict


class DegradedReason(str, Enum):
    """Why a connection was accepted without an identity.

    A degraded connection is not an error: it stays open, receives
    broadcasts, and is only refused at actions that need a user.
    """
    MISSING_TOKEN = "missing-token"
    MISSING_SECRET = "missing-secret"
    INVALID_TOKEN = "invalid-token"
    MISSING_IDENTITY = "missing-identity"


class ChatError(Exception):
    """Base class for failures reported back through the ack channel."""

    code: str = "server-error"

    def __init__(self, message: str = "", code: str = "") -> None:
        super().__init__(message or self.code)
        if code:
            self.code = code

    def to_ack(self) -> Dict[str, Any]:
        return {"success": False, "error": self.code}


class Unauthorized(ChatError):
    """A privileged action was attempted on an anonymous connection."""
    code = "unauthenticated"


class Forbidden(ChatError):
    """The user is identified but not allowed to act (e.g. banned).

    The ack carries a human readable message instead of a fixed code.
    """
    code = "forbidden"

    def __init__(self, message: str) -> None:
        super().__init__(message, code=message)


class InvalidPayload(ChatError):
    """The event payload is missing fields or has the wrong shape."""
    code = "invalid-payload"


class PersistenceFailure(ChatError):
    """The storage layer raised; the action may be retried by the user."""
    code = "server-error"
