"""Tests for bearer-token authentication of sockets and HTTP requests."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from forum_realtime.auth import AuthResult, ConnectionAuthenticator
from forum_realtime.chat.errors import DegradedReason

SECRET = "unit-test-secret"


@pytest.fixture
def authenticator():
    return ConnectionAuthenticator(SECRET)


class TestExtractToken:
    def test_query_parameter_wins(self):
        token = ConnectionAuthenticator.extract_token(
            {"token": "from-query"}, {"authorization": "Bearer from-header"}
        )
        assert token == "from-query"

    def test_bearer_header(self):
        token = ConnectionAuthenticator.extract_token({}, {"authorization": "Bearer abc"})
        assert token == "abc"

    def test_bare_header_value(self):
        assert ConnectionAuthenticator.extract_token({}, {"authorization": "abc"}) == "abc"

    def test_malformed_header(self):
        assert ConnectionAuthenticator.extract_token({}, {"authorization": "Token a b"}) is None

    def test_nothing_supplied(self):
        assert ConnectionAuthenticator.extract_token({}, {}) is None


class TestVerify:
    def test_valid_token(self, authenticator):
        token = authenticator.issue_token("alice")
        result = authenticator.verify(token)
        assert result == AuthResult(user_id="alice")
        assert result.authenticated

    def test_sub_claim_fallback(self, authenticator):
        token = jwt.encode({"sub": "bob"}, SECRET, algorithm="HS256")
        assert authenticator.verify(token).user_id == "bob"

    def test_numeric_id_is_stringified(self, authenticator):
        token = jwt.encode({"id": 42}, SECRET, algorithm="HS256")
        assert authenticator.verify(token).user_id == "42"

    def test_missing_token(self, authenticator):
        result = authenticator.verify(None)
        assert not result.authenticated
        assert result.degraded == DegradedReason.MISSING_TOKEN

    def test_missing_secret(self):
        result = ConnectionAuthenticator(None).verify("anything")
        assert result.degraded == DegradedReason.MISSING_SECRET

    def test_wrong_signature(self, authenticator):
        token = jwt.encode({"id": "alice"}, "other-secret", algorithm="HS256")
        assert authenticator.verify(token).degraded == DegradedReason.INVALID_TOKEN

    def test_expired_token(self, authenticator):
        token = authenticator.issue_token("alice", expires_in=timedelta(seconds=-10))
        assert authenticator.verify(token).degraded == DegradedReason.INVALID_TOKEN

    def test_garbage_token(self, authenticator):
        assert authenticator.verify("not-a-jwt").degraded == DegradedReason.INVALID_TOKEN

    def test_token_without_identity(self, authenticator):
        token = jwt.encode(
            {"exp": datetime.now(timezone.utc) + timedelta(minutes=5)}, SECRET, algorithm="HS256"
        )
        assert authenticator.verify(token).degraded == DegradedReason.MISSING_IDENTITY


class TestHandshake:
    def test_handshake_with_query_token(self, authenticator):
        token = authenticator.issue_token("alice")
        result = authenticator.authenticate_handshake({"token": token}, {})
        assert result.user_id == "alice"

    def test_handshake_never_raises(self, authenticator):
        result = authenticator.authenticate_handshake({"token": "bad"}, {})
        assert result.user_id is None
        assert result.degraded == DegradedReason.INVALID_TOKEN

    def test_issue_token_requires_secret(self):
        with pytest.raises(ValueError):
            ConnectionAuthenticator(None).issue_token("alice")

    def test_issue_token_extra_claims(self, authenticator):
        token = authenticator.issue_token("alice", role="moderator")
        claims = jwt.decode(token, SECRET, algorithms=["HS256"])
        assert claims["id"] == "alice"
        assert claims["role"] == "moderator"
