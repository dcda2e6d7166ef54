"""Tests for auth/types.py - Pydantic models for auth domain."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from auth.types import (
    AuditLogEntry,
    AuditAction,
    AuditQuery,
    AuthMethod,
    OTPPurpose,
    OTPRecord,
    SessionClaims,
    User,
    UserRole,
    UserStatus,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _otp(**overrides) -> OTPRecord:
    values = {
        "id": "otp-1",
        "email": "farmer@example.com",
        "code": "123456",
        "purpose": OTPPurpose.LOGIN,
        "expires_at": NOW + timedelta(minutes=10),
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return OTPRecord(**values)


class TestUserValidation:
    """Tests that User model rejects invalid data."""

    def test_rejects_invalid_email(self):
        with pytest.raises(ValidationError):
            User(
                id="u1",
                email="not-an-email",
                full_name="Test",
                role=UserRole.FARMER,
                created_at=NOW,
                updated_at=NOW,
            )

    def test_new_users_pending_and_inactive(self):
        user = User(
            id="u1",
            email="farmer@example.com",
            full_name="Test",
            role=UserRole.FARMER,
            created_at=NOW,
            updated_at=NOW,
        )
        assert user.status == UserStatus.PENDING_APPROVAL
        assert user.is_active is False


class TestOTPRecordValidation:
    """OTP records need a six digit code and exactly one identifier."""

    def test_identifier_is_email(self):
        assert _otp().identifier == "farmer@example.com"

    def test_identifier_is_phone(self):
        record = _otp(email=None, phone_number="+15551234567")
        assert record.identifier == "+15551234567"

    def test_rejects_both_identifiers(self):
        with pytest.raises(ValidationError):
            _otp(phone_number="+15551234567")

    def test_rejects_no_identifier(self):
        with pytest.raises(ValidationError):
            _otp(email=None)

    @pytest.mark.parametrize("code", ["12345", "1234567", "12a456", ""])
    def test_rejects_malformed_code(self, code):
        with pytest.raises(ValidationError):
            _otp(code=code)

    def test_rejects_negative_attempts(self):
        with pytest.raises(ValidationError):
            _otp(attempts=-1)


class TestSessionClaims:
    """Claims are serialized with the camelCase names carried in tokens."""

    def test_dumps_by_alias(self):
        claims = SessionClaims(
            session_id="s1",
            user_id="u1",
            role=UserRole.DEALER,
            auth_method=AuthMethod.OTP,
            iat=1,
            exp=2,
        )
        payload = claims.model_dump(mode="json", by_alias=True)
        assert payload["sessionId"] == "s1"
        assert payload["userId"] == "u1"
        assert payload["authMethod"] == "otp"
        assert payload["role"] == "dealer"


class TestAuditModels:
    def test_audit_entry_is_frozen(self):
        entry = AuditLogEntry(
            id="e1",
            user_id="u1",
            action=AuditAction.LOGIN_SUCCESS,
            resource="authentication",
            success=True,
            timestamp=NOW,
        )
        with pytest.raises(ValidationError):
            entry.success = False

    def test_query_limit_bounds(self):
        assert AuditQuery().limit == 50
        with pytest.raises(ValidationError):
            AuditQuery(limit=1001)
        with pytest.raises(ValidationError):
            AuditQuery(offset=-1)
