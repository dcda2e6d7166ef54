"""Tests for auth/memory_store.py - in-memory AuthStore and UserDirectory."""

from datetime import timedelta

import pytest

from auth.memory_store import InMemoryUserDirectory
from auth.types import LinkPurpose, MagicLink, OTPPurpose, OTPRecord, Session, AuthMethod


@pytest.fixture
def make_link(clock):
    def _make(link_id="l1", email="farmer@example.com", purpose=LinkPurpose.LOGIN, token=None):
        return MagicLink(
            id=link_id,
            email=email,
            token=token or f"token-{link_id}",
            purpose=purpose,
            expires_at=clock() + timedelta(hours=1),
            used=False,
            created_at=clock(),
            updated_at=clock(),
        )

    return _make


@pytest.fixture
def make_otp(clock):
    def _make(otp_id="o1", email="farmer@example.com", code="123456"):
        return OTPRecord(
            id=otp_id,
            email=email,
            code=code,
            purpose=OTPPurpose.LOGIN,
            expires_at=clock() + timedelta(minutes=10),
            created_at=clock(),
            updated_at=clock(),
        )

    return _make


class TestSessions:
    def _session(self, clock, session_id="s1", user_id="u1", hours=1):
        return Session(
            id=session_id,
            user_id=user_id,
            method=AuthMethod.OTP,
            expires_at=clock() + timedelta(hours=hours),
            created_at=clock(),
            updated_at=clock(),
        )

    def test_returned_copies_are_independent(self, store, clock):
        """Mutating a returned session does not change the stored one."""
        store.create_session(self._session(clock))

        found = store.find_session_by_id("s1")
        found.ip_address = "10.0.0.1"

        assert store.find_session_by_id("s1").ip_address == "unknown"

    def test_duplicate_id_rejected(self, store, clock):
        store.create_session(self._session(clock))
        with pytest.raises(ValueError):
            store.create_session(self._session(clock))

    def test_delete_user_sessions(self, store, clock):
        store.create_session(self._session(clock, "s1", "u1"))
        store.create_session(self._session(clock, "s2", "u1"))
        store.create_session(self._session(clock, "s3", "u2"))

        assert store.delete_user_sessions("u1") == 2
        assert store.find_sessions_by_user_id("u1") == []
        assert store.find_session_by_id("s3") is not None

    def test_delete_expired_sessions(self, store, clock):
        store.create_session(self._session(clock, "old", hours=1))
        store.create_session(self._session(clock, "new", hours=5))

        assert store.delete_expired_sessions(clock() + timedelta(hours=2)) == 1
        assert store.find_session_by_id("new") is not None


class TestMagicLinks:
    def test_consume_only_once(self, store, make_link, clock):
        """Second consumption of the same link reports failure."""
        store.create_magic_link(make_link())

        assert store.consume_magic_link("l1", clock()) is True
        assert store.consume_magic_link("l1", clock()) is False
        assert store.find_magic_link_by_token("token-l1").used is True

    def test_consume_unknown_link(self, store, clock):
        assert store.consume_magic_link("missing", clock()) is False

    def test_supersede_marks_previous_unused_links_used(self, store, make_link):
        store.create_magic_link(make_link("l1"), supersede_unused=True)
        store.create_magic_link(make_link("l2"), supersede_unused=True)

        assert store.find_magic_link_by_token("token-l1").used is True
        assert store.find_magic_link_by_token("token-l2").used is False

    def test_supersede_leaves_other_purposes(self, store, make_link):
        store.create_magic_link(make_link("inv", purpose=LinkPurpose.INVITATION))
        store.create_magic_link(make_link("login"), supersede_unused=True)

        assert store.find_magic_link_by_token("token-inv").used is False


class TestOTPRecords:
    def test_create_replaces_record_for_same_identifier(self, store, make_otp):
        """At most one OTP record exists per identifier."""
        store.create_otp(make_otp("o1", code="111111"))
        store.create_otp(make_otp("o2", code="222222"))

        record = store.find_otp_by_identifier("farmer@example.com")
        assert record.id == "o2"
        assert record.code == "222222"

    def test_increment_attempts(self, store, make_otp, clock):
        store.create_otp(make_otp())

        store.increment_otp_attempts("o1", clock())
        record = store.increment_otp_attempts("o1", clock())

        assert record.attempts == 2
        assert store.increment_otp_attempts("missing", clock()) is None

    def test_mark_verified_only_once(self, store, make_otp, clock):
        store.create_otp(make_otp())

        assert store.mark_otp_verified("o1", clock()) is True
        assert store.mark_otp_verified("o1", clock()) is False

    def test_delete_expired_otps(self, store, make_otp, clock):
        store.create_otp(make_otp())
        assert store.delete_expired_otps(clock() + timedelta(minutes=11)) == 1
        assert store.find_otp_by_identifier("farmer@example.com") is None


class TestUserDirectory:
    def test_find_by_email_is_case_insensitive(self, users):
        assert users.find_by_email("FARMER@Example.com") is not None

    def test_find_by_phone(self, users):
        assert users.find_by_phone("+15551234567").email == "farmer@example.com"

    def test_create_rejects_duplicate_email(self, users, make_user):
        with pytest.raises(ValueError):
            users.create(make_user(user_id="other"))

    def test_update_unknown_user(self, make_user):
        directory = InMemoryUserDirectory()
        with pytest.raises(KeyError):
            directory.update(make_user())

    def test_returned_users_are_copies(self, users, active_user):
        found = users.find_by_id(active_user.id)
        found.auth_methods.append(AuthMethod.OTP)

        assert users.find_by_id(active_user.id).auth_methods == [AuthMethod.MAGIC_LINK]
