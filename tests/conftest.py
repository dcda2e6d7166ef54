"""Shared test fixtures for the auth test suite."""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.memory_store import InMemoryAuthStore, InMemoryUserDirectory
from auth.registry import InMemorySecurityRegistry
from auth.security_guard import SecurityGuard
from auth.types import AuthMethod, User, UserRole, UserStatus


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Primary test user - use for single-user tests
TEST_USER_ID = "00000000-0000-0000-0000-000000000001"
TEST_USER_EMAIL = "farmer@example.com"
TEST_USER_PHONE = "+15551234567"

# Secondary test user - use for isolation tests
TEST_USER_B_ID = "00000000-0000-0000-0000-000000000002"
TEST_USER_B_EMAIL = "dealer@example.com"

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


# =============================================================================
# CLOCK
# =============================================================================


class FakeClock:
    """Deterministic clock; call it to read, advance() to move forward."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# CONFIG AND COMPONENTS
# =============================================================================


@pytest.fixture
def config():
    """Defaults, with Google sign-in configured."""
    return AuthConfig(
        jwt_secret="test-secret-that-is-long-enough-for-hs256",
        google_client_id="farmtally-test.apps.googleusercontent.com",
        google_client_secret="google-test-secret",
        frontend_url="https://app.example.com",
    )


@pytest.fixture
def store():
    return InMemoryAuthStore()


@pytest.fixture
def registry():
    return InMemorySecurityRegistry()


@pytest.fixture
def audit(config, clock):
    return AuditTrail(config, clock=clock)


@pytest.fixture
def guard(config, registry, audit, clock):
    return SecurityGuard(config, registry=registry, audit=audit, clock=clock)


@pytest.fixture
def notifier():
    """Notifier double; every send succeeds unless a test sets side_effect."""
    return Mock(spec=["send_email", "send_sms"])


# =============================================================================
# USERS
# =============================================================================


@pytest.fixture
def make_user(clock):
    """Factory for User models with sensible defaults."""

    def _make(
        user_id: str = TEST_USER_ID,
        email: str = TEST_USER_EMAIL,
        role: UserRole = UserRole.FARMER,
        status: UserStatus = UserStatus.ACTIVE,
        phone_number: str | None = TEST_USER_PHONE,
        auth_methods: list[AuthMethod] | None = None,
    ) -> User:
        return User(
            id=user_id,
            email=email,
            full_name="Test Farmer",
            role=role,
            status=status,
            phone_number=phone_number,
            auth_methods=auth_methods if auth_methods is not None else [AuthMethod.MAGIC_LINK],
            created_at=clock(),
            updated_at=clock(),
        )

    return _make


@pytest.fixture
def active_user(make_user):
    return make_user()


@pytest.fixture
def users(active_user):
    """Directory holding the primary test user."""
    return InMemoryUserDirectory([active_user])


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def valkey():
    """
    Session-scoped ValkeyClient against VALKEY_URL.

    Tests using it are skipped when no server is configured or reachable.
    """
    import redis

    from clients.valkey_client import ValkeyClient

    url = os.getenv("VALKEY_URL")
    if not url:
        pytest.skip("VALKEY_URL not set")

    try:
        client = ValkeyClient(url)
    except redis.ConnectionError:
        pytest.skip(f"Valkey not reachable at {url}")

    yield client
    client.close()
