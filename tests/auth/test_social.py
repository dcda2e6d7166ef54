"""Tests for auth/social.py - Google ID token verification and account linking."""

from datetime import timedelta

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from auth.config import AuthConfig
from auth.exceptions import AuthFailure, ConfigurationError, InvalidTokenError
from auth.memory_store import InMemoryUserDirectory
from auth.social import SocialAuthenticator
from auth.types import AuditAction, AuditQuery, AuthMethod, UserRole, UserStatus
from utils.timezone import to_epoch_seconds


@pytest.fixture(scope="module")
def google_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def id_token(google_key, config, clock):
    """Factory for RS256 tokens shaped like Google's."""

    def _make(signing_key=None, **overrides):
        payload = {
            "iss": "https://accounts.google.com",
            "aud": config.google_client_id,
            "sub": "google-123",
            "email": "farmer@example.com",
            "email_verified": True,
            "name": "Asha Farmer",
            "picture": "https://example.com/asha.png",
            "iat": to_epoch_seconds(clock()),
            "exp": to_epoch_seconds(clock() + timedelta(hours=1)),
        }
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(payload, signing_key or google_key, algorithm="RS256")

    return _make


@pytest.fixture
def social(config, users, audit, clock, google_key):
    return SocialAuthenticator(
        config, users, audit, clock, key_resolver=lambda token: google_key.public_key()
    )


class TestVerifyIdToken:
    def test_valid_token(self, social, id_token):
        payload = social.verify_id_token(id_token())
        assert payload["sub"] == "google-123"

    def test_not_configured(self, users, clock, id_token):
        social = SocialAuthenticator(AuthConfig(), users, clock=clock)
        with pytest.raises(ConfigurationError):
            social.verify_id_token(id_token())

    def test_wrong_audience(self, social, id_token):
        with pytest.raises(InvalidTokenError):
            social.verify_id_token(id_token(aud="someone-else.apps.googleusercontent.com"))

    def test_wrong_issuer(self, social, id_token):
        with pytest.raises(InvalidTokenError, match="issuer"):
            social.verify_id_token(id_token(iss="https://evil.example.com"))

    def test_expired(self, social, id_token, clock):
        token = id_token()
        clock.advance(hours=2)
        with pytest.raises(InvalidTokenError, match="expired"):
            social.verify_id_token(token)

    def test_wrong_signing_key(self, social, id_token):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(InvalidTokenError):
            social.verify_id_token(id_token(signing_key=other_key))

    def test_missing_email(self, social, id_token):
        with pytest.raises(InvalidTokenError, match="email"):
            social.verify_id_token(id_token(email=None))


class TestValidateToken:
    def test_profile_extracted(self, social, id_token):
        result = social.validate_token(id_token(email="Farmer@Example.com"))

        assert result.valid is True
        assert result.profile.email == "farmer@example.com"
        assert result.profile.name == "Asha Farmer"
        assert result.profile.verified_email is True

    def test_name_defaults_to_email_local_part(self, social, id_token):
        result = social.validate_token(id_token(name=None))
        assert result.profile.name == "farmer"

    def test_invalid_token_message(self, social, id_token):
        result = social.validate_token(id_token(aud="other"))
        assert result.error == "Invalid Google token"
        assert result.failure == AuthFailure.UNAUTHORIZED

    def test_misconfigured(self, users, clock, id_token):
        result = SocialAuthenticator(AuthConfig(), users, clock=clock).validate_token(id_token())
        assert result.error == "Google authentication not configured"
        assert result.failure == AuthFailure.MISCONFIGURED


class TestAuthenticate:
    def test_unknown_email_requires_registration(self, social, id_token):
        result = social.authenticate(id_token(email="newcomer@example.com"))

        assert result.success is True
        assert result.requires_registration is True
        assert result.user is None
        assert result.profile.email == "newcomer@example.com"

    def test_links_existing_account_on_first_use(self, social, users, id_token, audit):
        result = social.authenticate(id_token())

        assert result.success is True
        assert result.message == "Google authentication linked to existing account"
        stored = users.find_by_email("farmer@example.com")
        assert AuthMethod.SOCIAL_GOOGLE in stored.auth_methods
        assert stored.profile_data["google_id"] == "google-123"
        assert audit.query(AuditQuery(action=AuditAction.SOCIAL_ACCOUNT_LINKED)).total == 1

    def test_already_linked(self, social, id_token):
        social.authenticate(id_token())

        result = social.authenticate(id_token())

        assert result.message == "Authentication successful"

    def test_unverified_email_not_linked(self, social, users, id_token):
        result = social.authenticate(id_token(email_verified=False))

        assert result.success is False
        assert result.failure == AuthFailure.UNAUTHORIZED
        assert AuthMethod.SOCIAL_GOOGLE not in users.find_by_email("farmer@example.com").auth_methods


class TestLinkAndUnlink:
    def test_link(self, social, active_user, id_token):
        result = social.link(active_user.id, id_token())

        assert result.success is True
        assert AuthMethod.SOCIAL_GOOGLE in result.user.auth_methods

    def test_link_email_mismatch(self, social, active_user, id_token):
        result = social.link(active_user.id, id_token(email="someone.else@example.com"))

        assert result.success is False
        assert result.message == "Google account email does not match user account email"

    def test_link_unknown_user(self, social, id_token):
        assert social.link("missing", id_token()).failure == AuthFailure.NOT_FOUND

    def test_unlink(self, social, active_user, id_token, users):
        social.link(active_user.id, id_token())

        result = social.unlink(active_user.id)

        assert result.success is True
        stored = users.find_by_id(active_user.id)
        assert stored.auth_methods == [AuthMethod.MAGIC_LINK]
        assert "google_id" not in stored.profile_data

    def test_cannot_unlink_last_method(self, make_user, config, audit, clock, google_key):
        user = make_user(auth_methods=[AuthMethod.SOCIAL_GOOGLE])
        social = SocialAuthenticator(
            config,
            InMemoryUserDirectory([user]),
            audit,
            clock,
            key_resolver=lambda token: google_key.public_key(),
        )

        result = social.unlink(user.id)

        assert result.success is False
        assert result.failure == AuthFailure.LAST_AUTH_METHOD

    def test_linked_accounts(self, social, active_user, id_token):
        assert social.linked_accounts(active_user.id)[0].linked is False

        social.link(active_user.id, id_token())

        accounts = social.linked_accounts(active_user.id)
        assert accounts[0].provider == "google"
        assert accounts[0].linked is True
        assert accounts[0].details == {"google_id": "google-123"}

    def test_linked_accounts_unknown_user(self, social):
        assert social.linked_accounts("missing") is None


class TestCreateUserFromProfile:
    def test_creates_pending_user(self, social, id_token, users, audit):
        profile = social.validate_token(id_token(email="newcomer@example.com")).profile

        result = social.create_user_from_profile(profile, UserRole.INPUT_SUPPLIER, {"company": "Seeds"})

        assert result.success is True
        assert result.user.status == UserStatus.PENDING_APPROVAL
        assert result.user.auth_methods == [AuthMethod.SOCIAL_GOOGLE]
        assert result.user.profile_data["company"] == "Seeds"
        assert result.user.email_verified is True
        assert users.find_by_email("newcomer@example.com") is not None
        assert audit.query(AuditQuery(action=AuditAction.USER_REGISTERED)).total == 1

    def test_existing_email(self, social, id_token):
        profile = social.validate_token(id_token()).profile

        result = social.create_user_from_profile(profile, UserRole.FARMER)

        assert result.success is False
        assert result.failure == AuthFailure.ALREADY_USED
