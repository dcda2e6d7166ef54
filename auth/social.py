"""Google sign-in: ID token verification and account linking."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import jwt
from pydantic import BaseModel

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.exceptions import AuthFailure, ConfigurationError, InvalidTokenError
from auth.interfaces import UserDirectory
from auth.types import AuditAction, AuthMethod, User, UserRole, UserStatus
from utils.timezone import now_utc, to_epoch_seconds
from utils.validation import normalize_email

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class SocialProfile(BaseModel):
    """Normalized identity asserted by a social provider."""

    id: str
    email: str
    name: str
    picture: str | None = None
    verified_email: bool = False
    provider: str = "google"


@dataclass
class SocialTokenValidation:
    valid: bool
    profile: SocialProfile | None = None
    error: str | None = None
    failure: AuthFailure | None = None


@dataclass
class SocialAuthResult:
    """Outcome of a Google sign-in, link, unlink or account creation."""

    success: bool
    message: str
    user: User | None = None
    profile: SocialProfile | None = None
    requires_registration: bool = False
    failure: AuthFailure | None = None


@dataclass
class LinkedAccount:
    provider: str
    linked: bool
    email: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class SocialAuthenticator:
    """
    Verifies Google ID tokens and links them to existing accounts.

    Never creates accounts on its own: an unknown email comes back with
    ``requires_registration`` and the profile, and registration goes
    through create_user_from_profile explicitly.
    """

    def __init__(
        self,
        config: AuthConfig,
        users: UserDirectory,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = now_utc,
        key_resolver: Callable[[str], Any] | None = None,
    ):
        """
        Args:
            key_resolver: Returns the RS256 verification key for a token.
                Defaults to Google's published JWKS via PyJWKClient.
        """
        self._config = config
        self._users = users
        self._audit = audit
        self._clock = clock
        self._key_resolver = key_resolver
        self._jwks_client: jwt.PyJWKClient | None = None

    def _signing_key(self, id_token: str) -> Any:
        if self._key_resolver is not None:
            return self._key_resolver(id_token)
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(self._config.google_certs_url)
        return self._jwks_client.get_signing_key_from_jwt(id_token).key

    def verify_id_token(self, id_token: str) -> dict[str, Any]:
        """
        Verify signature, audience, issuer and expiry of a Google ID token.

        Raises:
            ConfigurationError: Google client credentials are not set.
            InvalidTokenError: The token does not verify.
        """
        if not self._config.google_configured:
            raise ConfigurationError("Google authentication not configured")

        try:
            payload = jwt.decode(
                id_token,
                self._signing_key(id_token),
                algorithms=["RS256"],
                audience=self._config.google_client_id,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iss", "aud", "sub"],
                },
            )
        except jwt.PyJWTError as e:
            logger.warning(f"Google ID token rejected: {e}")
            raise InvalidTokenError(f"Invalid Google token: {e}") from e

        if payload.get("iss") not in GOOGLE_ISSUERS:
            raise InvalidTokenError("Google token has an unexpected issuer")

        if to_epoch_seconds(self._clock()) >= int(payload["exp"]):
            raise InvalidTokenError("Google token has expired")

        if not payload.get("email"):
            raise InvalidTokenError("Google token carries no email")

        return payload

    def validate_token(self, id_token: str) -> SocialTokenValidation:
        """Verify a Google ID token and extract the profile."""
        try:
            payload = self.verify_id_token(id_token)
        except ConfigurationError as e:
            return SocialTokenValidation(
                valid=False, error=str(e), failure=AuthFailure.MISCONFIGURED
            )
        except InvalidTokenError:
            return SocialTokenValidation(
                valid=False, error="Invalid Google token", failure=AuthFailure.UNAUTHORIZED
            )

        email = normalize_email(payload["email"])
        profile = SocialProfile(
            id=str(payload["sub"]),
            email=email,
            name=payload.get("name") or email.split("@")[0],
            picture=payload.get("picture"),
            verified_email=bool(payload.get("email_verified", False)),
        )
        return SocialTokenValidation(valid=True, profile=profile)

    def _with_google(self, user: User, profile: SocialProfile) -> User:
        updated = user.model_copy(deep=True)
        if AuthMethod.SOCIAL_GOOGLE not in updated.auth_methods:
            updated.auth_methods.append(AuthMethod.SOCIAL_GOOGLE)
        updated.profile_data["google_id"] = profile.id
        if profile.picture:
            updated.profile_data["profile_picture"] = profile.picture
        updated.updated_at = self._clock()
        return self._users.update(updated)

    def authenticate(self, id_token: str) -> SocialAuthResult:
        """
        Sign in with a Google ID token.

        Existing accounts get Google linked on first use, provided Google
        has verified the email. Unknown emails require registration.
        """
        validation = self.validate_token(id_token)
        if not validation.valid:
            return SocialAuthResult(
                success=False,
                message=validation.error or "Invalid Google authentication",
                failure=validation.failure,
            )

        profile = validation.profile
        user = self._users.find_by_email(profile.email)

        if user is None:
            return SocialAuthResult(
                success=True,
                message="New user detected. Please complete registration.",
                profile=profile,
                requires_registration=True,
            )

        if AuthMethod.SOCIAL_GOOGLE in user.auth_methods:
            return SocialAuthResult(
                success=True, message="Authentication successful", user=user, profile=profile
            )

        if not profile.verified_email:
            return SocialAuthResult(
                success=False,
                message="Google account email is not verified",
                profile=profile,
                failure=AuthFailure.UNAUTHORIZED,
            )

        user = self._with_google(user, profile)
        self._log_link(user, AuditAction.SOCIAL_ACCOUNT_LINKED)
        return SocialAuthResult(
            success=True,
            message="Google authentication linked to existing account",
            user=user,
            profile=profile,
        )

    def link(self, user_id: str, id_token: str) -> SocialAuthResult:
        """Link Google to a signed-in user whose email matches the token's."""
        validation = self.validate_token(id_token)
        if not validation.valid:
            return SocialAuthResult(
                success=False,
                message=validation.error or "Invalid Google token",
                failure=validation.failure,
            )

        profile = validation.profile
        user = self._users.find_by_id(user_id)
        if user is None:
            return SocialAuthResult(
                success=False, message="User not found", failure=AuthFailure.NOT_FOUND
            )

        if normalize_email(user.email) != profile.email:
            return SocialAuthResult(
                success=False,
                message="Google account email does not match user account email",
                failure=AuthFailure.UNAUTHORIZED,
            )

        if AuthMethod.SOCIAL_GOOGLE in user.auth_methods:
            return SocialAuthResult(
                success=True, message="Google account is already linked", user=user
            )

        user = self._with_google(user, profile)
        self._log_link(user, AuditAction.SOCIAL_ACCOUNT_LINKED)
        return SocialAuthResult(
            success=True, message="Google account linked successfully", user=user, profile=profile
        )

    def unlink(self, user_id: str) -> SocialAuthResult:
        """Remove Google sign-in, unless it is the user's only method."""
        user = self._users.find_by_id(user_id)
        if user is None:
            return SocialAuthResult(
                success=False, message="User not found", failure=AuthFailure.NOT_FOUND
            )

        if AuthMethod.SOCIAL_GOOGLE not in user.auth_methods:
            return SocialAuthResult(success=True, message="Google account is not linked", user=user)

        remaining = [m for m in user.auth_methods if m != AuthMethod.SOCIAL_GOOGLE]
        if not remaining:
            return SocialAuthResult(
                success=False,
                message=(
                    "Cannot unlink Google account. "
                    "User must have at least one authentication method."
                ),
                user=user,
                failure=AuthFailure.LAST_AUTH_METHOD,
            )

        updated = user.model_copy(deep=True)
        updated.auth_methods = remaining
        updated.profile_data.pop("google_id", None)
        updated.profile_data.pop("profile_picture", None)
        updated.updated_at = self._clock()
        updated = self._users.update(updated)

        self._log_link(updated, AuditAction.SOCIAL_ACCOUNT_UNLINKED)
        return SocialAuthResult(
            success=True, message="Google account unlinked successfully", user=updated
        )

    def linked_accounts(self, user_id: str) -> list[LinkedAccount] | None:
        """Social providers and whether each is linked. None for unknown users."""
        user = self._users.find_by_id(user_id)
        if user is None:
            return None

        linked = AuthMethod.SOCIAL_GOOGLE in user.auth_methods
        return [
            LinkedAccount(
                provider="google",
                linked=linked,
                email=user.email if linked else None,
                details={"google_id": user.profile_data.get("google_id")} if linked else {},
            )
        ]

    def create_user_from_profile(
        self,
        profile: SocialProfile,
        role: UserRole,
        profile_data: dict[str, Any] | None = None,
    ) -> SocialAuthResult:
        """
        Register a new account from a verified Google profile.

        New accounts start pending approval.
        """
        if self._users.find_by_email(profile.email) is not None:
            return SocialAuthResult(
                success=False,
                message="User with this email already exists",
                failure=AuthFailure.ALREADY_USED,
            )

        now = self._clock()
        data = {"google_id": profile.id, **(profile_data or {})}
        if profile.picture:
            data["profile_picture"] = profile.picture

        user = self._users.create(
            User(
                id=str(uuid.uuid4()),
                email=normalize_email(profile.email),
                full_name=profile.name,
                role=role,
                status=UserStatus.PENDING_APPROVAL,
                auth_methods=[AuthMethod.SOCIAL_GOOGLE],
                profile_data=data,
                email_verified=profile.verified_email,
                created_at=now,
                updated_at=now,
            )
        )

        if self._audit:
            self._audit.log(
                AuditAction.USER_REGISTERED,
                user_id=user.id,
                user_role=user.role,
                resource="user",
                resource_id=user.id,
                method=AuthMethod.SOCIAL_GOOGLE.value,
            )

        logger.info(f"User {user.id} created from Google profile")
        return SocialAuthResult(
            success=True,
            message="User created successfully from Google profile",
            user=user,
            profile=profile,
        )

    def _log_link(self, user: User, action: AuditAction) -> None:
        if self._audit:
            self._audit.log(
                action,
                user_id=user.id,
                user_role=user.role,
                resource="user",
                resource_id=user.id,
                details={"provider": "google"},
            )
