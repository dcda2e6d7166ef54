"""Authentication service - routes logins to the right authenticator and mints sessions."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.devices import TrustedDeviceRegistry
from auth.exceptions import AuthFailure, DeliveryError
from auth.interfaces import AuthStore, Notifier, UserDirectory
from auth.magic_link import MagicLinkAuthenticator
from auth.otp import OTPAuthenticator, normalize_identifier
from auth.registry import SecurityRegistry
from auth.security_guard import SecurityGuard
from auth.session import SessionManager
from auth.social import SocialAuthenticator, SocialProfile
from auth.types import (
    AuditAction,
    AuthMethod,
    DeliveryChannel,
    LinkPurpose,
    OTPPurpose,
    SessionMetadata,
    User,
    UserRole,
)
from utils.timezone import now_utc
from utils.validation import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Authentication failed. Please try again."
ANONYMOUS = "anonymous"


@dataclass
class AuthenticationResult:
    """Uniform outcome of every login path."""

    success: bool
    message: str
    user: User | None = None
    session_token: str | None = None
    requires_registration: bool = False
    profile: SocialProfile | None = None
    failure: AuthFailure | None = None


@dataclass
class RequestResult:
    """Outcome of asking for a magic link, code or registration link."""

    success: bool
    message: str
    reference_id: str | None = None
    failure: AuthFailure | None = None


class AuthenticationOrchestrator:
    """Orchestrates magic link, OTP and Google sign-in.

    Handles:
    - Credential requests (magic links, OTP codes)
    - Credential verification and session creation
    - Registration entry points
    - Logout and periodic cleanup

    Internal errors are logged and never shown to callers verbatim.
    """

    def __init__(
        self,
        users: UserDirectory,
        magic_links: MagicLinkAuthenticator,
        otps: OTPAuthenticator,
        social: SocialAuthenticator,
        sessions: SessionManager,
        guard: SecurityGuard,
        audit: AuditTrail,
        devices: TrustedDeviceRegistry,
    ):
        self._users = users
        self._magic_links = magic_links
        self._otps = otps
        self._social = social
        self._sessions = sessions
        self._guard = guard
        self._audit = audit
        self._devices = devices

    @classmethod
    def build(
        cls,
        config: AuthConfig,
        store: AuthStore,
        users: UserDirectory,
        notifier: Notifier,
        registry: SecurityRegistry | None = None,
        clock: Callable[[], datetime] = now_utc,
        google_key_resolver: Callable[[str], Any] | None = None,
    ) -> "AuthenticationOrchestrator":
        """Wire every component from a config and the three collaborators."""
        audit = AuditTrail(config, clock=clock)
        guard = SecurityGuard(config, registry=registry, audit=audit, clock=clock)
        return cls(
            users=users,
            magic_links=MagicLinkAuthenticator(config, store, notifier, guard, audit, clock),
            otps=OTPAuthenticator(config, store, notifier, guard, audit, clock),
            social=SocialAuthenticator(config, users, audit, clock, key_resolver=google_key_resolver),
            sessions=SessionManager(config, store, users, guard, audit, clock),
            guard=guard,
            audit=audit,
            devices=TrustedDeviceRegistry(config, audit, clock),
        )

    @property
    def audit(self) -> AuditTrail:
        return self._audit

    @property
    def devices(self) -> TrustedDeviceRegistry:
        return self._devices

    @property
    def guard(self) -> SecurityGuard:
        return self._guard

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def social(self) -> SocialAuthenticator:
        return self._social

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    def _login_failed(
        self,
        identifier: str,
        method: AuthMethod,
        metadata: SessionMetadata,
        message: str,
        failure: AuthFailure | None,
        requires_registration: bool = False,
    ) -> AuthenticationResult:
        self._audit.log_authentication_attempt(
            identifier,
            method.value,
            False,
            metadata.ip_address,
            metadata.user_agent,
            {"reason": failure.value if failure else "unknown"},
        )
        return AuthenticationResult(
            success=False,
            message=message,
            requires_registration=requires_registration,
            failure=failure,
        )

    def _complete_login(
        self,
        user: User | None,
        identifier: str,
        method: AuthMethod,
        metadata: SessionMetadata,
    ) -> AuthenticationResult:
        """Turn a verified identity into a session."""
        if user is None:
            return self._login_failed(
                identifier,
                method,
                metadata,
                "User not found. Please complete registration.",
                AuthFailure.NOT_FOUND,
                requires_registration=True,
            )

        if not user.is_active:
            return self._login_failed(
                identifier,
                method,
                metadata,
                "Account is not active. Please contact support.",
                AuthFailure.INACTIVE,
            )

        created = self._sessions.create_session(user.id, method, metadata)
        if not created.success:
            return AuthenticationResult(
                success=False, message=created.message, failure=created.failure
            )

        return AuthenticationResult(
            success=True,
            message="Authentication successful",
            user=user,
            session_token=created.session_token,
        )

    # -------------------------------------------------------------------------
    # Magic links
    # -------------------------------------------------------------------------

    def request_magic_link(
        self,
        email: str,
        purpose: LinkPurpose = LinkPurpose.LOGIN,
        recipient_name: str | None = None,
        metadata: SessionMetadata | None = None,
    ) -> RequestResult:
        """Email a magic link, subject to the identifier's rate limit."""
        metadata = metadata or SessionMetadata()
        if not is_valid_email(email):
            return RequestResult(
                success=False, message="Invalid email format", failure=AuthFailure.INVALID_FORMAT
            )

        email = normalize_email(email)
        if not self._guard.check_rate_limit(email, metadata.ip_address, metadata.user_agent):
            return RequestResult(
                success=False,
                message="Too many requests. Please wait before trying again.",
                failure=AuthFailure.RATE_LIMITED,
            )

        try:
            link = self._magic_links.generate(email, purpose, recipient_name)
        except DeliveryError:
            return RequestResult(success=False, message="Failed to send magic link. Please try again.")
        except Exception:
            logger.exception("Magic link request failed")
            return RequestResult(success=False, message="Failed to send magic link. Please try again.")

        return RequestResult(success=True, message="Magic link sent to your email", reference_id=link.id)

    def authenticate_with_magic_link(
        self,
        token: str,
        metadata: SessionMetadata | None = None,
    ) -> AuthenticationResult:
        metadata = metadata or SessionMetadata()
        try:
            validation = self._magic_links.validate(token)
            if not validation.valid:
                return self._login_failed(
                    ANONYMOUS,
                    AuthMethod.MAGIC_LINK,
                    metadata,
                    "Invalid or expired magic link",
                    validation.failure,
                )

            user = self._users.find_by_email(validation.email)
            return self._complete_login(user, validation.email, AuthMethod.MAGIC_LINK, metadata)
        except Exception:
            logger.exception("Magic link authentication failed")
            return AuthenticationResult(success=False, message=GENERIC_FAILURE)

    def register_with_magic_link(self, email: str, full_name: str) -> RequestResult:
        """Send a registration link to an email that has no account yet."""
        if not is_valid_email(email):
            return RequestResult(
                success=False, message="Invalid email format", failure=AuthFailure.INVALID_FORMAT
            )

        try:
            if self._users.find_by_email(normalize_email(email)) is not None:
                return RequestResult(
                    success=False,
                    message="User with this email already exists",
                    failure=AuthFailure.ALREADY_USED,
                )
            link = self._magic_links.generate(email, LinkPurpose.REGISTRATION, full_name)
        except Exception:
            logger.exception("Registration link request failed")
            return RequestResult(success=False, message="Registration failed. Please try again.")

        return RequestResult(
            success=True, message="Registration link sent to your email", reference_id=link.id
        )

    # -------------------------------------------------------------------------
    # OTP
    # -------------------------------------------------------------------------

    def request_otp(
        self,
        identifier: str,
        channel: DeliveryChannel,
        purpose: OTPPurpose = OTPPurpose.LOGIN,
        recipient_name: str | None = None,
        metadata: SessionMetadata | None = None,
    ) -> RequestResult:
        metadata = metadata or SessionMetadata()
        try:
            issued = self._otps.generate(
                identifier,
                channel,
                purpose,
                recipient_name,
                metadata.ip_address,
                metadata.user_agent,
            )
        except DeliveryError:
            return RequestResult(
                success=False, message="Failed to send verification code. Please try again."
            )
        except Exception:
            logger.exception("OTP request failed")
            return RequestResult(success=False, message="Failed to generate OTP. Please try again.")

        return RequestResult(
            success=issued.success,
            message=issued.message,
            reference_id=issued.otp_id,
            failure=issued.failure,
        )

    def authenticate_with_otp(
        self,
        identifier: str,
        code: str,
        metadata: SessionMetadata | None = None,
    ) -> AuthenticationResult:
        """Verify a code, then find the user by email or phone number."""
        metadata = metadata or SessionMetadata()
        identifier = normalize_identifier(identifier)
        try:
            validation = self._otps.validate(
                identifier, code, metadata.ip_address, metadata.user_agent
            )
            if not validation.valid:
                return self._login_failed(
                    identifier, AuthMethod.OTP, metadata, validation.message, validation.failure
                )

            if "@" in identifier:
                user = self._users.find_by_email(identifier)
            else:
                user = self._users.find_by_phone(identifier)
            return self._complete_login(user, identifier, AuthMethod.OTP, metadata)
        except Exception:
            logger.exception("OTP authentication failed")
            return AuthenticationResult(success=False, message=GENERIC_FAILURE)

    # -------------------------------------------------------------------------
    # Google
    # -------------------------------------------------------------------------

    def authenticate_with_google(
        self,
        id_token: str,
        metadata: SessionMetadata | None = None,
    ) -> AuthenticationResult:
        metadata = metadata or SessionMetadata()
        try:
            result = self._social.authenticate(id_token)
            if not result.success:
                identifier = result.profile.email if result.profile else ANONYMOUS
                return self._login_failed(
                    identifier, AuthMethod.SOCIAL_GOOGLE, metadata, result.message, result.failure
                )

            if result.requires_registration:
                return AuthenticationResult(
                    success=False,
                    message=result.message,
                    requires_registration=True,
                    profile=result.profile,
                    failure=AuthFailure.NOT_FOUND,
                )

            return self._complete_login(
                result.user, result.user.email, AuthMethod.SOCIAL_GOOGLE, metadata
            )
        except Exception:
            logger.exception("Google authentication failed")
            return AuthenticationResult(success=False, message=GENERIC_FAILURE)

    def register_with_google(
        self,
        id_token: str,
        role: UserRole,
        profile_data: dict[str, Any] | None = None,
    ) -> AuthenticationResult:
        """Create a pending account from a Google ID token. No session is issued."""
        try:
            validation = self._social.validate_token(id_token)
            if not validation.valid:
                return AuthenticationResult(
                    success=False, message="Invalid Google token", failure=validation.failure
                )

            created = self._social.create_user_from_profile(validation.profile, role, profile_data)
        except Exception:
            logger.exception("Google registration failed")
            return AuthenticationResult(success=False, message="Registration failed. Please try again.")

        return AuthenticationResult(
            success=created.success,
            message=created.message,
            user=created.user,
            profile=validation.profile,
            failure=created.failure,
        )

    # -------------------------------------------------------------------------
    # Session end and housekeeping
    # -------------------------------------------------------------------------

    def logout(self, session_token: str) -> bool:
        """Revoke the session. Returns False for tokens that do not verify."""
        revocation = self._sessions.revoke_session(session_token)
        if revocation.success:
            self._audit.log(AuditAction.LOGOUT, user_id=revocation.user_id, resource="session")
        return revocation.success

    def cleanup_expired_data(self) -> dict[str, int]:
        """Purge expired links, codes, sessions, devices and security counters."""
        counts = {
            "magic_links": self._magic_links.cleanup_expired(),
            "otps": self._otps.cleanup_expired(),
            "sessions": self._sessions.cleanup_expired_sessions(),
            "security": self._guard.cleanup(),
            "devices": self._devices.cleanup_expired(),
        }
        logger.info(f"Expired data cleanup: {counts}")
        return counts
