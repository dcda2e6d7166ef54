"""Session lifecycle: create, validate, refresh, revoke.

A session is a store record plus a signed JWT pointing at it. Validation
checks both, and deletes the record whenever the session can no longer be
used (expired, user gone or inactive, hijack suspected).
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.exceptions import AuthFailure, InvalidTokenError, SessionTokenExpiredError
from auth.interfaces import AuthStore, UserDirectory
from auth.security_guard import SecurityGuard
from auth.tokens import SessionTokenCodec
from auth.types import (
    AuditAction,
    AuditLogEntry,
    AuditQuery,
    AuthMethod,
    Session,
    SessionMetadata,
    User,
)
from utils.timezone import now_utc, to_epoch_seconds

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


@dataclass
class SessionCreation:
    success: bool
    message: str
    session_token: str | None = None
    session: Session | None = None
    failure: AuthFailure | None = None


@dataclass
class SessionValidation:
    valid: bool
    message: str
    session: Session | None = None
    user: User | None = None
    needs_refresh: bool = False
    security_warning: str | None = None
    failure: AuthFailure | None = None


@dataclass
class SessionRefresh:
    success: bool
    message: str
    session_token: str | None = None
    session: Session | None = None
    failure: AuthFailure | None = None


@dataclass
class SessionRevocation:
    success: bool
    message: str
    revoked_count: int = 0
    user_id: str | None = None


@dataclass
class SuspiciousActivityReport:
    suspicious: bool
    reasons: list[str] = field(default_factory=list)
    recommended_action: str | None = None


def _known(value: str | None) -> str | None:
    """Treat the "unknown" placeholder as absent."""
    if not value or value == UNKNOWN:
        return None
    return value


class SessionManager:
    """Creates and polices authenticated sessions."""

    def __init__(
        self,
        config: AuthConfig,
        store: AuthStore,
        users: UserDirectory,
        guard: SecurityGuard,
        audit: AuditTrail,
        clock: Callable[[], datetime] = now_utc,
        codec: SessionTokenCodec | None = None,
    ):
        self._config = config
        self._store = store
        self._users = users
        self._guard = guard
        self._audit = audit
        self._clock = clock
        self._codec = codec or SessionTokenCodec(config, clock)

    @property
    def _lifetime(self) -> timedelta:
        return timedelta(hours=self._config.session_expiry_hours)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        method: AuthMethod,
        metadata: SessionMetadata | None = None,
    ) -> SessionCreation:
        """
        Mint a session and its signed token for an active user.

        Records the login (success or failure) and the session creation in
        the audit trail and stamps the user's last login.
        """
        metadata = metadata or SessionMetadata()

        user = self._users.find_by_id(user_id)
        if user is None:
            self._audit.log_authentication_attempt(
                user_id, method.value, False, metadata.ip_address, metadata.user_agent,
                {"reason": "user_not_found"},
            )
            return SessionCreation(
                success=False, message="User not found", failure=AuthFailure.NOT_FOUND
            )

        if not user.is_active:
            self._audit.log_authentication_attempt(
                user_id, method.value, False, metadata.ip_address, metadata.user_agent,
                {"reason": "user_not_active", "status": user.status.value},
            )
            return SessionCreation(
                success=False, message="User account is not active", failure=AuthFailure.INACTIVE
            )

        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user.id,
            method=method,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            expires_at=now + self._lifetime,
            created_at=now,
            updated_at=now,
        )

        try:
            session = self._store.create_session(session)
            token = self._codec.encode(session, user.role)
            user.last_login_at = now
            user.updated_at = now
            self._users.update(user)
        except Exception:
            logger.exception(f"Failed to create session for user {user_id}")
            self._store.delete_session(session.id)
            return SessionCreation(
                success=False, message="Failed to create session", failure=AuthFailure.STORE_FAILURE
            )

        self._audit.log_authentication_attempt(
            user.id, method.value, True, metadata.ip_address, metadata.user_agent,
            {"session_id": session.id},
        )
        self._audit.log(
            AuditAction.SESSION_CREATED,
            user_id=user.id,
            user_role=user.role,
            resource="session",
            resource_id=session.id,
            method=method.value,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            session_id=session.id,
        )

        logger.info(f"Session {session.id} created for user {user.id} via {method.value}")
        return SessionCreation(
            success=True,
            message="Session created successfully",
            session_token=token,
            session=session,
        )

    # -------------------------------------------------------------------------
    # Validate
    # -------------------------------------------------------------------------

    def _expire(self, session_id: str, user_id: str) -> SessionValidation:
        self._store.delete_session(session_id)
        self._audit.log(
            AuditAction.SESSION_EXPIRED,
            user_id=user_id,
            resource="session",
            resource_id=session_id,
            session_id=session_id,
        )
        return SessionValidation(valid=False, message="Session expired", failure=AuthFailure.EXPIRED)

    def validate_session(
        self,
        token: str,
        current_ip: str | None = None,
        current_user_agent: str | None = None,
    ) -> SessionValidation:
        """
        Check a session token.

        With both ``current_ip`` and ``current_user_agent`` the session is
        also checked for hijacking; a positive result ends the session.
        """
        if not self._guard.validate_token_format(token):
            return SessionValidation(
                valid=False, message="Invalid token format", failure=AuthFailure.INVALID_FORMAT
            )

        try:
            claims = self._codec.decode(token)
        except SessionTokenExpiredError as e:
            claims = e.claims
            expired_token = True
        except InvalidTokenError:
            return SessionValidation(
                valid=False, message="Invalid session token", failure=AuthFailure.UNAUTHORIZED
            )
        else:
            expired_token = False

        try:
            if expired_token:
                return self._reject_expired_token(claims.session_id, claims.user_id)
            return self._validate_claims(claims.session_id, claims.user_id, current_ip, current_user_agent)
        except Exception:
            logger.exception("Session validation failed")
            return SessionValidation(
                valid=False, message="Session validation failed", failure=AuthFailure.STORE_FAILURE
            )

    def _reject_expired_token(self, session_id: str, user_id: str) -> SessionValidation:
        """
        An outdated token only ends its session when the session itself has
        run out. A refreshed session outlives the tokens issued before it.
        """
        session = self._store.find_session_by_id(session_id)
        if session is None or session.user_id != user_id:
            return SessionValidation(
                valid=False, message="Session token expired", failure=AuthFailure.EXPIRED
            )

        if to_epoch_seconds(self._clock()) >= to_epoch_seconds(session.expires_at):
            return self._expire(session.id, session.user_id)

        return SessionValidation(
            valid=False, message="Session token expired", failure=AuthFailure.EXPIRED
        )

    def _validate_claims(
        self,
        session_id: str,
        user_id: str,
        current_ip: str | None,
        current_user_agent: str | None,
    ) -> SessionValidation:
        session = self._store.find_session_by_id(session_id)
        if session is None:
            return SessionValidation(
                valid=False, message="Session not found", failure=AuthFailure.NOT_FOUND
            )

        if session.user_id != user_id:
            logger.warning(f"Session {session_id} presented with mismatched user claim")
            return SessionValidation(
                valid=False, message="Invalid session token", failure=AuthFailure.UNAUTHORIZED
            )

        now = self._clock()
        if now > session.expires_at:
            return self._expire(session.id, session.user_id)

        user = self._users.find_by_id(session.user_id)
        if user is None:
            self._store.delete_session(session.id)
            return SessionValidation(
                valid=False, message="User not found", failure=AuthFailure.NOT_FOUND
            )

        if not user.is_active:
            self._store.delete_session(session.id)
            return SessionValidation(
                valid=False, message="User account is not active", failure=AuthFailure.INACTIVE
            )

        security_warning = None
        if current_ip and current_user_agent and _known(session.ip_address):
            hijacked = self._guard.detect_session_hijacking(
                session.id,
                current_ip,
                current_user_agent,
                session.ip_address,
                session.user_agent,
            )
            if hijacked:
                self._store.delete_session(session.id)
                logger.warning(f"Session {session.id} terminated: potential hijacking")
                return SessionValidation(
                    valid=False,
                    message="Session terminated due to security concerns",
                    security_warning="Potential session hijacking detected",
                    failure=AuthFailure.HIJACK_DETECTED,
                )

            if self._guard.is_suspicious_ip(current_ip):
                security_warning = "Login from previously flagged IP address"

        threshold = timedelta(hours=self._config.session_refresh_threshold_hours)
        return SessionValidation(
            valid=True,
            message="Session valid",
            session=session,
            user=user,
            needs_refresh=session.expires_at - now < threshold,
            security_warning=security_warning,
        )

    # -------------------------------------------------------------------------
    # Refresh / revoke
    # -------------------------------------------------------------------------

    def refresh_session(self, token: str, metadata: SessionMetadata | None = None) -> SessionRefresh:
        """
        Extend a valid session and issue a new token for the same session id.

        The new request context goes through hijack detection first.
        """
        metadata = metadata or SessionMetadata()
        current_ip = _known(metadata.ip_address)
        current_ua = _known(metadata.user_agent)

        validation = self.validate_session(token, current_ip, current_ua)
        if not validation.valid:
            return SessionRefresh(
                success=False, message=validation.message, failure=validation.failure
            )

        session = validation.session
        user = validation.user
        now = self._clock()
        session.expires_at = now + self._lifetime
        session.updated_at = now
        if current_ip:
            session.ip_address = current_ip
        if current_ua:
            session.user_agent = current_ua

        session = self._store.update_session(session)
        new_token = self._codec.encode(session, user.role)

        self._audit.log(
            AuditAction.SESSION_REFRESHED,
            user_id=user.id,
            user_role=user.role,
            resource="session",
            resource_id=session.id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            session_id=session.id,
        )
        return SessionRefresh(
            success=True,
            message="Session refreshed successfully",
            session_token=new_token,
            session=session,
        )

    def revoke_session(self, token: str) -> SessionRevocation:
        """End the session behind ``token``. Expired but authentic tokens are accepted."""
        try:
            claims = self._codec.decode(token, allow_expired=True)
        except InvalidTokenError:
            return SessionRevocation(success=False, message="Invalid session token")

        deleted = self._store.delete_session(claims.session_id)
        self._audit.log(
            AuditAction.SESSION_REVOKED,
            user_id=claims.user_id,
            resource="session",
            resource_id=claims.session_id,
            session_id=claims.session_id,
        )
        logger.info(f"Session {claims.session_id} revoked")
        return SessionRevocation(
            success=True,
            message="Session revoked successfully",
            revoked_count=1 if deleted else 0,
            user_id=claims.user_id,
        )

    def revoke_all_user_sessions(self, user_id: str) -> SessionRevocation:
        count = self._store.delete_user_sessions(user_id)
        self._audit.log(
            AuditAction.SESSION_REVOKED,
            user_id=user_id,
            resource="session",
            details={"scope": "all", "revoked_count": count},
        )
        logger.info(f"Revoked {count} sessions for user {user_id}")
        return SessionRevocation(
            success=True, message="All user sessions revoked successfully", revoked_count=count
        )

    # -------------------------------------------------------------------------
    # Housekeeping and reporting
    # -------------------------------------------------------------------------

    def get_user_sessions(self, user_id: str) -> list[Session]:
        """Active sessions for a user. Expired ones found along the way are deleted."""
        now = self._clock()
        active = []
        for session in self._store.find_sessions_by_user_id(user_id):
            if session.expires_at > now:
                active.append(session)
            else:
                self._store.delete_session(session.id)
        return sorted(active, key=lambda s: s.created_at, reverse=True)

    def cleanup_expired_sessions(self) -> int:
        removed = self._store.delete_expired_sessions(self._clock())
        logger.info(f"Removed {removed} expired sessions")
        return removed

    def get_user_audit_log(self, user_id: str, limit: int = 50) -> list[AuditLogEntry]:
        return self._audit.query(AuditQuery(user_id=user_id, limit=limit)).entries

    def check_suspicious_activity(self, user_id: str) -> SuspiciousActivityReport:
        """
        Look at the user's last hour of audit entries.

        Entries recorded against the user's email (failed logins before the
        user is known) count as well.
        """
        now = self._clock()
        subjects = {user_id}
        user = self._users.find_by_id(user_id)
        if user is not None:
            subjects.add(user.email)

        entries = []
        for subject in subjects:
            page = self._audit.query(
                AuditQuery(user_id=subject, start_date=now - timedelta(hours=1), end_date=now, limit=1000)
            )
            entries.extend(page.entries)

        reasons = []
        failures = [e for e in entries if not e.success]
        if len(failures) >= 5:
            reasons.append(f"{len(failures)} failed authentication attempts in the last hour")

        ips = {e.ip_address for e in entries if e.ip_address}
        if len(ips) >= 3:
            reasons.append(f"Authentication attempts from {len(ips)} different IP addresses")

        creations = [e for e in entries if e.action == AuditAction.SESSION_CREATED]
        if len(creations) >= 10:
            reasons.append(f"{len(creations)} session creations in the last hour")

        if not reasons:
            return SuspiciousActivityReport(suspicious=False)

        if len(failures) >= 10:
            action = "Consider temporarily suspending the account"
        elif len(reasons) >= 2:
            action = "Require additional verification for next login"
        else:
            action = "Monitor closely for continued suspicious activity"

        return SuspiciousActivityReport(suspicious=True, reasons=reasons, recommended_action=action)
