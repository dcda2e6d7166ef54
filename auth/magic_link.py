"""Magic link issuance, validation and revocation."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from urllib.parse import urlencode

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.exceptions import AuthFailure, DeliveryError
from auth.interfaces import AuthStore, Notifier
from auth.messages import invitation_email, magic_link_email
from auth.security_guard import SecurityGuard
from auth.types import AuditAction, LinkPurpose, MagicLink, UserRole
from utils.timezone import now_utc
from utils.validation import normalize_email

logger = logging.getLogger(__name__)


@dataclass
class MagicLinkValidation:
    """Outcome of validating a magic link token."""

    valid: bool
    email: str | None = None
    purpose: LinkPurpose | None = None
    magic_link_id: str | None = None
    failure: AuthFailure | None = None


class MagicLinkAuthenticator:
    """
    Single-use emailed links for login, registration and invitations.

    Login and registration links expire after ``magic_link_expiry_minutes``
    and a new one supersedes any unused link for the same email and
    purpose. Invitations last ``invitation_expiry_days`` and do not
    supersede each other.
    """

    def __init__(
        self,
        config: AuthConfig,
        store: AuthStore,
        notifier: Notifier,
        guard: SecurityGuard,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._config = config
        self._store = store
        self._notifier = notifier
        self._guard = guard
        self._audit = audit
        self._clock = clock

    def _lifetime(self, purpose: LinkPurpose) -> timedelta:
        if purpose == LinkPurpose.INVITATION:
            return timedelta(days=self._config.invitation_expiry_days)
        return timedelta(minutes=self._config.magic_link_expiry_minutes)

    def _link_url(self, path: str, **params: str) -> str:
        return f"{self._config.frontend_url.rstrip('/')}{path}?{urlencode(params)}"

    def _issue(self, email: str, purpose: LinkPurpose) -> MagicLink:
        now = self._clock()
        link = MagicLink(
            id=str(uuid.uuid4()),
            email=normalize_email(email),
            token=self._guard.generate_secure_token(self._config.magic_link_token_length, True),
            purpose=purpose,
            expires_at=now + self._lifetime(purpose),
            used=False,
            created_at=now,
            updated_at=now,
        )
        saved = self._store.create_magic_link(
            link,
            supersede_unused=purpose != LinkPurpose.INVITATION,
        )

        if self._audit:
            self._audit.log(
                AuditAction.MAGIC_LINK_GENERATED,
                user_id=saved.email,
                resource="magic_link",
                resource_id=saved.id,
                details={"purpose": purpose.value},
            )
        return saved

    def _deliver(self, link: MagicLink, subject: str, body: str) -> None:
        """Send the email, retiring the link if the gateway refuses it."""
        try:
            self._notifier.send_email(link.email, subject, body, is_html=True)
        except Exception as e:
            logger.error(f"Magic link delivery to {link.email} failed: {e}")
            self._store.consume_magic_link(link.id, self._clock())
            raise DeliveryError(f"Could not deliver magic link: {e}") from e

        logger.info(f"Magic link ({link.purpose.value}) sent to {link.email}")

    def generate(
        self,
        email: str,
        purpose: LinkPurpose,
        recipient_name: str | None = None,
    ) -> MagicLink:
        """
        Create, store and email a magic link.

        Raises:
            DeliveryError: The email could not be sent; the link is retired.
        """
        link = self._issue(email, purpose)
        message = magic_link_email(
            self._config.app_name,
            recipient_name,
            self._link_url("/auth/magic-link", token=link.token, purpose=purpose.value),
            purpose,
            int(self._lifetime(purpose).total_seconds() // 60),
        )
        self._deliver(link, message.subject, message.body)
        return link

    def generate_invitation(
        self,
        invitee_email: str,
        inviter_name: str,
        role: UserRole,
    ) -> MagicLink:
        """
        Invite someone to join with a given role.

        Sends the invitation email (pointing at /auth/invitation) instead of
        the generic magic link email.
        """
        link = self._issue(invitee_email, LinkPurpose.INVITATION)
        message = invitation_email(
            self._config.app_name,
            inviter_name,
            role.value,
            self._link_url("/auth/invitation", token=link.token),
            int(self._lifetime(LinkPurpose.INVITATION).total_seconds() // 60),
        )
        self._deliver(link, message.subject, message.body)
        return link

    def validate(self, token: str) -> MagicLinkValidation:
        """
        Validate and consume a magic link token.

        Fails closed: malformed, unknown, used and expired tokens are all
        invalid. An expired link is marked used. Consumption is atomic, so
        of two concurrent submissions only one succeeds.
        """
        max_age = timedelta(days=self._config.invitation_expiry_days)
        if not self._guard.validate_token_format(token, max_age=max_age):
            return MagicLinkValidation(valid=False, failure=AuthFailure.INVALID_FORMAT)

        try:
            link = self._store.find_magic_link_by_token(token)
            if link is None:
                return MagicLinkValidation(valid=False, failure=AuthFailure.NOT_FOUND)

            if link.used:
                return MagicLinkValidation(valid=False, failure=AuthFailure.ALREADY_USED)

            now = self._clock()
            if now > link.expires_at:
                self._store.consume_magic_link(link.id, now)
                return MagicLinkValidation(valid=False, failure=AuthFailure.EXPIRED)

            if not self._store.consume_magic_link(link.id, now):
                # Lost the race to a concurrent submission
                return MagicLinkValidation(valid=False, failure=AuthFailure.ALREADY_USED)
        except Exception:
            logger.exception("Error validating magic link")
            return MagicLinkValidation(valid=False, failure=AuthFailure.STORE_FAILURE)

        if self._audit:
            self._audit.log(
                AuditAction.MAGIC_LINK_USED,
                user_id=link.email,
                resource="magic_link",
                resource_id=link.id,
                details={"purpose": link.purpose.value},
            )

        return MagicLinkValidation(
            valid=True,
            email=link.email,
            purpose=link.purpose,
            magic_link_id=link.id,
        )

    def revoke(self, token: str) -> bool:
        """
        Mark a link used regardless of purpose or expiry.

        Returns False only when no link has this token. Revoking twice is
        harmless.
        """
        link = self._store.find_magic_link_by_token(token)
        if link is None:
            return False

        self._store.consume_magic_link(link.id, self._clock())
        logger.info(f"Magic link {link.id} revoked")
        return True

    def cleanup_expired(self) -> int:
        removed = self._store.delete_expired_magic_links(self._clock())
        logger.info(f"Removed {removed} expired magic links")
        return removed
