"""One-time passcodes delivered by email or SMS."""

import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.exceptions import AuthFailure, DeliveryError
from auth.interfaces import AuthStore, Notifier
from auth.messages import otp_email, otp_sms
from auth.security_guard import SecurityGuard
from auth.types import AuditAction, DeliveryChannel, OTPPurpose, OTPRecord
from utils.timezone import now_utc
from utils.validation import is_valid_email, is_valid_otp_code, is_valid_phone, normalize_email

logger = logging.getLogger(__name__)


@dataclass
class OTPIssueResult:
    """Result of generating or resending a code."""

    success: bool
    message: str
    otp_id: str | None = None
    failure: AuthFailure | None = None


@dataclass
class OTPValidation:
    """Result of checking a submitted code."""

    valid: bool
    message: str
    otp_id: str | None = None
    purpose: OTPPurpose | None = None
    attempts_remaining: int | None = None
    failure: AuthFailure | None = None


def normalize_identifier(identifier: str) -> str:
    """Emails are case-insensitive; phone numbers are kept as entered."""
    identifier = identifier.strip()
    return normalize_email(identifier) if "@" in identifier else identifier


class OTPAuthenticator:
    """
    Six-digit codes, one live code per identifier.

    Issuing a new code replaces the previous one. A code allows
    ``otp_max_attempts`` guesses within ``otp_expiry_minutes``; every wrong
    guess also counts towards the identifier's lockout.
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

    def _send(self, record: OTPRecord, channel: DeliveryChannel, recipient_name: str | None) -> None:
        minutes = self._config.otp_expiry_minutes
        try:
            if channel == DeliveryChannel.EMAIL:
                message = otp_email(self._config.app_name, recipient_name, record.code, minutes)
                self._notifier.send_email(record.email, message.subject, message.body, is_html=True)
            else:
                text = otp_sms(self._config.app_name, record.code, minutes)
                self._notifier.send_sms(record.phone_number, text)
        except Exception as e:
            logger.error(f"OTP delivery via {channel.value} failed: {e}")
            raise DeliveryError(f"Could not deliver OTP via {channel.value}: {e}") from e

    def generate(
        self,
        identifier: str,
        channel: DeliveryChannel,
        purpose: OTPPurpose = OTPPurpose.LOGIN,
        recipient_name: str | None = None,
        ip_address: str = "unknown",
        user_agent: str = "unknown",
    ) -> OTPIssueResult:
        """
        Issue a fresh code and send it.

        Checks, in order: lockout, rate limit, identifier shape.

        Raises:
            DeliveryError: The gateway refused the message; the code is discarded.
        """
        identifier = normalize_identifier(identifier)

        if self._guard.is_locked_out(identifier):
            status = self._guard.get_lockout_status(identifier)
            minutes = -(-(status.remaining_seconds or 0) // 60)
            return OTPIssueResult(
                success=False,
                message=(
                    "Account temporarily locked due to too many failed attempts. "
                    f"Please try again in {minutes} minutes."
                ),
                failure=AuthFailure.LOCKED_OUT,
            )

        if not self._guard.check_rate_limit(identifier, ip_address, user_agent):
            return OTPIssueResult(
                success=False,
                message="Too many OTP requests. Please wait before trying again.",
                failure=AuthFailure.RATE_LIMITED,
            )

        if channel == DeliveryChannel.EMAIL and not is_valid_email(identifier):
            return OTPIssueResult(
                success=False, message="Invalid email format", failure=AuthFailure.INVALID_FORMAT
            )
        if channel == DeliveryChannel.SMS and not is_valid_phone(identifier):
            return OTPIssueResult(
                success=False,
                message="Invalid phone number format",
                failure=AuthFailure.INVALID_FORMAT,
            )

        now = self._clock()
        record = OTPRecord(
            id=str(uuid.uuid4()),
            email=identifier if channel == DeliveryChannel.EMAIL else None,
            phone_number=identifier if channel == DeliveryChannel.SMS else None,
            code=f"{secrets.randbelow(10**6):06d}",
            purpose=purpose,
            expires_at=now + timedelta(minutes=self._config.otp_expiry_minutes),
            verified=False,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        record = self._store.create_otp(record)

        try:
            self._send(record, channel, recipient_name)
        except DeliveryError:
            self._store.delete_otp(record.id)
            raise

        if self._audit:
            self._audit.log(
                AuditAction.OTP_GENERATED,
                user_id=identifier,
                resource="otp",
                resource_id=record.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"channel": channel.value, "purpose": purpose.value},
            )

        logger.info(f"OTP issued via {channel.value} for {purpose.value}")
        return OTPIssueResult(
            success=True,
            message=f"OTP sent successfully via {channel.value}",
            otp_id=record.id,
        )

    def validate(
        self,
        identifier: str,
        code: str,
        ip_address: str = "unknown",
        user_agent: str = "unknown",
    ) -> OTPValidation:
        """
        Check a submitted code.

        A code verifies at most once. Each guess is counted atomically
        before comparison; the record is deleted once it expires or runs
        out of attempts.
        """
        identifier = normalize_identifier(identifier)

        if not is_valid_otp_code(code):
            return OTPValidation(
                valid=False, message="Invalid OTP format", failure=AuthFailure.INVALID_FORMAT
            )

        record = self._store.find_otp_by_identifier(identifier)
        if record is None:
            return OTPValidation(
                valid=False,
                message="No active OTP found for this identifier",
                failure=AuthFailure.NOT_FOUND,
            )

        if record.verified:
            return OTPValidation(
                valid=False, message="OTP has already been used", failure=AuthFailure.ALREADY_USED
            )

        now = self._clock()
        if now > record.expires_at:
            self._store.delete_otp(record.id)
            return OTPValidation(
                valid=False,
                message="OTP has expired. Please request a new one.",
                failure=AuthFailure.EXPIRED,
            )

        max_attempts = self._config.otp_max_attempts
        if record.attempts >= max_attempts:
            self._store.delete_otp(record.id)
            return OTPValidation(
                valid=False,
                message="Maximum verification attempts exceeded. Please request a new OTP.",
                failure=AuthFailure.ATTEMPTS_EXHAUSTED,
            )

        counted = self._store.increment_otp_attempts(record.id, now)
        if counted is None:
            return OTPValidation(
                valid=False,
                message="No active OTP found for this identifier",
                failure=AuthFailure.NOT_FOUND,
            )

        if counted.attempts > max_attempts:
            # Concurrent guesses used up the allowance first
            self._store.delete_otp(record.id)
            return OTPValidation(
                valid=False,
                message="Maximum verification attempts exceeded. Please request a new OTP.",
                failure=AuthFailure.ATTEMPTS_EXHAUSTED,
            )

        if not hmac.compare_digest(counted.code.encode(), code.encode()):
            self._guard.record_failed_attempt(identifier, ip_address, user_agent)
            remaining = max_attempts - counted.attempts

            if self._audit:
                self._audit.log(
                    AuditAction.OTP_FAILED,
                    user_id=identifier,
                    resource="otp",
                    resource_id=record.id,
                    success=False,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details={"reason": "invalid_code", "attempts_remaining": remaining},
                )

            if remaining <= 0:
                self._store.delete_otp(record.id)
                return OTPValidation(
                    valid=False,
                    message="Invalid OTP. Maximum attempts exceeded.",
                    attempts_remaining=0,
                    failure=AuthFailure.ATTEMPTS_EXHAUSTED,
                )

            return OTPValidation(
                valid=False,
                message=f"Invalid OTP. {remaining} attempts remaining.",
                attempts_remaining=remaining,
                failure=AuthFailure.UNAUTHORIZED,
            )

        if not self._store.mark_otp_verified(record.id, now):
            return OTPValidation(
                valid=False, message="OTP has already been used", failure=AuthFailure.ALREADY_USED
            )

        self._guard.record_successful_attempt(identifier)

        if self._audit:
            self._audit.log(
                AuditAction.OTP_VERIFIED,
                user_id=identifier,
                resource="otp",
                resource_id=record.id,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        return OTPValidation(
            valid=True,
            message="OTP verified successfully",
            otp_id=record.id,
            purpose=counted.purpose,
        )

    def resend(
        self,
        identifier: str,
        channel: DeliveryChannel,
        ip_address: str = "unknown",
        user_agent: str = "unknown",
        recipient_name: str | None = None,
    ) -> OTPIssueResult:
        """
        Re-send the live code without resetting its expiry or attempts.

        Raises:
            DeliveryError: The gateway refused the message.
        """
        identifier = normalize_identifier(identifier)

        record = self._store.find_otp_by_identifier(identifier)
        if record is None or record.verified:
            return OTPIssueResult(
                success=False,
                message="No active OTP found to resend",
                failure=AuthFailure.NOT_FOUND,
            )

        if self._clock() > record.expires_at:
            return OTPIssueResult(
                success=False,
                message="OTP has expired. Please request a new one.",
                failure=AuthFailure.EXPIRED,
            )

        if record.attempts >= self._config.otp_max_attempts:
            return OTPIssueResult(
                success=False,
                message="Maximum attempts exceeded. Please request a new OTP.",
                failure=AuthFailure.ATTEMPTS_EXHAUSTED,
            )

        if not self._guard.check_rate_limit(identifier, ip_address, user_agent):
            return OTPIssueResult(
                success=False,
                message="Too many requests. Please wait before trying again.",
                failure=AuthFailure.RATE_LIMITED,
            )

        if (channel == DeliveryChannel.EMAIL) != (record.email is not None):
            return OTPIssueResult(
                success=False,
                message="Invalid method for this OTP",
                failure=AuthFailure.INVALID_FORMAT,
            )

        self._send(record, channel, recipient_name)
        return OTPIssueResult(
            success=True,
            message=f"OTP resent successfully via {channel.value}",
            otp_id=record.id,
        )

    def cleanup_expired(self) -> int:
        removed = self._store.delete_expired_otps(self._clock())
        logger.info(f"Removed {removed} expired OTP records")
        return removed
