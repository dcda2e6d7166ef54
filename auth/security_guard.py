"""
Security guard: brute-force lockout, rate limiting, token format checks,
session hijack heuristics and the security event feed.

Counters live in a SecurityRegistry so that the same guard works in one
process (InMemorySecurityRegistry) or across workers
(ValkeySecurityRegistry).
"""

import base64
import binascii
import logging
import re
import secrets
import threading
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.registry import InMemorySecurityRegistry, SecurityRegistry
from auth.types import (
    AuditAction,
    AuditSeverity,
    BruteForceAttempt,
    LockoutStatus,
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
)
from utils.timezone import from_epoch_millis, now_utc, to_epoch_millis

logger = logging.getLogger(__name__)

URL_SAFE_TOKEN = re.compile(r"^[A-Za-z0-9_-]+$")
TIMESTAMPED_PAYLOAD = re.compile(r"^([0-9a-z]+)\.[A-Za-z0-9_-]+$")

BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

EVENT_AUDIT_ACTIONS = {
    SecurityEventType.ACCOUNT_LOCKOUT: AuditAction.ACCOUNT_LOCKED,
    SecurityEventType.BRUTE_FORCE_DETECTED: AuditAction.BRUTE_FORCE_DETECTED,
    SecurityEventType.RATE_LIMIT_EXCEEDED: AuditAction.RATE_LIMIT_EXCEEDED,
    SecurityEventType.SESSION_HIJACK_ATTEMPT: AuditAction.SESSION_HIJACK_DETECTED,
    SecurityEventType.SUSPICIOUS_LOGIN: AuditAction.SUSPICIOUS_ACTIVITY,
    SecurityEventType.MULTIPLE_IP_ACCESS: AuditAction.SUSPICIOUS_ACTIVITY,
    SecurityEventType.TOKEN_TAMPERING: AuditAction.SECURITY_VIOLATION,
}

EVENT_AUDIT_SEVERITY = {
    SecuritySeverity.LOW: AuditSeverity.WARNING,
    SecuritySeverity.MEDIUM: AuditSeverity.WARNING,
    SecuritySeverity.HIGH: AuditSeverity.ERROR,
    SecuritySeverity.CRITICAL: AuditSeverity.CRITICAL,
}


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def user_agent_fingerprint(user_agent: str | None) -> str | None:
    """
    Coarse "family:os" fingerprint of a user-agent string.

    Edge is checked before Chrome and Android before Linux because their
    UA strings contain the other token too. Returns None for a missing UA.
    """
    if not user_agent:
        return None

    ua = user_agent.lower()

    if "edg" in ua:
        family = "edge"
    elif "chrome" in ua or "crios" in ua:
        family = "chrome"
    elif "firefox" in ua or "fxios" in ua:
        family = "firefox"
    elif "safari" in ua:
        family = "safari"
    else:
        family = "other"

    if "android" in ua:
        os_name = "android"
    elif "iphone" in ua or "ipad" in ua or "ios" in ua:
        os_name = "ios"
    elif "windows" in ua:
        os_name = "windows"
    elif "mac" in ua:
        os_name = "macos"
    elif "linux" in ua:
        os_name = "linux"
    else:
        os_name = "other"

    return f"{family}:{os_name}"


class SecurityGuard:
    """
    Gatekeeper consulted by every authenticator.

    Every security event is appended to a bounded in-memory feed, logged,
    and forwarded to the audit trail when one is attached.
    """

    def __init__(
        self,
        config: AuthConfig,
        registry: SecurityRegistry | None = None,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._config = config
        self._registry = registry if registry is not None else InMemorySecurityRegistry()
        self._audit = audit
        self._clock = clock
        self._events: deque[SecurityEvent] = deque(maxlen=config.security_event_buffer)
        self._events_lock = threading.Lock()

    @property
    def _rate_window(self) -> timedelta:
        return timedelta(minutes=self._config.rate_limit_window_minutes)

    # -------------------------------------------------------------------------
    # Brute-force protection
    # -------------------------------------------------------------------------

    def is_locked_out(self, identifier: str) -> bool:
        """True while the identifier's lockout is in force. Clears elapsed lockouts."""
        attempt = self._registry.get_attempt(identifier)
        if attempt is None or attempt.locked_until is None:
            return False

        if self._clock() >= attempt.locked_until:
            self._registry.clear_attempt(identifier)
            logger.info(f"Lockout expired for {identifier}")
            return False

        return True

    def record_failed_attempt(
        self,
        identifier: str,
        ip_address: str = "unknown",
        user_agent: str = "unknown",
    ) -> BruteForceAttempt:
        """
        Count a failed authentication.

        Locks the identifier once ``max_failed_attempts`` is reached and
        flags the source IP as suspicious. From half that count onwards a
        brute-force event is raised on each failure.
        """
        now = self._clock()
        attempt = self._registry.record_failure(identifier, now)
        threshold = self._config.max_failed_attempts

        if attempt.attempts >= threshold:
            locked_until = now + timedelta(minutes=self._config.lockout_duration_minutes)
            if self._registry.set_lock(identifier, locked_until):
                attempt = attempt.model_copy(update={"locked_until": locked_until})
                self._log_event(
                    SecurityEventType.ACCOUNT_LOCKOUT,
                    identifier,
                    ip_address,
                    user_agent,
                    SecuritySeverity.HIGH,
                    {
                        "attempts": attempt.attempts,
                        "lockout_duration_minutes": self._config.lockout_duration_minutes,
                    },
                )
                self._registry.add_suspicious_ip(ip_address)
        elif attempt.attempts >= threshold // 2:
            self._log_event(
                SecurityEventType.BRUTE_FORCE_DETECTED,
                identifier,
                ip_address,
                user_agent,
                SecuritySeverity.MEDIUM,
                {"attempts": attempt.attempts, "threshold": threshold},
            )

        return attempt

    def record_successful_attempt(self, identifier: str) -> None:
        self._registry.clear_attempt(identifier)

    def get_lockout_status(self, identifier: str) -> LockoutStatus:
        """Current attempts and lockout state for an identifier."""
        is_locked = self.is_locked_out(identifier)
        attempt = self._registry.get_attempt(identifier)
        if attempt is None:
            return LockoutStatus(is_locked=False)

        remaining = None
        if is_locked and attempt.locked_until is not None:
            remaining = max(0, int((attempt.locked_until - self._clock()).total_seconds()))

        return LockoutStatus(
            is_locked=is_locked,
            attempts=attempt.attempts,
            locked_until=attempt.locked_until,
            remaining_seconds=remaining,
        )

    def reset_security_data(self, identifier: str) -> None:
        """Admin action: forget attempts, lockout and rate window for identifier."""
        self._registry.clear_attempt(identifier)
        self._registry.clear_window(identifier)
        logger.info(f"Security data reset for {identifier}")

    # -------------------------------------------------------------------------
    # Rate limiting
    # -------------------------------------------------------------------------

    def check_rate_limit(
        self,
        identifier: str,
        ip_address: str = "unknown",
        user_agent: str = "unknown",
    ) -> bool:
        """
        Count a request against the identifier's fixed window.

        Returns False once ``max_requests_per_window`` requests have already
        been made in the current window.
        """
        entry = self._registry.hit_window(identifier, self._clock(), self._rate_window)
        if entry.count <= self._config.max_requests_per_window:
            return True

        self._log_event(
            SecurityEventType.RATE_LIMIT_EXCEEDED,
            identifier,
            ip_address,
            user_agent,
            SecuritySeverity.MEDIUM,
            {"request_count": entry.count, "window_start": entry.window_start.isoformat()},
        )
        return False

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------

    def generate_secure_token(self, length: int = 32, include_timestamp: bool = True) -> str:
        """
        Generate a URL-safe random token.

        Args:
            length: Bytes of randomness.
            include_timestamp: Embed the issue time so stale tokens can be
                rejected from the token alone.
        """
        random_part = secrets.token_urlsafe(length)
        if not include_timestamp:
            return random_part

        marker = _to_base36(to_epoch_millis(self._clock()))
        payload = f"{marker}.{random_part}".encode("ascii")
        return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")

    def _decode_timestamp(self, token: str) -> datetime | None:
        """Issue time embedded by generate_secure_token, or None if not present."""
        padded = token + "=" * (-len(token) % 4)
        try:
            decoded = base64.urlsafe_b64decode(padded).decode("ascii")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None

        match = TIMESTAMPED_PAYLOAD.match(decoded)
        if match is None:
            return None
        return from_epoch_millis(int(match.group(1), 36))

    def validate_token_format(
        self,
        token: str | None,
        expected_length: int | None = None,
        max_age: timedelta | None = None,
    ) -> bool:
        """
        Cheap structural check run before any store lookup.

        Rejects empty tokens, path-like sequences and wrong lengths. For
        timestamped tokens, also rejects issue times older than ``max_age``
        (default ``token_max_age_hours``) or too far in the future. Tokens
        without an embedded timestamp, such as JWTs, pass the age check.
        """
        if not token or not isinstance(token, str):
            return False

        if ".." in token or "//" in token or "\\" in token:
            return False

        if expected_length is not None and len(token) != expected_length:
            return False

        if not URL_SAFE_TOKEN.match(token):
            return True

        try:
            issued_at = self._decode_timestamp(token)
        except (OverflowError, OSError, ValueError):
            # Marker decodes to an impossible time
            return False
        if issued_at is None:
            return True

        now = self._clock()
        if max_age is None:
            max_age = timedelta(hours=self._config.token_max_age_hours)
        if now - issued_at > max_age:
            return False
        if issued_at - now > timedelta(seconds=self._config.token_future_skew_seconds):
            return False
        return True

    # -------------------------------------------------------------------------
    # Session hijacking
    # -------------------------------------------------------------------------

    def detect_session_hijacking(
        self,
        session_id: str,
        current_ip: str,
        current_user_agent: str | None,
        original_ip: str,
        original_user_agent: str | None,
    ) -> bool:
        """
        Heuristic hijack check for a session seen from a new context.

        Returns True when the IP changed together with the browser/OS
        fingerprint, or when the IP changed to a known suspicious address.
        A changed IP alone is not enough.
        """
        ip_changed = current_ip != original_ip
        if not ip_changed:
            return False

        current_fp = user_agent_fingerprint(current_user_agent)
        original_fp = user_agent_fingerprint(original_user_agent)
        fingerprint_changed = current_fp is None or original_fp is None or current_fp != original_fp

        if fingerprint_changed:
            self._log_event(
                SecurityEventType.SESSION_HIJACK_ATTEMPT,
                session_id,
                current_ip,
                current_user_agent or "unknown",
                SecuritySeverity.CRITICAL,
                {
                    "original_ip": original_ip,
                    "original_fingerprint": original_fp,
                    "current_fingerprint": current_fp,
                },
            )
            return True

        if self._registry.is_suspicious_ip(current_ip):
            self._log_event(
                SecurityEventType.SUSPICIOUS_LOGIN,
                session_id,
                current_ip,
                current_user_agent or "unknown",
                SecuritySeverity.HIGH,
                {"original_ip": original_ip, "reason": "suspicious_ip"},
            )
            return True

        return False

    def mark_ip_as_suspicious(self, ip_address: str) -> None:
        self._registry.add_suspicious_ip(ip_address)
        logger.warning(f"IP marked as suspicious: {ip_address}")

    def clear_suspicious_ip(self, ip_address: str) -> None:
        self._registry.remove_suspicious_ip(ip_address)

    def is_suspicious_ip(self, ip_address: str) -> bool:
        return self._registry.is_suspicious_ip(ip_address)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _log_event(
        self,
        event_type: SecurityEventType,
        identifier: str,
        ip_address: str,
        user_agent: str,
        severity: SecuritySeverity,
        details: dict[str, Any],
    ) -> SecurityEvent:
        event = SecurityEvent(
            id=str(uuid.uuid4()),
            type=event_type,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            severity=severity,
            timestamp=self._clock(),
            details=details,
        )
        with self._events_lock:
            self._events.append(event)

        level = logging.ERROR if severity == SecuritySeverity.CRITICAL else logging.WARNING
        logger.log(
            level,
            f"Security event {event_type.value} ({severity.value}) for {identifier} from {ip_address}",
        )

        if self._audit is not None:
            self._audit.log_security_event(
                EVENT_AUDIT_ACTIONS[event_type],
                user_id=identifier,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"security_event_id": event.id, "event_type": event_type.value, **details},
                severity=EVENT_AUDIT_SEVERITY[severity],
            )
        return event

    def get_security_events(
        self,
        severity: SecuritySeverity | None = None,
        event_type: SecurityEventType | None = None,
        limit: int = 100,
    ) -> list[SecurityEvent]:
        """Most recent events first, optionally filtered."""
        with self._events_lock:
            events = list(self._events)

        matching = [
            e
            for e in reversed(events)
            if (severity is None or e.severity == severity)
            and (event_type is None or e.type == event_type)
        ]
        return matching[:limit]

    def cleanup(self) -> int:
        """Purge elapsed lockouts and rate windows. Returns entries removed."""
        removed = self._registry.purge_expired(self._clock(), self._rate_window)
        logger.info(f"Security guard cleanup removed {removed} entries")
        return removed
