"""
In-memory AuthStore and UserDirectory.

Process-local reference implementations. Every read-modify-write runs
under one lock per store; records are copied in and out so callers never
share mutable state with the store.
"""

import logging
import threading
from datetime import datetime

from auth.types import MagicLink, OTPRecord, Session, User

logger = logging.getLogger(__name__)


class InMemoryAuthStore:
    """Dict-backed sessions, magic links and OTP records."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._magic_links: dict[str, MagicLink] = {}
        self._otps: dict[str, OTPRecord] = {}

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        with self._lock:
            if session.id in self._sessions:
                raise ValueError(f"Session {session.id} already exists")
            self._sessions[session.id] = session.model_copy()
        return session.model_copy()

    def find_session_by_id(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def find_sessions_by_user_id(self, user_id: str) -> list[Session]:
        with self._lock:
            return [s.model_copy() for s in self._sessions.values() if s.user_id == user_id]

    def update_session(self, session: Session) -> Session:
        with self._lock:
            if session.id not in self._sessions:
                raise KeyError(f"Session {session.id} not found")
            self._sessions[session.id] = session.model_copy()
        return session.model_copy()

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def delete_user_sessions(self, user_id: str) -> int:
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
            for sid in doomed:
                del self._sessions[sid]
            return len(doomed)

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
            for sid in doomed:
                del self._sessions[sid]
            return len(doomed)

    # -------------------------------------------------------------------------
    # Magic links
    # -------------------------------------------------------------------------

    def create_magic_link(self, link: MagicLink, supersede_unused: bool = False) -> MagicLink:
        """
        Store a new link.

        With ``supersede_unused``, unused links for the same email and
        purpose are marked used in the same critical section.
        """
        with self._lock:
            if supersede_unused:
                for existing in self._magic_links.values():
                    if (
                        existing.email == link.email
                        and existing.purpose == link.purpose
                        and not existing.used
                    ):
                        existing.used = True
                        existing.updated_at = link.created_at
            self._magic_links[link.id] = link.model_copy()
        return link.model_copy()

    def find_magic_link_by_token(self, token: str) -> MagicLink | None:
        with self._lock:
            for link in self._magic_links.values():
                if link.token == token:
                    return link.model_copy()
        return None

    def update_magic_link(self, link: MagicLink) -> MagicLink:
        with self._lock:
            if link.id not in self._magic_links:
                raise KeyError(f"Magic link {link.id} not found")
            self._magic_links[link.id] = link.model_copy()
        return link.model_copy()

    def consume_magic_link(self, link_id: str, now: datetime) -> bool:
        """Mark a link used. Returns False if it was already used or is gone."""
        with self._lock:
            link = self._magic_links.get(link_id)
            if link is None or link.used:
                return False
            link.used = True
            link.updated_at = now
            return True

    def delete_magic_link(self, link_id: str) -> bool:
        with self._lock:
            return self._magic_links.pop(link_id, None) is not None

    def delete_expired_magic_links(self, now: datetime) -> int:
        with self._lock:
            doomed = [lid for lid, link in self._magic_links.items() if link.expires_at <= now]
            for lid in doomed:
                del self._magic_links[lid]
            return len(doomed)

    # -------------------------------------------------------------------------
    # OTP records
    # -------------------------------------------------------------------------

    def create_otp(self, record: OTPRecord) -> OTPRecord:
        """Store a record, replacing any existing one for the same identifier."""
        with self._lock:
            stale = [oid for oid, r in self._otps.items() if r.identifier == record.identifier]
            for oid in stale:
                del self._otps[oid]
            self._otps[record.id] = record.model_copy()
        if stale:
            logger.debug(f"Replaced {len(stale)} OTP record(s) for identifier")
        return record.model_copy()

    def find_otp_by_identifier(self, identifier: str) -> OTPRecord | None:
        with self._lock:
            for record in self._otps.values():
                if record.identifier == identifier:
                    return record.model_copy()
        return None

    def update_otp(self, record: OTPRecord) -> OTPRecord:
        with self._lock:
            if record.id not in self._otps:
                raise KeyError(f"OTP {record.id} not found")
            self._otps[record.id] = record.model_copy()
        return record.model_copy()

    def increment_otp_attempts(self, otp_id: str, now: datetime) -> OTPRecord | None:
        with self._lock:
            record = self._otps.get(otp_id)
            if record is None:
                return None
            record.attempts += 1
            record.updated_at = now
            return record.model_copy()

    def mark_otp_verified(self, otp_id: str, now: datetime) -> bool:
        """Flip ``verified`` once. Returns False if already verified or gone."""
        with self._lock:
            record = self._otps.get(otp_id)
            if record is None or record.verified:
                return False
            record.verified = True
            record.updated_at = now
            return True

    def delete_otp(self, otp_id: str) -> bool:
        with self._lock:
            return self._otps.pop(otp_id, None) is not None

    def delete_expired_otps(self, now: datetime) -> int:
        with self._lock:
            doomed = [oid for oid, r in self._otps.items() if r.expires_at <= now]
            for oid in doomed:
                del self._otps[oid]
            return len(doomed)


class InMemoryUserDirectory:
    """Dict-backed user accounts keyed by id."""

    def __init__(self, users: list[User] | None = None):
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}
        for user in users or []:
            self._users[user.id] = user.model_copy(deep=True)

    def find_by_id(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def find_by_email(self, email: str) -> User | None:
        email = email.lower().strip()
        with self._lock:
            for user in self._users.values():
                if user.email.lower() == email:
                    return user.model_copy(deep=True)
        return None

    def find_by_phone(self, phone_number: str) -> User | None:
        with self._lock:
            for user in self._users.values():
                if user.phone_number and user.phone_number == phone_number:
                    return user.model_copy(deep=True)
        return None

    def update(self, user: User) -> User:
        with self._lock:
            if user.id not in self._users:
                raise KeyError(f"User {user.id} not found")
            self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    def create(self, user: User) -> User:
        with self._lock:
            if user.id in self._users:
                raise ValueError(f"User {user.id} already exists")
            if any(u.email.lower() == user.email.lower() for u in self._users.values()):
                raise ValueError(f"User with email {user.email} already exists")
            self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)
