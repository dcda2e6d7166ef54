"""
Collaborator contracts for the auth core.

Persistence, the user directory and message delivery live outside this
package. Anything satisfying these protocols can be injected; the
in-memory implementations in auth.memory_store back tests and
single-process deployments.
"""

from datetime import datetime
from typing import Protocol

from auth.types import MagicLink, OTPRecord, Session, User


class AuthStore(Protocol):
    """
    Sessions, magic links and OTP records.

    ``consume_magic_link``, ``increment_otp_attempts`` and
    ``mark_otp_verified`` must be atomic: concurrent callers racing on the
    same record see exactly one winner.
    """

    # Sessions
    def create_session(self, session: Session) -> Session: ...

    def find_session_by_id(self, session_id: str) -> Session | None: ...

    def find_sessions_by_user_id(self, user_id: str) -> list[Session]: ...

    def update_session(self, session: Session) -> Session: ...

    def delete_session(self, session_id: str) -> bool: ...

    def delete_user_sessions(self, user_id: str) -> int: ...

    def delete_expired_sessions(self, now: datetime) -> int: ...

    # Magic links
    def create_magic_link(self, link: MagicLink, supersede_unused: bool = False) -> MagicLink: ...

    def find_magic_link_by_token(self, token: str) -> MagicLink | None: ...

    def update_magic_link(self, link: MagicLink) -> MagicLink: ...

    def consume_magic_link(self, link_id: str, now: datetime) -> bool: ...

    def delete_magic_link(self, link_id: str) -> bool: ...

    def delete_expired_magic_links(self, now: datetime) -> int: ...

    # OTP records
    def create_otp(self, record: OTPRecord) -> OTPRecord: ...

    def find_otp_by_identifier(self, identifier: str) -> OTPRecord | None: ...

    def update_otp(self, record: OTPRecord) -> OTPRecord: ...

    def increment_otp_attempts(self, otp_id: str, now: datetime) -> OTPRecord | None: ...

    def mark_otp_verified(self, otp_id: str, now: datetime) -> bool: ...

    def delete_otp(self, otp_id: str) -> bool: ...

    def delete_expired_otps(self, now: datetime) -> int: ...


class UserDirectory(Protocol):
    """Read/update access to user accounts."""

    def find_by_id(self, user_id: str) -> User | None: ...

    def find_by_email(self, email: str) -> User | None: ...

    def find_by_phone(self, phone_number: str) -> User | None: ...

    def update(self, user: User) -> User: ...

    def create(self, user: User) -> User: ...


class Notifier(Protocol):
    """Outbound email and SMS. Implementations raise on delivery failure."""

    def send_email(self, to: str, subject: str, body: str, is_html: bool = False) -> None: ...

    def send_sms(self, to: str, message: str) -> None: ...
