"""Authentication and session security modules."""

from auth.exceptions import (
    AuthError,
    AuthFailure,
    ConfigurationError,
    DeliveryError,
    InvalidTokenError,
    SessionTokenExpiredError,
)
from auth.types import (
    User,
    UserRole,
    UserStatus,
    AuthMethod,
    Session,
    SessionMetadata,
    MagicLink,
    OTPRecord,
    AuditAction,
    AuditLogEntry,
    SecurityEvent,
)
from auth.config import AuthConfig
from auth.memory_store import InMemoryAuthStore, InMemoryUserDirectory
from auth.registry import InMemorySecurityRegistry, ValkeySecurityRegistry
from auth.security_guard import SecurityGuard
from auth.audit_trail import AuditTrail
from auth.tokens import SessionTokenCodec
from auth.magic_link import MagicLinkAuthenticator
from auth.otp import OTPAuthenticator
from auth.social import SocialAuthenticator, SocialProfile
from auth.session import SessionManager
from auth.devices import TrustedDeviceRegistry
from auth.service import AuthenticationOrchestrator, AuthenticationResult, RequestResult
