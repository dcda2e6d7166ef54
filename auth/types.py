"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, EmailStr, Field, model_validator


class UserRole(str, Enum):
    APP_ADMIN = "app_admin"
    FARM_ADMIN = "farm_admin"
    FIELD_MANAGER = "field_manager"
    FARMER = "farmer"
    LORRY_AGENCY = "lorry_agency"
    FIELD_EQUIPMENT_MANAGER = "field_equipment_manager"
    INPUT_SUPPLIER = "input_supplier"
    DEALER = "dealer"


class UserStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class AuthMethod(str, Enum):
    """How a user proved their identity."""

    MAGIC_LINK = "magic_link"
    OTP = "otp"
    SOCIAL_AUTH = "social_auth"
    SOCIAL_GOOGLE = "social_google"


class LinkPurpose(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"
    INVITATION = "invitation"


class OTPPurpose(str, Enum):
    LOGIN = "login"
    REGISTRATION = "registration"
    VERIFICATION = "verification"


class DeliveryChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class User(BaseModel):
    """A registered user of the system. Owned by the user directory."""

    id: str
    email: EmailStr
    full_name: str
    role: UserRole
    status: UserStatus = UserStatus.PENDING_APPROVAL
    phone_number: str | None = None
    auth_methods: list[AuthMethod] = Field(default_factory=list)
    profile_data: dict[str, Any] = Field(default_factory=dict)
    email_verified: bool = False
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class MagicLink(BaseModel):
    """A single-use emailed login, registration or invitation link."""

    id: str
    email: EmailStr
    token: str = Field(..., description="URL-safe timestamped token")
    purpose: LinkPurpose
    expires_at: datetime
    used: bool  # Required - fail closed, no default
    created_at: datetime
    updated_at: datetime


class OTPRecord(BaseModel):
    """
    A pending one-time code.

    Exactly one of ``email`` / ``phone_number`` identifies the recipient.
    The store keeps at most one record per identifier.
    """

    id: str
    email: EmailStr | None = None
    phone_number: str | None = None
    code: str = Field(..., pattern=r"^\d{6}$")
    purpose: OTPPurpose
    expires_at: datetime
    verified: bool = False
    attempts: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _exactly_one_identifier(self) -> "OTPRecord":
        if (self.email is None) == (self.phone_number is None):
            raise ValueError("OTP record needs exactly one of email or phone_number")
        return self

    @property
    def identifier(self) -> str:
        return self.email if self.email is not None else self.phone_number


class Session(BaseModel):
    """An authenticated session backing a signed token."""

    id: str
    user_id: str
    method: AuthMethod
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    expires_at: datetime
    created_at: datetime
    updated_at: datetime


class SessionClaims(BaseModel):
    """Claim set carried inside a session JWT. Never persisted."""

    session_id: str = Field(..., alias="sessionId")
    user_id: str = Field(..., alias="userId")
    role: UserRole
    auth_method: AuthMethod = Field(..., alias="authMethod")
    iat: int
    exp: int

    model_config = {"populate_by_name": True}


class SessionMetadata(BaseModel):
    """Request context captured when a session is created or refreshed."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"
    device_info: str | None = None
    location: str | None = None


class BruteForceAttempt(BaseModel):
    identifier: str
    attempts: int = Field(..., ge=0)
    first_attempt: datetime
    last_attempt: datetime
    locked_until: datetime | None = None


class RateLimitEntry(BaseModel):
    identifier: str
    count: int = Field(..., ge=0)
    window_start: datetime


class LockoutStatus(BaseModel):
    is_locked: bool
    attempts: int = 0
    locked_until: datetime | None = None
    remaining_seconds: int | None = None


class SecurityEventType(str, Enum):
    BRUTE_FORCE_DETECTED = "brute_force_detected"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_LOGIN = "suspicious_login"
    TOKEN_TAMPERING = "token_tampering"
    SESSION_HIJACK_ATTEMPT = "session_hijack_attempt"
    ACCOUNT_LOCKOUT = "account_lockout"
    MULTIPLE_IP_ACCESS = "multiple_ip_access"


class SecuritySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityEvent(BaseModel):
    """Immutable record of something the security guard noticed."""

    id: str
    type: SecurityEventType
    identifier: str
    ip_address: str
    user_agent: str
    severity: SecuritySeverity
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class AuditAction(str, Enum):
    """Auditable actions."""

    # Authentication
    LOGIN_ATTEMPT = "login_attempt"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    SESSION_CREATED = "session_created"
    SESSION_REFRESHED = "session_refreshed"
    SESSION_REVOKED = "session_revoked"
    SESSION_EXPIRED = "session_expired"
    OTP_GENERATED = "otp_generated"
    OTP_VERIFIED = "otp_verified"
    OTP_FAILED = "otp_failed"
    MAGIC_LINK_GENERATED = "magic_link_generated"
    MAGIC_LINK_USED = "magic_link_used"
    SOCIAL_ACCOUNT_LINKED = "social_account_linked"
    SOCIAL_ACCOUNT_UNLINKED = "social_account_unlinked"

    # User management
    USER_REGISTERED = "user_registered"
    USER_PROFILE_UPDATED = "user_profile_updated"

    # Data access
    DATA_ACCESSED = "data_accessed"
    DATA_EXPORTED = "data_exported"

    # Security
    SECURITY_VIOLATION = "security_violation"
    BRUTE_FORCE_DETECTED = "brute_force_detected"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    SESSION_HIJACK_DETECTED = "session_hijack_detected"
    ACCOUNT_LOCKED = "account_locked"
    UNAUTHORIZED_ACCESS = "unauthorized_access"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditLogEntry(BaseModel):
    """Immutable audit record."""

    id: str
    user_id: str
    user_role: UserRole | None = None
    action: AuditAction
    resource: str
    resource_id: str | None = None
    method: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)
    severity: AuditSeverity = AuditSeverity.INFO
    session_id: str | None = None

    model_config = {"frozen": True}


class SecurityAlertType(str, Enum):
    MULTIPLE_FAILED_LOGINS = "multiple_failed_logins"
    SUSPICIOUS_IP_ACTIVITY = "suspicious_ip_activity"
    UNUSUAL_ACCESS_PATTERN = "unusual_access_pattern"


class SecurityAlert(BaseModel):
    """Correlated alert raised from audit patterns. Mutable until resolved."""

    id: str
    type: SecurityAlertType
    severity: AuditSeverity
    user_id: str | None = None
    ip_address: str | None = None
    description: str
    timestamp: datetime
    resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    related_entries: list[str] = Field(default_factory=list)


class AuditQuery(BaseModel):
    """Filters for audit queries. Unset fields match everything."""

    user_id: str | None = None
    user_role: UserRole | None = None
    action: AuditAction | None = None
    resource: str | None = None
    severity: AuditSeverity | None = None
    ip_address: str | None = None
    success: bool | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class AuditPage(BaseModel):
    entries: list[AuditLogEntry]
    total: int
    has_more: bool


class CountedItem(BaseModel):
    key: str
    count: int


class AuditSummary(BaseModel):
    start: datetime
    end: datetime
    total_entries: int
    successful: int
    failed: int
    security_events: int
    top_actions: list[CountedItem]
    top_users: list[CountedItem]


class AuditStatistics(BaseModel):
    total_entries: int
    entries_last_24h: int
    failure_rate_percent: float
    top_failure_reasons: list[CountedItem]
    active_alerts: int


class TrustedDevice(BaseModel):
    """A browser/device a user asked us to remember."""

    id: str
    user_id: str
    fingerprint: str
    device_name: str
    device_type: str
    ip_address: str
    user_agent: str
    trusted_at: datetime
    last_used: datetime
    expires_at: datetime
    active: bool = True
