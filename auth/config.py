"""Authentication configuration."""

import logging
import os

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

INSECURE_DEFAULT_JWT_SECRET = "farmtally-development-secret-change-me"
INSECURE_DEFAULT_DEVICE_SECRET = "farmtally-dev-device-secret"


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for short durations,
    hours or days for longer ones) to make configuration intuitive.
    """

    # Environment
    environment: str = Field(
        default="development",
        description="Deployment environment (development, staging, production)",
    )

    # Signed session tokens
    jwt_secret: str = Field(
        default=INSECURE_DEFAULT_JWT_SECRET,
        description="HMAC secret for session JWTs",
        min_length=16,
    )
    jwt_issuer: str = Field(default="farmtally")
    jwt_audience: str = Field(default="farmtally-users")

    # Session settings
    session_expiry_hours: int = Field(
        default=24,
        description="Session lifetime in hours",
        ge=1,
        le=720,
    )
    session_refresh_threshold_hours: int = Field(
        default=2,
        description="Flag a session for refresh when less than this many hours remain",
        ge=1,
    )

    # Magic link settings
    magic_link_expiry_minutes: int = Field(
        default=60,
        description="How long login and registration links remain valid",
        ge=5,
        le=1440,
    )
    invitation_expiry_days: int = Field(
        default=7,
        description="How long invitation links remain valid",
        ge=1,
        le=30,
    )
    magic_link_token_length: int = Field(default=48, ge=32, le=128)

    # OTP settings
    otp_expiry_minutes: int = Field(default=10, ge=1, le=60)
    otp_max_attempts: int = Field(default=3, ge=1, le=10)

    # Brute-force protection
    max_failed_attempts: int = Field(
        default=5,
        description="Failed attempts before an identifier is locked out",
        ge=2,
        le=50,
    )
    lockout_duration_minutes: int = Field(default=15, ge=1, le=1440)

    # Rate limiting
    max_requests_per_window: int = Field(
        default=10,
        description="Max requests per identifier per window",
        ge=1,
        le=1000,
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration",
        ge=1,
        le=1440,
    )

    # Token format checks
    token_max_age_hours: int = Field(
        default=24,
        description="Oldest acceptable timestamp embedded in a generated token",
        ge=1,
    )
    token_future_skew_seconds: int = Field(default=60, ge=0)

    # Security event buffer
    security_event_buffer: int = Field(default=1000, ge=10)

    # Audit trail
    audit_max_entries: int = Field(default=10000, ge=100)
    audit_retention_days: int = Field(default=90, ge=1)
    failed_login_alert_threshold: int = Field(default=10, ge=1)
    ip_activity_alert_threshold: int = Field(default=50, ge=1)
    data_access_alert_threshold: int = Field(default=100, ge=1)

    # Trusted devices
    device_secret: str = Field(default=INSECURE_DEFAULT_DEVICE_SECRET, min_length=8)
    max_trusted_devices: int = Field(default=5, ge=1, le=50)
    trusted_device_days: int = Field(default=30, ge=1, le=365)

    # Google sign-in
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_certs_url: str = Field(default="https://www.googleapis.com/oauth2/v3/certs")

    # Application
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL for magic link generation",
    )
    app_name: str = Field(
        default="FarmTally",
        description="Application name for emails and SMS",
    )

    @model_validator(mode="after")
    def _require_real_secrets_in_production(self) -> "AuthConfig":
        if self.environment == "production":
            if self.jwt_secret == INSECURE_DEFAULT_JWT_SECRET:
                raise ValueError("JWT_SECRET must be set in production")
            if self.device_secret == INSECURE_DEFAULT_DEVICE_SECRET:
                raise ValueError("DEVICE_SECRET must be set in production")
        return self

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @classmethod
    def from_env(cls, **overrides) -> "AuthConfig":
        """
        Build config from environment variables.

        Reads APP_ENV, JWT_SECRET, DEVICE_SECRET, GOOGLE_CLIENT_ID,
        GOOGLE_CLIENT_SECRET and FRONTEND_URL. Keyword overrides win over
        the environment.

        Raises:
            pydantic.ValidationError: If a production deployment is missing
                its secrets or a value is out of range.
        """
        values: dict = {"environment": os.getenv("APP_ENV", "development")}

        jwt_secret = os.getenv("JWT_SECRET")
        if jwt_secret:
            values["jwt_secret"] = jwt_secret
        elif values["environment"] != "production":
            logger.warning("JWT_SECRET not set, using insecure development default")

        device_secret = os.getenv("DEVICE_SECRET")
        if device_secret:
            values["device_secret"] = device_secret

        for env_name, field in (
            ("GOOGLE_CLIENT_ID", "google_client_id"),
            ("GOOGLE_CLIENT_SECRET", "google_client_secret"),
            ("FRONTEND_URL", "frontend_url"),
        ):
            value = os.getenv(env_name)
            if value:
                values[field] = value

        values.update(overrides)
        return cls(**values)
