"""Typed exceptions and failure reasons for auth."""

from enum import Enum


class AuthFailure(str, Enum):
    """
    Why an authentication operation did not succeed.

    Carried on result objects for user-triggerable outcomes; those are never
    raised as exceptions.
    """

    INVALID_FORMAT = "invalid_format"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    LOCKED_OUT = "locked_out"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    INACTIVE = "inactive"
    HIJACK_DETECTED = "hijack_detected"
    MISCONFIGURED = "misconfigured"
    LAST_AUTH_METHOD = "last_auth_method"
    STORE_FAILURE = "store_failure"


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class InvalidTokenError(AuthError):
    """
    Token failed verification.

    Raised for bad signatures, wrong algorithm, issuer or audience, and
    malformed claims. Callers translate it into an invalid result.
    """


class SessionTokenExpiredError(InvalidTokenError):
    """
    Session token signature is valid but its ``exp`` has passed.

    Carries the verified claims so the caller can clean up the session.
    """

    def __init__(self, claims):
        self.claims = claims
        super().__init__("Session token expired")


class DeliveryError(AuthError):
    """Email or SMS could not be handed to the notification gateway."""


class ConfigurationError(AuthError):
    """A required setting (client id, secret) is missing."""
