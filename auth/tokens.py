"""
Signed session tokens.

Session JWTs are HS256 only, with pinned issuer and audience. Library
errors are translated into auth.exceptions here and nowhere else.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

import jwt
from pydantic import ValidationError

from auth.config import AuthConfig
from auth.exceptions import InvalidTokenError, SessionTokenExpiredError
from auth.types import Session, SessionClaims, UserRole
from utils.timezone import now_utc, to_epoch_seconds

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sessionId", "userId", "role", "authMethod"]


class SessionTokenCodec:
    """
    Encode and verify session JWTs.

    Expiry is checked against the injected clock rather than by PyJWT so
    that an expired-but-authentic token still yields its claims (via
    SessionTokenExpiredError) for cleanup and revocation.
    """

    ALGORITHM = "HS256"

    def __init__(self, config: AuthConfig, clock: Callable[[], datetime] = now_utc):
        self._secret = config.jwt_secret
        self._issuer = config.jwt_issuer
        self._audience = config.jwt_audience
        self._skew = timedelta(seconds=config.token_future_skew_seconds)
        self._clock = clock

    def encode(self, session: Session, role: UserRole) -> str:
        """Sign a token for ``session``; ``exp`` matches the session expiry."""
        claims = SessionClaims(
            session_id=session.id,
            user_id=session.user_id,
            role=role,
            auth_method=session.method,
            iat=to_epoch_seconds(self._clock()),
            exp=to_epoch_seconds(session.expires_at),
        )
        payload = claims.model_dump(mode="json", by_alias=True)
        payload["iss"] = self._issuer
        payload["aud"] = self._audience
        return jwt.encode(payload, self._secret, algorithm=self.ALGORITHM)

    def decode(self, token: str, allow_expired: bool = False) -> SessionClaims:
        """
        Verify signature, algorithm, issuer and audience, then expiry.

        Args:
            token: Compact JWT.
            allow_expired: Return claims of an authentic token even after
                ``exp`` (used for revocation).

        Raises:
            SessionTokenExpiredError: Authentic token past ``exp``.
            InvalidTokenError: Anything else wrong with the token.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"Session token rejected: {e}")
            raise InvalidTokenError(f"Invalid session token: {e}") from e

        try:
            claims = SessionClaims.model_validate(payload)
        except ValidationError as e:
            logger.warning("Session token carried malformed claims")
            raise InvalidTokenError("Malformed session token claims") from e

        now = self._clock()
        if claims.iat > to_epoch_seconds(now + self._skew):
            raise InvalidTokenError("Session token issued in the future")

        if not allow_expired and to_epoch_seconds(now) >= claims.exp:
            raise SessionTokenExpiredError(claims)

        return claims
