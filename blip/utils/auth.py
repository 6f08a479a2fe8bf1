"""
JWT Authentication Utilities

Session tokens are issued by the external identity provider; this module
only verifies them. Uses PyJWT for signature, expiry and issuer checks.
"""

from datetime import datetime, timezone
from typing import Optional, List
from dataclasses import dataclass

import jwt
import structlog

logger = structlog.get_logger(__name__)


class AuthError(Exception):
    """Base authentication error"""
    pass


class TokenExpiredError(AuthError):
    """Token has expired"""
    pass


class TokenInvalidError(AuthError):
    """Token is invalid or malformed"""
    pass


class TokenMissingError(AuthError):
    """Token is missing from request"""
    pass


@dataclass
class TokenPayload:
    """Decoded token payload"""
    user_id: str
    issued_at: datetime
    expires_at: datetime
    session_id: Optional[str] = None

    def is_expired(self) -> bool:
        """Check if token has expired"""
        return datetime.now(timezone.utc) > self.expires_at


def _timestamp(value, default: datetime) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return default


class JWTAuthenticator:
    """
    Verifies bearer tokens issued by the identity provider.

    The ``sub`` claim is the identity provider's user id and is the only
    required claim.
    """

    def __init__(
        self,
        key: str,
        algorithms: Optional[List[str]] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        leeway_seconds: int = 0,
    ):
        """
        Initialize the JWT authenticator.

        Args:
            key: Shared secret (HS*) or PEM public key (RS*/ES*)
            algorithms: Accepted signing algorithms
            issuer: Expected ``iss`` claim, not checked when None
            audience: Expected ``aud`` claim, not checked when None
            leeway_seconds: Clock skew tolerated on exp/nbf/iat
        """
        if not key:
            raise ValueError("JWT verification key cannot be empty")
        self.key = key
        self.algorithms = algorithms or ["HS256"]
        self.issuer = issuer
        self.audience = audience
        self.leeway_seconds = leeway_seconds

    def validate_token(self, token: str) -> TokenPayload:
        """
        Validate and decode a JWT token.

        Args:
            token: The JWT token to validate

        Returns:
            Decoded TokenPayload

        Raises:
            TokenMissingError: If no token was given
            TokenExpiredError: If token has expired
            TokenInvalidError: If token is invalid or malformed
        """
        if not token:
            raise TokenMissingError("Token is required")

        options = {"require": ["sub", "exp"], "verify_aud": self.audience is not None}
        try:
            payload = jwt.decode(
                token,
                self.key,
                algorithms=self.algorithms,
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway_seconds,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            logger.debug("token_expired")
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidIssuerError:
            logger.warning("token_invalid_issuer")
            raise TokenInvalidError("Invalid token issuer")
        except jwt.InvalidTokenError as e:
            logger.warning("token_invalid", error=str(e))
            raise TokenInvalidError(f"Invalid token: {str(e)}")

        user_id = payload.get("sub")
        if not user_id or not isinstance(user_id, str):
            raise TokenInvalidError("Token missing required claims")

        now = datetime.now(timezone.utc)
        return TokenPayload(
            user_id=user_id,
            issued_at=_timestamp(payload.get("iat"), now),
            expires_at=_timestamp(payload.get("exp"), now),
            session_id=payload.get("sid"),
        )


def extract_token_from_header(authorization_header: Optional[str]) -> Optional[str]:
    """
    Extract JWT token from Authorization header.

    Expected format: "Bearer <token>"
    """
    if not authorization_header:
        return None

    parts = authorization_header.split()

    if len(parts) != 2:
        return None

    scheme, token = parts

    if scheme.lower() != "bearer":
        return None

    return token


# Singleton authenticator instance (initialized by app startup)
_authenticator: Optional[JWTAuthenticator] = None


def get_authenticator() -> JWTAuthenticator:
    """
    Get the global authenticator instance.

    Raises:
        RuntimeError: If authenticator not initialized
    """
    if _authenticator is None:
        raise RuntimeError(
            "Authenticator not initialized. Call initialize_authenticator() first."
        )
    return _authenticator


def initialize_authenticator(
    key: str,
    algorithms: Optional[List[str]] = None,
    issuer: Optional[str] = None,
    audience: Optional[str] = None,
    leeway_seconds: int = 0,
) -> JWTAuthenticator:
    """Initialize the global authenticator instance."""
    global _authenticator
    _authenticator = JWTAuthenticator(
        key=key,
        algorithms=algorithms,
        issuer=issuer,
        audience=audience,
        leeway_seconds=leeway_seconds,
    )
    logger.info("jwt_authenticator_initialized", algorithms=_authenticator.algorithms)
    return _authenticator
