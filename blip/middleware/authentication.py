"""
JWT Authentication Middleware

Validates bearer tokens on incoming requests and attaches the
authenticated user to the request state. Every route outside the public
set requires a valid token.
"""

from typing import Optional, Set
from dataclasses import dataclass

from fastapi import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse
import structlog

from blip.utils.auth import (
    JWTAuthenticator,
    TokenExpiredError,
    TokenInvalidError,
    extract_token_from_header,
    get_authenticator,
)
from blip.utils.errors import ErrorCode, create_error_response

logger = structlog.get_logger(__name__)


@dataclass
class AuthenticatedUser:
    """
    Authenticated user extracted from the token.
    Attached to request.state.auth_user
    """
    user_id: str
    session_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass
class AnonymousUser:
    """Represents an unauthenticated user"""
    user_id: str = "anonymous"
    session_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return False


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Validates JWT tokens and attaches user info to requests."""

    # Paths that don't require authentication
    PUBLIC_PATHS: Set[str] = {
        '/',
        '/health',
        '/health/ready',
        '/metrics',
        '/docs',
        '/redoc',
        '/openapi.json',
    }

    PUBLIC_PATH_PREFIXES: tuple = (
        '/docs',
    )

    def __init__(self, app, authenticator: Optional[JWTAuthenticator] = None):
        """
        Args:
            app: The ASGI application
            authenticator: Optional JWTAuthenticator (uses the global one if not provided)
        """
        super().__init__(app)
        self._authenticator = authenticator

    @property
    def authenticator(self) -> JWTAuthenticator:
        if self._authenticator:
            return self._authenticator
        return get_authenticator()

    def _is_public_path(self, path: str) -> bool:
        if path in self.PUBLIC_PATHS:
            return True
        return any(path.startswith(prefix) for prefix in self.PUBLIC_PATH_PREFIXES)

    async def dispatch(self, request: Request, call_next) -> Response:
        """Process authentication for each request"""
        path = request.url.path

        # CORS preflight carries no credentials
        if request.method == "OPTIONS" or self._is_public_path(path):
            request.state.auth_user = AnonymousUser()
            return await call_next(request)

        token = extract_token_from_header(request.headers.get("Authorization"))
        if not token:
            logger.debug("authentication_required", path=path)
            return self._unauthorized_response("Authentication required")

        try:
            payload = self.authenticator.validate_token(token)
        except TokenExpiredError:
            logger.debug("token_expired", path=path)
            return self._unauthorized_response("Token has expired")
        except TokenInvalidError as e:
            logger.warning(
                "invalid_token",
                path=path,
                error=str(e),
                client_ip=request.client.host if request.client else "unknown"
            )
            return self._unauthorized_response("Invalid authentication token")

        request.state.auth_user = AuthenticatedUser(
            user_id=payload.user_id,
            session_id=payload.session_id,
        )
        return await call_next(request)

    def _unauthorized_response(self, message: str) -> JSONResponse:
        """Create a 401 Unauthorized response"""
        return JSONResponse(
            status_code=401,
            content=create_error_response(ErrorCode.UNAUTHORIZED, message),
            headers={"WWW-Authenticate": "Bearer"}
        )


def require_auth(request: Request) -> AuthenticatedUser:
    """
    Dependency function to require authentication in route handlers.

    Usage:
        @router.get("/protected")
        async def protected_route(user: AuthenticatedUser = Depends(require_auth)):
            return {"user": user.user_id}
    """
    auth_user = getattr(request.state, 'auth_user', None)

    if not auth_user or not auth_user.is_authenticated:
        raise HTTPException(
            status_code=401,
            detail=create_error_response(ErrorCode.UNAUTHORIZED),
            headers={"WWW-Authenticate": "Bearer"}
        )

    return auth_user
