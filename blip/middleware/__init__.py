"""
Middleware package for FastAPI application
"""

from .authentication import AnonymousUser, AuthenticatedUser, AuthenticationMiddleware, require_auth
from .security_headers import SecurityHeadersMiddleware, build_security_headers

__all__ = [
    'AnonymousUser',
    'AuthenticatedUser',
    'AuthenticationMiddleware',
    'require_auth',
    'SecurityHeadersMiddleware',
    'build_security_headers',
]
