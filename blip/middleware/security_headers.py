"""
Security Headers Middleware

Adds the standard security headers to every JSON API response:
- X-Content-Type-Options, X-Frame-Options, Referrer-Policy
- Content-Security-Policy locked down for a JSON API
- Cross-Origin-Opener-Policy / Cross-Origin-Resource-Policy
- Strict-Transport-Security when enabled (HTTPS deployments only)
"""

from typing import Optional, Dict
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

logger = structlog.get_logger(__name__)

# Responses are JSON; nothing should be loaded or framed
API_CONTENT_SECURITY_POLICY = "default-src 'none'; frame-ancestors 'none'"

# Swagger UI needs its CDN assets
DOCS_CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "img-src 'self' data: https://fastapi.tiangolo.com; "
    "frame-ancestors 'none'"
)


def build_security_headers(
    enable_hsts: bool = False,
    hsts_max_age: int = 15552000,
    extra_headers: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Return the header set applied to API responses."""
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "SAMEORIGIN",
        "Referrer-Policy": "no-referrer",
        "Content-Security-Policy": API_CONTENT_SECURITY_POLICY,
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "X-DNS-Prefetch-Control": "off",
    }
    if enable_hsts:
        headers["Strict-Transport-Security"] = f"max-age={hsts_max_age}; includeSubDomains"
    if extra_headers:
        headers.update(extra_headers)
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to all HTTP responses."""

    DOCS_PATHS = ("/docs", "/redoc")

    def __init__(
        self,
        app,
        enable_hsts: bool = False,
        hsts_max_age: int = 15552000,
        extra_headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(app)
        self.headers = build_security_headers(enable_hsts, hsts_max_age, extra_headers)
        logger.info(
            "security_headers_middleware_initialized",
            headers=list(self.headers.keys()),
            hsts_enabled=enable_hsts,
        )

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for header_name, header_value in self.headers.items():
            response.headers[header_name] = header_value

        if request.url.path.startswith(self.DOCS_PATHS):
            response.headers["Content-Security-Policy"] = DOCS_CONTENT_SECURITY_POLICY

        # Powered-by style headers leak the stack
        if "server" in response.headers:
            del response.headers["server"]

        return response
