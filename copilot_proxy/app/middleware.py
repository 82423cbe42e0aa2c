"""
HTTP middleware for the Copilot reverse proxy.

- SecurityHeadersMiddleware: Content-Security-Policy and related hardening
  headers on every response
- AccessLogMiddleware: one Apache combined-format line per request
- ErrorResponseMiddleware: unhandled exceptions as 500 {error, message}
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

access_logger = logging.getLogger("copilot_proxy.access")


# ============================================================================
# Security Headers
# ============================================================================

CSP_DIRECTIVES: Dict[str, Optional[str]] = {
    "default-src": "'self'",
    "script-src": "'self' 'unsafe-inline'",
    "script-src-attr": "'unsafe-inline'",
    "style-src": "'self' 'unsafe-inline'",
    "img-src": "'self' data: https:",
    "connect-src": "'self' ws: wss:",
    "font-src": "'self' https: data:",
    "object-src": "'none'",
    "media-src": "'self'",
    "frame-src": "'none'",
    "base-uri": "'self'",
    "form-action": "'self'",
    "frame-ancestors": "'self'",
    "upgrade-insecure-requests": None,
}


def build_content_security_policy(directives: Dict[str, Optional[str]]) -> str:
    """Render directives as a CSP header value; a None value emits a bare directive."""
    return "; ".join(
        name if value is None else f"{name} {value}"
        for name, value in directives.items()
    )


SECURITY_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": build_content_security_policy(CSP_DIRECTIVES),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add default security headers to every response.

    Headers the response already carries win, so a proxied upstream response
    keeps whatever policy the upstream chose to send.
    """

    def __init__(self, app, headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__(app)
        self.headers = dict(SECURITY_HEADERS if headers is None else headers)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        return response


# ============================================================================
# Access Log
# ============================================================================

def format_access_line(request: Request, response: Response, when: datetime) -> str:
    """
    Format a request in Apache combined log format.

    Example:
        127.0.0.1 - - [10/Oct/2024:13:55:36 +0000] "POST /chat HTTP/1.1" 200 - "-" "curl/8.4.0"
    """
    remote = request.client.host if request.client else "-"
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    http_version = request.scope.get("http_version", "1.1")
    length = response.headers.get("content-length", "-")
    referer = request.headers.get("referer", "-")
    user_agent = request.headers.get("user-agent", "-")
    return (
        f'{remote} - - [{when.strftime("%d/%b/%Y:%H:%M:%S %z")}] '
        f'"{request.method} {target} HTTP/{http_version}" {response.status_code} {length} '
        f'"{referer}" "{user_agent}"'
    )


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log one combined-format line per request once response headers are known."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = datetime.now(timezone.utc)
        response = await call_next(request)
        access_logger.info(format_access_line(request, response, started))
        return response


# ============================================================================
# Unhandled Errors
# ============================================================================

ErrorHandler = Callable[[Request, Exception], Awaitable[Response]]


class ErrorResponseMiddleware(BaseHTTPMiddleware):
    """
    Turn exceptions raised before a response starts into the handler's response.

    Installed innermost, so error responses still pass through the security
    header, CORS and access log middleware.
    """

    def __init__(self, app, handler: ErrorHandler) -> None:
        super().__init__(app)
        self.handler = handler

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return await self.handler(request, exc)
