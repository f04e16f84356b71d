"""
Security headers middleware.

The server only speaks JSON over HTTP and WebSocket, so the policy is a
locked-down API policy: no framing, no content sniffing, and a CSP that
only allows WebSocket connections back to the same host.
"""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to every HTTP response."""

    STATIC_HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Cache-Control": "no-store",
    }

    def __init__(self, app, environment: str = "development"):
        """
        Args:
            app: ASGI application.
            environment: "production" enables HSTS on HTTPS requests.
        """
        super().__init__(app)
        self.environment = environment

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name, value in self.STATIC_HEADERS.items():
            response.headers[name] = value
        response.headers["Content-Security-Policy"] = self._build_csp(request)

        if self.environment == "production" and self._is_https(request):
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response

    @staticmethod
    def _is_https(request: Request) -> bool:
        forwarded_proto = request.headers.get("X-Forwarded-Proto", "")
        return forwarded_proto == "https" or request.url.scheme == "https"

    def _build_csp(self, request: Request) -> str:
        host = request.headers.get("host", "localhost")
        connect_sources = ["'self'", f"wss://{host}"]
        if self.environment != "production":
            connect_sources.append(f"ws://{host}")

        return "; ".join([
            "default-src 'none'",
            f"connect-src {' '.join(connect_sources)}",
            "frame-ancestors 'none'",
            "base-uri 'none'",
        ])
