"""
Request ID middleware for request tracing.

Reads X-Request-ID from the incoming request (or generates one), binds it
to the logging context for the duration of the request and echoes it back
on the response.
"""

import logging
import uuid
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from logging_config import request_id_var

logger = logging.getLogger(__name__)

MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    HTTP middleware for request ID generation and propagation.

    - Accepts a well-formed X-Request-ID from the client, else generates a UUID
    - Binds it to request.state and the logging context var
    - Echoes it on the response
    """

    def __init__(
        self,
        app,
        header_name: str = "X-Request-ID",
        generator: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize request ID middleware.

        Args:
            app: FastAPI application.
            header_name: Header carrying the request ID.
            generator: Optional custom ID generator.
        """
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator or (lambda: str(uuid.uuid4()))

    def _incoming_id(self, request: Request) -> Optional[str]:
        # Untrusted header: drop anything oversized or non-printable
        value = request.headers.get(self.header_name)
        if not value or len(value) > MAX_REQUEST_ID_LENGTH or not value.isprintable():
            return None
        return value

    async def dispatch(self, request: Request, call_next) -> Response:
        """
        Process a request with a bound request ID.

        Args:
            request: Incoming HTTP request.
            call_next: Next middleware/handler in chain.

        Returns:
            HTTP response carrying the request ID header.
        """
        request_id = self._incoming_id(request) or self.generator()
        request.state.request_id = request_id

        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            request_id_var.reset(token)


def get_request_id(request: Request) -> Optional[str]:
    """
    Get the request ID bound by RequestIDMiddleware.

    Args:
        request: FastAPI request object.

    Returns:
        Request ID string, or None outside the middleware.
    """
    return getattr(request.state, "request_id", None)
