"""
Request ID middleware for tracing room API calls.

Every HTTP request gets an id, taken from the X-Request-ID header or
generated. The id is echoed back on the response and attached to all log
records written while the request is handled.
"""

import logging
import uuid
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from logging_config import request_id_var

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """HTTP middleware that assigns and propagates request ids."""

    def __init__(
        self,
        app,
        header_name: str = "X-Request-ID",
        generator: Optional[Callable[[], str]] = None,
    ):
        """
        Args:
            app: ASGI application.
            header_name: Header carrying the id.
            generator: Id factory; random UUIDs by default.
        """
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator or (lambda: uuid.uuid4().hex)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(self.header_name) or self.generator()
        request.state.request_id = request_id

        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            logger.debug(f"{request.method} {request.url.path} -> {response.status_code}")
            return response
        finally:
            request_id_var.reset(token)


def get_request_id(request: Request) -> Optional[str]:
    """Request id assigned by RequestIDMiddleware, if any."""
    return getattr(request.state, "request_id", None)
