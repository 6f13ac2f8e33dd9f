"""
Middleware components for the Pyatikantrop server.

Provides:
- RequestIDMiddleware: Request tracing with X-Request-ID
"""

from .request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
]
