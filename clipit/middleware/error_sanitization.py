"""
Error Sanitization Middleware

Sanitizes error responses to prevent information leakage.
"""

import json
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from clipit.config import logger
from clipit.core.security.constants import ERROR_KIND_HEADER


def _internal_error(request_id: str) -> Response:
    return Response(
        content=json.dumps({"detail": "Internal server error", "kind": "internal", "request_id": request_id}),
        status_code=500,
        media_type="application/json",
    )


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Sanitizes error responses to prevent information leakage.

    In production:
    - Replaces unexpected 5xx bodies with a generic message
    - Leaves upload errors (marked with ``X-Error-Kind``) untouched, since
      their body is built for clients and names the failing stage
    - Logs full errors server-side
    """

    def __init__(self, app: ASGIApp, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = getattr(request.state, "request_id", "unknown")
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("Unhandled exception in request %s: %s", request_id, exc)
            if self.debug:
                raise
            return _internal_error(request_id)

        if (
            response.status_code >= 500
            and not self.debug
            and ERROR_KIND_HEADER not in response.headers
        ):
            return _internal_error(request_id)

        return response
