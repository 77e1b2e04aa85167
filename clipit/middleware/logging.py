"""
Request Logging Middleware

Logs request/response information for observability.
"""

import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from clipit.config import logger
from clipit.core.security.constants import ERROR_KIND_HEADER
from clipit.core.security.utils import get_client_ip


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs request/response information for observability.

    Logs:
    - Request method, path, client IP
    - Response status code and upload error kind, if any
    - Request duration
    - Request ID for correlation
    """

    def __init__(self, app: ASGIApp, exclude_paths: Optional[set] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or {"/health", "/healthz", "/ready"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip logging for health checks
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        start_time = time.time()
        request_id = getattr(request.state, "request_id", "unknown")

        logger.info(
            "Request: %s %s | client=%s | request_id=%s",
            request.method,
            request.url.path,
            get_client_ip(request),
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Request failed: %s %s | error=%s | duration=%.2fms | request_id=%s",
                request.method,
                request.url.path,
                str(exc),
                duration_ms,
                request_id,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        error_kind = response.headers.get(ERROR_KIND_HEADER)
        logger.info(
            "Response: %s %s | status=%d%s | duration=%.2fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            f" | kind={error_kind}" if error_kind else "",
            duration_ms,
            request_id,
        )
        return response
