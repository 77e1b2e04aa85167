"""
Middleware stack for the ClipIt upload service.

Provides:
- Request ID injection
- Rate limiting
- Request/response logging
- Error sanitization
"""

from clipit.middleware.request_id import RequestIDMiddleware
from clipit.middleware.rate_limit import RateLimitMiddleware
from clipit.middleware.logging import RequestLoggingMiddleware
from clipit.middleware.error_sanitization import ErrorSanitizationMiddleware

__all__ = [
    "RequestIDMiddleware",
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
    "ErrorSanitizationMiddleware",
]
