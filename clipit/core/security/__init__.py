"""
Security module for the ClipIt upload service.

Provides:
- Rate limiting (in-memory)
- Input validation and sanitization
- Request ID tracking
- Security event logging
"""

from clipit.core.security.constants import (
    CHUNK_UPLOAD_PATH,
    DEFAULT_RATE_LIMIT,
    DEFAULT_RATE_WINDOW,
    ERROR_KIND_HEADER,
    MAX_DESCRIPTION_LENGTH,
    MAX_FILE_NAME_LENGTH,
    MAX_ID_LENGTH,
    MAX_TITLE_LENGTH,
    REQUEST_ID_HEADER,
)
from clipit.core.security.rate_limiting import (
    RateLimiter,
    get_api_rate_limiter,
    get_chunk_rate_limiter,
    limiter_for_path,
)
from clipit.core.security.validation import (
    ValidationError,
    sanitize_text,
    validate_collection_id,
    validate_description,
    validate_file_name,
    validate_mime_type,
    validate_session_id,
    validate_title,
)
from clipit.core.security.utils import (
    generate_request_id,
    get_client_ip,
    get_request_id,
    log_security_event,
    mask_sensitive_data,
)

__all__ = [
    # Constants
    "CHUNK_UPLOAD_PATH",
    "DEFAULT_RATE_LIMIT",
    "DEFAULT_RATE_WINDOW",
    "ERROR_KIND_HEADER",
    "MAX_DESCRIPTION_LENGTH",
    "MAX_FILE_NAME_LENGTH",
    "MAX_ID_LENGTH",
    "MAX_TITLE_LENGTH",
    "REQUEST_ID_HEADER",
    # Rate limiting
    "RateLimiter",
    "get_api_rate_limiter",
    "get_chunk_rate_limiter",
    "limiter_for_path",
    # Validation
    "ValidationError",
    "sanitize_text",
    "validate_collection_id",
    "validate_description",
    "validate_file_name",
    "validate_mime_type",
    "validate_session_id",
    "validate_title",
    # Utils
    "generate_request_id",
    "get_client_ip",
    "get_request_id",
    "log_security_event",
    "mask_sensitive_data",
]
