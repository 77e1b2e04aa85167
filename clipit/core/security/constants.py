"""
Security Constants

Centralized constants for security module.
"""

from clipit.config import (
    CHUNK_RATE_LIMIT_REQUESTS,
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW,
)

# Maximum lengths for user inputs
MAX_ID_LENGTH = 100
MAX_FILE_NAME_LENGTH = 255
MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 5000

# Rate limiting defaults
DEFAULT_RATE_LIMIT = RATE_LIMIT_REQUESTS  # requests per window
DEFAULT_RATE_WINDOW = RATE_LIMIT_WINDOW  # seconds
CHUNK_RATE_LIMIT = CHUNK_RATE_LIMIT_REQUESTS
CHUNK_UPLOAD_PATH = "/api/clips/chunk-upload"

# Request ID header
REQUEST_ID_HEADER = "X-Request-ID"

# Set on error responses that already carry a structured, client-safe body
ERROR_KIND_HEADER = "X-Error-Kind"
