"""
Security Utilities

Request ID tracking, masking, and security event logging.
"""

import re
import secrets
from typing import Any, Dict, Iterable, Optional

from fastapi import Request

from clipit.config import TRUSTED_PROXIES, logger
from clipit.core.security.constants import REQUEST_ID_HEADER


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return secrets.token_hex(16)


def get_request_id(request: Request) -> str:
    """Get or generate request ID from request."""
    request_id = request.headers.get(REQUEST_ID_HEADER)
    if request_id and len(request_id) <= 64 and re.match(r"^[a-zA-Z0-9_-]+$", request_id):
        return request_id
    return generate_request_id()


def get_client_ip(request: Request, trusted_proxies: Iterable[str] = TRUSTED_PROXIES) -> str:
    """
    Client address for logging and rate limiting.

    ``X-Forwarded-For`` is only honoured when the direct peer is a trusted
    proxy; the client is then the nearest hop that is not itself a proxy.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = set(trusted_proxies)
    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded or peer not in trusted:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def mask_sensitive_data(
    data: Dict[str, Any],
    sensitive_keys: frozenset = frozenset({"token", "password", "secret", "authorization"})
) -> Dict[str, Any]:
    """
    Mask sensitive data in dictionaries for safe logging.
    """
    masked = {}
    for key, value in data.items():
        key_lower = key.lower()
        if any(s in key_lower for s in sensitive_keys):
            masked[key] = "[REDACTED]"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value, sensitive_keys)
        else:
            masked[key] = value
    return masked


def log_security_event(
    event_type: str,
    request: Optional[Request] = None,
    user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    level: str = "warning"
) -> None:
    """
    Log a security-relevant event with structured data.
    """
    log_data: Dict[str, Any] = {
        "security_event": event_type,
        "user_id": user_id,
    }

    if request:
        log_data["client_ip"] = get_client_ip(request)
        log_data["path"] = str(request.url.path)
        log_data["method"] = request.method
        log_data["request_id"] = getattr(request.state, "request_id", None) or get_request_id(request)

    if details:
        log_data["details"] = mask_sensitive_data(details)

    log_func = getattr(logger, level, logger.warning)
    log_func("Security event: %s | %s", event_type, log_data)
