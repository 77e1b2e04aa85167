"""
Input Validation Module

Validates and sanitizes identifiers and free text supplied by upload clients.
Identifiers end up inside object-storage keys, so they are restricted to a
safe alphabet.
"""

import re
from pathlib import PurePosixPath
from typing import Optional

from clipit.core.security.constants import (
    MAX_DESCRIPTION_LENGTH,
    MAX_FILE_NAME_LENGTH,
    MAX_ID_LENGTH,
    MAX_TITLE_LENGTH,
)

_SAFE_ID = re.compile(r"^[a-zA-Z0-9_-]+$")
_MIME_TYPE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9!#$&^_.+-]*/[a-zA-Z0-9][a-zA-Z0-9!#$&^_.+-]*$")


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


def _validate_identifier(value: str, field: str, label: str) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{label} is required", field=field)

    value = value.strip()

    if not _SAFE_ID.match(value):
        raise ValidationError(f"Invalid {label.lower()} format", field=field)

    if len(value) > MAX_ID_LENGTH:
        raise ValidationError(f"{label} too long", field=field)

    return value


def validate_session_id(session_id: str) -> str:
    """Validate upload session ID (prevents path traversal in chunk keys)."""
    return _validate_identifier(session_id, "session_id", "Session ID")


def validate_collection_id(collection_id: str) -> str:
    """Validate a server/collection ID."""
    return _validate_identifier(collection_id, "collection_id", "Collection ID")


def validate_file_name(file_name: str) -> str:
    """
    Validate a client-declared file name.

    Only the final path component is kept; the name is never used as a
    storage key, only recorded and used to derive the extension.
    """
    if not file_name or not isinstance(file_name, str):
        raise ValidationError("File name is required", field="file_name")

    name = PurePosixPath(file_name.replace("\\", "/")).name
    name = sanitize_text(name, max_length=MAX_FILE_NAME_LENGTH)

    if not name or name in {".", ".."}:
        raise ValidationError("Invalid file name", field="file_name")

    return name


def validate_mime_type(mime_type: str) -> str:
    if not mime_type or not isinstance(mime_type, str):
        raise ValidationError("MIME type is required", field="mime_type")

    mime_type = mime_type.strip().lower()
    if not _MIME_TYPE.match(mime_type):
        raise ValidationError("Invalid MIME type", field="mime_type")

    return mime_type


def validate_title(title: Optional[str]) -> str:
    return sanitize_text(title or "", max_length=MAX_TITLE_LENGTH)


def validate_description(description: Optional[str]) -> str:
    return sanitize_text(description or "", max_length=MAX_DESCRIPTION_LENGTH)


def sanitize_text(text: str, max_length: int = 1000) -> str:
    """
    Sanitize text input by removing potentially dangerous characters.

    Preserves most Unicode for internationalization.
    """
    if not text:
        return ""

    # Remove null bytes and control characters (except newlines/tabs)
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)

    if len(text) > max_length:
        text = text[:max_length]

    return text.strip()
