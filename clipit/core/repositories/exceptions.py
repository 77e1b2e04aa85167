"""
Repository exceptions.

Collaborator-level errors; the finalizer translates them into upload errors
that name the failing stage.
"""


class RepositoryError(Exception):
    """Base exception for all repository errors."""
    pass


class RecordRepositoryError(RepositoryError):
    """Exception raised by RecordRepository operations."""
    pass


class MembershipLookupError(RepositoryError):
    """Raised when a membership check could not be completed."""
    pass


class ValidationError(RepositoryError):
    """Raised when input validation fails."""
    pass


class ConflictError(RepositoryError):
    """Raised when a conflict occurs (e.g., duplicate creation)."""
    pass
