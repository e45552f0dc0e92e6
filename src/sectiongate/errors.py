"""Error taxonomy for section authorization."""

from __future__ import annotations


class SectionGateError(Exception):
    """Base class for sectiongate errors."""

    code = "error"


class NotFoundError(SectionGateError):
    """Raised when a section or membership required by an operation is absent."""

    code = "not_found"


class ConflictError(SectionGateError):
    """Raised when an operation conflicts with the current state, e.g. deleting a non-empty section."""

    code = "conflict"


class AccessDeniedError(SectionGateError):
    """Raised when the caller lacks the required permission."""

    code = "forbidden"
