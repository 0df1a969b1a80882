"""Domain errors raised by the registry, ledger and resolution pipeline.

Routes never catch these one by one; ``qrlinks.main`` registers a handler per
class that maps it to a status code.
"""

__all__ = [
    "QRLinksError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "UnauthorizedError",
]


class QRLinksError(Exception):
    """Base exception for all application-specific errors."""

    error_code = "app:qrlinks_error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(QRLinksError, ValueError):
    """Raised when a URL, slug, name or design value is rejected.

    Subclasses ``ValueError`` so pydantic field validators can raise it
    directly and have it reported as a 422.
    """

    error_code = "request:validation_error"
    status_code = 422


class NotFoundError(QRLinksError):
    """Raised for unknown, archived or foreign links.

    The message is always the same so callers cannot discover slugs owned by
    someone else.
    """

    error_code = "request:not_found"
    status_code = 404

    def __init__(self, message: str = "Link not found") -> None:
        super().__init__(message)


class ConflictError(QRLinksError):
    """Raised when a slug is taken or a retarget keeps losing a version race."""

    error_code = "request:conflict"
    status_code = 409


class UnauthorizedError(QRLinksError):
    """Raised when no owner identity accompanies an owner-scoped request."""

    error_code = "auth:unauthorized"
    status_code = 401

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(message)
