"""Error taxonomy shared by the search and traceability services.

Every error carries a stable ``code`` that the HTTP layer maps to a status:

    invalid-argument   malformed or missing caller input, never retried
    not-found          requested root entity absent
    permission-denied  policy denial on the start node
    internal           store or connectivity failure, caller may retry
    deadline-exceeded  request timed out, partial results discarded
"""


class MarketplaceError(Exception):
    """Base exception for discovery and provenance operations."""

    code = "internal"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidArgumentError(MarketplaceError):
    """Raised when caller input is malformed or missing."""

    code = "invalid-argument"


class NotFoundError(MarketplaceError):
    """Raised when the requested start record does not exist."""

    code = "not-found"


class PermissionDeniedError(MarketplaceError):
    """Raised when the actor is not authorized on the start record."""

    code = "permission-denied"

    def __init__(self, message: str = "You do not have permission to view this record."):
        super().__init__(message)


class InternalError(MarketplaceError):
    """Raised when the document store fails."""

    code = "internal"


class DeadlineExceededError(MarketplaceError):
    """Raised when a request does not finish within its timeout."""

    code = "deadline-exceeded"


class StoreError(Exception):
    """Raised by document store clients when the backing database fails."""
    pass
