"""Domain exceptions raised by services.

Services stay free of HTTP concerns; `main` registers handlers that turn
these into JSON error responses. Plain `ValueError` is treated as a 400
validation failure.
"""


class NotFoundError(LookupError):
    """Entity does not exist or is not visible to the caller (404)."""


class ForbiddenError(PermissionError):
    """Caller is a member but their role does not allow the action (403)."""


class ConflictError(Exception):
    """Request conflicts with existing data (409).

    `error_type` is a stable machine-readable code clients can switch on.
    """

    def __init__(self, message: str, error_type: str = "CONFLICT"):
        super().__init__(message)
        self.error_type = error_type


class ImportValidationError(ValueError):
    """Bulk import rejected; `errors` holds one entry per failing row and field."""

    def __init__(self, errors: list, message: str = "Validation failed"):
        super().__init__(message)
        self.errors = errors
