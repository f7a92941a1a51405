from typing import Any


class PortalError(Exception):
    """Base class for domain failures rendered into the API error envelope."""

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PortalError):
    status_code = 422
    code = "validation_error"


class AuthorizationError(PortalError):
    status_code = 403
    code = "forbidden"


class NotFoundError(PortalError):
    status_code = 404
    code = "not_found"


class ConflictError(PortalError):
    status_code = 409
    code = "conflict"


class ExpiredError(PortalError):
    status_code = 410
    code = "expired"


class ExternalServiceError(PortalError):
    """A dependency such as object storage failed or timed out. Safe to retry."""

    status_code = 503
    code = "service_unavailable"
    retryable = True
