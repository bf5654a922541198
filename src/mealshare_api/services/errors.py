"""Domain errors surfaced to API callers as ``{"error": message}`` payloads."""

from __future__ import annotations


class ServiceError(RuntimeError):
    """Base class for user-visible service failures."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(ServiceError):
    status_code = 400


class InvalidFulfillmentModeError(InvalidInputError):
    """Raised when a fulfillment mode value is not one of the known modes."""


class PreconditionFailedError(ServiceError):
    """User-correctable precondition, e.g. code fulfillment without a linked account."""

    status_code = 400


class InvalidOperationError(ServiceError):
    status_code = 400


class InsufficientBalanceError(ServiceError):
    status_code = 400


class UnauthorizedError(ServiceError):
    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class RequestConflictError(ServiceError):
    """Raised when a request already left the state an operation requires."""

    status_code = 409


class CredentialLinkError(ServiceError):
    """Raised when linking a GET account fails on the external side."""

    status_code = 500


__all__ = [
    "CredentialLinkError",
    "ForbiddenError",
    "InsufficientBalanceError",
    "InvalidFulfillmentModeError",
    "InvalidInputError",
    "InvalidOperationError",
    "NotFoundError",
    "PreconditionFailedError",
    "RequestConflictError",
    "ServiceError",
    "UnauthorizedError",
]
