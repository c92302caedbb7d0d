# Overview: Service-layer error taxonomy shared by services, routes and the CLI.

"""
Every business-rule failure raised by a service is a ServiceError.

Routes turn a ServiceError into a ``{success: false, message, error, details}``
envelope using ``http_status``; anything that is not a ServiceError is an
internal failure and is logged before a generic 500 is returned.
"""


class ServiceError(Exception):
    """Base class for expected, caller-facing failures."""

    code = "SERVICE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "message": self.message,
            "error": self.code,
            "details": self.details,
        }


class ValidationError(ServiceError):
    """Missing or malformed input; rejected before any write."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    http_status = 404


class ConflictError(ServiceError):
    """Business rule conflict (e.g. deleting a counterparty with a balance)."""
    code = "CONFLICT"
    http_status = 409


class InsufficientStockError(ServiceError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class CreditNotAllowedForWalkInError(ServiceError):
    code = "CREDIT_NOT_ALLOWED_FOR_WALK_IN"
    http_status = 409


class UnknownAccountError(ServiceError):
    code = "UNKNOWN_ACCOUNT"
    http_status = 400


class AlreadyCancelledError(ServiceError):
    code = "ALREADY_CANCELLED"
    http_status = 409


class AlreadyConvertedError(ServiceError):
    code = "ALREADY_CONVERTED"
    http_status = 409


class QuotationExpiredError(ServiceError):
    code = "QUOTATION_EXPIRED"
    http_status = 409


class BusyError(ServiceError):
    """A bounded lock could not be acquired in time."""
    code = "BUSY"
    http_status = 503
