# Overview: Typed failures raised by the core services and mapped to HTTP responses by the routes.

from __future__ import annotations


class CoreError(Exception):
    """Base class for every failure the core reports to its callers."""
    code = "CORE_ERROR"
    http_status = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(CoreError):
    """Malformed or contradictory input."""
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"


class NotFound(CoreError):
    code = "NOT_FOUND"
    http_status = 404


class InsufficientStock(CoreError):
    """The operation would drive available stock below zero."""
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class StaleState(CoreError):
    """Compare-and-swap mismatch; re-read and retry."""
    code = "STALE_STATE"
    http_status = 409


class InvalidState(CoreError):
    """The entity is in a state that does not permit the requested change."""
    code = "INVALID_STATE"
    http_status = 409


class AlreadyCompleted(InvalidState):
    code = "ALREADY_COMPLETED"


class AlreadyFinalized(InvalidState):
    code = "ALREADY_FINALIZED"


class StorageTimeout(CoreError):
    """A storage call exceeded its bound. Not retried by the core."""
    code = "TIMEOUT"
    http_status = 503
