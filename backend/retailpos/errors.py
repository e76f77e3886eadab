# Overview: Domain error taxonomy for the sale and inventory engine.

"""
Engine errors (authoritative)

Every failure that leaves a public engine operation is one of these kinds.
Raw SQLAlchemy exceptions are translated at the repository / engine boundary
and never reach callers.

    ValidationError          400  malformed input, mismatched payment total
    InsufficientStock        400  OUT would drive stock below zero
    PermissionDenied         403  acting user lacks elevated privileges
    NotFoundError            404  entity missing, soft-deleted, or in another org
    InvalidStateTransition   409  cancelled sale, double cancel, last item removal
    ConflictError            409  unique constraint violations
    InternalError            500  store unavailable, timeouts, anything unexpected
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    CONFLICT = "CONFLICT"
    INTERNAL = "INTERNAL"


class EngineError(Exception):
    """Base class for domain errors surfaced in the result envelope."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status: int = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(EngineError):
    """400-level input problem."""

    kind = ErrorKind.VALIDATION
    status = 400


class InvalidQuantity(ValidationError):
    """Non-positive quantity for an IN/OUT movement, or negative adjustment target."""


class InsufficientStock(EngineError):
    """Requested OUT exceeds available stock."""

    kind = ErrorKind.INSUFFICIENT_STOCK
    status = 400

    def __init__(
        self,
        message: str,
        *,
        product_id: int | None = None,
        available: int,
        requested: int,
    ):
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class PermissionDenied(EngineError):
    kind = ErrorKind.FORBIDDEN
    status = 403


class NotFoundError(EngineError):
    kind = ErrorKind.NOT_FOUND
    status = 404


class InvalidStateTransition(EngineError):
    """Operation not allowed in the sale's current state."""

    kind = ErrorKind.INVALID_STATE
    status = 409


class ConflictError(EngineError):
    """409-level conflict (duplicate sale number, store name, ...)."""

    kind = ErrorKind.CONFLICT
    status = 409


class InternalError(EngineError):
    """Unexpected failure. The message shown to callers never carries internals."""

    kind = ErrorKind.INTERNAL
    status = 500

    def __init__(self, message: str = "Internal server error", *, retryable: bool = False):
        super().__init__(message, details={"retryable": retryable} if retryable else None)
        self.retryable = retryable


class TransactionTimeout(InternalError):
    def __init__(self, message: str = "The operation timed out, please retry"):
        super().__init__(message, retryable=True)
