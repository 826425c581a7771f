"""
Order service error kinds and exception hierarchy.

Every exception carries a message and a ``context`` dict of structured
fields that is logged alongside it.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure categories surfaced by the order service."""

    NOT_FOUND = "not_found"
    REFERENCED_ENTITY_MISSING = "referenced_entity_missing"
    INVALID_RANGE = "invalid_range"
    INVALID_ARGUMENT = "invalid_argument"
    PERSISTENCE_FAILURE = "persistence_failure"
    # Logged only; cache failures never reach callers
    CACHE_UNAVAILABLE = "cache_unavailable"


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    kind: ErrorKind = ErrorKind.PERSISTENCE_FAILURE

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(OrderServiceError):
    """Requested order, item or event type does not exist."""

    kind = ErrorKind.NOT_FOUND


class ReferencedEntityMissingError(OrderServiceError):
    """An item update or delete names an item the order does not have."""

    kind = ErrorKind.REFERENCED_ENTITY_MISSING


class InvalidRangeError(OrderServiceError):
    """Date range whose end precedes its start."""

    kind = ErrorKind.INVALID_RANGE


class InvalidArgumentError(OrderServiceError):
    """Malformed request value, such as an unknown item change kind."""

    kind = ErrorKind.INVALID_ARGUMENT


class PersistenceFailureError(OrderServiceError):
    """Database write or read failed; the transaction was rolled back."""

    kind = ErrorKind.PERSISTENCE_FAILURE
