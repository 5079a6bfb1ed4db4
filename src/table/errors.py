"""Error taxonomy for the table session core.

Every error carries a translation key plus the parameters needed to render
it, so the presentation layer can show it without parsing messages.
"""

from typing import Any, Dict, Optional

from utils import messages
from utils.retry import TransientError


class TableError(Exception):
    key = "errors.generic"

    def __init__(self, message: Optional[str] = None, key: Optional[str] = None, **params: Any):
        self.key = key or self.key
        self.params: Dict[str, Any] = params
        super().__init__(message or messages.default_translate(self.key, **params))


class ValidationError(TableError, ValueError):
    """Bad user input. Surfaced immediately, never retried."""


class InvalidTableNumber(ValidationError):
    key = messages.INVALID_TABLE_NUMBER


class UnknownProductError(ValidationError, LookupError):
    key = messages.UNKNOWN_PRODUCT


class NoActiveSessionError(TableError):
    key = messages.NO_ACTIVE_SESSION


class SessionClosedError(TableError):
    key = messages.SESSION_CLOSED


class EmptyCartError(TableError):
    key = messages.EMPTY_CART


class PendingCartError(TableError):
    key = messages.PENDING_CART


class NothingToCloseError(TableError):
    key = messages.NOTHING_TO_CLOSE


class CloseFlowInProgress(TableError):
    key = messages.CLOSE_IN_PROGRESS


class PersistenceError(TableError):
    """Storage could not be read or written."""

    key = messages.STORAGE_UNAVAILABLE


class ExpiredSessionError(TableError):
    """A persisted session outlived its TTL. Treated as 'no session'."""

    key = messages.SESSION_EXPIRED


class NetworkError(TableError, TransientError):
    """A simulated network call failed; safe to retry."""

    key = messages.NETWORK_ERROR


__all__ = [
    "TableError",
    "ValidationError",
    "InvalidTableNumber",
    "UnknownProductError",
    "NoActiveSessionError",
    "SessionClosedError",
    "EmptyCartError",
    "PendingCartError",
    "NothingToCloseError",
    "CloseFlowInProgress",
    "PersistenceError",
    "ExpiredSessionError",
    "NetworkError",
    "TransientError",
]
