"""
Transfer engine error types.

Every error the core raises derives from TransferEngineError and carries a
machine-readable code, an HTTP status for the API layer, and structured
details for logging.
"""

from typing import Any


class TransferEngineError(Exception):
    """Base class for all errors reported by the stock transfer engine."""

    code = "engine_error"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class InvalidRequest(TransferEngineError):
    """Malformed input: non-positive quantity, same source and destination."""

    code = "invalid_request"
    http_status = 422


class UnknownItem(TransferEngineError):
    """No inventory line exists for the (location, item) pair."""

    code = "unknown_item"
    http_status = 404


class InsufficientStock(TransferEngineError):
    """Requested quantity exceeds what the ledger line holds."""

    code = "insufficient_stock"
    http_status = 409


class InvalidTransition(TransferEngineError):
    """Transfer is not in a state that allows the action, or the actor may not perform it."""

    code = "invalid_transition"
    http_status = 409


class NotFound(TransferEngineError):
    """Unknown transfer, notification or location id."""

    code = "not_found"
    http_status = 404


class StoreUnavailable(TransferEngineError):
    """The document store could not complete a read or write."""

    code = "store_unavailable"
    http_status = 503
