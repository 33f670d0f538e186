from typing import Any


class ERPError(Exception):
    """Base for every failure the API reports as a structured error."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ERPError):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None, details: list[dict[str, Any]] | None = None):
        if details is None and field:
            details = [{"field": field, "message": message, "type": "value_error"}]
        super().__init__(message, details=details)


class InsufficientStock(ERPError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, shortages: list[dict[str, Any]], message: str = "Insufficient stock for one or more items"):
        super().__init__(message, details=shortages)
        self.shortages = shortages

    @property
    def line_indices(self) -> list[int]:
        return [s["index"] for s in self.shortages if s.get("index") is not None]


class NotFound(ERPError):
    status_code = 404
    code = "not_found"


class InvalidTransition(ERPError):
    status_code = 409
    code = "invalid_transition"


class InvalidStateForDeletion(ERPError):
    status_code = 409
    code = "invalid_state_for_deletion"


class HasDependents(ERPError):
    status_code = 409
    code = "has_dependents"


class DuplicateKey(ERPError):
    status_code = 409
    code = "duplicate_key"


class ServerUnavailable(ERPError):
    status_code = 503
    code = "server_unavailable"

    def __init__(self, message: str = "Database is unavailable, try again later"):
        super().__init__(message)
