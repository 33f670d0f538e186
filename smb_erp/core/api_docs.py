from smb_erp.core import errors
from smb_erp.schemas.common import ErrorOut

_DOMAIN_ERRORS: tuple[tuple[type[errors.ERPError], str], ...] = (
    (errors.ValidationError, "Request failed validation"),
    (errors.InsufficientStock, "Insufficient stock for one or more items"),
    (errors.NotFound, "Resource not found"),
    (errors.InvalidTransition, "Status change not allowed from the current status"),
    (errors.InvalidStateForDeletion, "Only draft or cancelled records can be deleted"),
    (errors.HasDependents, "Record is still referenced elsewhere"),
    (errors.DuplicateKey, "Key already in use"),
    (errors.ServerUnavailable, "Database is unavailable, try again later"),
)

# Codes raised by the framework rather than by ERPError subclasses.
_TRANSPORT_ERRORS: dict[int, tuple[str, str]] = {
    401: ("unauthorized", "Missing or invalid bearer token"),
    403: ("forbidden", "Role lacks the required permission"),
    409: ("conflict", "Conflict with current state"),
    429: ("rate_limited", "Too many failed login attempts"),
    500: ("internal_error", "Internal server error"),
}


def _example(code: str, message: str) -> dict:
    return {
        "summary": code,
        "value": {
            "success": False,
            "error": {
                "code": code,
                "message": message,
                "request_id": "request-id",
                "path": "/example",
                "details": None,
            },
        },
    }


def _examples_for(status_code: int) -> dict[str, dict]:
    examples: dict[str, dict] = {}
    for error_cls, message in _DOMAIN_ERRORS:
        if error_cls.status_code == status_code:
            examples[error_cls.code] = _example(error_cls.code, message)
    if status_code in _TRANSPORT_ERRORS:
        code, message = _TRANSPORT_ERRORS[status_code]
        examples[code] = _example(code, message)
    if not examples:
        examples["http_error"] = _example("http_error", "HTTP error")
    return examples


def error_responses(*status_codes: int) -> dict[int, dict]:
    """OpenAPI `responses` entries sharing the error envelope.

    Each status lists one named example per error code that can produce it, so
    a 409 on an order route shows insufficient_stock, invalid_transition and
    the other conflict codes side by side.
    """
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        examples = _examples_for(status_code)
        responses[status_code] = {
            "model": ErrorOut,
            "description": " | ".join(examples),
            "content": {"application/json": {"examples": examples}},
        }
    return responses
