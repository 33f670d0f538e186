import shortuuid

REQUEST_ID_MAX_LENGTH = 64


def new_user_id() -> str:
    return shortuuid.uuid()


def new_request_id(incoming: str | None = None) -> str:
    """Reuse a caller-supplied X-Request-ID when it is short and printable."""
    candidate = (incoming or "").strip()
    if candidate and len(candidate) <= REQUEST_ID_MAX_LENGTH and candidate.isprintable():
        return candidate
    return shortuuid.uuid()
