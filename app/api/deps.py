# =============================================================================
# API Dependencies
# =============================================================================
#
# get_request_id() exposes the per-request correlation id assigned by the
# middleware in app/main.py (X-Request-ID header or a fresh UUID4). Routes
# pass it to the pipelines so every log line and error envelope for one
# request carries the same rid.
# =============================================================================

from fastapi import Request

from app.logging_config import new_request_id

REQUEST_ID_HEADER = "X-Request-ID"


def resolve_request_id(request: Request) -> str:
    """Existing rid on the request, then the inbound header, then a new UUID4."""
    rid = getattr(request.state, "rid", None)
    if not rid:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        request.state.rid = rid
    return rid


async def get_request_id(request: Request) -> str:
    """FastAPI dependency form of resolve_request_id."""
    return resolve_request_id(request)
