"""Per-request correlation id shared with the logging system."""
import logging
import uuid
from contextvars import ContextVar
from typing import Optional

REQUEST_ID_HEADER = "X-Request-ID"
SESSION_ID_HEADER = "X-Session-ID"

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def get_request_id() -> str:
    """Request id of the request being handled, or "-" outside a request."""
    return _request_id.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (propagated or freshly generated) to the current context."""
    rid = request_id or str(uuid.uuid4())
    _request_id.set(rid)
    return rid


class RequestIdFilter(logging.Filter):
    """Injects the current request id into every log record as ``request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id()
        return True
