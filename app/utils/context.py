import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_context.get()


@contextmanager
def request_id_scope(prefix: str) -> Iterator[str]:
    """Bind a generated `<prefix>_<uuid>` request ID for background work such as scheduled passes."""
    request_id = f"{prefix}_{uuid.uuid4().hex[:12]}"
    token = request_id_context.set(request_id)
    try:
        yield request_id
    finally:
        request_id_context.reset(token)
