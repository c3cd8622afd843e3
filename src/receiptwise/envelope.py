"""Uniform success/failure results for externally facing operations."""

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from receiptwise.errors import ReceiptwiseError
from receiptwise.logging import get_logger

LOG = get_logger("envelope")


class ErrorInfo(BaseModel):
    kind: str
    message: str


class Envelope(BaseModel):
    success: bool
    data: Any = None
    error: ErrorInfo | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "Envelope":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, kind: str, message: str) -> "Envelope":
        return cls(success=False, error=ErrorInfo(kind=kind, message=message))


def _from_exception(e: Exception) -> Envelope:
    if isinstance(e, ReceiptwiseError):
        LOG.info("%s: %s", e.kind, e)
        return Envelope.failure(e.kind, str(e))
    # Only the message leaves the process; the traceback stays in the log
    LOG.exception("Unexpected error")
    return Envelope.failure("internal", str(e) or type(e).__name__)


async def capture(operation: Awaitable[Any]) -> Envelope:
    """Await an operation and wrap its outcome in an Envelope."""
    try:
        data = await operation
    except Exception as e:
        return _from_exception(e)
    return Envelope.ok(data)


def capture_call(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Envelope:
    """Call a synchronous operation and wrap its outcome in an Envelope."""
    try:
        data = fn(*args, **kwargs)
    except Exception as e:
        return _from_exception(e)
    return Envelope.ok(data)
