"""Trace context for correlating the log lines of one refresh or request."""

import contextvars
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

_trace_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "trace_id", default=None
)


def create_trace() -> str:
    """Generate a new trace id and make it current."""
    trace_id = str(uuid.uuid4())
    _trace_id_context.set(trace_id)
    return trace_id


def get_current_trace() -> str | None:
    """Return the current trace id, if any."""
    return _trace_id_context.get()


def clear_trace() -> None:
    """Clear the trace id from the current context."""
    _trace_id_context.set(None)


@contextmanager
def trace_scope() -> Iterator[str]:
    """
    Run a block under a fresh trace id, restoring the previous one afterwards.

    Each asyncio task gets its own copy of the context, so concurrently
    supervised tasks never see each other's trace id.
    """
    token = _trace_id_context.set(str(uuid.uuid4()))
    try:
        yield _trace_id_context.get()
    finally:
        _trace_id_context.reset(token)
