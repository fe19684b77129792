"""Trace ids for following one refresh pass through logs and events."""

import contextvars
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

# Context variable holding the id of the refresh pass being executed
_trace_id_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "trace_id", default=None
)


def create_trace() -> str:
    """
    Generate a new trace id and make it current.

    Returns:
        A unique trace ID string (UUID4 format)
    """
    trace_id = str(uuid.uuid4())
    set_trace(trace_id)
    return trace_id


def get_current_trace() -> Optional[str]:
    """Return the current trace id, or None outside a traced operation."""
    return _trace_id_context.get()


def set_trace(trace_id: str) -> None:
    """Make ``trace_id`` the current trace id."""
    _trace_id_context.set(trace_id)


def clear_trace() -> None:
    """Clear the trace ID from the current context."""
    _trace_id_context.set(None)


@contextmanager
def traced() -> Iterator[str]:
    """
    Run a block under a fresh trace id and clear it afterwards.

    Yields:
        The trace id created for the block
    """
    trace_id = create_trace()
    try:
        yield trace_id
    finally:
        clear_trace()
