"""
Correlation IDs for tying log lines to one unit of work.

A unit of work is a connection attempt, a drained event or a host write
request. IDs live in a contextvar so every task spawned inside the scope
inherits them.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "loxone_correlation_id",
    default=None,
)


def generate_correlation_id(prefix: str | None = None) -> str:
    """
    Generate a new correlation ID.

    Args:
        prefix: Optional short tag (e.g. "connect") prepended as ``prefix-<hex>``

    Returns:
        UUID4 hex string, optionally prefixed
    """
    new_id = uuid.uuid4().hex
    return f"{prefix}-{new_id}" if prefix else new_id


def get_correlation_id() -> str | None:
    """Return the correlation ID of the current context, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear with None) the correlation ID of the current context."""
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    prefix: str | None = None,
) -> Generator[str]:
    """
    Scope a correlation ID, restoring the previous one on exit.

    Example:
        with correlation_context(prefix="connect"):
            logger.info("Trying to connect")
    """
    previous_id = get_correlation_id()
    if correlation_id is None:
        correlation_id = generate_correlation_id(prefix)
    set_correlation_id(correlation_id)
    try:
        yield correlation_id
    finally:
        set_correlation_id(previous_id)


def ensure_correlation_id() -> str:
    """Return the current correlation ID, generating one if unset."""
    current_id = get_correlation_id()
    if current_id is None:
        current_id = generate_correlation_id()
        set_correlation_id(current_id)
    return current_id
