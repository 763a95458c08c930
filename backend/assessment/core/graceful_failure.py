"""
Graceful failure utilities.

This module provides the reusable context manager for non-critical operations
that must not block the test taker. It centralizes the "best effort" pattern
used by proctor event recording, tab-tracking pushes and autosave:
1. Attempting an operation
2. Logging any exception with context
3. Continuing execution without raising

Submission is deliberately NOT wrapped: a failed submit must surface so the
interactive state can be restored for a retry.

Usage:
    from assessment.core.graceful_failure import graceful_failure

    with graceful_failure("record proctor event", logger, context={"kind": kind}):
        await api.record_proctor_event(attempt_id, kind, meta)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

from assessment.observability import observability


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Context manager for non-critical operations that should not block execution.

    Args:
        operation_name: Human-readable name of the operation for logging
            (e.g., "record proctor event", "push tab tracking").
        logger: The logger instance to use for logging errors.
        log_level: Logging level for error messages. Defaults to WARNING.
        exc_info: Whether to include exception traceback in log. Defaults to False.
        context: Optional dictionary of additional context to include in log message
            (e.g., {"attempt_id": "a1", "question_id": "q3"}).

    Yields:
        None - the context manager is used for its side effects only.

    Note:
        asyncio.CancelledError is a BaseException and is never swallowed, so
        cancelling a task that is inside this block still cancels it.
    """
    try:
        yield
    except Exception as e:
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)
        observability.capture_error(e, context=context, level="warning")
