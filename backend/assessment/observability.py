"""
Error tracking for the engine.

Sentry is initialized only when SENTRY_DSN is configured; every other call in
this module is a no-op until then, so the engine runs unchanged without it.

Usage:
    from assessment.observability import observability

    observability.init()
    observability.capture_error(exc, context={"question_id": "q1"})
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from assessment.core.config import settings

logger = logging.getLogger(__name__)


def _serialize_value(value: Any) -> Any:
    """Convert a context value to a JSON-compatible type."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize_value(item) for item in value]
    return str(value)


class Observability:
    """Thin facade over the Sentry SDK."""

    def __init__(self) -> None:
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def init(
        self,
        dsn: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> bool:
        """Initialize Sentry.

        Returns:
            True if Sentry was initialized, False if skipped (no DSN) or failed.

        Note:
            Does not raise exceptions - failures are logged and return False.
        """
        dsn = dsn if dsn is not None else settings.SENTRY_DSN
        if not dsn:
            logger.debug("Sentry initialization skipped (DSN not configured)")
            return False

        try:
            sentry_sdk.init(
                dsn=dsn,
                environment=environment or settings.ENV,
                release=settings.APP_VERSION,
                traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
                integrations=[
                    LoggingIntegration(
                        level=None,  # Don't capture breadcrumbs from logs
                        event_level=None,  # Don't send log events
                    ),
                ],
            )
        except Exception as e:
            logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)
            return False

        self._initialized = True
        logger.info(f"Sentry initialized for environment '{environment or settings.ENV}'")
        return True

    def capture_error(
        self,
        exception: BaseException,
        *,
        context: Optional[dict[str, Any]] = None,
        level: str = "error",
        tags: Optional[dict[str, str]] = None,
    ) -> Optional[str]:
        """Capture an exception and send to Sentry.

        Returns:
            Event ID if captured, None if not initialized.
        """
        if not self._initialized:
            return None

        with sentry_sdk.new_scope() as scope:
            if context:
                scope.set_context("additional", _serialize_value(context))
            if tags:
                for key, value in tags.items():
                    scope.set_tag(key, value)
            scope.level = level
            return sentry_sdk.capture_exception(exception)


observability = Observability()
