"""
Test availability window checks.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from assessment.core.datetime_utils import ensure_timezone_aware
from assessment.core.error_responses import ErrorMessages
from assessment.models import TestStatus
from assessment.schemas import TestConfig


@dataclass(frozen=True)
class Availability:
    available: bool
    reason: Optional[str] = None


def check_availability(test: TestConfig, now: datetime) -> Availability:
    """
    Check whether an attempt may be started at `now`.

    A test is available when it is published, its window has opened, and
    neither the late-allowance deadline nor (absent one) the window end has
    passed. `allow_late_until` extends past `end_at`; it never shortens it.
    """
    now = ensure_timezone_aware(now)

    if test.status != TestStatus.PUBLISHED:
        return Availability(False, ErrorMessages.TEST_NOT_PUBLISHED)

    if test.start_at is not None and now < ensure_timezone_aware(test.start_at):
        return Availability(False, ErrorMessages.TEST_NOT_STARTED)

    deadline = _deadline(test)
    if deadline is not None and now > deadline:
        return Availability(False, ErrorMessages.TEST_CLOSED)

    return Availability(True)


def _deadline(test: TestConfig) -> Optional[datetime]:
    candidates = [
        ensure_timezone_aware(dt)
        for dt in (test.end_at, test.allow_late_until)
        if dt is not None
    ]
    return max(candidates) if candidates else None
