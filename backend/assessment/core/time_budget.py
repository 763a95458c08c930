"""
Time-budget calculation for a running attempt.

The clock only runs while the test taker is on the page and not paused:

    remaining(now) = max(0, duration - (now - started_at) + time_off_page + total_paused)

Off-page time (hidden tab, blurred window) and explicit "save & exit" pauses
are refunded into the budget. All quantities are whole seconds; elapsed wall
time is floored, as are off-page and pause intervals.
"""

import logging
from datetime import datetime
from typing import Optional

from assessment.core.datetime_utils import (
    ensure_timezone_aware,
    utc_now,
    whole_seconds_between,
)
from assessment.core.pause_store import PauseMarkerStore

logger = logging.getLogger(__name__)


def remaining_seconds(
    started_at: Optional[datetime],
    duration_seconds: int,
    now: datetime,
    time_off_page_seconds: int = 0,
    total_paused_seconds: int = 0,
) -> int:
    """
    Compute the remaining time budget in whole seconds.

    Args:
        started_at: Attempt start instant. None means the clock has not started
            and the full duration remains.
        duration_seconds: Test-configured time budget.
        now: Current instant.
        time_off_page_seconds: Accumulated time spent hidden/blurred.
        total_paused_seconds: Accumulated time spent paused via save & exit.

    Returns:
        Remaining seconds, never negative.

    Example:
        30 minute test, 5 minutes off-page, 32 minutes of wall time elapsed:
        max(0, 1800 - 1920 + 300) = 180
    """
    if started_at is None:
        return max(0, duration_seconds)

    elapsed = whole_seconds_between(started_at, now)
    remaining = duration_seconds - elapsed + time_off_page_seconds + total_paused_seconds
    return max(0, remaining)


class TimeBudget:
    """Tracks off-page and paused intervals for one attempt.

    Owned by the attempt state machine. The pause marker is persisted through
    a PauseMarkerStore so a pause survives a full reload; resuming consumes the
    marker exactly once.
    """

    def __init__(
        self,
        attempt_id: str,
        started_at: Optional[datetime],
        duration_seconds: int,
        pause_markers: PauseMarkerStore,
        *,
        time_off_page_seconds: int = 0,
        total_paused_seconds: Optional[int] = None,
    ) -> None:
        self.attempt_id = attempt_id
        self.started_at = ensure_timezone_aware(started_at) if started_at else None
        self.duration_seconds = duration_seconds
        self.time_off_page_seconds = time_off_page_seconds
        self._pause_markers = pause_markers
        # Earlier pause cycles are persisted with the marker so a reload keeps them
        self.total_paused_seconds = (
            pause_markers.total_paused(attempt_id)
            if total_paused_seconds is None
            else total_paused_seconds
        )
        self._off_page_since: Optional[datetime] = None

    @property
    def is_off_page(self) -> bool:
        return self._off_page_since is not None

    def remaining(self, now: Optional[datetime] = None) -> int:
        """Remaining seconds at `now`.

        An off-page interval that is still open counts as refunded already, so
        the countdown is frozen while the page is hidden rather than jumping
        back up when the test taker returns.
        """
        now = now or utc_now()
        return remaining_seconds(
            self.started_at,
            self.duration_seconds,
            now,
            self.time_off_page_seconds + self.open_off_page_seconds(now),
            self.total_paused_seconds,
        )

    def open_off_page_seconds(self, now: Optional[datetime] = None) -> int:
        if self._off_page_since is None:
            return 0
        return max(0, whole_seconds_between(self._off_page_since, now or utc_now()))

    # ------------------------------------------------------------------
    # Off-page intervals
    # ------------------------------------------------------------------

    def leave_page(self, now: Optional[datetime] = None) -> bool:
        """Mark the start of an off-page interval.

        Returns False if an interval is already open (hidden and blur both fire).
        """
        if self._off_page_since is not None:
            return False
        self._off_page_since = now or utc_now()
        return True

    def return_to_page(self, now: Optional[datetime] = None) -> int:
        """Close the open off-page interval and refund it. Returns the seconds added."""
        if self._off_page_since is None:
            return 0
        away = max(0, whole_seconds_between(self._off_page_since, now or utc_now()))
        self._off_page_since = None
        self.time_off_page_seconds += away
        return away

    # ------------------------------------------------------------------
    # Explicit pauses ("save & exit")
    # ------------------------------------------------------------------

    def begin_pause(self, now: Optional[datetime] = None) -> datetime:
        """Persist the pause-start marker. The clock is frozen until resume."""
        paused_at = now or utc_now()
        self._pause_markers.stamp(self.attempt_id, paused_at)
        logger.info(f"Attempt {self.attempt_id} paused at {paused_at.isoformat()}")
        return paused_at

    def is_paused(self) -> bool:
        return self._pause_markers.peek(self.attempt_id) is not None

    def resume_from_pause(self, now: Optional[datetime] = None) -> int:
        """Consume the persisted pause marker and refund the pause duration.

        Idempotent: the marker is cleared as it is read, so calling this again
        for the same pause adds nothing.

        Returns:
            Seconds added to total_paused_seconds (0 when there was no marker).
        """
        paused_at = self._pause_markers.consume(self.attempt_id)
        if paused_at is None:
            return 0
        paused = max(0, whole_seconds_between(paused_at, now or utc_now()))
        self.total_paused_seconds += paused
        self._pause_markers.record_total_paused(self.attempt_id, self.total_paused_seconds)
        logger.info(f"Attempt {self.attempt_id} resumed after {paused}s paused")
        return paused
