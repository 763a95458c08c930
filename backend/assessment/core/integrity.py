"""
Integrity event recording and proctoring risk scoring.

This module observes client-side signals of possible dishonest behavior
(tab switches, fullscreen exits, devtools, clipboard use...) and reduces them
to a single risk score in [0, 100].

Scoring:
    score = min(100, sum over kinds k of  w_k * ln(n_k + 1))

The log dampening gives a diminishing marginal penalty for repeating the same
kind of event, while different kinds of violation still add up linearly.

Ethical Considerations:
- Scores are indicators, not proof of cheating
- Lockdown is advisory; nothing here fails an attempt
- Recording is best effort: an event whose network call fails is never retried,
  so the server-side score can under-report risk for that occurrence
"""

import asyncio
import logging
import math
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from assessment.client.attempt_api import AttemptApi
from assessment.core.datetime_utils import utc_now
from assessment.core.graceful_failure import graceful_failure
from assessment.models import AttemptStatus, ProctorEventKind, RiskBand
from assessment.schemas import ProctorEvent

logger = logging.getLogger(__name__)


# =============================================================================
# EVENT WEIGHTS
# =============================================================================
#
# Contribution of one occurrence of each kind before log dampening. Kinds that
# most directly indicate outside help (devtools, leaving fullscreen, a second
# monitor) weigh the most; incidental signals (resize, context menu) the least.

EVENT_WEIGHTS: Dict[ProctorEventKind, float] = {
    ProctorEventKind.DEVTOOLS_OPEN: 20,
    ProctorEventKind.EXIT_FULLSCREEN: 15,
    ProctorEventKind.MULTI_MONITOR_HINT: 12,
    ProctorEventKind.TAB_SWITCH: 10,
    ProctorEventKind.COPY: 10,
    ProctorEventKind.VISIBILITY_HIDDEN: 8,
    ProctorEventKind.PASTE: 8,
    ProctorEventKind.BLUR: 5,
    ProctorEventKind.NETWORK_OFFLINE: 5,
    ProctorEventKind.CONTEXT_MENU: 3,
    ProctorEventKind.RESIZE: 2,
}

MAX_RISK_SCORE = 100.0

# Risk band lower bounds: low [0, 40), medium [40, 75), high [75, 100]
MEDIUM_RISK_THRESHOLD = 40.0
HIGH_RISK_THRESHOLD = 75.0

BEST_EFFORT_NOTICE = (
    "Integrity monitoring is best effort. Events that fail to reach the server "
    "are not retried and do not count toward the recorded risk score."
)


def calculate_risk_score(events: Iterable[Any]) -> float:
    """
    Calculate the proctoring risk score for a multiset of events.

    Args:
        events: ProctorEvent instances, or bare ProctorEventKind values.
            Only the kind of each event matters.

    Returns:
        Risk score in [0.0, 100.0].

    Edge Cases Handled:
        - No events: 0.0
        - Unknown kinds (not in EVENT_WEIGHTS): ignored
        - Very large counts: capped at 100.0

    Properties:
        - Pure function of the event multiset (order does not matter)
        - Non-decreasing in the count of any single kind
    """
    counts = Counter(_kind_of(event) for event in events)

    total = 0.0
    for kind, count in counts.items():
        weight = EVENT_WEIGHTS.get(kind)
        if weight is None:
            continue
        total += weight * math.log(count + 1)

    return min(MAX_RISK_SCORE, total)


def risk_band(score: float) -> RiskBand:
    """Map a risk score to its display band."""
    if score >= HIGH_RISK_THRESHOLD:
        return RiskBand.HIGH
    if score >= MEDIUM_RISK_THRESHOLD:
        return RiskBand.MEDIUM
    return RiskBand.LOW


def summarize_events(events: Iterable[Any]) -> Dict[str, Any]:
    """
    Summarize events for display next to the risk score.

    Returns:
        {
            "score": float,                # Rounded to 2 decimals
            "band": str,                   # "low", "medium" or "high"
            "counts": {kind: int},         # Occurrences per kind
            "contributions": {kind: float} # Points contributed per kind
        }
    """
    counts = Counter(_kind_of(event) for event in events)
    contributions = {
        kind: EVENT_WEIGHTS[kind] * math.log(count + 1)
        for kind, count in counts.items()
        if kind in EVENT_WEIGHTS
    }
    score = min(MAX_RISK_SCORE, sum(contributions.values()))
    return {
        "score": round(score, 2),
        "band": risk_band(score).value,
        "counts": {kind.value: count for kind, count in counts.items()},
        "contributions": {
            kind.value: round(points, 2) for kind, points in contributions.items()
        },
    }


def _kind_of(event: Any) -> ProctorEventKind:
    if isinstance(event, ProctorEvent):
        return event.kind
    return ProctorEventKind(event)


class IntegrityRecorder:
    """Records proctor events for one attempt.

    `record` appends locally and persists in the background only while the
    owning attempt is IN_PROGRESS. Persistence is fire-and-forget: the caller
    never awaits the network and a failed call is logged, not retried.
    """

    def __init__(
        self,
        api: AttemptApi,
        test_id: str,
        attempt_id: str,
        status_provider: Callable[[], AttemptStatus],
        *,
        tab_switch_count: int = 0,
    ) -> None:
        self._api = api
        self._test_id = test_id
        self._attempt_id = attempt_id
        self._status_provider = status_provider
        self._events: List[ProctorEvent] = []
        self._pending: Set[asyncio.Task] = set()
        self.tab_switch_count = tab_switch_count

    @property
    def events(self) -> Tuple[ProctorEvent, ...]:
        return tuple(self._events)

    def record(
        self, kind: ProctorEventKind, meta: Optional[Dict[str, Any]] = None
    ) -> Optional[ProctorEvent]:
        """Record one event. Returns the event, or None when the attempt is not in progress."""
        if self._status_provider() != AttemptStatus.IN_PROGRESS:
            return None

        event = ProctorEvent(kind=kind, timestamp=utc_now(), meta=meta)
        self._events.append(event)

        task = asyncio.get_running_loop().create_task(self._persist(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return event

    def record_tab_switch(self) -> Optional[ProctorEvent]:
        """Count a tab switch and record it as an event."""
        if self._status_provider() != AttemptStatus.IN_PROGRESS:
            return None
        self.tab_switch_count += 1
        return self.record(ProctorEventKind.TAB_SWITCH)

    def score(self) -> float:
        """Recompute the risk score from every event recorded so far."""
        return calculate_risk_score(self._events)

    def band(self) -> RiskBand:
        return risk_band(self.score())

    async def drain(self) -> None:
        """Wait for in-flight event persistence to settle."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _persist(self, event: ProctorEvent) -> None:
        with graceful_failure(
            "record proctor event",
            logger,
            context={"attempt_id": self._attempt_id, "kind": event.kind.value},
        ):
            await self._api.record_proctor_event(
                self._test_id, self._attempt_id, event.kind, event.meta
            )
