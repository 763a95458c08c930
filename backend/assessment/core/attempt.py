"""
Attempt state machine.

Orchestrates one user's run at a test:

    NOT_STARTED -> IN_PROGRESS -> SUBMITTED -> GRADED
                        |              |
                        +-> INVALIDATED <-+

IN_PROGRESS has a paused sub-state ("save & exit") in which the countdown is
frozen and every background task is stopped. A manual fullscreen exit while
IN_PROGRESS puts the session into the fullscreen-required block instead of
failing the attempt: interaction is disabled until `reenter_fullscreen()`.

The session owns the integrity recorder, the time budget, the answer store
and the submission protocol for its attempt. Every timer and flag is an
instance field, so several sessions in one process never interfere.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Coroutine, Dict, FrozenSet, Iterable, List, Optional, Set

from assessment.client.attempt_api import AttemptApi
from assessment.core.answer_store import AnswerStore
from assessment.core.availability import check_availability
from assessment.core.config import settings
from assessment.core.datetime_utils import utc_now
from assessment.core.environment import Environment, EnvironmentSignal, SignalKind
from assessment.core.error_responses import ErrorCodes, ErrorMessages
from assessment.core.errors import (
    AttemptStartError,
    CollaboratorError,
    FullscreenDeniedError,
    InvalidTransitionError,
    PauseNotAllowedError,
    SubmissionError,
)
from assessment.core.fingerprint import current_fingerprint
from assessment.core.graceful_failure import graceful_failure
from assessment.core.integrity import IntegrityRecorder
from assessment.core.logging_config import attempt_id_context
from assessment.core.pause_store import PauseMarkerStore, default_key_value_store
from assessment.core.submission import ExitGuard, SubmissionProtocol
from assessment.core.time_budget import TimeBudget
from assessment.models import AttemptStatus, ProctorEventKind, SubmitTrigger
from assessment.schemas import (
    Answer,
    AnswerPayload,
    Attempt,
    SubmitAttemptResponse,
    TestConfig,
)

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[AttemptStatus, FrozenSet[AttemptStatus]] = {
    AttemptStatus.NOT_STARTED: frozenset({AttemptStatus.IN_PROGRESS}),
    AttemptStatus.IN_PROGRESS: frozenset(
        {AttemptStatus.SUBMITTED, AttemptStatus.INVALIDATED}
    ),
    AttemptStatus.SUBMITTED: frozenset(
        {AttemptStatus.GRADED, AttemptStatus.INVALIDATED}
    ),
    AttemptStatus.GRADED: frozenset(),
    AttemptStatus.INVALIDATED: frozenset(),
}

# Integrity signals that map one-to-one onto a recorded proctor event
_PASSTHROUGH_EVENTS: Dict[SignalKind, ProctorEventKind] = {
    SignalKind.COPY: ProctorEventKind.COPY,
    SignalKind.PASTE: ProctorEventKind.PASTE,
    SignalKind.CONTEXT_MENU: ProctorEventKind.CONTEXT_MENU,
    SignalKind.RESIZE: ProctorEventKind.RESIZE,
    SignalKind.DEVTOOLS_OPEN: ProctorEventKind.DEVTOOLS_OPEN,
    SignalKind.NETWORK_OFFLINE: ProctorEventKind.NETWORK_OFFLINE,
    SignalKind.MULTI_MONITOR_HINT: ProctorEventKind.MULTI_MONITOR_HINT,
}

TickCallback = Callable[[int], None]
WarningCallback = Callable[[str], None]


@dataclass(frozen=True)
class StartCredentials:
    """What the test taker supplies when starting.

    `fingerprint` defaults to the current client fingerprint.
    """

    password: Optional[str] = None
    fingerprint: Optional[str] = None


@dataclass(frozen=True)
class SubmitConfirmation:
    """Warnings for the manual submit dialog. Neither list blocks submission."""

    unanswered_question_ids: List[str] = field(default_factory=list)
    marked_for_review_ids: List[str] = field(default_factory=list)

    @property
    def unanswered_count(self) -> int:
        return len(self.unanswered_question_ids)

    @property
    def marked_for_review_count(self) -> int:
        return len(self.marked_for_review_ids)

    @property
    def has_warnings(self) -> bool:
        return bool(self.unanswered_question_ids or self.marked_for_review_ids)


class AttemptSession:
    """One attempt at one test, driven by environment signals and user actions."""

    def __init__(
        self,
        test: TestConfig,
        api: AttemptApi,
        environment: Environment,
        *,
        destination: str = "/",
        pause_markers: Optional[PauseMarkerStore] = None,
        fingerprint_provider: Optional[Callable[[], str]] = None,
        clock: Callable[[], datetime] = utc_now,
        on_tick: Optional[TickCallback] = None,
        on_warning: Optional[WarningCallback] = None,
        tick_seconds: Optional[float] = None,
        tracking_push_seconds: Optional[float] = None,
        debounce_seconds: Optional[float] = None,
    ) -> None:
        self.test = test
        self._api = api
        self._environment = environment
        self._destination = destination
        self._pause_markers = pause_markers or PauseMarkerStore(default_key_value_store())
        self._fingerprint_provider = fingerprint_provider or current_fingerprint
        self._clock = clock
        self._on_tick = on_tick
        self._on_warning = on_warning
        self._tick_seconds = tick_seconds or settings.TIMER_TICK_SECONDS
        self._tracking_push_seconds = (
            tracking_push_seconds or settings.TAB_TRACKING_PUSH_SECONDS
        )
        self._debounce_seconds = debounce_seconds

        self.status = AttemptStatus.NOT_STARTED
        self.attempt: Optional[Attempt] = None
        self.paused = False
        self.fullscreen_blocked = False

        self.guard = ExitGuard()
        self.answers: Optional[AnswerStore] = None
        self.integrity: Optional[IntegrityRecorder] = None
        self.time_budget: Optional[TimeBudget] = None
        self.submission: Optional[SubmissionProtocol] = None

        self._ticker: Optional[asyncio.Task] = None
        self._tracking_pusher: Optional[asyncio.Task] = None
        self._spawned: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def attempt_id(self) -> Optional[str]:
        return self.attempt.id if self.attempt else None

    @property
    def is_interactive(self) -> bool:
        """Whether answers may be edited right now."""
        return (
            self.status == AttemptStatus.IN_PROGRESS
            and not self.paused
            and not self.fullscreen_blocked
            and not self.guard.exiting
        )

    def remaining_seconds(self) -> int:
        if self.time_budget is None:
            return self.test.duration_seconds
        return self.time_budget.remaining(self._clock())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, credentials: Optional[StartCredentials] = None) -> Attempt:
        """Start (or rejoin the in-progress) attempt.

        Validates the availability window and, when the test has one, the
        presence of a password before any network call. The collaborator
        re-checks the password and enforces the attempt ceiling.

        Raises:
            AttemptStartError: validation failed; no attempt exists.
            InvalidTransitionError: this session already started.
        """
        credentials = credentials or StartCredentials()
        self._require_transition(AttemptStatus.IN_PROGRESS)

        availability = check_availability(self.test, self._clock())
        if not availability.available:
            raise AttemptStartError(ErrorCodes.TEST_NOT_AVAILABLE, availability.reason)

        if self.test.requires_password and not credentials.password:
            raise AttemptStartError(
                ErrorCodes.NEED_TEST_PASSWORD, ErrorMessages.PASSWORD_REQUIRED
            )

        try:
            started = await self._api.start_attempt(
                self.test.id,
                fingerprint=credentials.fingerprint or self._fingerprint_provider(),
                password=credentials.password,
            )
        except CollaboratorError as e:
            logger.info(f"Start rejected for test {self.test.id}: {e.code} {e.message}")
            raise AttemptStartError(e.code or ErrorCodes.INTERNAL_ERROR, e.message) from e

        if started.attempt.status != AttemptStatus.IN_PROGRESS:
            raise AttemptStartError(
                ErrorCodes.ATTEMPT_NOT_IN_PROGRESS, ErrorMessages.ATTEMPT_NOT_IN_PROGRESS
            )

        self._activate(started.attempt, started.answers)
        logger.info(f"Attempt {started.attempt.id} started for test {self.test.id}")

        # start() runs from the user's click, so an immediate request is allowed
        if self.test.require_fullscreen:
            await self._request_fullscreen_or_block()

        self._start_background()
        return started.attempt

    async def resume(
        self, attempt: Attempt, answers: Optional[Iterable[Answer]] = None
    ) -> None:
        """Re-enter an existing IN_PROGRESS attempt (after a reload or a pause).

        Never requests fullscreen: without a fresh user gesture the host would
        refuse, so a required-but-inactive fullscreen enters the block instead.
        """
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidTransitionError(attempt.status.value, AttemptStatus.IN_PROGRESS.value)

        if self.status == AttemptStatus.NOT_STARTED:
            self._activate(attempt, answers or [])
        elif self.status == AttemptStatus.IN_PROGRESS and self.paused:
            if attempt.id != self.attempt_id:
                raise InvalidTransitionError(self.status.value, AttemptStatus.IN_PROGRESS.value)
            if answers is not None:
                self.answers.load(answers)
            attempt_id_context.set(attempt.id)
        else:
            raise InvalidTransitionError(self.status.value, AttemptStatus.IN_PROGRESS.value)

        refunded = self.time_budget.resume_from_pause(self._clock())
        self.paused = False
        self.guard.release()
        logger.info(f"Attempt {attempt.id} resumed ({refunded}s pause refunded)")

        if self.test.require_fullscreen and not self._environment.is_fullscreen:
            self._enter_block()

        self._start_background()

    async def reenter_fullscreen(self) -> bool:
        """The explicit re-entry action behind the fullscreen-required block."""
        if self.status != AttemptStatus.IN_PROGRESS or self.paused:
            return False
        return await self._request_fullscreen_or_block()

    def set_answer(self, question_id: str, payload: AnswerPayload) -> bool:
        """Record an answer edit. Returns False (and drops the edit) when interaction is disabled."""
        if not self.is_interactive:
            logger.info(
                "Ignoring answer edit while not interactive",
                extra={"question_id": question_id},
            )
            return False
        self.answers.set_answer(question_id, payload)
        return True

    async def set_marked_for_review(self, question_id: str, flag: bool) -> bool:
        if not self.is_interactive:
            return False
        return await self.answers.set_marked_for_review(question_id, flag)

    def prepare_manual_submit(self) -> SubmitConfirmation:
        """Counts for the confirmation dialog shown before a manual submit."""
        if self.answers is None:
            return SubmitConfirmation()
        return SubmitConfirmation(
            unanswered_question_ids=self.answers.unanswered_question_ids(self.test.questions),
            marked_for_review_ids=self.answers.marked_for_review_ids(),
        )

    async def submit(
        self, trigger: SubmitTrigger = SubmitTrigger.MANUAL
    ) -> Optional[SubmitAttemptResponse]:
        """Run the submission protocol.

        Returns None when another exit is already in progress.

        Raises:
            SubmissionError: the submit request failed; the attempt stays
                IN_PROGRESS with lockdown restored, ready for a retry.
        """
        if self.submission is None:
            raise InvalidTransitionError(self.status.value, AttemptStatus.SUBMITTED.value)
        return await self.submission.submit(trigger)

    async def pause(self) -> None:
        """Save & exit without submitting.

        Raises:
            PauseNotAllowedError: the test does not allow multi-session attempts.
        """
        if not self.test.allow_multi_session:
            raise PauseNotAllowedError(ErrorMessages.MULTI_SESSION_NOT_ALLOWED)
        if self.status != AttemptStatus.IN_PROGRESS or self.paused:
            raise InvalidTransitionError(self.status.value, "PAUSED")
        if not self.guard.claim():
            logger.info("Ignoring pause: exit already in progress")
            return

        now = self._clock()
        self.time_budget.return_to_page(now)

        flush = await self.answers.flush_all()
        if not flush.ok:
            logger.warning(f"Pausing with {len(flush.failed)} answer(s) that failed to save")

        self.time_budget.begin_pause(now)
        self.paused = True
        self._stop_background()
        await self._push_tab_tracking()

        if self._environment.is_fullscreen:
            with graceful_failure("exit fullscreen on pause", logger):
                await self._environment.exit_fullscreen()
        self._environment.navigate(self._destination)

    def mark_graded(self) -> None:
        """Apply the GRADED status decided by the grading collaborator."""
        self._transition(AttemptStatus.GRADED)

    def invalidate(self) -> None:
        """Apply an INVALIDATED decision made outside the engine."""
        self._transition(AttemptStatus.INVALIDATED)

    async def close(self) -> None:
        """Tear down every task this session started."""
        self._stop_background()
        current = asyncio.current_task()
        pending = [task for task in self._spawned if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self.integrity is not None:
            await self.integrity.drain()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_transition(self, target: AttemptStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status.value, target.value)

    def _transition(self, target: AttemptStatus) -> None:
        self._require_transition(target)
        previous, self.status = self.status, target
        logger.info(f"Attempt {self.attempt_id}: {previous.value} -> {target.value}")
        if previous == AttemptStatus.IN_PROGRESS:
            self._stop_background()
            self.fullscreen_blocked = False
            self._pause_markers.forget(self.attempt_id)

    def _activate(self, attempt: Attempt, answers: Iterable[Answer]) -> None:
        """Build the per-attempt components and enter IN_PROGRESS."""
        self._transition(AttemptStatus.IN_PROGRESS)
        self.attempt = attempt
        attempt_id_context.set(attempt.id)

        self.integrity = IntegrityRecorder(
            self._api,
            self.test.id,
            attempt.id,
            lambda: self.status,
            tab_switch_count=attempt.tab_switch_count,
        )
        self.time_budget = TimeBudget(
            attempt.id,
            attempt.started_at or self._clock(),
            self.test.duration_seconds,
            self._pause_markers,
            time_off_page_seconds=attempt.time_off_page_seconds,
        )
        self.answers = AnswerStore(
            self._api,
            self.test.id,
            attempt.id,
            debounce_seconds=self._debounce_seconds,
            on_warning=self._warn,
        )
        self.answers.load(answers)
        self.submission = SubmissionProtocol(
            self._api,
            self.test.id,
            attempt.id,
            self.answers,
            self._environment,
            self.guard,
            fingerprint_provider=self._fingerprint_provider,
            destination=self._destination,
            on_submitted=self._on_submitted,
            restore_lockdown=self._restore_lockdown,
            settle_tracking=self._settle_tracking,
        )

    def _on_submitted(self, response: SubmitAttemptResponse) -> None:
        self._transition(AttemptStatus.SUBMITTED)
        self.attempt = response.attempt
        # The collaborator auto-grades objective-only tests during submit
        if response.attempt.status in (AttemptStatus.GRADED, AttemptStatus.INVALIDATED):
            self._transition(response.attempt.status)

    # ------------------------------------------------------------------
    # Fullscreen lockdown
    # ------------------------------------------------------------------

    async def _request_fullscreen_or_block(self) -> bool:
        try:
            await self._environment.request_fullscreen()
        except FullscreenDeniedError as e:
            logger.info(f"Fullscreen request denied: {e}")
            self._enter_block()
            return False
        self.fullscreen_blocked = False
        return True

    def _enter_block(self) -> None:
        if not self.fullscreen_blocked:
            logger.info("Entering fullscreen-required block")
            self.fullscreen_blocked = True
            self._warn(ErrorMessages.FULLSCREEN_REQUIRED)

    async def _restore_lockdown(self) -> None:
        if self.test.require_fullscreen and not self._environment.is_fullscreen:
            await self._request_fullscreen_or_block()

    # ------------------------------------------------------------------
    # Environment signals
    # ------------------------------------------------------------------

    def _handle_signal(self, signal: EnvironmentSignal) -> None:
        if self.status != AttemptStatus.IN_PROGRESS or self.paused:
            return

        kind = signal.kind
        now = self._clock()

        if kind == SignalKind.VISIBILITY_HIDDEN:
            # Counted as a tab switch; the generic hidden kind is not recorded
            # as well so one switch is not penalized twice
            self.integrity.record_tab_switch()
            self.time_budget.leave_page(now)
        elif kind == SignalKind.BLUR:
            if self.time_budget.leave_page(now):
                self.integrity.record(ProctorEventKind.BLUR, signal.meta)
        elif kind in (SignalKind.VISIBILITY_VISIBLE, SignalKind.FOCUS):
            self.time_budget.return_to_page(now)
        elif kind == SignalKind.FULLSCREEN_EXITED:
            if self.guard.exiting:
                return
            if self.test.require_fullscreen:
                self.integrity.record(ProctorEventKind.EXIT_FULLSCREEN, signal.meta)
                self._enter_block()
        elif kind == SignalKind.FULLSCREEN_ENTERED:
            self.fullscreen_blocked = False
        elif kind == SignalKind.NAVIGATION_ATTEMPT:
            if self.guard.exiting:
                return
            # Keep the test page current until the final flush has been sent
            self._environment.reassert_location()
            self._spawn(self._submit_in_background(SubmitTrigger.FORCED_NAVIGATION))
        elif kind in _PASSTHROUGH_EVENTS:
            self.integrity.record(_PASSTHROUGH_EVENTS[kind], signal.meta)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _start_background(self) -> None:
        loop = asyncio.get_running_loop()
        if self._unsubscribe is None:
            self._unsubscribe = self._environment.subscribe(self._handle_signal)
        if self._ticker is None or self._ticker.done():
            self._ticker = loop.create_task(self._run_ticker())
        if self._tracking_pusher is None or self._tracking_pusher.done():
            self._tracking_pusher = loop.create_task(self._run_tracking_pusher())

    def _stop_background(self) -> None:
        """Stop timers, listeners and pending debounced saves. Never cancels the caller."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        current = asyncio.current_task()
        for task in (self._ticker, self._tracking_pusher):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._ticker = None
        self._tracking_pusher = None

        if self.answers is not None:
            self.answers.cancel_pending()

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._spawned.add(task)
        task.add_done_callback(self._spawned.discard)
        return task

    async def _run_ticker(self) -> None:
        while self.status == AttemptStatus.IN_PROGRESS and not self.paused:
            remaining = self.time_budget.remaining(self._clock())
            if self._on_tick is not None:
                with graceful_failure("deliver timer tick", logger):
                    self._on_tick(remaining)
            if remaining == 0:
                logger.info("Time budget exhausted", extra={"trigger": SubmitTrigger.TIMEOUT.value})
                self._warn(ErrorMessages.TIME_UP)
                self._spawn(self._submit_in_background(SubmitTrigger.TIMEOUT))
                return
            await asyncio.sleep(self._tick_seconds)

    async def _run_tracking_pusher(self) -> None:
        while self.status == AttemptStatus.IN_PROGRESS and not self.paused:
            await asyncio.sleep(self._tracking_push_seconds)
            await self._push_tab_tracking()

    async def _settle_tracking(self) -> None:
        """Close an open off-page interval and push the final counters before submit."""
        self.time_budget.return_to_page(self._clock())
        await self._push_tab_tracking()

    async def _push_tab_tracking(self) -> None:
        with graceful_failure(
            "push tab tracking",
            logger,
            context={"attempt_id": self.attempt_id},
        ):
            await self._api.push_tab_tracking(
                self.test.id,
                self.attempt_id,
                tab_switch_count=self.integrity.tab_switch_count,
                time_off_page_seconds=self.time_budget.time_off_page_seconds,
            )

    async def _submit_in_background(self, trigger: SubmitTrigger) -> None:
        """Timeout and navigation triggers have no caller to raise to."""
        try:
            response = await self.submit(trigger)
        except SubmissionError as e:
            logger.error(f"Automatic submit failed: {e}", extra={"trigger": trigger.value})
            self._warn(str(e))
            return
        except Exception:
            logger.exception(
                f"Automatic submit crashed for attempt {self.attempt_id}",
                extra={"trigger": trigger.value},
            )
            self._warn(ErrorMessages.SUBMIT_FAILED)
            return
        if response is not None and trigger == SubmitTrigger.FORCED_NAVIGATION:
            self._warn(ErrorMessages.NAVIGATION_SUBMIT)

    def _warn(self, message: str) -> None:
        if self._on_warning is None:
            return
        with graceful_failure("deliver warning", logger):
            self._on_warning(message)
