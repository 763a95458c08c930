"""
Submission protocol.

An attempt reaches SUBMITTED through exactly three triggers (manual, timeout,
forced navigation). Every trigger runs the same ordered steps:

1. Cancel pending debounced saves.
2. Flush every answer and wait for all saves to settle.
3. Close any open off-page interval and push the final tab-tracking counters.
4. Send the final submit request with a freshly computed client fingerprint.
5. On success release fullscreen and navigate to the post-test destination;
   on failure restore the lockdown and leave the attempt IN_PROGRESS.

Only one submission may be in flight. The ExitGuard is claimed before the
first network call and every trigger path checks it, so a timeout firing
during a pending manual submit produces no second submit request.
"""

import logging
from typing import Awaitable, Callable, Optional

from assessment.client.attempt_api import AttemptApi
from assessment.core.answer_store import AnswerStore
from assessment.core.environment import Environment
from assessment.core.error_responses import ErrorMessages
from assessment.core.errors import CollaboratorError, SubmissionError
from assessment.core.graceful_failure import graceful_failure
from assessment.models import SubmitTrigger
from assessment.schemas import SubmitAttemptResponse

logger = logging.getLogger(__name__)


class ExitGuard:
    """The single "exiting" flag of one attempt.

    Set while the engine itself is leaving the test page (submit or pause).
    Fullscreen exits and navigations observed while it is set are the engine's
    own and are not treated as integrity signals or new triggers.
    """

    def __init__(self) -> None:
        self._exiting = False

    @property
    def exiting(self) -> bool:
        return self._exiting

    def claim(self) -> bool:
        """Set the flag. Returns False if it was already set."""
        if self._exiting:
            return False
        self._exiting = True
        return True

    def release(self) -> None:
        self._exiting = False


def post_test_destination(
    *,
    club_id: Optional[str] = None,
    tournament_id: Optional[str] = None,
    testing_portal: bool = False,
) -> str:
    """Where the test taker lands after submitting."""
    if testing_portal:
        return "/testing"
    if tournament_id:
        return f"/tournaments/{tournament_id}/tests"
    if club_id:
        return f"/club/{club_id}?tab=tests"
    return "/"


class SubmissionProtocol:
    """Runs the ordered submit steps for one attempt."""

    def __init__(
        self,
        api: AttemptApi,
        test_id: str,
        attempt_id: str,
        answer_store: AnswerStore,
        environment: Environment,
        guard: ExitGuard,
        *,
        fingerprint_provider: Callable[[], str],
        destination: str,
        on_submitted: Callable[[SubmitAttemptResponse], None],
        restore_lockdown: Callable[[], Awaitable[None]],
        settle_tracking: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._api = api
        self._test_id = test_id
        self._attempt_id = attempt_id
        self._answer_store = answer_store
        self._environment = environment
        self._guard = guard
        self._fingerprint_provider = fingerprint_provider
        self._destination = destination
        self._on_submitted = on_submitted
        self._restore_lockdown = restore_lockdown
        self._settle_tracking = settle_tracking

    async def submit(self, trigger: SubmitTrigger) -> Optional[SubmitAttemptResponse]:
        """Submit the attempt.

        Returns:
            The collaborator's response, or None if another submission (or a
            pause) already holds the exit guard.

        Raises:
            SubmissionError: the submit request failed. The guard is released,
                lockdown restored, and the attempt stays IN_PROGRESS.
        """
        if not self._guard.claim():
            logger.info(
                f"Ignoring {trigger.value} submit: exit already in progress",
                extra={"trigger": trigger.value},
            )
            return None

        logger.info(f"Submitting attempt {self._attempt_id}", extra={"trigger": trigger.value})

        self._answer_store.cancel_pending()
        flush = await self._answer_store.flush_all()
        if not flush.ok:
            logger.warning(
                f"Submitting with {len(flush.failed)} answer(s) that failed to save: "
                f"{', '.join(flush.failed)}",
                extra={"trigger": trigger.value},
            )

        if self._settle_tracking is not None:
            await self._settle_tracking()

        try:
            response = await self._api.submit_attempt(
                self._test_id,
                self._attempt_id,
                client_fingerprint=self._fingerprint_provider(),
            )
            self._on_submitted(response)
        except Exception as e:
            status_code = e.status_code if isinstance(e, CollaboratorError) else None
            logger.error(
                f"Submit failed for attempt {self._attempt_id}: {e}",
                extra={"trigger": trigger.value, "status_code": status_code},
            )
            self._guard.release()
            await self._restore_lockdown()
            raise SubmissionError(ErrorMessages.SUBMIT_FAILED) from e

        if self._environment.is_fullscreen:
            with graceful_failure("exit fullscreen after submit", logger):
                await self._environment.exit_fullscreen()
        self._environment.navigate(self._destination)
        return response
