"""
In-memory answer state with debounced autosave.

The test taker's input never waits on the network: `set_answer` updates memory
synchronously and schedules a debounced save that supersedes any pending save
for the same question. Review flags save immediately. `flush_all` is the
mandatory step before any terminal transition and writes every answer again,
so the durable record matches what the user last saw even if earlier
incremental saves failed.

Ordering:
    Saves for one question are serialized by a per-question lock and always
    send the *current* in-memory value, never a snapshot taken when the save
    was scheduled. A save that is still queued when a newer edit arrives can
    therefore never land an older value after a newer one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from assessment.client.attempt_api import AttemptApi
from assessment.core.config import settings
from assessment.core.error_responses import ErrorMessages
from assessment.core.graceful_failure import graceful_failure
from assessment.schemas import Answer, AnswerPayload, AnswerUpsertRequest, Question

logger = logging.getLogger(__name__)

WarningCallback = Callable[[str], None]


@dataclass
class FlushResult:
    """Outcome of flush_all. Every question is in exactly one list."""

    saved: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class AnswerStore:
    """Answer state for one attempt. Single writer: the user-input handler."""

    def __init__(
        self,
        api: AttemptApi,
        test_id: str,
        attempt_id: str,
        *,
        debounce_seconds: Optional[float] = None,
        on_warning: Optional[WarningCallback] = None,
    ) -> None:
        self._api = api
        self._test_id = test_id
        self._attempt_id = attempt_id
        self._debounce_seconds = (
            settings.AUTOSAVE_DEBOUNCE_SECONDS
            if debounce_seconds is None
            else debounce_seconds
        )
        self._on_warning = on_warning
        self._answers: Dict[str, AnswerPayload] = {}
        self._marked: Set[str] = set()
        self._timers: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, question_id: str) -> Optional[AnswerPayload]:
        return self._answers.get(question_id)

    @property
    def answers(self) -> Dict[str, AnswerPayload]:
        return dict(self._answers)

    def is_marked_for_review(self, question_id: str) -> bool:
        return question_id in self._marked

    def marked_for_review_ids(self) -> List[str]:
        return sorted(self._marked)

    def unanswered_question_ids(self, questions: Iterable[Question]) -> List[str]:
        """Questions without a usable answer. Text blocks never count."""
        unanswered = []
        for question in questions:
            if question.is_text_block:
                continue
            payload = self._answers.get(question.id)
            if payload is None or not payload.is_answered_for(question):
                unanswered.append(question.id)
        return unanswered

    @property
    def has_pending_saves(self) -> bool:
        return any(not task.done() for task in self._timers.values())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def load(self, answers: Iterable[Answer]) -> None:
        """Seed memory from stored answers when resuming an attempt."""
        for answer in answers:
            self._answers[answer.question_id] = answer.to_payload()
            if answer.marked_for_review:
                self._marked.add(answer.question_id)
            else:
                self._marked.discard(answer.question_id)

    def set_answer(self, question_id: str, payload: AnswerPayload) -> None:
        """Update memory now and schedule a debounced save for this question."""
        self._answers[question_id] = payload

        previous = self._timers.pop(question_id, None)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.get_running_loop().create_task(self._debounced_save(question_id))
        self._timers[question_id] = task
        task.add_done_callback(lambda t, qid=question_id: self._forget_timer(qid, t))

    async def set_marked_for_review(self, question_id: str, flag: bool) -> bool:
        """Update the review flag and save immediately. Returns whether the save succeeded."""
        if flag:
            self._marked.add(question_id)
        else:
            self._marked.discard(question_id)
        return await self._save(question_id)

    def cancel_pending(self) -> int:
        """Cancel every pending debounced save. Returns how many were cancelled."""
        cancelled = 0
        for task in self._timers.values():
            if not task.done():
                task.cancel()
                cancelled += 1
        self._timers.clear()
        return cancelled

    async def flush_all(self) -> FlushResult:
        """Cancel pending saves and save every answer concurrently.

        Returns once every save has settled, successfully or not.
        """
        cancelled = self.cancel_pending()
        question_ids = sorted(set(self._answers) | self._marked)
        outcomes = await asyncio.gather(*(self._save(qid) for qid in question_ids))

        result = FlushResult()
        for question_id, ok in zip(question_ids, outcomes):
            (result.saved if ok else result.failed).append(question_id)

        logger.info(
            f"Flushed {len(result.saved)}/{len(question_ids)} answers "
            f"({cancelled} pending saves superseded)"
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _forget_timer(self, question_id: str, task: asyncio.Task) -> None:
        if self._timers.get(question_id) is task:
            del self._timers[question_id]

    def _lock_for(self, question_id: str) -> asyncio.Lock:
        lock = self._locks.get(question_id)
        if lock is None:
            lock = self._locks[question_id] = asyncio.Lock()
        return lock

    async def _debounced_save(self, question_id: str) -> None:
        await asyncio.sleep(self._debounce_seconds)
        await self._save(question_id)

    async def _save(self, question_id: str) -> bool:
        async with self._lock_for(question_id):
            request = AnswerUpsertRequest.from_payload(
                question_id,
                self._answers.get(question_id) or AnswerPayload(),
                question_id in self._marked,
            )
            saved = False
            with graceful_failure(
                "save answer",
                logger,
                context={"attempt_id": self._attempt_id, "question_id": question_id},
            ):
                await self._api.upsert_answer(self._test_id, self._attempt_id, request)
                saved = True

        if not saved:
            self._warn(ErrorMessages.save_failed_for(question_id))
        return saved

    def _warn(self, message: str) -> None:
        if self._on_warning is None:
            return
        with graceful_failure("deliver autosave warning", logger):
            self._on_warning(message)
