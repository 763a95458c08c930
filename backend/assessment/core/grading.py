"""
Grading aggregator.

Combines automatic objective grades and human-reviewed free-response grades
into a displayable score, and runs the AI-suggestion workflow for graders.

Scoring honesty:
    Only answers with a grade timestamp count toward the earned points and the
    graded denominator, so a partially graded attempt shows 9/12 rather than a
    misleading 9/20. The overall total (20) is reported separately to show how
    much grading remains.

Suggestions:
    AI suggestions live only for the current grading session. Applying one
    copies its score and explanation into the local edit buffer; nothing is
    persisted until the grader explicitly saves.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional

from assessment.client.attempt_api import AttemptApi
from assessment.core.datetime_utils import utc_now
from assessment.core.error_responses import ErrorMessages
from assessment.core.errors import (
    CollaboratorError,
    GradeValidationError,
    ReadOnlyGradeError,
)
from assessment.models import GradingStatus, SuggestionMode
from assessment.schemas import (
    Answer,
    AttemptDetail,
    GradeEntry,
    GradeSuggestion,
    Question,
    TestConfig,
)

logger = logging.getLogger(__name__)


class ScoreBreakdown(NamedTuple):
    """(earned, graded_total, overall_total) for one attempt."""

    earned: float
    graded_total: float
    overall_total: float

    @property
    def ungraded_total(self) -> float:
        return self.overall_total - self.graded_total

    @property
    def percentage(self) -> Optional[float]:
        """Earned share of the graded points, or None before anything is graded."""
        if self.graded_total <= 0:
            return None
        return round(self.earned / self.graded_total * 100, 1)


def score_breakdown(questions: Iterable[Question], answers: Iterable[Answer]) -> ScoreBreakdown:
    """
    Compute the score breakdown for an attempt.

    Args:
        questions: Every question of the test.
        answers: The attempt's stored answers.

    Returns:
        ScoreBreakdown where earned and graded_total include only answers with
        a non-null graded_at, and overall_total sums every question's points.

    Example:
        10 questions, 6 graded (worth 12, earned 9), 4 ungraded (worth 8)
        -> ScoreBreakdown(9, 12, 20)
    """
    points_by_question = {question.id: question.points for question in questions}

    earned = 0.0
    graded_total = 0.0
    for answer in answers:
        if answer.graded_at is None:
            continue
        max_points = points_by_question.get(answer.question_id)
        if max_points is None:
            logger.warning(f"Answer {answer.id} references unknown question {answer.question_id}")
            continue
        earned += min(answer.points_awarded or 0.0, max_points)
        graded_total += max_points

    return ScoreBreakdown(earned, graded_total, sum(points_by_question.values()))


def grading_status(questions: Iterable[Question], answers: Iterable[Answer]) -> GradingStatus:
    """UNGRADED, PARTIALLY_GRADED or FULLY_GRADED; text blocks are ignored."""
    gradable = {question.id for question in questions if not question.is_text_block}
    graded = {answer.question_id for answer in answers if answer.graded_at is not None}
    graded &= gradable

    if not graded:
        return GradingStatus.UNGRADED
    if graded == gradable:
        return GradingStatus.FULLY_GRADED
    return GradingStatus.PARTIALLY_GRADED


@dataclass
class GradeEdit:
    """Buffered, unsaved grade for one free-response answer."""

    points_awarded: Optional[float] = None
    grader_note: str = ""


class GradingSession:
    """A grader's session over one submitted attempt."""

    def __init__(self, test: TestConfig, detail: AttemptDetail, api: AttemptApi) -> None:
        self.test = test
        self.attempt = detail.attempt
        self._api = api
        self._answers: Dict[str, Answer] = {answer.id: answer for answer in detail.answers}
        self._edits: Dict[str, GradeEdit] = {}
        self.suggestions: Dict[str, GradeSuggestion] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def answers(self) -> List[Answer]:
        return list(self._answers.values())

    def question_for(self, answer_id: str) -> Question:
        answer = self._answer(answer_id)
        question = self.test.question(answer.question_id)
        if question is None:
            raise KeyError(ErrorMessages.QUESTION_NOT_FOUND)
        return question

    def is_editable(self, answer_id: str) -> bool:
        """Only free-response answers accept manual grades."""
        return self.question_for(answer_id).is_free_response

    def free_response_answer_ids(self) -> List[str]:
        return [answer_id for answer_id in self._answers if self.is_editable(answer_id)]

    def edit_for(self, answer_id: str) -> GradeEdit:
        """The buffered edit, seeded from the stored grade on first access."""
        edit = self._edits.get(answer_id)
        if edit is None:
            answer = self._answer(answer_id)
            edit = GradeEdit(answer.points_awarded, answer.grader_note or "")
        return edit

    @property
    def has_unsaved_edits(self) -> bool:
        return bool(self._edits)

    def score_breakdown(self) -> ScoreBreakdown:
        return score_breakdown(self.test.questions, self._answers.values())

    def grading_status(self) -> GradingStatus:
        return grading_status(self.test.questions, self._answers.values())

    # ------------------------------------------------------------------
    # Buffered edits
    # ------------------------------------------------------------------

    def edit_points(self, answer_id: str, points: float) -> None:
        """Buffer a score. Bounds are checked on save, not here."""
        self._buffer(answer_id).points_awarded = points

    def edit_note(self, answer_id: str, note: str) -> None:
        self._buffer(answer_id).grader_note = note

    def discard_edits(self) -> None:
        self._edits.clear()

    # ------------------------------------------------------------------
    # AI suggestions
    # ------------------------------------------------------------------

    async def fetch_suggestions(
        self, mode: SuggestionMode, answer_id: Optional[str] = None
    ) -> List[GradeSuggestion]:
        """Fetch or generate suggestions and keep them for this session only."""
        if mode == SuggestionMode.SINGLE and answer_id is None:
            raise ValueError("answer_id is required for a single-answer suggestion")

        suggestions = await self._api.generate_suggestions(
            self.test.id, self.attempt.id, mode, answer_id
        )
        for suggestion in suggestions:
            if suggestion.answer_id in self._answers:
                self.suggestions[suggestion.answer_id] = suggestion
        logger.info(f"Received {len(suggestions)} grading suggestion(s) for attempt {self.attempt.id}")
        return suggestions

    def apply_suggestion(self, answer_id: str) -> GradeEdit:
        """Copy a suggestion into the edit buffer. Persists nothing."""
        suggestion = self.suggestions.get(answer_id)
        if suggestion is None:
            raise KeyError(f"No suggestion for answer {answer_id}")

        edit = self._buffer(answer_id)
        edit.points_awarded = suggestion.suggested_points
        if suggestion.explanation:
            edit.grader_note = suggestion.explanation
        return edit

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save(self) -> List[GradeEntry]:
        """
        Validate and persist the buffered free-response grades.

        Returns:
            The entries that were sent (empty when nothing was buffered).

        Raises:
            GradeValidationError: a buffered score is missing or outside
                [0, question points]. Nothing is transmitted.
            CollaboratorError: the save request failed. The buffer is kept so
                the grader can retry.
        """
        entries: List[GradeEntry] = []
        for answer_id, edit in self._edits.items():
            max_points = self.question_for(answer_id).points
            points = edit.points_awarded
            if points is None:
                raise GradeValidationError(ErrorMessages.points_required(answer_id))
            if not math.isfinite(points) or not 0 <= points <= max_points:
                raise GradeValidationError(
                    ErrorMessages.points_out_of_range(answer_id, points, max_points)
                )
            entries.append(
                GradeEntry(
                    answer_id=answer_id,
                    points_awarded=points,
                    grader_note=edit.grader_note,
                )
            )

        if not entries:
            return []

        try:
            await self._api.save_grades(self.test.id, self.attempt.id, entries)
        except CollaboratorError as e:
            logger.error(f"Failed to save {len(entries)} grade(s) for attempt {self.attempt.id}: {e.message}")
            raise

        graded_at = utc_now()
        for entry in entries:
            self._answers[entry.answer_id] = self._answers[entry.answer_id].model_copy(
                update={
                    "points_awarded": entry.points_awarded,
                    "grader_note": entry.grader_note,
                    "graded_at": graded_at,
                }
            )
        self._edits.clear()
        logger.info(f"Saved {len(entries)} grade(s) for attempt {self.attempt.id}")
        return entries

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _answer(self, answer_id: str) -> Answer:
        answer = self._answers.get(answer_id)
        if answer is None:
            raise KeyError(ErrorMessages.ANSWER_NOT_FOUND)
        return answer

    def _buffer(self, answer_id: str) -> GradeEdit:
        if not self.is_editable(answer_id):
            raise ReadOnlyGradeError(ErrorMessages.OBJECTIVE_GRADE_READ_ONLY)
        edit = self._edits.get(answer_id)
        if edit is None:
            edit = self._edits[answer_id] = self.edit_for(answer_id)
        return edit
