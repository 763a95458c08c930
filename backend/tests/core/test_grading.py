"""
Tests for score aggregation and the grader's session.
"""
from unittest.mock import AsyncMock

import pytest

from assessment.client.attempt_api import AttemptApi
from assessment.core.errors import (
    CollaboratorError,
    GradeValidationError,
    ReadOnlyGradeError,
)
from assessment.core.grading import GradingSession, grading_status, score_breakdown
from assessment.models import AttemptStatus, GradingStatus, QuestionType, SuggestionMode
from assessment.schemas import Answer, AttemptDetail, GradeSuggestion, Question

from conftest import T0, make_attempt, make_test


def _essay(index: int, points: float = 2) -> Question:
    return Question(id=f"e{index}", type=QuestionType.LONG_TEXT, points=points, prompt_md="Discuss.")


class TestScoreBreakdown:
    """Tests for score_breakdown."""

    def test_partially_graded_attempt(self):
        """10 questions, 6 graded worth 12 earning 9, 4 ungraded worth 8."""
        questions = [_essay(i) for i in range(10)]
        earned = [2, 2, 2, 1, 1, 1]
        answers = [
            Answer(id=f"a{i}", question_id=f"e{i}", points_awarded=earned[i], graded_at=T0)
            for i in range(6)
        ] + [Answer(id=f"a{i}", question_id=f"e{i}", answer_text="...") for i in range(6, 10)]

        breakdown = score_breakdown(questions, answers)

        assert breakdown == (9, 12, 20)
        assert breakdown.ungraded_total == 8
        assert breakdown.percentage == 75.0

    def test_ungraded_points_do_not_count(self):
        """A score without a grade timestamp is not earned yet."""
        questions = [_essay(0)]
        answers = [Answer(id="a0", question_id="e0", points_awarded=2)]

        assert score_breakdown(questions, answers) == (0, 0, 2)
        assert score_breakdown(questions, answers).percentage is None

    def test_earned_capped_at_question_points(self):
        questions = [_essay(0, points=2)]
        answers = [Answer(id="a0", question_id="e0", points_awarded=5, graded_at=T0)]

        assert score_breakdown(questions, answers).earned == 2


class TestGradingStatus:
    def test_statuses(self):
        questions = make_test().questions
        graded = lambda qid: Answer(id=qid, question_id=qid, points_awarded=0, graded_at=T0)  # noqa: E731

        assert grading_status(questions, []) == GradingStatus.UNGRADED
        assert grading_status(questions, [graded("q1")]) == GradingStatus.PARTIALLY_GRADED
        # The q4 text block never needs a grade
        all_graded = [graded(qid) for qid in ("q1", "q2", "q3", "q5")]
        assert grading_status(questions, all_graded) == GradingStatus.FULLY_GRADED


@pytest.fixture
def grading_api():
    return AsyncMock(spec=AttemptApi)


@pytest.fixture
def grading_session(grading_api):
    detail = AttemptDetail(
        attempt=make_attempt(status=AttemptStatus.SUBMITTED, submitted_at=T0),
        answers=[
            Answer(id="ans1", question_id="q1", selected_option_ids=["o1"], points_awarded=2, graded_at=T0),
            Answer(id="ans3", question_id="q3", answer_text="Plants turn light into sugar."),
        ],
    )
    return GradingSession(make_test(), detail, grading_api)


class TestGradingSession:
    """Tests for GradingSession edits, suggestions and save."""

    def test_only_free_response_is_editable(self, grading_session):
        assert grading_session.free_response_answer_ids() == ["ans3"]
        with pytest.raises(ReadOnlyGradeError):
            grading_session.edit_points("ans1", 0)

    async def test_suggestion_edit_save_flow(self, grading_session, grading_api):
        """Apply a suggested 4, edit to 3, save: 3 is persisted with the note."""
        grading_api.generate_suggestions.return_value = [
            GradeSuggestion(
                answer_id="ans3",
                suggested_points=4,
                max_points=5,
                explanation="Mentions light energy but not chlorophyll.",
            )
        ]

        await grading_session.fetch_suggestions(SuggestionMode.SINGLE, "ans3")
        applied = grading_session.apply_suggestion("ans3")
        grading_session.edit_points("ans3", 3)
        entries = await grading_session.save()

        assert applied.points_awarded == 3
        assert len(entries) == 1
        assert entries[0].points_awarded == 3
        assert entries[0].grader_note == "Mentions light energy but not chlorophyll."
        grading_api.save_grades.assert_awaited_once()
        saved = {answer.id: answer for answer in grading_session.answers}
        assert saved["ans3"].points_awarded == 3
        assert saved["ans3"].graded_at is not None
        assert not grading_session.has_unsaved_edits
        assert grading_session.score_breakdown() == (5, 7, 12)

    async def test_suggestions_are_not_persisted(self, grading_session, grading_api):
        grading_api.generate_suggestions.return_value = [
            GradeSuggestion(answer_id="ans3", suggested_points=5, max_points=5)
        ]

        await grading_session.fetch_suggestions(SuggestionMode.ALL)
        grading_session.apply_suggestion("ans3")

        grading_api.save_grades.assert_not_called()
        assert grading_session.edit_for("ans3").grader_note == ""

    async def test_single_mode_requires_answer(self, grading_session):
        with pytest.raises(ValueError):
            await grading_session.fetch_suggestions(SuggestionMode.SINGLE)

    def test_apply_missing_suggestion(self, grading_session):
        with pytest.raises(KeyError):
            grading_session.apply_suggestion("ans3")

    @pytest.mark.parametrize("points", [-1, 5.5, 100])
    async def test_out_of_range_blocks_save(self, grading_session, grading_api, points):
        grading_session.edit_points("ans3", points)

        with pytest.raises(GradeValidationError):
            await grading_session.save()

        grading_api.save_grades.assert_not_called()
        assert grading_session.has_unsaved_edits

    @pytest.mark.parametrize("points", [float("nan"), float("inf")])
    async def test_non_finite_points_block_save(self, grading_session, grading_api, points):
        """NaN compares false against both bounds and must still be rejected."""
        grading_session.edit_points("ans3", points)

        with pytest.raises(GradeValidationError):
            await grading_session.save()

        grading_api.save_grades.assert_not_called()

    async def test_note_without_points_blocks_save(self, grading_session, grading_api):
        grading_session.edit_note("ans3", "Needs a score")

        with pytest.raises(GradeValidationError):
            await grading_session.save()

        grading_api.save_grades.assert_not_called()

    async def test_boundaries_are_accepted(self, grading_session, grading_api):
        grading_session.edit_points("ans3", 5)

        entries = await grading_session.save()

        assert entries[0].points_awarded == 5

    async def test_nothing_buffered_sends_nothing(self, grading_session, grading_api):
        assert await grading_session.save() == []
        grading_api.save_grades.assert_not_called()

    async def test_failed_save_keeps_buffer(self, grading_session, grading_api):
        grading_api.save_grades.side_effect = CollaboratorError("offline")
        grading_session.edit_points("ans3", 2)

        with pytest.raises(CollaboratorError):
            await grading_session.save()

        assert grading_session.has_unsaved_edits
        assert grading_session.edit_for("ans3").points_awarded == 2

    def test_discard_edits(self, grading_session):
        grading_session.edit_points("ans3", 1)
        grading_session.discard_edits()

        assert not grading_session.has_unsaved_edits
        assert grading_session.edit_for("ans3").points_awarded is None
