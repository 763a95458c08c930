"""
Objective-question auto-grading.

Runs on the collaborator side at submission time. Objective answers receive
their points and a grade timestamp here and are read-only afterwards;
free-response answers are left for a human grader.

Rules:
    - MCQ_SINGLE / MCQ_MULTI: full points when the selected set equals the set
      of correct options exactly, otherwise zero. No partial credit.
    - NUMERIC: full points within `numeric_tolerance` (absolute, default 0).
    - Fill-in-the-blank (SHORT_TEXT with [blank] markers): points split evenly
      across blanks; a blank matches when equal after trimming, ignoring case.
    - A question with no answer at all scores zero and counts as graded.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from assessment.models import QuestionType
from assessment.schemas import BLANK_SEPARATOR, AnswerPayload, Question


@dataclass(frozen=True)
class GradeResult:
    question_id: str
    points_awarded: float
    needs_manual_grade: bool


def grade_question(question: Question, payload: Optional[AnswerPayload]) -> GradeResult:
    """Grade one question. Unanswered questions score zero."""
    if payload is None:
        return GradeResult(question.id, 0.0, needs_manual_grade=False)

    if question.is_free_response:
        return GradeResult(question.id, 0.0, needs_manual_grade=True)

    if question.type in (QuestionType.MCQ_SINGLE, QuestionType.MCQ_MULTI):
        points = _grade_choice(question, payload)
    elif question.type == QuestionType.NUMERIC:
        points = _grade_numeric(question, payload)
    else:
        points = _grade_blanks(question, payload)

    return GradeResult(question.id, points, needs_manual_grade=False)


def grade_attempt(
    questions: Iterable[Question], payloads: Dict[str, AnswerPayload]
) -> List[GradeResult]:
    """Grade every question of a test against the submitted payloads."""
    return [grade_question(question, payloads.get(question.id)) for question in questions]


def _grade_choice(question: Question, payload: AnswerPayload) -> float:
    correct = {option.id for option in question.options if option.is_correct}
    selected = set(payload.selected_option_ids)
    if not selected or not correct:
        return 0.0
    return question.points if selected == correct else 0.0


def _grade_numeric(question: Question, payload: AnswerPayload) -> float:
    if question.numeric_answer is None or payload.numeric_answer is None:
        return 0.0
    if not math.isfinite(payload.numeric_answer):
        return 0.0
    tolerance = question.numeric_tolerance or 0.0
    if abs(payload.numeric_answer - question.numeric_answer) <= tolerance:
        return question.points
    return 0.0


def _grade_blanks(question: Question, payload: AnswerPayload) -> float:
    expected = question.blank_answers
    if not expected:
        return 0.0

    given = payload.blank_answers
    if given is None and payload.answer_text:
        given = payload.answer_text.split(BLANK_SEPARATOR)
    given = given or []

    correct = sum(
        1
        for index, value in enumerate(expected)
        if index < len(given) and _normalize(given[index]) == _normalize(value)
    )
    return round(question.points * correct / len(expected), 2)


def _normalize(value: str) -> str:
    return value.strip().casefold()
