"""
Pydantic schemas for tests, attempts, answers and proctor events.

Wire payloads use the camelCase keys of the collaborator API; Python code uses
snake_case attribute names (populate_by_name is enabled on every model).
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from assessment.models import (
    AttemptStatus,
    ProctorEventKind,
    QuestionType,
    TestStatus,
)

# Blank-fill answers are stored joined in answer_text
BLANK_SEPARATOR = " | "

_BLANK_MARKER = re.compile(r"\[blank\d*\]")


class CamelModel(BaseModel):
    """Base model serializing to camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class QuestionOption(CamelModel):
    """Schema for a selectable option of an MCQ question."""

    id: str = Field(..., description="Option ID")
    label: str = Field("", description="Option text")
    is_correct: bool = Field(False, description="Whether selecting this option is correct")


class Question(CamelModel):
    """Schema for a question as the engine sees it (read-only)."""

    id: str = Field(..., description="Question ID")
    type: QuestionType = Field(..., description="Question type")
    points: float = Field(..., ge=0, description="Maximum points for this question")
    prompt_md: Optional[str] = Field(None, description="Prompt markdown")
    options: List[QuestionOption] = Field(default_factory=list)
    numeric_answer: Optional[float] = Field(None, description="Expected numeric answer")
    numeric_tolerance: Optional[float] = Field(
        None, ge=0, description="Accepted absolute deviation from numeric_answer"
    )
    blank_answers: List[str] = Field(
        default_factory=list, description="Expected values for [blank] markers"
    )

    @property
    def is_text_block(self) -> bool:
        """Zero-point SHORT_TEXT items are instructions, never answered."""
        return self.type == QuestionType.SHORT_TEXT and self.points == 0

    @property
    def is_fill_in_the_blank(self) -> bool:
        return (
            self.type == QuestionType.SHORT_TEXT
            and bool(self.prompt_md)
            and _BLANK_MARKER.search(self.prompt_md or "") is not None
        )

    @property
    def is_free_response(self) -> bool:
        """Free-response questions need human (or AI-assisted) grading."""
        if self.type == QuestionType.LONG_TEXT:
            return True
        return (
            self.type == QuestionType.SHORT_TEXT
            and not self.is_text_block
            and not self.is_fill_in_the_blank
        )


class TestConfig(CamelModel):
    """Schema for the test configuration. Immutable once an attempt begins."""

    __test__ = False  # keep pytest from collecting this class

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
    )

    id: str = Field(..., description="Test ID")
    name: str = Field("", description="Display name")
    status: TestStatus = Field(TestStatus.PUBLISHED, description="Publication status")
    duration_minutes: int = Field(..., gt=0, description="Time budget in minutes")
    start_at: Optional[datetime] = Field(None, description="Scheduling window start")
    end_at: Optional[datetime] = Field(None, description="Scheduling window end")
    allow_late_until: Optional[datetime] = Field(
        None, description="Late-allowance deadline past end_at"
    )
    max_attempts: Optional[int] = Field(None, ge=1, description="Attempt ceiling")
    require_fullscreen: bool = Field(False, description="Lockdown in fullscreen")
    allow_multi_session: bool = Field(
        False, description="Whether save & exit (pause) is permitted"
    )
    password_hash: Optional[str] = Field(None, description="Bcrypt hash of the test password")
    questions: List[Question] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def requires_password(self) -> bool:
        return bool(self.password_hash)

    def question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


class Attempt(CamelModel):
    """Schema for one user's run at a test."""

    id: str = Field(..., description="Attempt ID")
    test_id: str = Field(..., description="Test ID")
    user_id: str = Field(..., description="User ID")
    status: AttemptStatus = Field(AttemptStatus.NOT_STARTED)
    started_at: Optional[datetime] = Field(None, description="Attempt start instant")
    submitted_at: Optional[datetime] = Field(None, description="Submission instant")
    tab_switch_count: int = Field(0, ge=0)
    time_off_page_seconds: int = Field(0, ge=0)
    proctoring_score: Optional[float] = Field(None, ge=0, le=100)
    grade_earned: Optional[float] = Field(None, ge=0)


class AnswerPayload(CamelModel):
    """The response content of one answer; exactly the fields the question type uses."""

    answer_text: Optional[str] = None
    selected_option_ids: List[str] = Field(default_factory=list)
    numeric_answer: Optional[float] = None
    blank_answers: Optional[List[str]] = None

    def is_answered_for(self, question: Question) -> bool:
        """Whether this payload counts as an answer for the given question."""
        if question.type in (QuestionType.MCQ_SINGLE, QuestionType.MCQ_MULTI):
            return len(self.selected_option_ids) > 0
        if question.type == QuestionType.NUMERIC:
            return self.numeric_answer is not None
        if self.blank_answers:
            return any(value.strip() for value in self.blank_answers)
        return bool(self.answer_text and self.answer_text.strip())


class Answer(CamelModel):
    """Schema for a stored answer including grading fields."""

    id: str = Field(..., description="Answer ID")
    question_id: str = Field(..., description="Question ID")
    answer_text: Optional[str] = None
    selected_option_ids: List[str] = Field(default_factory=list)
    numeric_answer: Optional[float] = None
    marked_for_review: bool = False
    points_awarded: Optional[float] = Field(None, ge=0)
    graded_at: Optional[datetime] = None
    grader_note: Optional[str] = None

    def to_payload(self) -> AnswerPayload:
        """Rebuild the in-memory payload, splitting joined blank answers."""
        blank_answers = None
        if self.answer_text and BLANK_SEPARATOR in self.answer_text:
            blank_answers = self.answer_text.split(BLANK_SEPARATOR)
        return AnswerPayload(
            answer_text=self.answer_text,
            selected_option_ids=list(self.selected_option_ids),
            numeric_answer=self.numeric_answer,
            blank_answers=blank_answers,
        )


class ProctorEvent(CamelModel):
    """Append-only integrity event. Never mutated after it is recorded."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    kind: ProctorEventKind
    timestamp: datetime
    meta: Optional[Dict[str, Any]] = None


class AttemptDetail(CamelModel):
    """An attempt together with its stored answers."""

    attempt: Attempt
    answers: List[Answer] = Field(default_factory=list)


# =============================================================================
# Collaborator request / response shapes
# =============================================================================


class StartAttemptRequest(CamelModel):
    fingerprint: str = Field(..., min_length=1)
    password: Optional[str] = None


class StartAttemptResponse(CamelModel):
    attempt: Attempt
    answers: List[Answer] = Field(default_factory=list)


class ProctorEventRequest(CamelModel):
    kind: ProctorEventKind
    meta: Optional[Dict[str, Any]] = None


class TabTrackingRequest(CamelModel):
    tab_switch_count: int = Field(..., ge=0)
    time_off_page_seconds: int = Field(..., ge=0)


class AnswerUpsertRequest(CamelModel):
    """Schema for saving one answer during an attempt."""

    question_id: str = Field(..., min_length=1)
    answer_text: Optional[str] = None
    selected_option_ids: Optional[List[str]] = None
    numeric_answer: Optional[float] = None
    blank_answers: Optional[List[str]] = None
    marked_for_review: bool = False

    @field_validator("answer_text")
    @classmethod
    def strip_nul_bytes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.replace("\x00", "")

    @classmethod
    def from_payload(
        cls, question_id: str, payload: AnswerPayload, marked_for_review: bool
    ) -> "AnswerUpsertRequest":
        return cls(
            question_id=question_id,
            answer_text=payload.answer_text,
            selected_option_ids=list(payload.selected_option_ids),
            numeric_answer=payload.numeric_answer,
            blank_answers=list(payload.blank_answers) if payload.blank_answers else None,
            marked_for_review=marked_for_review,
        )


class SubmitAttemptRequest(CamelModel):
    client_fingerprint: str = Field(..., min_length=1)


class SubmitAttemptResponse(CamelModel):
    attempt: Attempt
    needs_manual_grading: bool = False
    proctoring_score: float = 0.0
