"""
Pydantic schemas for the engine and the collaborator wire format.
"""
from .attempts import (
    BLANK_SEPARATOR,
    Answer,
    AnswerPayload,
    AnswerUpsertRequest,
    Attempt,
    AttemptDetail,
    ProctorEvent,
    ProctorEventRequest,
    Question,
    QuestionOption,
    StartAttemptRequest,
    StartAttemptResponse,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
    TabTrackingRequest,
    TestConfig,
)
from .grading import (
    AiGradeRequest,
    GradeEntry,
    GradeSuggestion,
    SaveGradesRequest,
    SuggestionsResponse,
)

__all__ = [
    "BLANK_SEPARATOR",
    "AiGradeRequest",
    "Answer",
    "AnswerPayload",
    "AnswerUpsertRequest",
    "Attempt",
    "AttemptDetail",
    "GradeEntry",
    "GradeSuggestion",
    "ProctorEvent",
    "ProctorEventRequest",
    "Question",
    "QuestionOption",
    "SaveGradesRequest",
    "StartAttemptRequest",
    "StartAttemptResponse",
    "SubmitAttemptRequest",
    "SubmitAttemptResponse",
    "SuggestionsResponse",
    "TabTrackingRequest",
    "TestConfig",
]
