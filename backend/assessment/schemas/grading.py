"""
Pydantic schemas for grading and AI grading suggestions.
"""
from typing import List, Optional

from pydantic import Field

from assessment.models import SuggestionMode
from assessment.schemas.attempts import CamelModel


class GradeSuggestion(CamelModel):
    """AI grading suggestion for one free-response answer.

    Held only for the current grading session. Never persisted by the engine.
    """

    answer_id: str = Field(..., description="Answer the suggestion applies to")
    suggested_points: float = Field(..., ge=0)
    max_points: float = Field(..., ge=0)
    explanation: str = ""
    strengths: str = ""
    gaps: str = ""


class AiGradeRequest(CamelModel):
    mode: SuggestionMode
    answer_id: Optional[str] = None


class SuggestionsResponse(CamelModel):
    suggestions: List[GradeSuggestion] = Field(default_factory=list)


class GradeEntry(CamelModel):
    """One grade in a save request."""

    answer_id: str = Field(..., min_length=1)
    points_awarded: float = Field(..., ge=0)
    grader_note: str = ""


class SaveGradesRequest(CamelModel):
    grades: List[GradeEntry]
