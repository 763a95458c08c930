"""
Enumerations shared by the engine, the schemas and the reference collaborator.
"""
from .models import (
    AttemptStatus,
    GradingStatus,
    ProctorEventKind,
    QuestionType,
    RiskBand,
    SubmitTrigger,
    SuggestionMode,
    TestStatus,
)

__all__ = [
    "AttemptStatus",
    "GradingStatus",
    "ProctorEventKind",
    "QuestionType",
    "RiskBand",
    "SubmitTrigger",
    "SuggestionMode",
    "TestStatus",
]
