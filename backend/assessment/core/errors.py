"""
Exception hierarchy for the assessment engine.

Taxonomy:
- Validation errors (AttemptStartError): surfaced immediately, attempt never created.
- Transient autosave / event-recording failures: never raised to callers,
  handled with graceful_failure and a user warning.
- Submission failures (SubmissionError): recoverable, the attempt stays
  IN_PROGRESS and the user may retry.
- Fullscreen lockdown exits: a blocking state, not an exception.
"""

from typing import Optional


class AssessmentError(Exception):
    """Base class for all engine errors."""


class CollaboratorError(AssessmentError):
    """A collaborator API call returned a non-success response or failed in transit."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class AttemptStartError(AssessmentError):
    """Starting an attempt was rejected (password, window, attempt ceiling)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class InvalidTransitionError(AssessmentError):
    """An attempt status transition that only moves backwards or skips states."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot transition attempt from {current} to {target}")
        self.current = current
        self.target = target


class SubmissionError(AssessmentError):
    """The final submit request failed; the attempt remains IN_PROGRESS."""


class PauseNotAllowedError(AssessmentError):
    """Save & exit was requested on a test that does not allow multi-session attempts."""


class FullscreenDeniedError(AssessmentError):
    """The environment refused a fullscreen request (usually: no user gesture)."""


class GradeValidationError(AssessmentError):
    """A buffered grade is outside [0, question points]; nothing was transmitted."""


class ReadOnlyGradeError(AssessmentError):
    """An edit targeted an auto-graded objective answer."""


class SuggestionProviderError(AssessmentError):
    """The grading-suggestion provider failed or returned an unusable reply."""
