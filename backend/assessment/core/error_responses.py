"""
Standardized error codes, messages and HTTPException builders.

This module provides consistent error messages for both halves of the
repository:

1. The engine surfaces `ErrorMessages` text to the test taker (validation
   errors, autosave warnings, submission failures).
2. The reference collaborator raises HTTPExceptions whose body carries a
   machine-readable `error` code next to the user-facing `message`, which the
   HTTP client maps back onto typed exceptions.

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Use "Please try again." for transient failures

Usage:
    from assessment.core.error_responses import ErrorCodes, ErrorMessages, raise_forbidden

    raise_forbidden(ErrorCodes.MAX_ATTEMPTS_REACHED, ErrorMessages.max_attempts_reached(3))
"""

from typing import NoReturn

from fastapi import HTTPException, status


class ErrorCodes:
    """Machine-readable error codes shared by the collaborator and the client."""

    NEED_TEST_PASSWORD = "NEED_TEST_PASSWORD"
    MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"
    TEST_NOT_AVAILABLE = "TEST_NOT_AVAILABLE"
    ATTEMPT_NOT_IN_PROGRESS = "ATTEMPT_NOT_IN_PROGRESS"
    INVALID_GRADE = "INVALID_GRADE"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SUGGESTION_FAILED = "SUGGESTION_FAILED"


class ErrorMessages:
    """Centralized user-facing message constants and templates.

    Naming Convention:
    - Constants: SCREAMING_SNAKE_CASE for static messages
    - Methods: snake_case for templates that accept parameters
    """

    # ==========================================================================
    # Start / validation errors
    # ==========================================================================
    PASSWORD_REQUIRED = "Password is required."
    INVALID_PASSWORD = "Invalid test password."
    TEST_NOT_PUBLISHED = "This test is not published."
    TEST_NOT_STARTED = "This test has not opened yet."
    TEST_CLOSED = "This test is closed."

    # ==========================================================================
    # In-progress errors
    # ==========================================================================
    FULLSCREEN_REQUIRED = "Please enable fullscreen mode to continue this test."
    ATTEMPT_NOT_IN_PROGRESS = "Attempt already submitted."
    MULTI_SESSION_NOT_ALLOWED = "This test does not allow saving and exiting."

    # ==========================================================================
    # Submission
    # ==========================================================================
    SUBMIT_FAILED = "Failed to submit test. Please try again."
    TIME_UP = "Time is up. Your test is being submitted automatically."
    NAVIGATION_SUBMIT = "Your test has been submitted due to a navigation attempt."

    # ==========================================================================
    # Grading
    # ==========================================================================
    OBJECTIVE_GRADE_READ_ONLY = "Auto-graded answers cannot be edited."
    SUGGESTION_FAILED = "Grading suggestions are unavailable right now. Please try again."

    # ==========================================================================
    # Not found
    # ==========================================================================
    TEST_NOT_FOUND = "Test not found."
    ATTEMPT_NOT_FOUND = "Attempt not found."
    ANSWER_NOT_FOUND = "Answer not found."
    QUESTION_NOT_FOUND = "Question not found."

    @staticmethod
    def max_attempts_reached(max_attempts: int) -> str:
        """Message for when the attempt ceiling has been hit."""
        return f"You have reached the maximum of {max_attempts} attempt(s) for this test."

    @staticmethod
    def points_out_of_range(answer_id: str, points: float, max_points: float) -> str:
        """Message for a grade outside [0, question points]."""
        return (
            f"Points for answer {answer_id} must be between 0 and {max_points:g}, "
            f"got {points:g}."
        )

    @staticmethod
    def points_required(answer_id: str) -> str:
        """Message for a buffered grade with no points."""
        return f"Points for answer {answer_id} are required."

    @staticmethod
    def save_failed_for(question_id: str) -> str:
        """Warning shown when an autosave for one question fails."""
        return f"Failed to save answer for question {question_id}. It will be retried on submit."


# ==============================================================================
# HTTPException Builder Functions
# ==============================================================================


def _raise(status_code: int, code: str, message: str) -> NoReturn:
    raise HTTPException(
        status_code=status_code,
        detail={"error": code, "message": message},
    )


def raise_bad_request(code: str, message: str) -> NoReturn:
    """Raise a 400 Bad Request exception.

    Use for client errors where the request is malformed or invalid.

    Args:
        code: Machine-readable error code from ErrorCodes
        message: User-facing error message

    Raises:
        HTTPException: 400 Bad Request
    """
    _raise(status.HTTP_400_BAD_REQUEST, code, message)


def raise_forbidden(code: str, message: str) -> NoReturn:
    """Raise a 403 Forbidden exception.

    Use when the request is well-formed but not permitted right now
    (password, attempt ceiling, availability window).

    Raises:
        HTTPException: 403 Forbidden
    """
    _raise(status.HTTP_403_FORBIDDEN, code, message)


def raise_not_found(message: str) -> NoReturn:
    """Raise a 404 Not Found exception.

    Raises:
        HTTPException: 404 Not Found
    """
    _raise(status.HTTP_404_NOT_FOUND, ErrorCodes.NOT_FOUND, message)


def raise_conflict(code: str, message: str) -> NoReturn:
    """Raise a 409 Conflict exception.

    Use when the request conflicts with the attempt's current state.

    Raises:
        HTTPException: 409 Conflict
    """
    _raise(status.HTTP_409_CONFLICT, code, message)


def raise_bad_gateway(code: str, message: str) -> NoReturn:
    """Raise a 502 Bad Gateway exception.

    Use when an upstream provider the collaborator depends on failed.

    Raises:
        HTTPException: 502 Bad Gateway
    """
    _raise(status.HTTP_502_BAD_GATEWAY, code, message)
