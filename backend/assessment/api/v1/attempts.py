"""
Attempt endpoints of the reference collaborator.

Serves the operations the engine consumes: start, read, proctor events, tab
tracking, answer upsert, submit, grading suggestions and grade save.
"""
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, Response, status

from assessment.api.deps import get_current_user_id
from assessment.api.repository import InMemoryRepository, get_repository, new_id
from assessment.api.suggestions import SuggestionGenerator, get_suggestion_generator
from assessment.core.autograde import grade_attempt
from assessment.core.availability import check_availability
from assessment.core.datetime_utils import utc_now
from assessment.core.errors import SuggestionProviderError
from assessment.core.error_responses import (
    ErrorCodes,
    ErrorMessages,
    raise_bad_gateway,
    raise_bad_request,
    raise_conflict,
    raise_forbidden,
    raise_not_found,
)
from assessment.core.grading import grading_status
from assessment.core.integrity import calculate_risk_score
from assessment.core.security import verify_password
from assessment.models import AttemptStatus, GradingStatus, SuggestionMode
from assessment.schemas import (
    BLANK_SEPARATOR,
    AiGradeRequest,
    Answer,
    AnswerPayload,
    AnswerUpsertRequest,
    Attempt,
    AttemptDetail,
    ProctorEvent,
    ProctorEventRequest,
    SaveGradesRequest,
    StartAttemptRequest,
    StartAttemptResponse,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
    SuggestionsResponse,
    TabTrackingRequest,
    TestConfig,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_test_or_404(repo: InMemoryRepository, test_id: str) -> TestConfig:
    test = repo.get_test(test_id)
    if test is None:
        raise_not_found(ErrorMessages.TEST_NOT_FOUND)
    return test


def _get_attempt_or_404(repo: InMemoryRepository, test_id: str, attempt_id: str) -> Attempt:
    attempt = repo.get_attempt(test_id, attempt_id)
    if attempt is None:
        raise_not_found(ErrorMessages.ATTEMPT_NOT_FOUND)
    return attempt


def _require_in_progress(attempt: Attempt) -> None:
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise_conflict(ErrorCodes.ATTEMPT_NOT_IN_PROGRESS, ErrorMessages.ATTEMPT_NOT_IN_PROGRESS)


@router.post(
    "/tests/{test_id}/attempts/start",
    response_model=StartAttemptResponse,
)
def start_attempt(
    test_id: str,
    body: StartAttemptRequest,
    user_id: str = Depends(get_current_user_id),
    repo: InMemoryRepository = Depends(get_repository),
):
    """
    Start an attempt, or return the caller's attempt that is already in progress.

    Validation order: availability window, password, attempt ceiling.

    Raises:
        HTTPException: 404 unknown test; 403 TEST_NOT_AVAILABLE,
            NEED_TEST_PASSWORD or MAX_ATTEMPTS_REACHED
    """
    test = _get_test_or_404(repo, test_id)
    now = utc_now()

    availability = check_availability(test, now)
    if not availability.available:
        raise_forbidden(ErrorCodes.TEST_NOT_AVAILABLE, availability.reason)

    if test.requires_password:
        if not body.password:
            raise_forbidden(ErrorCodes.NEED_TEST_PASSWORD, ErrorMessages.PASSWORD_REQUIRED)
        if not verify_password(body.password, test.password_hash):
            raise_forbidden(ErrorCodes.NEED_TEST_PASSWORD, ErrorMessages.INVALID_PASSWORD)

    with repo.lock:
        # Exactly one IN_PROGRESS attempt per (test, user)
        existing = repo.in_progress_attempt(test_id, user_id)
        if existing is not None:
            logger.info(f"Returning in-progress attempt {existing.id} for user {user_id}")
            return StartAttemptResponse(attempt=existing, answers=repo.answers(existing.id))

        if test.max_attempts is not None:
            used = sum(
                1 for attempt in repo.attempts_for(test_id, user_id) if attempt.status.is_terminal
            )
            if used >= test.max_attempts:
                raise_forbidden(
                    ErrorCodes.MAX_ATTEMPTS_REACHED,
                    ErrorMessages.max_attempts_reached(test.max_attempts),
                )

        attempt = repo.create_attempt(
            Attempt(
                id=new_id(),
                test_id=test_id,
                user_id=user_id,
                status=AttemptStatus.IN_PROGRESS,
                started_at=now,
            )
        )
        repo.record_fingerprint(attempt.id, "start", body.fingerprint)

    logger.info(f"Created attempt {attempt.id} for test {test_id}")
    return StartAttemptResponse(attempt=attempt, answers=[])


@router.get(
    "/tests/{test_id}/attempts/{attempt_id}",
    response_model=AttemptDetail,
)
def get_attempt(
    test_id: str,
    attempt_id: str,
    repo: InMemoryRepository = Depends(get_repository),
):
    """Return an attempt with its stored answers."""
    attempt = _get_attempt_or_404(repo, test_id, attempt_id)
    return AttemptDetail(attempt=attempt, answers=repo.answers(attempt_id))


@router.post(
    "/tests/{test_id}/attempts/{attempt_id}/proctor-events",
    status_code=status.HTTP_204_NO_CONTENT,
)
def record_proctor_event(
    test_id: str,
    attempt_id: str,
    body: ProctorEventRequest,
    repo: InMemoryRepository = Depends(get_repository),
):
    """Append a proctor event. Events for an attempt that is no longer in progress are ignored."""
    attempt = _get_attempt_or_404(repo, test_id, attempt_id)
    if attempt.status == AttemptStatus.IN_PROGRESS:
        repo.add_event(
            attempt_id, ProctorEvent(kind=body.kind, timestamp=utc_now(), meta=body.meta)
        )
    else:
        logger.debug(
            f"Ignoring {body.kind.value} event for {attempt.status.value} attempt {attempt_id}",
            extra={"event_kind": body.kind.value},
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/tests/{test_id}/attempts/{attempt_id}/tab-tracking",
    status_code=status.HTTP_204_NO_CONTENT,
)
def push_tab_tracking(
    test_id: str,
    attempt_id: str,
    body: TabTrackingRequest,
    repo: InMemoryRepository = Depends(get_repository),
):
    """Overwrite the accumulated tab-switch and off-page counters."""
    with repo.lock:
        attempt = _get_attempt_or_404(repo, test_id, attempt_id)
        _require_in_progress(attempt)
        attempt.tab_switch_count = body.tab_switch_count
        attempt.time_off_page_seconds = body.time_off_page_seconds
        repo.save_attempt(attempt)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/tests/{test_id}/attempts/{attempt_id}/answers",
    response_model=Answer,
)
def upsert_answer(
    test_id: str,
    attempt_id: str,
    body: AnswerUpsertRequest,
    repo: InMemoryRepository = Depends(get_repository),
):
    """Create or replace the answer for one question."""
    test = _get_test_or_404(repo, test_id)
    if test.question(body.question_id) is None:
        raise_bad_request(ErrorCodes.INVALID_INPUT, ErrorMessages.QUESTION_NOT_FOUND)

    answer_text = body.answer_text
    if body.blank_answers:
        answer_text = BLANK_SEPARATOR.join(body.blank_answers)

    with repo.lock:
        # Checked under the lock so a concurrent submit cannot grade this answer first
        _require_in_progress(_get_attempt_or_404(repo, test_id, attempt_id))
        existing = repo.answer_for_question(attempt_id, body.question_id)
        answer = Answer(
            id=existing.id if existing else new_id(),
            question_id=body.question_id,
            answer_text=answer_text,
            selected_option_ids=body.selected_option_ids or [],
            numeric_answer=body.numeric_answer,
            marked_for_review=body.marked_for_review,
        )
        return repo.save_answer(attempt_id, answer)


@router.post(
    "/tests/{test_id}/attempts/{attempt_id}/submit",
    response_model=SubmitAttemptResponse,
)
def submit_attempt(
    test_id: str,
    attempt_id: str,
    body: SubmitAttemptRequest,
    repo: InMemoryRepository = Depends(get_repository),
):
    """
    Submit an attempt: auto-grade objective answers and score proctoring risk.

    The attempt becomes GRADED when nothing needs a human grader, SUBMITTED
    otherwise.
    """
    test = _get_test_or_404(repo, test_id)

    with repo.lock:
        attempt = _get_attempt_or_404(repo, test_id, attempt_id)
        _require_in_progress(attempt)
        now = utc_now()
        repo.record_fingerprint(attempt_id, "submit", body.client_fingerprint)

        stored = {answer.question_id: answer for answer in repo.answers(attempt_id)}
        payloads: Dict[str, AnswerPayload] = {
            question_id: answer.to_payload() for question_id, answer in stored.items()
        }
        results = grade_attempt(test.questions, payloads)

        for result in results:
            answer = stored.get(result.question_id) or Answer(
                id=new_id(), question_id=result.question_id
            )
            repo.save_answer(
                attempt_id,
                answer.model_copy(
                    update={
                        "points_awarded": result.points_awarded,
                        "graded_at": None if result.needs_manual_grade else now,
                    }
                ),
            )

        needs_manual_grading = any(result.needs_manual_grade for result in results)
        proctoring_score = round(calculate_risk_score(repo.events(attempt_id)), 2)

        attempt.status = (
            AttemptStatus.SUBMITTED if needs_manual_grading else AttemptStatus.GRADED
        )
        attempt.submitted_at = now
        attempt.proctoring_score = proctoring_score
        attempt.grade_earned = sum(
            result.points_awarded for result in results if not result.needs_manual_grade
        )
        repo.save_attempt(attempt)

    fingerprints = repo.fingerprints(attempt_id)
    if fingerprints.get("start") and fingerprints["start"] != body.client_fingerprint:
        logger.warning(f"Attempt {attempt_id} submitted from a different client fingerprint")

    logger.info(
        f"Attempt {attempt_id} submitted: status={attempt.status.value}, "
        f"proctoring_score={proctoring_score}"
    )
    return SubmitAttemptResponse(
        attempt=attempt,
        needs_manual_grading=needs_manual_grading,
        proctoring_score=proctoring_score,
    )


@router.post(
    "/tests/{test_id}/attempts/{attempt_id}/ai/grade",
    response_model=SuggestionsResponse,
)
def generate_suggestions(
    test_id: str,
    attempt_id: str,
    body: AiGradeRequest,
    repo: InMemoryRepository = Depends(get_repository),
    generator: SuggestionGenerator = Depends(get_suggestion_generator),
):
    """
    Fetch or generate grading suggestions for free-response answers.

    `single` regenerates the suggestion for one answer; `all` returns cached
    suggestions and generates the missing ones.
    """
    test = _get_test_or_404(repo, test_id)
    _get_attempt_or_404(repo, test_id, attempt_id)

    if body.mode == SuggestionMode.SINGLE:
        if not body.answer_id:
            raise_bad_request(ErrorCodes.INVALID_INPUT, "answerId is required for single mode.")
        answer = repo.get_answer(attempt_id, body.answer_id)
        if answer is None:
            raise_not_found(ErrorMessages.ANSWER_NOT_FOUND)
        targets = [answer]
    else:
        targets = repo.answers(attempt_id)

    suggestions = []
    for answer in targets:
        question = test.question(answer.question_id)
        if question is None or not question.is_free_response:
            continue
        cached = repo.get_suggestion(answer.id)
        if cached is not None and body.mode == SuggestionMode.ALL:
            suggestions.append(cached)
            continue
        try:
            suggestion = generator.suggest(question, answer)
        except SuggestionProviderError as e:
            logger.error(f"Suggestion failed for answer {answer.id}: {e}")
            raise_bad_gateway(ErrorCodes.SUGGESTION_FAILED, ErrorMessages.SUGGESTION_FAILED)
        suggestions.append(repo.save_suggestion(suggestion))

    logger.info(f"Returning {len(suggestions)} suggestion(s) for attempt {attempt_id}")
    return SuggestionsResponse(suggestions=suggestions)


@router.patch(
    "/tests/{test_id}/attempts/{attempt_id}/grade",
    response_model=AttemptDetail,
)
def save_grades(
    test_id: str,
    attempt_id: str,
    body: SaveGradesRequest,
    repo: InMemoryRepository = Depends(get_repository),
):
    """
    Persist free-response grades.

    Every entry is validated before anything is written, so a bad entry
    leaves the attempt unchanged.

    Raises:
        HTTPException: 409 if the attempt has not been submitted; 400
            INVALID_GRADE for objective answers or out-of-range points
    """
    test = _get_test_or_404(repo, test_id)
    attempt = _get_attempt_or_404(repo, test_id, attempt_id)
    if attempt.status not in (AttemptStatus.SUBMITTED, AttemptStatus.GRADED):
        raise_conflict(ErrorCodes.ATTEMPT_NOT_IN_PROGRESS, "Attempt has not been submitted.")

    with repo.lock:
        updates: List[Answer] = []
        for entry in body.grades:
            answer = repo.get_answer(attempt_id, entry.answer_id)
            if answer is None:
                raise_not_found(ErrorMessages.ANSWER_NOT_FOUND)
            question = test.question(answer.question_id)
            if question is None or not question.is_free_response:
                raise_bad_request(ErrorCodes.INVALID_GRADE, ErrorMessages.OBJECTIVE_GRADE_READ_ONLY)
            if entry.points_awarded > question.points:
                raise_bad_request(
                    ErrorCodes.INVALID_GRADE,
                    ErrorMessages.points_out_of_range(
                        entry.answer_id, entry.points_awarded, question.points
                    ),
                )
            updates.append(
                answer.model_copy(
                    update={
                        "points_awarded": entry.points_awarded,
                        "grader_note": entry.grader_note,
                        "graded_at": utc_now(),
                    }
                )
            )

        for answer in updates:
            repo.save_answer(attempt_id, answer)

        answers = repo.answers(attempt_id)
        attempt.grade_earned = sum(
            answer.points_awarded or 0.0 for answer in answers if answer.graded_at is not None
        )
        if grading_status(test.questions, answers) == GradingStatus.FULLY_GRADED:
            attempt.status = AttemptStatus.GRADED
        repo.save_attempt(attempt)

    logger.info(f"Saved {len(updates)} grade(s) for attempt {attempt_id}")
    return AttemptDetail(attempt=attempt, answers=answers)
