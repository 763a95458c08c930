"""
Collaborator API used by the engine.

`AttemptApi` is the interface the engine depends on; it mirrors the operation
shapes of the attempt collaborator (start, proctor events, tab tracking,
answer upsert, submit, AI suggestions, grade save). `HttpAttemptApi` is the
httpx implementation that talks to the reference collaborator (or any server
exposing the same routes).

Usage:
    async with HttpAttemptApi(settings.API_BASE_URL) as api:
        started = await api.start_attempt(test_id, fingerprint="...", password=None)
"""
import abc
import logging
from typing import Any, Dict, List, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from assessment.core.config import settings
from assessment.core.errors import CollaboratorError
from assessment.models import ProctorEventKind, SuggestionMode
from assessment.schemas import (
    AiGradeRequest,
    AnswerUpsertRequest,
    AttemptDetail,
    GradeEntry,
    GradeSuggestion,
    ProctorEventRequest,
    SaveGradesRequest,
    StartAttemptRequest,
    StartAttemptResponse,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
    SuggestionsResponse,
    TabTrackingRequest,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class AttemptApi(abc.ABC):
    """Operations the engine consumes from the attempt collaborator."""

    @abc.abstractmethod
    async def start_attempt(
        self, test_id: str, *, fingerprint: str, password: Optional[str] = None
    ) -> StartAttemptResponse:
        """Create (or return the existing in-progress) attempt."""

    @abc.abstractmethod
    async def get_attempt(self, test_id: str, attempt_id: str) -> AttemptDetail:
        """Fetch an attempt with its stored answers."""

    @abc.abstractmethod
    async def record_proctor_event(
        self,
        test_id: str,
        attempt_id: str,
        kind: ProctorEventKind,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append one proctor event."""

    @abc.abstractmethod
    async def push_tab_tracking(
        self,
        test_id: str,
        attempt_id: str,
        *,
        tab_switch_count: int,
        time_off_page_seconds: int,
    ) -> None:
        """Overwrite the accumulated tab-tracking counters."""

    @abc.abstractmethod
    async def upsert_answer(
        self, test_id: str, attempt_id: str, request: AnswerUpsertRequest
    ) -> None:
        """Create or replace the answer for one question."""

    @abc.abstractmethod
    async def submit_attempt(
        self, test_id: str, attempt_id: str, *, client_fingerprint: str
    ) -> SubmitAttemptResponse:
        """Send the final submit request."""

    @abc.abstractmethod
    async def generate_suggestions(
        self,
        test_id: str,
        attempt_id: str,
        mode: SuggestionMode,
        answer_id: Optional[str] = None,
    ) -> List[GradeSuggestion]:
        """Fetch or generate AI grading suggestions."""

    @abc.abstractmethod
    async def save_grades(
        self, test_id: str, attempt_id: str, grades: List[GradeEntry]
    ) -> None:
        """Persist free-response grades."""


def _attempt_path(test_id: str, attempt_id: str) -> str:
    return f"/tests/{test_id}/attempts/{attempt_id}"


class HttpAttemptApi(AttemptApi):
    """httpx implementation of the collaborator API.

    Non-2xx responses are raised as CollaboratorError carrying the HTTP status
    and the collaborator's machine-readable error code. Transport failures
    (timeouts, refused connections) are raised as CollaboratorError with no
    status code. Nothing here retries; callers decide.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        prefix: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._prefix = prefix if prefix is not None else settings.API_V1_PREFIX
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout or settings.API_TIMEOUT_SECONDS,
        )

    async def __aenter__(self) -> "HttpAttemptApi":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"{self._prefix}{path}"
        try:
            response = await self._client.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise CollaboratorError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            code, message = _parse_error_body(response)
            logger.debug(
                f"{method} {url} returned {response.status_code} ({code})",
                extra={"status_code": response.status_code, "path": url},
            )
            raise CollaboratorError(
                message, status_code=response.status_code, code=code
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorError(
                f"{method} {url} returned a non-JSON body",
                status_code=response.status_code,
            ) from e

    async def start_attempt(
        self, test_id: str, *, fingerprint: str, password: Optional[str] = None
    ) -> StartAttemptResponse:
        body = StartAttemptRequest(fingerprint=fingerprint, password=password)
        data = await self._request(
            "POST",
            f"/tests/{test_id}/attempts/start",
            body.model_dump(by_alias=True, exclude_none=True),
        )
        return _parse(StartAttemptResponse, data)

    async def get_attempt(self, test_id: str, attempt_id: str) -> AttemptDetail:
        data = await self._request("GET", _attempt_path(test_id, attempt_id))
        return _parse(AttemptDetail, data)

    async def record_proctor_event(
        self,
        test_id: str,
        attempt_id: str,
        kind: ProctorEventKind,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        body = ProctorEventRequest(kind=kind, meta=meta)
        await self._request(
            "POST",
            f"{_attempt_path(test_id, attempt_id)}/proctor-events",
            body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    async def push_tab_tracking(
        self,
        test_id: str,
        attempt_id: str,
        *,
        tab_switch_count: int,
        time_off_page_seconds: int,
    ) -> None:
        body = TabTrackingRequest(
            tab_switch_count=tab_switch_count,
            time_off_page_seconds=time_off_page_seconds,
        )
        await self._request(
            "PATCH",
            f"{_attempt_path(test_id, attempt_id)}/tab-tracking",
            body.model_dump(by_alias=True),
        )

    async def upsert_answer(
        self, test_id: str, attempt_id: str, request: AnswerUpsertRequest
    ) -> None:
        await self._request(
            "POST",
            f"{_attempt_path(test_id, attempt_id)}/answers",
            request.model_dump(by_alias=True),
        )

    async def submit_attempt(
        self, test_id: str, attempt_id: str, *, client_fingerprint: str
    ) -> SubmitAttemptResponse:
        body = SubmitAttemptRequest(client_fingerprint=client_fingerprint)
        data = await self._request(
            "POST",
            f"{_attempt_path(test_id, attempt_id)}/submit",
            body.model_dump(by_alias=True),
        )
        return _parse(SubmitAttemptResponse, data)

    async def generate_suggestions(
        self,
        test_id: str,
        attempt_id: str,
        mode: SuggestionMode,
        answer_id: Optional[str] = None,
    ) -> List[GradeSuggestion]:
        body = AiGradeRequest(mode=mode, answer_id=answer_id)
        data = await self._request(
            "POST",
            f"{_attempt_path(test_id, attempt_id)}/ai/grade",
            body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        return _parse(SuggestionsResponse, data).suggestions

    async def save_grades(
        self, test_id: str, attempt_id: str, grades: List[GradeEntry]
    ) -> None:
        body = SaveGradesRequest(grades=grades)
        await self._request(
            "PATCH",
            f"{_attempt_path(test_id, attempt_id)}/grade",
            body.model_dump(by_alias=True),
        )


def _parse_error_body(response: httpx.Response) -> tuple[Optional[str], str]:
    """Extract (code, message) from a collaborator error response."""
    default_message = f"Request failed with status {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return None, default_message

    if isinstance(body, dict) and isinstance(body.get("detail"), dict):
        body = body["detail"]
    if not isinstance(body, dict):
        return None, default_message

    code = body.get("error")
    message = body.get("message") or code or default_message
    return code, str(message)


def _parse(model: type[ModelT], data: Dict[str, Any]) -> ModelT:
    """Validate a success body; a malformed one is a collaborator failure."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise CollaboratorError(
            f"Unexpected {model.__name__} body: {e.error_count()} validation error(s)"
        ) from e
