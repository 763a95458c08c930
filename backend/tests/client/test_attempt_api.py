"""
Tests for the httpx collaborator client.
"""
import json

import httpx
import pytest

from assessment.client.attempt_api import HttpAttemptApi
from assessment.core.errors import CollaboratorError
from assessment.models import AttemptStatus, ProctorEventKind, SuggestionMode
from assessment.schemas import AnswerUpsertRequest, GradeEntry


def _api(handler) -> HttpAttemptApi:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return HttpAttemptApi(client=client)


def _attempt_json(**overrides) -> dict:
    body = {
        "id": "a1",
        "testId": "t1",
        "userId": "u1",
        "status": "IN_PROGRESS",
        "startedAt": "2026-03-01T09:00:00Z",
        "tabSwitchCount": 0,
        "timeOffPageSeconds": 0,
    }
    body.update(overrides)
    return body


class TestRequests:
    """Tests for request shapes sent by HttpAttemptApi."""

    async def test_start_sends_camel_case_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"attempt": _attempt_json(), "answers": []})

        started = await _api(handler).start_attempt("t1", fingerprint="abc", password="pw")

        assert seen["path"] == "/v1/tests/t1/attempts/start"
        assert seen["body"] == {"fingerprint": "abc", "password": "pw"}
        assert started.attempt.status == AttemptStatus.IN_PROGRESS

    async def test_start_omits_missing_password(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"attempt": _attempt_json()})

        await _api(handler).start_attempt("t1", fingerprint="abc")

        assert "password" not in seen["body"]

    async def test_upsert_answer(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={})

        request = AnswerUpsertRequest(question_id="q3", answer_text="essay", marked_for_review=True)
        await _api(handler).upsert_answer("t1", "a1", request)

        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/tests/t1/attempts/a1/answers"
        assert seen["body"]["questionId"] == "q3"
        assert seen["body"]["markedForReview"] is True

    async def test_tab_tracking_and_events_accept_204(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(204)

        api = _api(handler)
        await api.push_tab_tracking("t1", "a1", tab_switch_count=2, time_off_page_seconds=45)
        await api.record_proctor_event("t1", "a1", ProctorEventKind.BLUR)

        assert calls[0] == (
            "PATCH",
            "/v1/tests/t1/attempts/a1/tab-tracking",
            {"tabSwitchCount": 2, "timeOffPageSeconds": 45},
        )
        assert calls[1] == ("POST", "/v1/tests/t1/attempts/a1/proctor-events", {"kind": "BLUR"})

    async def test_suggestions_and_grades(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/ai/grade"):
                assert json.loads(request.content) == {"mode": "single", "answerId": "ans3"}
                return httpx.Response(
                    200,
                    json={
                        "suggestions": [
                            {"answerId": "ans3", "suggestedPoints": 4, "maxPoints": 5}
                        ]
                    },
                )
            assert json.loads(request.content) == {
                "grades": [{"answerId": "ans3", "pointsAwarded": 3.0, "graderNote": "ok"}]
            }
            return httpx.Response(200, json={})

        api = _api(handler)
        suggestions = await api.generate_suggestions("t1", "a1", SuggestionMode.SINGLE, "ans3")
        await api.save_grades("t1", "a1", [GradeEntry(answer_id="ans3", points_awarded=3, grader_note="ok")])

        assert suggestions[0].suggested_points == 4


class TestErrorMapping:
    """Tests for mapping collaborator errors onto CollaboratorError."""

    async def test_nested_detail_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                json={"detail": {"error": "NEED_TEST_PASSWORD", "message": "Password is required."}},
            )

        with pytest.raises(CollaboratorError) as exc_info:
            await _api(handler).start_attempt("t1", fingerprint="abc")

        assert exc_info.value.status_code == 403
        assert exc_info.value.code == "NEED_TEST_PASSWORD"
        assert exc_info.value.message == "Password is required."

    async def test_flat_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": "MAX_ATTEMPTS_REACHED"})

        with pytest.raises(CollaboratorError) as exc_info:
            await _api(handler).start_attempt("t1", fingerprint="abc")

        assert exc_info.value.code == "MAX_ATTEMPTS_REACHED"
        assert exc_info.value.message == "MAX_ATTEMPTS_REACHED"

    async def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(CollaboratorError) as exc_info:
            await _api(handler).submit_attempt("t1", "a1", client_fingerprint="abc")

        assert exc_info.value.status_code == 502
        assert exc_info.value.code is None
        assert "502" in exc_info.value.message

    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CollaboratorError) as exc_info:
            await _api(handler).get_attempt("t1", "a1")

        assert exc_info.value.status_code is None

    async def test_html_success_body(self):
        """A gateway page served with 200 is a collaborator failure, not a crash."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(CollaboratorError) as exc_info:
            await _api(handler).submit_attempt("t1", "a1", client_fingerprint="abc")

        assert exc_info.value.status_code == 200
        assert "non-JSON" in exc_info.value.message

    async def test_malformed_success_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"attempt": {"id": "a1"}})

        with pytest.raises(CollaboratorError) as exc_info:
            await _api(handler).submit_attempt("t1", "a1", client_fingerprint="abc")

        assert "SubmitAttemptResponse" in exc_info.value.message
