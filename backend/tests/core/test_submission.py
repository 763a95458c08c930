"""
Tests for the submission protocol and its exit guard.
"""
import asyncio

import httpx
import pytest

from assessment.client.attempt_api import HttpAttemptApi
from assessment.core.environment import HeadlessEnvironment, SignalKind
from assessment.core.error_responses import ErrorMessages
from assessment.core.errors import CollaboratorError, SubmissionError
from assessment.core.submission import ExitGuard, post_test_destination
from assessment.models import AttemptStatus, SubmitTrigger
from assessment.schemas import AnswerPayload, StartAttemptResponse, SubmitAttemptResponse

from conftest import FINGERPRINT, T0, make_attempt


class TestExitGuard:
    def test_claim_once(self):
        guard = ExitGuard()

        assert guard.claim()
        assert not guard.claim()
        assert guard.exiting

    def test_release_allows_new_claim(self):
        guard = ExitGuard()
        guard.claim()
        guard.release()

        assert not guard.exiting
        assert guard.claim()


class TestPostTestDestination:
    """Tests for post_test_destination."""

    def test_testing_portal_wins(self):
        assert post_test_destination(club_id="c1", tournament_id="t9", testing_portal=True) == "/testing"

    def test_tournament(self):
        assert post_test_destination(club_id="c1", tournament_id="t9") == "/tournaments/t9/tests"

    def test_club(self):
        assert post_test_destination(club_id="c1") == "/club/c1?tab=tests"

    def test_fallback(self):
        assert post_test_destination() == "/"


class TestSubmit:
    """Tests for the ordered submit steps."""

    async def test_flush_happens_before_submit(self, make_session, sample_test, fake_api):
        order = []

        async def upsert(test_id, attempt_id, request):
            order.append(("upsert", request.question_id, request.answer_text))

        async def submit(test_id, attempt_id, *, client_fingerprint):
            order.append(("submit", client_fingerprint))
            return fake_api.submit_attempt.return_value

        fake_api.upsert_answer.side_effect = upsert
        fake_api.submit_attempt.side_effect = submit
        session = make_session(sample_test, debounce_seconds=60)
        await session.start()
        session.set_answer("q3", AnswerPayload(answer_text="final words"))

        await session.submit()

        assert order == [("upsert", "q3", "final words"), ("submit", FINGERPRINT)]
        assert session.status == AttemptStatus.SUBMITTED

    async def test_success_releases_fullscreen_and_navigates(self, make_session, fullscreen_test, environment):
        session = make_session(fullscreen_test)
        await session.start()

        response = await session.submit()

        assert response.attempt.status == AttemptStatus.SUBMITTED
        assert not environment.is_fullscreen
        assert environment.navigations == ["/club/c1?tab=tests"]
        assert not session.fullscreen_blocked

    async def test_manual_and_timeout_send_one_request(self, make_session, sample_test, fake_api, clock):
        """A timeout firing during a pending manual submit is a no-op."""
        gate = asyncio.Event()
        submitted = fake_api.submit_attempt.return_value

        async def slow_submit(test_id, attempt_id, *, client_fingerprint):
            await gate.wait()
            return submitted

        fake_api.submit_attempt.side_effect = slow_submit
        session = make_session(sample_test)
        await session.start()

        manual = asyncio.create_task(session.submit(SubmitTrigger.MANUAL))
        await asyncio.sleep(0.02)
        clock.advance(1800)
        await asyncio.sleep(0.05)
        gate.set()
        result = await manual

        assert result is not None
        assert fake_api.submit_attempt.await_count == 1
        assert session.status == AttemptStatus.SUBMITTED

    async def test_concurrent_manual_submits(self, make_session, sample_test, fake_api):
        session = make_session(sample_test)
        await session.start()

        first, second = await asyncio.gather(session.submit(), session.submit())

        assert (first is None) != (second is None)
        fake_api.submit_attempt.assert_awaited_once()

    async def test_failure_keeps_attempt_in_progress(self, make_session, fullscreen_test, fake_api, environment):
        fake_api.submit_attempt.side_effect = CollaboratorError(
            "Service unavailable", status_code=503
        )
        session = make_session(fullscreen_test)
        await session.start()

        with pytest.raises(SubmissionError) as exc_info:
            await session.submit()

        assert str(exc_info.value) == ErrorMessages.SUBMIT_FAILED
        assert session.status == AttemptStatus.IN_PROGRESS
        assert not session.guard.exiting
        assert environment.is_fullscreen
        assert environment.navigations == []

    async def test_failure_restores_lockdown(self, make_session, fullscreen_test, fake_api, environment):
        """Fullscreen lost before a failed submit is requested again."""
        fake_api.submit_attempt.side_effect = CollaboratorError("boom", status_code=500)
        session = make_session(fullscreen_test)
        await session.start()
        await environment.exit_fullscreen()
        requests_before = environment.fullscreen_requests

        with pytest.raises(SubmissionError):
            await session.submit()

        assert environment.fullscreen_requests == requests_before + 1
        assert environment.is_fullscreen

    async def test_retry_after_failure(self, make_session, sample_test, fake_api):
        submitted = fake_api.submit_attempt.return_value
        fake_api.submit_attempt.side_effect = [CollaboratorError("offline"), submitted]
        session = make_session(sample_test)
        await session.start()

        with pytest.raises(SubmissionError):
            await session.submit()
        await session.submit()

        assert fake_api.submit_attempt.await_count == 2
        assert session.status == AttemptStatus.SUBMITTED

    async def test_failed_save_does_not_block_submit(self, make_session, sample_test, fake_api):
        fake_api.upsert_answer.side_effect = CollaboratorError("offline")
        session = make_session(sample_test, debounce_seconds=60)
        await session.start()
        session.set_answer("q3", AnswerPayload(answer_text="unsaved"))

        await session.submit()

        fake_api.submit_attempt.assert_awaited_once()
        assert session.status == AttemptStatus.SUBMITTED


    async def test_html_success_body_can_be_retried(self, make_session, sample_test):
        """A 200 gateway page on submit leaves the attempt retryable."""
        submit_bodies = [
            httpx.Response(200, text="<html>gateway</html>"),
            httpx.Response(
                200,
                json=SubmitAttemptResponse(
                    attempt=make_attempt(status=AttemptStatus.SUBMITTED, submitted_at=T0)
                ).model_dump(mode="json", by_alias=True),
            ),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/start"):
                started = StartAttemptResponse(attempt=make_attempt())
                return httpx.Response(200, json=started.model_dump(mode="json", by_alias=True))
            if request.url.path.endswith("/submit"):
                return submit_bodies.pop(0)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        session = make_session(sample_test, api=HttpAttemptApi(client=client))
        await session.start()

        with pytest.raises(SubmissionError):
            await session.submit()

        assert session.status == AttemptStatus.IN_PROGRESS
        assert not session.guard.exiting
        assert session.is_interactive

        response = await session.submit()

        assert response is not None
        assert session.status == AttemptStatus.SUBMITTED
        await client.aclose()

    async def test_unexpected_error_releases_guard(self, make_session, sample_test, fake_api):
        fake_api.submit_attempt.side_effect = ValueError("bad body")
        session = make_session(sample_test)
        await session.start()

        with pytest.raises(SubmissionError):
            await session.submit()

        assert not session.guard.exiting
        assert session.status == AttemptStatus.IN_PROGRESS

    async def test_timeout_failure_warns_and_stays_retryable(self, make_session, sample_test, fake_api, clock, warnings):
        fake_api.submit_attempt.side_effect = RuntimeError("connection reset")
        session = make_session(sample_test)
        await session.start()

        clock.advance(1800)
        await asyncio.sleep(0.1)

        assert ErrorMessages.SUBMIT_FAILED in warnings
        assert session.status == AttemptStatus.IN_PROGRESS
        assert not session.guard.exiting

    async def test_final_tracking_pushed_before_submit(self, make_session, sample_test, fake_api, clock, environment):
        order = []

        async def push(test_id, attempt_id, *, tab_switch_count, time_off_page_seconds):
            order.append(("push", tab_switch_count, time_off_page_seconds))

        async def submit(test_id, attempt_id, *, client_fingerprint):
            order.append(("submit",))
            return fake_api.submit_attempt.return_value

        fake_api.push_tab_tracking.side_effect = push
        fake_api.submit_attempt.side_effect = submit
        session = make_session(sample_test, tracking_push_seconds=60)
        await session.start()
        environment.emit(SignalKind.VISIBILITY_HIDDEN)
        clock.advance(42)

        await session.submit()

        assert order == [("push", 1, 42), ("submit",)]
        assert not session.time_budget.is_off_page

class TestForcedNavigation:
    """Tests for the forced-navigation trigger."""

    async def test_back_reasserts_location_and_submits(self, make_session, sample_test, fake_api, environment, warnings):
        session = make_session(sample_test)
        await session.start()

        environment.press_back()
        assert environment.location_reasserts == 1
        await asyncio.sleep(0.05)

        fake_api.submit_attempt.assert_awaited_once()
        assert session.status == AttemptStatus.SUBMITTED
        assert ErrorMessages.NAVIGATION_SUBMIT in warnings
        assert environment.navigations == ["/club/c1?tab=tests"]

    async def test_repeated_navigation_submits_once(self, make_session, sample_test, fake_api, environment):
        session = make_session(sample_test)
        await session.start()

        environment.press_back()
        environment.press_back()
        await asyncio.sleep(0.05)

        fake_api.submit_attempt.assert_awaited_once()

    async def test_failed_navigation_submit_warns(self, make_session, sample_test, fake_api, warnings):
        fake_api.submit_attempt.side_effect = CollaboratorError("offline")
        env = HeadlessEnvironment()
        session = make_session(sample_test, env=env)
        await session.start()

        env.emit(SignalKind.NAVIGATION_ATTEMPT)
        await asyncio.sleep(0.05)

        assert session.status == AttemptStatus.IN_PROGRESS
        assert ErrorMessages.SUBMIT_FAILED in warnings
