"""
Pytest configuration and shared fixtures for testing.
"""
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from assessment.api.repository import InMemoryRepository, repository
from assessment.client.attempt_api import AttemptApi, HttpAttemptApi
from assessment.core.attempt import AttemptSession
from assessment.core.environment import HeadlessEnvironment
from assessment.core.pause_store import InMemoryKeyValueStore, PauseMarkerStore
from assessment.main import app
from assessment.models import AttemptStatus, QuestionType, TestStatus
from assessment.schemas import (
    Attempt,
    Question,
    QuestionOption,
    StartAttemptResponse,
    SubmitAttemptResponse,
    TestConfig,
)

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
FINGERPRINT = "f" * 64


class FakeClock:
    """Manually advanced clock, callable like utc_now()."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def make_questions() -> list:
    return [
        Question(
            id="q1",
            type=QuestionType.MCQ_SINGLE,
            points=2,
            prompt_md="Pick the noble gas.",
            options=[
                QuestionOption(id="o1", label="Neon", is_correct=True),
                QuestionOption(id="o2", label="Sodium"),
            ],
        ),
        Question(
            id="q2",
            type=QuestionType.NUMERIC,
            points=3,
            prompt_md="g in m/s^2?",
            numeric_answer=9.8,
            numeric_tolerance=0.1,
        ),
        Question(
            id="q3",
            type=QuestionType.LONG_TEXT,
            points=5,
            prompt_md="Explain photosynthesis and the role of chlorophyll.",
        ),
        Question(id="q4", type=QuestionType.SHORT_TEXT, points=0, prompt_md="Section B"),
        Question(
            id="q5",
            type=QuestionType.SHORT_TEXT,
            points=2,
            prompt_md="[blank1] is the capital of France, [blank2] of Italy.",
            blank_answers=["Paris", "Rome"],
        ),
    ]


def make_test(**overrides) -> TestConfig:
    values = dict(
        id="t1",
        name="Chemistry Invitational",
        status=TestStatus.PUBLISHED,
        duration_minutes=30,
        start_at=T0 - timedelta(hours=1),
        end_at=T0 + timedelta(hours=2),
        questions=make_questions(),
    )
    values.update(overrides)
    return TestConfig(**values)


def make_attempt(**overrides) -> Attempt:
    values = dict(
        id="a1",
        test_id="t1",
        user_id="u1",
        status=AttemptStatus.IN_PROGRESS,
        started_at=T0,
    )
    values.update(overrides)
    return Attempt(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_test() -> TestConfig:
    return make_test()


@pytest.fixture
def fullscreen_test() -> TestConfig:
    return make_test(require_fullscreen=True, allow_multi_session=True)


@pytest.fixture
def fake_api() -> AsyncMock:
    """AttemptApi double whose start/submit calls succeed."""
    api = AsyncMock(spec=AttemptApi)
    api.start_attempt.return_value = StartAttemptResponse(attempt=make_attempt(), answers=[])
    api.submit_attempt.return_value = SubmitAttemptResponse(
        attempt=make_attempt(status=AttemptStatus.SUBMITTED, submitted_at=T0),
        needs_manual_grading=True,
        proctoring_score=0.0,
    )
    return api


@pytest.fixture
def environment() -> HeadlessEnvironment:
    return HeadlessEnvironment(gesture_available=True)


@pytest.fixture
def pause_markers() -> PauseMarkerStore:
    return PauseMarkerStore(InMemoryKeyValueStore())


@pytest.fixture
def warnings() -> list:
    return []


@pytest.fixture
async def make_session(fake_api, environment, pause_markers, clock, warnings):
    """Factory for AttemptSessions with fast timers and a fake clock.

    Every session created through the factory is closed after the test.
    """
    sessions = []

    def _make(test: TestConfig, *, api=None, env=None, **kwargs) -> AttemptSession:
        options = dict(
            destination="/club/c1?tab=tests",
            pause_markers=pause_markers,
            fingerprint_provider=lambda: FINGERPRINT,
            clock=clock,
            on_warning=warnings.append,
            tick_seconds=0.01,
            tracking_push_seconds=0.05,
            debounce_seconds=0.01,
        )
        options.update(kwargs)
        session = AttemptSession(test, api or fake_api, env or environment, **options)
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        await session.close()


@pytest.fixture
def repo() -> InMemoryRepository:
    """The reference collaborator's repository, emptied for each test."""
    repository.reset()
    yield repository
    repository.reset()


@pytest.fixture
async def async_client(repo) -> AsyncGenerator[AsyncClient, None]:
    """
    Async test client for the reference collaborator.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def http_api(async_client) -> HttpAttemptApi:
    """HttpAttemptApi talking to the reference collaborator in-process."""
    return HttpAttemptApi(client=async_client)
