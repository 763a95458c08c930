"""
In-memory storage for the reference collaborator.

Holds tests, attempts, answers, proctor events and cached grading suggestions
for the lifetime of the process. Route handlers own the business rules; this
module only stores and looks up records.
"""
import threading
import uuid
from typing import Dict, List, Optional

from assessment.models import AttemptStatus
from assessment.schemas import Answer, Attempt, GradeSuggestion, ProctorEvent, TestConfig


class InMemoryRepository:
    """Process-local record store. All access is serialized by one lock."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._tests: Dict[str, TestConfig] = {}
        self._attempts: Dict[str, Attempt] = {}
        self._answers: Dict[str, Dict[str, Answer]] = {}
        self._events: Dict[str, List[ProctorEvent]] = {}
        self._fingerprints: Dict[str, Dict[str, str]] = {}
        self._suggestions: Dict[str, GradeSuggestion] = {}

    def reset(self) -> None:
        with self.lock:
            self._tests.clear()
            self._attempts.clear()
            self._answers.clear()
            self._events.clear()
            self._fingerprints.clear()
            self._suggestions.clear()

    # Tests

    def add_test(self, test: TestConfig) -> TestConfig:
        with self.lock:
            self._tests[test.id] = test
        return test

    def get_test(self, test_id: str) -> Optional[TestConfig]:
        return self._tests.get(test_id)

    # Attempts

    def create_attempt(self, attempt: Attempt) -> Attempt:
        with self.lock:
            self._attempts[attempt.id] = attempt
            self._answers[attempt.id] = {}
            self._events[attempt.id] = []
        return attempt

    def get_attempt(self, test_id: str, attempt_id: str) -> Optional[Attempt]:
        attempt = self._attempts.get(attempt_id)
        if attempt is None or attempt.test_id != test_id:
            return None
        return attempt

    def save_attempt(self, attempt: Attempt) -> Attempt:
        with self.lock:
            self._attempts[attempt.id] = attempt
        return attempt

    def attempts_for(self, test_id: str, user_id: str) -> List[Attempt]:
        return [
            attempt
            for attempt in self._attempts.values()
            if attempt.test_id == test_id and attempt.user_id == user_id
        ]

    def in_progress_attempt(self, test_id: str, user_id: str) -> Optional[Attempt]:
        for attempt in self.attempts_for(test_id, user_id):
            if attempt.status == AttemptStatus.IN_PROGRESS:
                return attempt
        return None

    def record_fingerprint(self, attempt_id: str, stage: str, fingerprint: str) -> None:
        with self.lock:
            self._fingerprints.setdefault(attempt_id, {})[stage] = fingerprint

    def fingerprints(self, attempt_id: str) -> Dict[str, str]:
        return dict(self._fingerprints.get(attempt_id, {}))

    # Answers

    def answers(self, attempt_id: str) -> List[Answer]:
        return list(self._answers.get(attempt_id, {}).values())

    def answer_for_question(self, attempt_id: str, question_id: str) -> Optional[Answer]:
        return self._answers.get(attempt_id, {}).get(question_id)

    def get_answer(self, attempt_id: str, answer_id: str) -> Optional[Answer]:
        for answer in self._answers.get(attempt_id, {}).values():
            if answer.id == answer_id:
                return answer
        return None

    def save_answer(self, attempt_id: str, answer: Answer) -> Answer:
        with self.lock:
            self._answers.setdefault(attempt_id, {})[answer.question_id] = answer
        return answer

    # Proctor events (append-only)

    def add_event(self, attempt_id: str, event: ProctorEvent) -> None:
        with self.lock:
            self._events.setdefault(attempt_id, []).append(event)

    def events(self, attempt_id: str) -> List[ProctorEvent]:
        return list(self._events.get(attempt_id, []))

    # Grading suggestions

    def get_suggestion(self, answer_id: str) -> Optional[GradeSuggestion]:
        return self._suggestions.get(answer_id)

    def save_suggestion(self, suggestion: GradeSuggestion) -> GradeSuggestion:
        with self.lock:
            self._suggestions[suggestion.answer_id] = suggestion
        return suggestion


def new_id() -> str:
    return uuid.uuid4().hex


repository = InMemoryRepository()


def get_repository() -> InMemoryRepository:
    """FastAPI dependency returning the process-wide repository."""
    return repository
