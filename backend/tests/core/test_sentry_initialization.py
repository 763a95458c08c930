"""
Tests for Sentry SDK initialization through the observability facade.
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from assessment.observability import Observability, _serialize_value


@pytest.fixture
def facade():
    return Observability()


class TestInit:
    """Tests for Observability.init."""

    def test_returns_false_when_dsn_is_empty(self, facade):
        with patch("assessment.observability.sentry_sdk.init") as mock_init:
            assert facade.init(dsn="") is False

        mock_init.assert_not_called()
        assert not facade.is_initialized

    def test_returns_true_when_dsn_is_provided(self, facade):
        with patch("assessment.observability.sentry_sdk.init") as mock_init:
            assert facade.init(dsn="https://public@sentry.io/123456", environment="test") is True

        kwargs = mock_init.call_args.kwargs
        assert kwargs["dsn"] == "https://public@sentry.io/123456"
        assert kwargs["environment"] == "test"
        assert facade.is_initialized

    def test_init_failure_is_logged_not_raised(self, facade, caplog):
        with patch(
            "assessment.observability.sentry_sdk.init", side_effect=RuntimeError("bad dsn")
        ):
            assert facade.init(dsn="https://public@sentry.io/1") is False

        assert "Failed to initialize Sentry" in caplog.text
        assert not facade.is_initialized


class TestCaptureError:
    def test_noop_before_init(self, facade):
        with patch("assessment.observability.sentry_sdk.capture_exception") as mock_capture:
            assert facade.capture_error(ValueError("x")) is None

        mock_capture.assert_not_called()

    def test_captures_after_init(self, facade):
        with patch("assessment.observability.sentry_sdk.init"):
            facade.init(dsn="https://public@sentry.io/1")

        with patch(
            "assessment.observability.sentry_sdk.capture_exception", return_value="event-1"
        ) as mock_capture:
            event_id = facade.capture_error(
                ValueError("x"), context={"attempt_id": "a1"}, tags={"error_type": "ValueError"}
            )

        assert event_id == "event-1"
        mock_capture.assert_called_once()


class TestSerializeValue:
    def test_nested_values(self):
        value = {
            "when": datetime(2026, 3, 1, tzinfo=timezone.utc),
            "ids": ("q1", "q2"),
            "other": object,
        }

        result = _serialize_value(value)

        assert result["when"] == "2026-03-01T00:00:00+00:00"
        assert result["ids"] == ["q1", "q2"]
        assert isinstance(result["other"], str)
