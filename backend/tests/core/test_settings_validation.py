"""
Tests for Settings configuration validation in config.py.
"""
import pytest
from pydantic import ValidationError

from assessment.core.config import Settings


class TestSentryTracesSampleRateValidation:
    """Tests for SENTRY_TRACES_SAMPLE_RATE validation."""

    def test_valid_sample_rate_default(self):
        """Test that the default sample rate (0.1) is valid."""
        settings = Settings()
        assert settings.SENTRY_TRACES_SAMPLE_RATE == pytest.approx(0.1)

    @pytest.mark.parametrize("rate", [0.0, 0.5, 1.0])
    def test_valid_sample_rates(self, rate):
        settings = Settings(SENTRY_TRACES_SAMPLE_RATE=rate)
        assert settings.SENTRY_TRACES_SAMPLE_RATE == pytest.approx(rate)

    def test_invalid_sample_rate_negative(self):
        """Test that negative values are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(SENTRY_TRACES_SAMPLE_RATE=-0.1)
        errors = exc_info.value.errors()
        assert len(errors) == 1
        assert errors[0]["loc"] == ("SENTRY_TRACES_SAMPLE_RATE",)
        assert "greater than or equal to 0" in errors[0]["msg"]

    def test_invalid_sample_rate_greater_than_one(self):
        """Test that values greater than 1.0 are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(SENTRY_TRACES_SAMPLE_RATE=1.1)
        errors = exc_info.value.errors()
        assert len(errors) == 1
        assert "less than or equal to 1" in errors[0]["msg"]


class TestTimerSettings:
    """Tests for the autosave and timer intervals."""

    def test_defaults(self):
        settings = Settings()

        assert settings.AUTOSAVE_DEBOUNCE_SECONDS == pytest.approx(1.0)
        assert settings.TIMER_TICK_SECONDS == pytest.approx(1.0)
        assert settings.TAB_TRACKING_PUSH_SECONDS == pytest.approx(10.0)

    def test_zero_debounce_allowed(self):
        assert Settings(AUTOSAVE_DEBOUNCE_SECONDS=0).AUTOSAVE_DEBOUNCE_SECONDS == 0

    def test_tick_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(TIMER_TICK_SECONDS=0)

    def test_tracking_push_not_faster_than_tick(self):
        """The tab-tracking push may not run more often than the countdown tick."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(TIMER_TICK_SECONDS=5, TAB_TRACKING_PUSH_SECONDS=2)

        assert "TAB_TRACKING_PUSH_SECONDS" in str(exc_info.value)

    def test_env_must_be_known(self):
        with pytest.raises(ValidationError):
            Settings(ENV="staging")
