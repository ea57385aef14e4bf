"""Tests for settings, logging and shared helpers."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from lore_pipeline.clock import fixed_clock, new_id, to_datetime
from lore_pipeline.config import LorePipelineSettings
from lore_pipeline.errors import ContractViolation, PipelineError
from lore_pipeline.logging import get_logger


class TestSettings:
    def test_defaults(self):
        settings = LorePipelineSettings()
        assert settings.extraction_config().min_confidence == 0.4
        assert settings.delta_queue_config().low_confidence_threshold == 0.7
        assert settings.cadence_config().lore_batch_delay_minutes == 60
        assert settings.composer_config().news_card_ttl_days == 90
        assert settings.retry_queue_config().base_delay_ms == 300_000
        assert settings.retry_queue_config().max_attempts == 3

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LORE_PIPELINE_RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("LORE_PIPELINE_DIGEST_HOUR", "4")
        monkeypatch.setenv("LORE_PIPELINE_MODERATION_ESCALATION_MINUTES", "[10, 20, 30]")

        settings = LorePipelineSettings()
        assert settings.retry_queue_config().max_attempts == 5
        assert settings.cadence_config().digest_hour == 4
        assert settings.cadence_config().moderation_escalation_minutes == [10, 20, 30]

    def test_invalid_cadence_value_is_rejected(self):
        with pytest.raises(Exception):
            LorePipelineSettings(DIGEST_HOUR=25).cadence_config()


class TestClockHelpers:
    def test_to_datetime_handles_zulu(self):
        assert to_datetime("2026-03-01T20:00:00Z") == datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert to_datetime(datetime(2026, 3, 1, 20, 0)).tzinfo == timezone.utc

    def test_offsets_are_normalised(self):
        value = to_datetime("2026-03-01T22:00:00+02:00")
        assert value == datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)
        assert value.utcoffset() == timedelta(0)

    def test_fallback(self):
        fallback = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert to_datetime(None, fallback=fallback) == fallback

    def test_missing_without_fallback(self):
        with pytest.raises(ContractViolation) as exc:
            to_datetime(None)
        assert exc.value.code == "invalid_timestamp"

    def test_fixed_clock(self):
        clock = fixed_clock("2026-03-01T20:00:00Z")
        assert clock() == clock()

    def test_new_id_prefix(self):
        assert new_id("delta").startswith("delta_")
        assert new_id("delta") != new_id("delta")


class TestErrorsAndLogging:
    def test_error_message_and_context(self):
        error = ContractViolation("batch_missing", "no such batch", batch_id="b9")
        assert isinstance(error, PipelineError)
        assert str(error) == "batch_missing: no such batch"
        assert error.context == {"batch_id": "b9"}

    def test_component_logger_name(self):
        logger = get_logger("publishing")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "lore_pipeline.publishing"
