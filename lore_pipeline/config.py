"""
Configuration settings using Pydantic Settings.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from lore_pipeline.models.artifacts import ComposerConfig
from lore_pipeline.models.delta import DeltaQueueConfig
from lore_pipeline.models.mention import ExtractionConfig
from lore_pipeline.models.publishing import CadenceConfig
from lore_pipeline.models.search import RetryQueueConfig


class LorePipelineSettings(BaseSettings):
    """Process-level settings loaded from ``LORE_PIPELINE_*`` environment variables."""

    LOG_LEVEL: str = "INFO"
    STATE_DB_PATH: str = ":memory:"

    MIN_CONFIDENCE: float = 0.4
    LOW_CONFIDENCE_THRESHOLD: float = 0.7

    MODERATION_DELAY_MINUTES: int = 15
    MODERATION_WINDOW_MINUTES: int = 45
    MODERATION_ESCALATION_MINUTES: List[int] = [30, 40]
    LORE_BATCH_DELAY_MINUTES: int = 60
    DIGEST_HOUR: int = 2
    DIGEST_MINUTE: int = 0
    TIMEZONE_OFFSET_MINUTES: int = 0
    MAX_OVERRIDE_DEFER_MINUTES: int = 12 * 60

    NEWS_CARD_TTL_DAYS: int = 90

    RETRY_BASE_DELAY_MS: int = 5 * 60 * 1000
    RETRY_MAX_ATTEMPTS: int = 3

    model_config = SettingsConfigDict(
        env_prefix="LORE_PIPELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def extraction_config(self) -> ExtractionConfig:
        return ExtractionConfig(min_confidence=self.MIN_CONFIDENCE)

    def delta_queue_config(self) -> DeltaQueueConfig:
        return DeltaQueueConfig(low_confidence_threshold=self.LOW_CONFIDENCE_THRESHOLD)

    def cadence_config(self) -> CadenceConfig:
        return CadenceConfig(
            moderation_delay_minutes=self.MODERATION_DELAY_MINUTES,
            moderation_window_minutes=self.MODERATION_WINDOW_MINUTES,
            moderation_escalation_minutes=list(self.MODERATION_ESCALATION_MINUTES),
            lore_batch_delay_minutes=self.LORE_BATCH_DELAY_MINUTES,
            digest_hour=self.DIGEST_HOUR,
            digest_minute=self.DIGEST_MINUTE,
            timezone_offset_minutes=self.TIMEZONE_OFFSET_MINUTES,
            max_override_defer_minutes=self.MAX_OVERRIDE_DEFER_MINUTES,
        )

    def composer_config(self) -> ComposerConfig:
        return ComposerConfig(news_card_ttl_days=self.NEWS_CARD_TTL_DAYS)

    def retry_queue_config(self) -> RetryQueueConfig:
        return RetryQueueConfig(
            base_delay_ms=self.RETRY_BASE_DELAY_MS,
            max_attempts=self.RETRY_MAX_ATTEMPTS,
        )


@lru_cache
def get_settings() -> LorePipelineSettings:
    """
    Get cached settings instance.

    :return: Cached LorePipelineSettings instance
    :rtype: LorePipelineSettings
    """
    return LorePipelineSettings()
