"""Publishing schedule, batch state machine, and coordinator results."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from lore_pipeline.models.artifacts import PublishingResult
from lore_pipeline.models.moderation import ModerationQueueState, ModerationRollup
from lore_pipeline.models.search import RetryJob, RetrySummary, SearchDrift, SearchPlan


class BatchStatus(str, Enum):
    """
    Batch lifecycle:
      SCHEDULED → AWAITING_MODERATION → READY → (PUBLISHED | RETRY_PENDING)
    RETRY_PENDING returns to PUBLISHED once the caller confirms the retries landed.
    """
    SCHEDULED = "scheduled"
    AWAITING_MODERATION = "awaiting_moderation"
    READY = "ready"
    PUBLISHED = "published"
    RETRY_PENDING = "retry_pending"


class ModerationWindowStatus(str, Enum):
    SCHEDULED = "scheduled"
    AWAITING_REVIEW = "awaiting_review"
    CLEAR = "clear"


class ScheduleOverride(BaseModel):
    """An admin deferral of a scheduled batch."""

    override_id: str
    target: str = "loreBatch"
    batch_id: str
    actor: str = "admin.system"
    reason: Optional[str] = None
    applied_at: datetime
    defer_until: datetime


class Batch(BaseModel):
    batch_id: str
    type: str = "hourly"
    run_at: datetime
    status: BatchStatus = BatchStatus.SCHEDULED
    prepared_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    delta_count: Optional[int] = None
    latency_ms: Optional[int] = None
    notes: Optional[str] = None
    override: Optional[ScheduleOverride] = None


class ModerationWindow(BaseModel):
    start_at: datetime
    end_at: datetime
    escalations: List[datetime] = []
    status: ModerationWindowStatus = ModerationWindowStatus.SCHEDULED
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None


class DigestRun(BaseModel):
    run_at: datetime
    status: str = "scheduled"
    notes: Optional[str] = None


class HistoryEvent(BaseModel):
    type: str                               # e.g., "cadence.batch.status"
    occurred_at: datetime
    payload: dict = {}


class PublishingSchedule(BaseModel):
    """Exactly one per session. Batches are transitioned, never deleted."""

    session_id: str
    session_closed_at: datetime
    moderation: ModerationWindow
    batches: List[Batch] = []
    digest: Optional[DigestRun] = None
    overrides: List[ScheduleOverride] = []
    history: List[HistoryEvent] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_batch(self, batch_id: str) -> Optional[Batch]:
        return next((b for b in self.batches if b.batch_id == batch_id), None)


class CadenceConfig(BaseModel):
    """Configuration for the Publishing Cadence."""

    moderation_delay_minutes: int = 15
    moderation_window_minutes: int = 45
    moderation_escalation_minutes: List[int] = [30, 40]
    lore_batch_delay_minutes: int = 60
    digest_hour: int = Field(ge=0, le=23, default=2)
    digest_minute: int = Field(ge=0, le=59, default=0)
    timezone_offset_minutes: int = 0
    max_override_defer_minutes: int = 12 * 60


class PreparationResult(BaseModel):
    """Outcome of PublishingCoordinator.prepare_batch."""

    status: str                             # "awaiting_moderation" | "ready"
    schedule: PublishingSchedule
    publishing: Optional[PublishingResult] = None
    search_plan: SearchPlan
    moderation: ModerationRollup
    moderation_queue: ModerationQueueState


class PublicationResult(BaseModel):
    """Outcome of PublishingCoordinator.mark_batch_published."""

    schedule: PublishingSchedule
    latency_ms: int = 0
    drifts: List[SearchDrift] = []
    retry_jobs: List[RetryJob] = []
    retry_summary: RetrySummary
