"""Moderation rollups and the moderation queue view."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from lore_pipeline.models.canon import EntitySnapshot
from lore_pipeline.models.delta import Conflict, SafetyReason
from lore_pipeline.models.lexicon import CapabilityRef
from lore_pipeline.models.mention import ProposedChanges


class ModerationRollup(BaseModel):
    """Pure aggregate of a delta list's safety metadata."""

    requires_moderation: bool = False
    reasons: List[SafetyReason] = []
    capability_violations: int = 0
    conflict_detections: int = 0
    low_confidence_findings: int = 0


class ModerationQueueItem(BaseModel):
    delta_id: str
    session_id: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    canonical_name: Optional[str] = None
    created_at: datetime
    status: str = "needs-review"
    blocking: bool = True
    reasons: List[SafetyReason] = []
    capability_violations: List[CapabilityRef] = []
    confidence_tier: Optional[str] = None
    conflicts: List[Conflict] = []
    proposed_changes: Optional[ProposedChanges] = None
    before: Optional[EntitySnapshot] = None
    after: Optional[EntitySnapshot] = None
    countdown_ms: Optional[int] = None
    deadline_at: Optional[datetime] = None
    window_start_at: Optional[datetime] = None
    escalations_at: List[datetime] = []


class ModerationQueueWindow(BaseModel):
    status: str
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    escalations: List[datetime] = []
    notes: Optional[str] = None


class ModerationQueueCadence(BaseModel):
    next_batch_at: Optional[datetime] = None
    next_digest_at: Optional[datetime] = None


class ModerationQueueState(BaseModel):
    """What a moderator sees for one session: pending items and deadlines."""

    session_id: str
    generated_at: datetime
    status: str                             # "awaiting_moderation" | "clear"
    pending_count: int = 0
    items: List[ModerationQueueItem] = []
    window: Optional[ModerationQueueWindow] = None
    cadence: Optional[ModerationQueueCadence] = None
