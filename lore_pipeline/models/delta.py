"""World Delta — a proposed change to canon, carrying moderation metadata."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from lore_pipeline.models.canon import EntitySnapshot
from lore_pipeline.models.lexicon import CapabilityRef
from lore_pipeline.models.mention import MentionSource, ProposedChanges


class SafetyReason(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    CONFLICT_DETECTED = "conflict_detected"
    CAPABILITY_VIOLATION = "capability_violation"


class ConflictType(str, Enum):
    CONTROL_COLLISION = "control_collision"             # Region already owned by another faction
    PENDING_DELTA_CONFLICT = "pending_delta_conflict"   # Earlier queued claim disagrees
    STATUS_CONFLICT = "status_conflict"


class DeltaStatus(str, Enum):
    PENDING = "pending"
    NEEDS_REVIEW = "needs-review"


class Conflict(BaseModel):
    type: ConflictType
    target: Optional[str] = None
    current_owner: Optional[str] = None
    conflicting_delta_id: Optional[str] = None
    previous: Optional[str] = None
    proposed: Optional[str] = None


class DeltaSafety(BaseModel):
    requires_moderation: bool = False
    reasons: List[SafetyReason] = []
    conflicts: List[Conflict] = []
    capability_violations: List[CapabilityRef] = []
    confidence: Optional[str] = None        # Confidence tier at evaluation time

    def has_reason(self, reason: SafetyReason) -> bool:
        return reason in self.reasons


class WorldDelta(BaseModel):
    """One proposed canon change, derived from exactly one mention."""

    delta_id: str
    entity_id: str
    entity_type: str
    canonical_name: Optional[str] = None
    confidence: float = Field(ge=0, le=1, default=1.0)
    confidence_tier: str = "high"
    source: Optional[MentionSource] = None
    proposed_changes: Optional[ProposedChanges] = None
    capability_refs: List[CapabilityRef] = []
    before: EntitySnapshot = Field(default_factory=EntitySnapshot)
    after: EntitySnapshot = Field(default_factory=EntitySnapshot)
    safety: DeltaSafety = Field(default_factory=DeltaSafety)
    status: DeltaStatus = DeltaStatus.PENDING
    created_at: Optional[datetime] = None


class DeltaQueueConfig(BaseModel):
    """Configuration for the World Delta Queue."""

    low_confidence_threshold: float = Field(ge=0, le=1, default=0.7)
