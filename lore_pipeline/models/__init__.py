"""Lore pipeline data models."""

from lore_pipeline.models.artifacts import (
    BundleProvenance,
    BundleRevision,
    ComposerConfig,
    LoreBundle,
    NewsCard,
    OverlayPayload,
    PublishingResult,
)
from lore_pipeline.models.canon import CanonState, EntitySnapshot
from lore_pipeline.models.delta import (
    Conflict,
    ConflictType,
    DeltaQueueConfig,
    DeltaSafety,
    DeltaStatus,
    SafetyReason,
    WorldDelta,
)
from lore_pipeline.models.lexicon import Capability, CapabilityRef, LexiconEntry
from lore_pipeline.models.mention import (
    ExtractionConfig,
    ExtractionResult,
    ListChange,
    MatchType,
    Mention,
    MentionContext,
    MentionMatch,
    MentionSource,
    ProposedChanges,
)
from lore_pipeline.models.moderation import ModerationQueueState, ModerationRollup
from lore_pipeline.models.publishing import (
    Batch,
    BatchStatus,
    CadenceConfig,
    DigestRun,
    HistoryEvent,
    ModerationWindow,
    ModerationWindowStatus,
    PreparationResult,
    PublicationResult,
    PublishingSchedule,
    ScheduleOverride,
)
from lore_pipeline.models.search import (
    RetryJob,
    RetryQueueConfig,
    RetryQueueStatus,
    RetrySummary,
    SearchDrift,
    SearchJob,
    SearchPlan,
    SearchResult,
)
from lore_pipeline.models.transcript import TranscriptEntry

__all__ = [
    "Batch",
    "BatchStatus",
    "BundleProvenance",
    "BundleRevision",
    "CadenceConfig",
    "CanonState",
    "Capability",
    "CapabilityRef",
    "ComposerConfig",
    "Conflict",
    "ConflictType",
    "DeltaQueueConfig",
    "DeltaSafety",
    "DeltaStatus",
    "DigestRun",
    "EntitySnapshot",
    "ExtractionConfig",
    "ExtractionResult",
    "HistoryEvent",
    "LexiconEntry",
    "ListChange",
    "LoreBundle",
    "MatchType",
    "Mention",
    "MentionContext",
    "MentionMatch",
    "MentionSource",
    "ModerationQueueState",
    "ModerationRollup",
    "ModerationWindow",
    "ModerationWindowStatus",
    "NewsCard",
    "OverlayPayload",
    "PreparationResult",
    "ProposedChanges",
    "PublicationResult",
    "PublishingResult",
    "PublishingSchedule",
    "RetryJob",
    "RetryQueueConfig",
    "RetryQueueStatus",
    "RetrySummary",
    "SafetyReason",
    "ScheduleOverride",
    "SearchDrift",
    "SearchJob",
    "SearchPlan",
    "SearchResult",
    "TranscriptEntry",
    "WorldDelta",
]
