"""Mention — a confidence-scored reference to a known entity in one sentence."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from lore_pipeline.models.lexicon import CapabilityRef, LexiconEntry


class MatchType(str, Enum):
    CANONICAL = "canonical"
    ALIAS = "alias"
    FUZZY = "fuzzy"


class MentionMatch(BaseModel):
    type: MatchType
    value: str                              # The name or alias that matched


class MentionSource(BaseModel):
    """Where in the transcript the mention was found."""

    session_id: Optional[str] = None
    scene_id: Optional[str] = None
    turn_id: Optional[str] = None
    speaker: Optional[str] = None
    sentence_index: int = -1


class MentionContext(BaseModel):
    previous: Optional[str] = None
    next: Optional[str] = None


class ListChange(BaseModel):
    """Additions and removals against a list-valued world fact."""

    add: List[str] = []
    remove: List[str] = []


class ProposedChanges(BaseModel):
    """World changes claimed by a sentence."""

    control: Optional[ListChange] = None
    status: Optional[str] = None
    threats: Optional[ListChange] = None


class Mention(BaseModel):
    mention_id: str
    entity_id: str
    entity_type: str
    canonical_name: str
    match: MentionMatch
    confidence: float = Field(ge=0, le=0.99)
    sentence: str
    source: MentionSource
    proposed_changes: Optional[ProposedChanges] = None
    capability_refs: List[CapabilityRef] = []
    context: MentionContext = Field(default_factory=MentionContext)

    @property
    def actionable(self) -> bool:
        """A mention matters only if it proposes a change or cites a capability."""
        return self.proposed_changes is not None or len(self.capability_refs) > 0

    @property
    def dedupe_key(self) -> tuple:
        return (
            self.entity_id,
            self.source.session_id or "",
            self.source.scene_id or "",
            self.source.turn_id or "",
            self.source.sentence_index,
        )


class ExtractionConfig(BaseModel):
    """Configuration for the Entity Extractor."""

    min_confidence: float = Field(ge=0, le=1, default=0.4)


class ExtractionResult(BaseModel):
    mentions: List[Mention] = []
    lexicon: List[LexiconEntry] = []
