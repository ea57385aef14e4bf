"""Lexicon entries and the prohibited capability catalog."""

from typing import List, Optional

from pydantic import BaseModel

from lore_pipeline.models.canon import EntitySnapshot


class LexiconEntry(BaseModel):
    """A known world entity, matched against transcript text by name or alias."""

    entity_id: str                          # e.g., "faction.prismwell-kite-guild"
    entity_type: str                        # "faction" | "region" | "anchor" | "artifact"
    canonical_name: str
    aliases: List[str] = []
    tags: List[str] = []
    default_state: Optional[EntitySnapshot] = None

    @property
    def names(self) -> List[str]:
        """Canonical name first, then aliases."""
        return [self.canonical_name] + list(self.aliases)


class Capability(BaseModel):
    """A cataloged capability that must never enter canon unreviewed."""

    capability_id: str
    label: str
    severity: str                           # "high" | "critical"
    rationale: str


class CapabilityRef(BaseModel):
    """A reference to a cataloged capability found in text or on a delta."""

    capability_id: str
    severity: Optional[str] = None
    label: Optional[str] = None
    rationale: Optional[str] = None
    source: Optional[str] = None
