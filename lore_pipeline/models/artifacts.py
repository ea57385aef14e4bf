"""Publishable artifacts — lore bundles, news cards, overlay payloads."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from lore_pipeline.models.delta import SafetyReason


class BundleRevision(BaseModel):
    version: int
    batch_id: Optional[str] = None
    delta_ids: List[str] = []
    editor: str
    applied_at: datetime


class BundleProvenance(BaseModel):
    session_id: str
    batch_id: Optional[str] = None
    moderation_decision_id: Optional[str] = None
    delta_ids: List[str] = []


class LoreBundle(BaseModel):
    """One entity's published lore. Revision count is its search version."""

    bundle_id: str
    entity_id: str
    entity_type: str
    canonical_name: str
    entity_refs: List[str] = []
    summary_markdown: str
    publish_at: datetime
    prepared_at: datetime
    safety_tags: List[SafetyReason] = []
    provenance: BundleProvenance
    revisions: List[BundleRevision] = []
    status: str = "ready"

    @property
    def version(self) -> int:
        return len(self.revisions)


class NewsCard(BaseModel):
    """A short-lived headline. Not revisioned."""

    card_id: str
    headline: str
    lead: str
    publish_at: datetime
    expires_at: datetime
    urgency: str                            # "high" | "routine"
    card_type: str = "flash"
    faction_tags: List[str] = []
    provenance_refs: List[str] = []
    safety_tags: List[SafetyReason] = []
    aria_summary: str = ""


class OverlayPayload(BaseModel):
    type: str = "overlay.loreLink"
    headline: str
    publish_at: datetime
    urgency: str
    news_card_ref: str
    provenance_badge: dict = {}


class PublishingResult(BaseModel):
    session_id: str
    batch_id: str
    prepared_at: datetime
    scheduled_at: datetime
    lore_bundles: List[LoreBundle] = []
    news_cards: List[NewsCard] = []
    overlay_payloads: List[OverlayPayload] = []


class ComposerConfig(BaseModel):
    """Configuration for the Bundle Composer."""

    news_card_ttl_days: int = Field(ge=1, default=90)
