"""
Bundle Composer — turns approved deltas into publishable artifacts.

Composition is deterministic for a given delta list, scheduled time and
clock: bundle ids derive from session and entity, card ids from delta ids.
The one piece of state is the revision history per bundle, which grows by
one entry on every compose that touches the bundle.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from lore_pipeline.clock import Clock, to_datetime, utc_now
from lore_pipeline.errors import ContractViolation
from lore_pipeline.models.artifacts import (
    BundleProvenance,
    BundleRevision,
    ComposerConfig,
    LoreBundle,
    NewsCard,
    OverlayPayload,
    PublishingResult,
)
from lore_pipeline.models.delta import SafetyReason, WorldDelta
from lore_pipeline.telemetry.metrics import MetricsSink, PublishingMetrics

logger = logging.getLogger(__name__)


def describe_delta_change(delta: WorldDelta) -> str:
    """One human-readable line per delta."""
    fragments = []
    changes = delta.proposed_changes
    if changes is not None:
        if changes.control is not None and changes.control.add:
            fragments.append(f"gains control of {', '.join(changes.control.add)}")
        if changes.control is not None and changes.control.remove:
            fragments.append(f"relinquishes {', '.join(changes.control.remove)}")
        if changes.status:
            fragments.append(f"status shifts to {changes.status}")
        if changes.threats is not None and changes.threats.add:
            fragments.append(f"threats noted: {', '.join(changes.threats.add)}")

    if not fragments and delta.capability_refs:
        labels = [ref.label or ref.capability_id for ref in delta.capability_refs]
        fragments.append(f"linked to restricted capability {', '.join(labels)}")

    if not fragments:
        fragments.append("lore bundle updated")

    return "; ".join(fragments)


def collect_safety_tags(deltas: Iterable[WorldDelta]) -> List[SafetyReason]:
    tags: List[SafetyReason] = []
    for delta in deltas:
        for reason in delta.safety.reasons:
            if reason not in tags:
                tags.append(reason)
    return tags


def is_notable(delta: WorldDelta) -> bool:
    """High urgency: anything moderated, any conflict, any critical capability."""
    if delta.safety.requires_moderation or delta.safety.conflicts:
        return True
    return any(ref.severity == "critical" for ref in delta.capability_refs)


def _entity_refs(deltas: Iterable[WorldDelta]) -> List[str]:
    refs: List[str] = []
    for delta in deltas:
        candidates = [delta.entity_id]
        control = delta.proposed_changes.control if delta.proposed_changes else None
        if control is not None:
            candidates += control.add + control.remove
        for ref in candidates:
            if ref and ref not in refs:
                refs.append(ref)
    return refs


def _render_summary(title: str, lines: List[str]) -> str:
    bullets = "\n".join(f"- {line}" for line in lines)
    return f"### {title}\n{bullets}"


class BundleComposer:
    def __init__(
        self,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsSink] = None,
        config: Optional[ComposerConfig] = None,
    ):
        self.clock = clock or utc_now
        self.metrics = metrics or PublishingMetrics()
        self.config = config or ComposerConfig()
        self._revisions: Dict[str, List[BundleRevision]] = {}

    def compose(
        self,
        session_id: str,
        batch_id: str,
        deltas: Iterable[WorldDelta] = (),
        scheduled_at: Union[str, datetime, None] = None,
        moderation_decision_id: Optional[str] = None,
        approved_by: str = "admin.auto",
    ) -> PublishingResult:
        if not session_id:
            raise ContractViolation("requires_session")

        deltas = list(deltas or [])
        prepared_at = self.clock()
        publish_at = to_datetime(scheduled_at, fallback=prepared_at)

        self.metrics.record_batch_prepared(
            session_id=session_id,
            batch_id=batch_id,
            delta_count=len(deltas),
            scheduled_at=publish_at,
        )

        grouped: Dict[str, List[WorldDelta]] = {}
        for delta in deltas:
            grouped.setdefault(delta.entity_id, []).append(delta)

        lore_bundles = [
            self._build_lore_bundle(
                session_id=session_id,
                batch_id=batch_id,
                deltas=entity_deltas,
                publish_at=publish_at,
                prepared_at=prepared_at,
                moderation_decision_id=moderation_decision_id,
                approved_by=approved_by,
            )
            for entity_deltas in grouped.values()
        ]
        news_cards = [self._build_news_card(session_id, delta, publish_at) for delta in deltas]

        logger.info(
            "composed %d lore bundles and %d news cards for %s/%s",
            len(lore_bundles), len(news_cards), session_id, batch_id,
        )
        return PublishingResult(
            session_id=session_id,
            batch_id=batch_id,
            prepared_at=prepared_at,
            scheduled_at=publish_at,
            lore_bundles=lore_bundles,
            news_cards=news_cards,
            overlay_payloads=[self._build_overlay(card) for card in news_cards],
        )

    def revisions_for(self, bundle_id: str) -> List[BundleRevision]:
        return [r.model_copy() for r in self._revisions.get(bundle_id, [])]

    def _build_lore_bundle(
        self,
        session_id: str,
        batch_id: str,
        deltas: List[WorldDelta],
        publish_at: datetime,
        prepared_at: datetime,
        moderation_decision_id: Optional[str],
        approved_by: str,
    ) -> LoreBundle:
        first = deltas[0]
        bundle_id = f"bundle-{session_id}-{first.entity_id}"
        delta_ids = [d.delta_id for d in deltas]

        history = self._revisions.setdefault(bundle_id, [])
        history.append(BundleRevision(
            version=len(history) + 1,
            batch_id=batch_id,
            delta_ids=delta_ids,
            editor=approved_by,
            applied_at=prepared_at,
        ))

        return LoreBundle(
            bundle_id=bundle_id,
            entity_id=first.entity_id,
            entity_type=first.entity_type,
            canonical_name=first.canonical_name or first.entity_id,
            entity_refs=_entity_refs(deltas),
            summary_markdown=_render_summary(
                first.canonical_name or first.entity_id,
                [describe_delta_change(d) for d in deltas],
            ),
            publish_at=publish_at,
            prepared_at=prepared_at,
            safety_tags=collect_safety_tags(deltas),
            provenance=BundleProvenance(
                session_id=session_id,
                batch_id=batch_id,
                moderation_decision_id=moderation_decision_id,
                delta_ids=delta_ids,
            ),
            revisions=[r.model_copy() for r in history],
        )

    def _build_news_card(self, session_id: str, delta: WorldDelta, publish_at: datetime) -> NewsCard:
        headline = f"{delta.canonical_name or delta.entity_id} update"
        lead = describe_delta_change(delta)
        return NewsCard(
            card_id=f"news-{delta.delta_id}",
            headline=headline,
            lead=lead,
            publish_at=publish_at,
            expires_at=publish_at + timedelta(days=self.config.news_card_ttl_days),
            urgency="high" if is_notable(delta) else "routine",
            faction_tags=[delta.entity_id] if delta.entity_type == "faction" else [],
            provenance_refs=[session_id, delta.delta_id],
            safety_tags=collect_safety_tags([delta]),
            aria_summary=f"{headline}: {lead}",
        )

    @staticmethod
    def _build_overlay(card: NewsCard) -> OverlayPayload:
        return OverlayPayload(
            headline=card.headline,
            publish_at=card.publish_at,
            urgency=card.urgency,
            news_card_ref=card.card_id,
            provenance_badge={
                "label": "Lore Drop",
                "context": card.card_type,
                "severity": "warn" if card.urgency == "high" else "info",
            },
        )
