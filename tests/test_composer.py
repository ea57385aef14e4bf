"""Tests for the Bundle Composer."""

from datetime import datetime, timedelta, timezone

import pytest

from lore_pipeline.clock import fixed_clock
from lore_pipeline.errors import ContractViolation
from lore_pipeline.models.artifacts import ComposerConfig
from lore_pipeline.models.delta import (
    Conflict,
    ConflictType,
    DeltaSafety,
    SafetyReason,
    WorldDelta,
)
from lore_pipeline.models.lexicon import CapabilityRef
from lore_pipeline.models.mention import ListChange, ProposedChanges
from lore_pipeline.publishing.composer import (
    BundleComposer,
    collect_safety_tags,
    describe_delta_change,
    is_notable,
)
from lore_pipeline.telemetry.metrics import PublishingMetrics

NOW = datetime(2026, 3, 1, 20, 40, tzinfo=timezone.utc)
RUN_AT = datetime(2026, 3, 1, 21, 0, tzinfo=timezone.utc)


def _make_control_delta(delta_id: str = "delta_1", region_id: str = "region.kyther-range") -> WorldDelta:
    return WorldDelta(
        delta_id=delta_id,
        entity_id="faction.prismwell-kite-guild",
        entity_type="faction",
        canonical_name="Prismwell Kite Guild",
        proposed_changes=ProposedChanges(control=ListChange(add=[region_id])),
    )


def _make_conflicted_delta() -> WorldDelta:
    delta = _make_control_delta("delta_2", "region.sable-crescent")
    delta.safety = DeltaSafety(
        requires_moderation=True,
        reasons=[SafetyReason.CONFLICT_DETECTED],
        conflicts=[Conflict(
            type=ConflictType.CONTROL_COLLISION,
            target="region.sable-crescent",
            current_owner="faction.echo-ledger-conclave",
        )],
    )
    return delta


class TestComposerHelpers:
    def test_describe_control_change(self):
        assert describe_delta_change(_make_control_delta()) == "gains control of region.kyther-range"

    def test_describe_status_change(self):
        delta = WorldDelta(
            delta_id="d1",
            entity_id="region.sable-crescent",
            entity_type="region",
            proposed_changes=ProposedChanges(status="devastated"),
        )
        assert describe_delta_change(delta) == "status shifts to devastated"

    def test_describe_capability_only(self):
        delta = WorldDelta(
            delta_id="d1",
            entity_id="artifact.spectrum-bloom-array",
            entity_type="artifact",
            capability_refs=[CapabilityRef(
                capability_id="capability.spectrum-bloom-array",
                label="Spectrum Bloom Flux Array",
                severity="critical",
            )],
        )
        assert describe_delta_change(delta) == "linked to restricted capability Spectrum Bloom Flux Array"
        assert is_notable(delta) is True

    def test_safety_tags_are_unique_and_ordered(self):
        first = _make_conflicted_delta()
        second = _make_control_delta()
        second.safety = DeltaSafety(
            requires_moderation=True,
            reasons=[SafetyReason.LOW_CONFIDENCE, SafetyReason.CONFLICT_DETECTED],
        )
        assert collect_safety_tags([first, second]) == [
            SafetyReason.CONFLICT_DETECTED,
            SafetyReason.LOW_CONFIDENCE,
        ]


class TestBundleComposer:
    def setup_method(self):
        self.metrics = PublishingMetrics()
        self.composer = BundleComposer(clock=fixed_clock(NOW), metrics=self.metrics)

    def test_compose_lore_bundle(self):
        result = self.composer.compose("s1", "s1-batch-0", [_make_control_delta()], scheduled_at=RUN_AT)

        assert result.prepared_at == NOW
        assert result.scheduled_at == RUN_AT
        assert len(result.lore_bundles) == 1
        bundle = result.lore_bundles[0]
        assert bundle.bundle_id == "bundle-s1-faction.prismwell-kite-guild"
        assert bundle.publish_at == RUN_AT
        assert bundle.version == 1
        assert bundle.revisions[0].delta_ids == ["delta_1"]
        assert bundle.revisions[0].editor == "admin.auto"
        assert bundle.entity_refs == ["faction.prismwell-kite-guild", "region.kyther-range"]
        assert bundle.summary_markdown == (
            "### Prismwell Kite Guild\n- gains control of region.kyther-range"
        )
        assert bundle.safety_tags == []

    def test_deltas_grouped_per_entity(self):
        result = self.composer.compose(
            "s1", "s1-batch-0",
            [_make_control_delta("delta_1"), _make_control_delta("delta_2", "region.auric-steppe")],
            scheduled_at=RUN_AT,
        )
        assert len(result.lore_bundles) == 1
        assert result.lore_bundles[0].provenance.delta_ids == ["delta_1", "delta_2"]
        assert len(result.news_cards) == 2

    def test_repeated_compose_adds_revision(self):
        self.composer.compose("s1", "s1-batch-0", [_make_control_delta()], scheduled_at=RUN_AT)
        again = self.composer.compose(
            "s1", "s1-batch-0", [_make_control_delta()], scheduled_at=RUN_AT, approved_by="admin.jo"
        )

        bundle = again.lore_bundles[0]
        assert bundle.version == 2
        assert [r.version for r in bundle.revisions] == [1, 2]
        assert bundle.revisions[-1].editor == "admin.jo"
        assert len(self.composer.revisions_for(bundle.bundle_id)) == 2

    def test_content_is_deterministic(self):
        first = self.composer.compose("s1", "s1-batch-0", [_make_control_delta()], scheduled_at=RUN_AT)
        second = self.composer.compose("s1", "s1-batch-0", [_make_control_delta()], scheduled_at=RUN_AT)
        assert first.news_cards == second.news_cards
        assert first.lore_bundles[0].summary_markdown == second.lore_bundles[0].summary_markdown

    def test_news_card_urgency_and_expiry(self):
        result = self.composer.compose(
            "s1", "s1-batch-0",
            [_make_control_delta(), _make_conflicted_delta()],
            scheduled_at=RUN_AT,
            moderation_decision_id="mod-7",
        )

        routine, urgent = result.news_cards
        assert routine.card_id == "news-delta_1"
        assert routine.urgency == "routine"
        assert urgent.urgency == "high"
        assert urgent.safety_tags == [SafetyReason.CONFLICT_DETECTED]
        assert routine.expires_at == RUN_AT + timedelta(days=90)
        assert routine.faction_tags == ["faction.prismwell-kite-guild"]
        assert result.lore_bundles[0].provenance.moderation_decision_id == "mod-7"

    def test_overlays_follow_cards(self):
        result = self.composer.compose(
            "s1", "s1-batch-0", [_make_conflicted_delta()], scheduled_at=RUN_AT
        )
        overlay = result.overlay_payloads[0]
        assert overlay.type == "overlay.loreLink"
        assert overlay.news_card_ref == "news-delta_2"
        assert overlay.provenance_badge["severity"] == "warn"

    def test_ttl_is_configurable(self):
        composer = BundleComposer(clock=fixed_clock(NOW), config=ComposerConfig(news_card_ttl_days=7))
        result = composer.compose("s1", "s1-batch-0", [_make_control_delta()], scheduled_at=RUN_AT)
        assert result.news_cards[0].expires_at == RUN_AT + timedelta(days=7)

    def test_scheduled_at_defaults_to_clock(self):
        result = self.composer.compose("s1", "s1-batch-0", [_make_control_delta()])
        assert result.scheduled_at == NOW

    def test_records_batch_prepared_once(self):
        self.composer.compose(
            "s1", "s1-batch-0",
            [_make_control_delta("delta_1"), _make_control_delta("delta_2")],
            scheduled_at=RUN_AT,
        )
        assert self.metrics.counters["publishing.batch.prepared"] == 1
        assert self.metrics.events[0]["delta_count"] == 2

    def test_empty_batch(self):
        result = self.composer.compose("s1", "s1-batch-0", [], scheduled_at=RUN_AT)
        assert result.lore_bundles == []
        assert result.news_cards == []

    def test_requires_session(self):
        with pytest.raises(ContractViolation):
            self.composer.compose("", "s1-batch-0", [])
