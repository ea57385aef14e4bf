"""Tests for the World Delta Queue."""

import itertools
from datetime import datetime, timezone

import pytest

from lore_pipeline.clock import fixed_clock
from lore_pipeline.delta.publisher import BufferedAlertPublisher
from lore_pipeline.delta.queue import (
    WorldDeltaQueue,
    apply_proposed_changes,
    confidence_tier,
    is_meaningful_change,
)
from lore_pipeline.errors import CapabilityValidationError, ContractViolation
from lore_pipeline.extraction.lexicon import Lexicon
from lore_pipeline.models.canon import EntitySnapshot
from lore_pipeline.models.delta import (
    ConflictType,
    DeltaQueueConfig,
    DeltaStatus,
    SafetyReason,
)
from lore_pipeline.models.lexicon import CapabilityRef
from lore_pipeline.models.mention import (
    ListChange,
    MatchType,
    Mention,
    MentionMatch,
    MentionSource,
    ProposedChanges,
)

NOW = datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc)


def _counter_ids():
    counter = itertools.count(1)
    return lambda prefix: f"{prefix}_{next(counter)}"


def _make_control_mention(
    region_id: str = "region.kyther-range",
    confidence: float = 0.85,
    faction_id: str = "faction.prismwell-kite-guild",
    remove: bool = False,
    sentence_index: int = 0,
) -> Mention:
    change = ListChange(remove=[region_id]) if remove else ListChange(add=[region_id])
    return Mention(
        mention_id=f"mention_{sentence_index}",
        entity_id=faction_id,
        entity_type="faction",
        canonical_name="Prismwell Kite Guild",
        match=MentionMatch(type=MatchType.ALIAS, value="Kite Guild"),
        confidence=confidence,
        sentence="The Kite Guild seized it.",
        source=MentionSource(session_id="s1", turn_id="t1", sentence_index=sentence_index),
        proposed_changes=ProposedChanges(control=change),
    )


def _make_status_mention(status: str, sentence_index: int = 0) -> Mention:
    return Mention(
        mention_id=f"status_{sentence_index}",
        entity_id="region.sable-crescent",
        entity_type="region",
        canonical_name="Sable Crescent Basin",
        match=MentionMatch(type=MatchType.CANONICAL, value="Sable Crescent Basin"),
        confidence=0.95,
        sentence="The Sable Crescent Basin changed.",
        source=MentionSource(session_id="s1", turn_id="t1", sentence_index=sentence_index),
        proposed_changes=ProposedChanges(status=status),
    )


def _make_capability_mention(capability_refs) -> Mention:
    return Mention(
        mention_id="cap_1",
        entity_id="artifact.spectrum-bloom-array",
        entity_type="artifact",
        canonical_name="Spectrum Bloom Flux Array",
        match=MentionMatch(type=MatchType.CANONICAL, value="Spectrum Bloom Flux Array"),
        confidence=0.95,
        sentence="The Spectrum Bloom Flux Array woke.",
        source=MentionSource(session_id="s1", turn_id="t1", sentence_index=0),
        capability_refs=capability_refs,
    )


class TestHelpers:
    def test_confidence_tier(self):
        assert confidence_tier(0.95) == "high"
        assert confidence_tier(0.85) == "high"
        assert confidence_tier(0.7) == "medium"
        assert confidence_tier(0.55) == "low"

    def test_apply_control_change_does_not_mutate(self):
        before = EntitySnapshot(control=["region.one"])
        after = apply_proposed_changes(
            before, ProposedChanges(control=ListChange(add=["region.two"], remove=["region.one"]))
        )
        assert after.control == ["region.two"]
        assert before.control == ["region.one"]

    def test_empty_list_is_not_a_change(self):
        assert not is_meaningful_change(EntitySnapshot(), EntitySnapshot(control=[]))
        assert is_meaningful_change(EntitySnapshot(), EntitySnapshot(status="stable"))


class TestWorldDeltaQueue:
    def setup_method(self):
        self.publisher = BufferedAlertPublisher()

    def _make_queue(self, canon_state=None, **kwargs) -> WorldDeltaQueue:
        return WorldDeltaQueue(
            canon_state=canon_state or {},
            publisher=self.publisher,
            clock=fixed_clock(NOW),
            id_factory=_counter_ids(),
            **kwargs,
        )

    def test_clean_claim_needs_no_moderation(self):
        queue = self._make_queue()
        deltas = queue.enqueue_from_mentions([_make_control_mention()])

        assert len(deltas) == 1
        delta = deltas[0]
        assert delta.delta_id == "delta_1"
        assert delta.before == EntitySnapshot()
        assert delta.after.control == ["region.kyther-range"]
        assert delta.safety.requires_moderation is False
        assert delta.safety.reasons == []
        assert delta.status == DeltaStatus.PENDING
        assert delta.confidence_tier == "high"
        assert delta.created_at == NOW
        assert self.publisher.alerts == []

    def test_control_collision(self):
        queue = self._make_queue(Lexicon.default().canon_state())
        deltas = queue.enqueue_from_mentions([_make_control_mention("region.sable-crescent")])

        safety = deltas[0].safety
        assert safety.requires_moderation is True
        assert safety.reasons == [SafetyReason.CONFLICT_DETECTED]
        assert safety.conflicts[0].type == ConflictType.CONTROL_COLLISION
        assert safety.conflicts[0].target == "region.sable-crescent"
        assert safety.conflicts[0].current_owner == "faction.echo-ledger-conclave"
        assert deltas[0].status == DeltaStatus.NEEDS_REVIEW

    def test_owning_faction_does_not_collide_with_itself(self):
        queue = self._make_queue({"region.kyther-range": {"controlling_faction": "faction.prismwell-kite-guild"}})
        deltas = queue.enqueue_from_mentions([_make_control_mention()])
        assert deltas[0].safety.conflicts == []

    def test_low_confidence(self):
        queue = self._make_queue()
        deltas = queue.enqueue_from_mentions([_make_control_mention(confidence=0.55)])
        assert deltas[0].safety.reasons == [SafetyReason.LOW_CONFIDENCE]
        assert deltas[0].confidence_tier == "low"

    def test_low_confidence_threshold_is_configurable(self):
        queue = self._make_queue(config=DeltaQueueConfig(low_confidence_threshold=0.9))
        deltas = queue.enqueue_from_mentions([_make_control_mention(confidence=0.85)])
        assert deltas[0].safety.has_reason(SafetyReason.LOW_CONFIDENCE)

    def test_capability_only_delta(self):
        queue = self._make_queue()
        deltas = queue.enqueue_from_mentions([
            _make_capability_mention([CapabilityRef(capability_id="capability.spectrum-bloom-array")])
        ])

        delta = deltas[0]
        assert delta.proposed_changes is None
        assert delta.safety.reasons == [SafetyReason.CAPABILITY_VIOLATION]
        assert delta.capability_refs[0].label == "Spectrum Bloom Flux Array"
        assert delta.capability_refs[0].severity == "critical"

    def test_capability_only_delta_keeps_canon_snapshot(self):
        queue = self._make_queue(Lexicon.default().canon_state())
        mention = _make_capability_mention([CapabilityRef(capability_id="capability.temporal-retcon")])
        mention.entity_id = "faction.tempered-accord"
        mention.entity_type = "faction"

        delta = queue.enqueue_from_mentions([mention])[0]

        assert delta.proposed_changes is None
        assert delta.before.control == ["region.auric-steppe"]
        assert delta.after.control == ["region.auric-steppe"]
        assert delta.after is not delta.before

    def test_unknown_capability_propagates(self):
        queue = self._make_queue()
        with pytest.raises(CapabilityValidationError) as exc:
            queue.enqueue_from_mentions([
                _make_capability_mention([CapabilityRef(capability_id="capability.unknown")])
            ])
        assert exc.value.code == "unknown_capability_reference"

    def test_severity_mismatch_propagates(self):
        queue = self._make_queue()
        with pytest.raises(CapabilityValidationError) as exc:
            queue.enqueue_from_mentions([
                _make_capability_mention([
                    CapabilityRef(capability_id="capability.temporal-retcon", severity="critical")
                ])
            ])
        assert exc.value.code == "capability_severity_mismatch"

    def test_all_reasons_in_order(self):
        queue = self._make_queue(Lexicon.default().canon_state())
        mention = _make_control_mention("region.sable-crescent", confidence=0.55)
        mention.capability_refs = [CapabilityRef(capability_id="capability.mass-mind-control")]

        deltas = queue.enqueue_from_mentions([mention])
        assert deltas[0].safety.reasons == [
            SafetyReason.LOW_CONFIDENCE,
            SafetyReason.CAPABILITY_VIOLATION,
            SafetyReason.CONFLICT_DETECTED,
        ]
        assert len(self.publisher.alerts) == 1

    def test_no_op_change_yields_no_delta(self):
        queue = self._make_queue()
        deltas = queue.enqueue_from_mentions([_make_control_mention(remove=True)])
        assert deltas == []

    def test_pending_control_conflict(self):
        queue = self._make_queue()
        deltas = queue.enqueue_from_mentions([
            _make_control_mention("region.kyther-range", sentence_index=0),
            _make_control_mention("region.auric-steppe", sentence_index=1),
        ])

        assert deltas[0].safety.conflicts == []
        conflict = deltas[1].safety.conflicts[0]
        assert conflict.type == ConflictType.PENDING_DELTA_CONFLICT
        assert conflict.target == "region.auric-steppe"
        assert conflict.conflicting_delta_id == deltas[0].delta_id

    def test_status_conflict(self):
        queue = self._make_queue()
        deltas = queue.enqueue_from_mentions([
            _make_status_mention("threatened", sentence_index=0),
            _make_status_mention("devastated", sentence_index=1),
        ])

        conflict = deltas[1].safety.conflicts[0]
        assert conflict.type == ConflictType.STATUS_CONFLICT
        assert conflict.previous == "threatened"
        assert conflict.proposed == "devastated"
        assert deltas[1].safety.has_reason(SafetyReason.CONFLICT_DETECTED)

    def test_one_alert_per_moderated_delta(self):
        queue = self._make_queue(Lexicon.default().canon_state())
        deltas = queue.enqueue_from_mentions([
            _make_control_mention("region.kyther-range", sentence_index=0, faction_id="faction.new-a"),
            _make_control_mention("region.sable-crescent", sentence_index=1, faction_id="faction.new-b"),
            _make_control_mention("region.kyther-range", confidence=0.55, sentence_index=2, faction_id="faction.new-c"),
        ])

        moderated = [d for d in deltas if d.safety.requires_moderation]
        assert len(moderated) == 2
        assert len(self.publisher.alerts) == 2

        alert = self.publisher.alerts[0]
        assert alert["topic"] == "admin.alert"
        assert alert["severity"] == "high"
        assert alert["reason"] == "world_delta_requires_moderation"
        assert alert["data"]["delta_id"] == moderated[0].delta_id
        assert alert["data"]["safety"]["reasons"] == ["conflict_detected"]

    def test_canon_input_is_not_mutated(self):
        canon = {"faction.prismwell-kite-guild": EntitySnapshot(control=["region.sable-crescent"])}
        queue = self._make_queue(canon)
        queue.enqueue_from_mentions([_make_control_mention()])
        assert canon["faction.prismwell-kite-guild"].control == ["region.sable-crescent"]

    def test_get_pending_returns_copies(self):
        queue = self._make_queue()
        queue.enqueue_from_mentions([_make_control_mention()])

        pending = queue.get_pending()
        pending[0].after.control.append("region.elsewhere")
        assert queue.get_pending()[0].after.control == ["region.kyther-range"]

    def test_accepts_raw_dict_mentions(self):
        queue = self._make_queue()
        deltas = queue.enqueue_from_mentions([_make_control_mention().model_dump()])
        assert len(deltas) == 1

    def test_requires_mentions(self):
        queue = self._make_queue()
        with pytest.raises(ContractViolation) as exc:
            queue.enqueue_from_mentions(None)
        assert exc.value.code == "requires_mentions"
