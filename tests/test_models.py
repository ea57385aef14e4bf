"""Tests for core data models."""

from datetime import datetime, timezone

import pytest

from lore_pipeline.models import (
    Batch,
    BatchStatus,
    BundleProvenance,
    BundleRevision,
    DeltaSafety,
    EntitySnapshot,
    LexiconEntry,
    ListChange,
    LoreBundle,
    MatchType,
    Mention,
    MentionMatch,
    MentionSource,
    ModerationWindow,
    ProposedChanges,
    PublishingSchedule,
    RetryJob,
    SafetyReason,
    SearchDrift,
    SearchResult,
)
from lore_pipeline.models.canon import copy_canon_state

NOW = datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc)


def _make_mention(**overrides) -> Mention:
    data = dict(
        mention_id="mention_1",
        entity_id="faction.prismwell-kite-guild",
        entity_type="faction",
        canonical_name="Prismwell Kite Guild",
        match=MentionMatch(type=MatchType.ALIAS, value="Kite Guild"),
        confidence=0.85,
        sentence="The Kite Guild seized the Kyther Range Vault.",
        source=MentionSource(session_id="s1", turn_id="t1", sentence_index=0),
    )
    data.update(overrides)
    return Mention(**data)


class TestMention:
    def test_actionable_requires_change_or_capability(self):
        assert _make_mention().actionable is False
        changed = _make_mention(
            proposed_changes=ProposedChanges(control=ListChange(add=["region.kyther-range"]))
        )
        assert changed.actionable is True

    def test_confidence_upper_bound(self):
        with pytest.raises(Exception):
            _make_mention(confidence=1.0)

    def test_dedupe_key_normalises_missing_ids(self):
        mention = _make_mention(source=MentionSource(session_id="s1", sentence_index=2))
        assert mention.dedupe_key == ("faction.prismwell-kite-guild", "s1", "", "", 2)


class TestCanonState:
    def test_copy_accepts_raw_dicts(self):
        state = copy_canon_state({"region.sable-crescent": {"controlling_faction": "faction.x"}})
        assert isinstance(state["region.sable-crescent"], EntitySnapshot)
        assert state["region.sable-crescent"].controlling_faction == "faction.x"

    def test_copy_is_deep(self):
        original = {"faction.a": EntitySnapshot(control=["region.one"])}
        copied = copy_canon_state(original)
        copied["faction.a"].control.append("region.two")
        assert original["faction.a"].control == ["region.one"]


class TestLexiconEntry:
    def test_names_lists_canonical_first(self):
        entry = LexiconEntry(
            entity_id="region.kyther-range",
            entity_type="region",
            canonical_name="Kyther Range Vault",
            aliases=["Kyther Range"],
        )
        assert entry.names == ["Kyther Range Vault", "Kyther Range"]


class TestDeltaSafety:
    def test_has_reason(self):
        safety = DeltaSafety(requires_moderation=True, reasons=[SafetyReason.LOW_CONFIDENCE])
        assert safety.has_reason(SafetyReason.LOW_CONFIDENCE)
        assert not safety.has_reason(SafetyReason.CONFLICT_DETECTED)

    def test_reason_serialises_as_string(self):
        safety = DeltaSafety(reasons=[SafetyReason.CAPABILITY_VIOLATION])
        assert safety.model_dump(mode="json")["reasons"] == ["capability_violation"]


class TestPublishingSchedule:
    def test_find_batch(self):
        schedule = PublishingSchedule(
            session_id="s1",
            session_closed_at=NOW,
            moderation=ModerationWindow(start_at=NOW, end_at=NOW),
            batches=[Batch(batch_id="s1-batch-0", run_at=NOW)],
        )
        assert schedule.find_batch("s1-batch-0").status == BatchStatus.SCHEDULED
        assert schedule.find_batch("missing") is None

    def test_json_round_trip_preserves_status(self):
        schedule = PublishingSchedule(
            session_id="s1",
            session_closed_at=NOW,
            moderation=ModerationWindow(start_at=NOW, end_at=NOW),
            batches=[Batch(batch_id="s1-batch-0", run_at=NOW, status=BatchStatus.RETRY_PENDING)],
        )
        restored = PublishingSchedule.model_validate_json(schedule.model_dump_json())
        assert restored.batches[0].status == BatchStatus.RETRY_PENDING
        assert restored.session_closed_at == NOW


class TestLoreBundle:
    def test_version_is_revision_count(self):
        bundle = LoreBundle(
            bundle_id="bundle-s1-faction.a",
            entity_id="faction.a",
            entity_type="faction",
            canonical_name="A",
            summary_markdown="### A",
            publish_at=NOW,
            prepared_at=NOW,
            provenance=BundleProvenance(session_id="s1"),
            revisions=[
                BundleRevision(version=1, editor="admin.auto", applied_at=NOW),
                BundleRevision(version=2, editor="admin.auto", applied_at=NOW),
            ],
        )
        assert bundle.version == 2


class TestSearchModels:
    def test_result_keeps_extra_fields(self):
        result = SearchResult.model_validate({"status": "failed", "error": "timeout"})
        assert result.model_dump()["error"] == "timeout"

    def test_drift_requires_reason(self):
        with pytest.raises(Exception):
            SearchDrift(status="failed")

    def test_retry_attempt_must_be_positive(self):
        with pytest.raises(Exception):
            RetryJob(retry_id="r1", job_id="j1", attempt=0, retry_at=NOW)
