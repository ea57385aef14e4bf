"""Tests for the Canon Store."""

from lore_pipeline.canon.store import CanonStore
from lore_pipeline.models.canon import EntitySnapshot
from lore_pipeline.models.delta import WorldDelta
from lore_pipeline.models.mention import ListChange, ProposedChanges


def _make_control_delta(faction_id: str, add=(), remove=(), after_control=()) -> WorldDelta:
    return WorldDelta(
        delta_id=f"delta_{faction_id}",
        entity_id=faction_id,
        entity_type="faction",
        proposed_changes=ProposedChanges(control=ListChange(add=list(add), remove=list(remove))),
        after=EntitySnapshot(control=list(after_control)),
    )


class TestCanonStore:
    def setup_method(self):
        self.store = CanonStore.from_lexicon()

    def test_seeded_from_lexicon_defaults(self):
        assert self.store.get("faction.tempered-accord").control == ["region.auric-steppe"]
        assert self.store.get("region.sable-crescent").controlling_faction == "faction.echo-ledger-conclave"
        assert self.store.get("faction.prismwell-kite-guild") is None

    def test_snapshot_is_a_copy(self):
        snapshot = self.store.snapshot()
        snapshot["faction.tempered-accord"].control.append("region.elsewhere")
        assert self.store.get("faction.tempered-accord").control == ["region.auric-steppe"]

    def test_apply_control_gain_moves_ownership(self):
        delta = _make_control_delta(
            "faction.prismwell-kite-guild",
            add=["region.sable-crescent"],
            after_control=["region.sable-crescent"],
        )
        self.store.apply_delta(delta)

        assert self.store.get("faction.prismwell-kite-guild").control == ["region.sable-crescent"]
        assert self.store.get("region.sable-crescent").controlling_faction == "faction.prismwell-kite-guild"
        assert self.store.get("faction.echo-ledger-conclave").control == []

    def test_apply_control_loss_clears_owner(self):
        delta = _make_control_delta("faction.tempered-accord", remove=["region.auric-steppe"])
        self.store.apply_delta(delta)
        assert self.store.get("region.auric-steppe").controlling_faction is None

    def test_upsert_and_remove(self):
        self.store.upsert("region.new", EntitySnapshot(status="stable"))
        assert "region.new" in self.store.entity_ids()
        assert self.store.remove("region.new") is True
        assert self.store.remove("region.new") is False

    def test_capability_only_delta_leaves_entity_untouched(self):
        delta = WorldDelta(
            delta_id="delta_cap",
            entity_id="faction.tempered-accord",
            entity_type="faction",
            proposed_changes=None,
        )
        result = self.store.apply_delta(delta)

        assert result.control == ["region.auric-steppe"]
        assert self.store.get("faction.tempered-accord").control == ["region.auric-steppe"]
        assert self.store.get("region.auric-steppe").controlling_faction == "faction.tempered-accord"

    def test_two_claims_for_one_faction_both_land(self):
        # Both deltas were diffed against the same canon, so each ``after``
        # holds only its own region.
        first = _make_control_delta(
            "faction.prismwell-kite-guild",
            add=["region.kyther-range"],
            after_control=["region.kyther-range"],
        )
        second = _make_control_delta(
            "faction.prismwell-kite-guild",
            add=["region.sable-crescent"],
            after_control=["region.sable-crescent"],
        )
        self.store.apply_delta(first)
        self.store.apply_delta(second)

        kite = self.store.get("faction.prismwell-kite-guild")
        assert kite.control == ["region.kyther-range", "region.sable-crescent"]
        for region_id in kite.control:
            assert self.store.get(region_id).controlling_faction == "faction.prismwell-kite-guild"
        assert self.store.get("faction.echo-ledger-conclave").control == []
