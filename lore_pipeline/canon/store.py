"""
Canon Store — the world's source-of-truth snapshot between pipeline runs.

Read by: World Delta Queue (as a frozen copy per run)
Written by: approved deltas, after moderation and publishing
"""

import logging
from typing import Dict, List, Optional

from lore_pipeline.delta.queue import apply_proposed_changes
from lore_pipeline.extraction.lexicon import Lexicon
from lore_pipeline.models.canon import CanonState, EntitySnapshot, copy_canon_state
from lore_pipeline.models.delta import WorldDelta

logger = logging.getLogger(__name__)


class CanonStore:
    """
    In-memory canon store. Production deployments back this with the
    world-state database; the interface stays the same.
    """

    def __init__(self, state: Optional[Dict[str, object]] = None):
        self._state: CanonState = copy_canon_state(state or {})

    @classmethod
    def from_lexicon(cls, lexicon: Optional[Lexicon] = None) -> "CanonStore":
        """Seed canon from the lexicon's default entity states."""
        return cls((lexicon or Lexicon.default()).canon_state())

    def snapshot(self) -> CanonState:
        """A deep copy safe to hand to a delta queue."""
        return copy_canon_state(self._state)

    def get(self, entity_id: str) -> Optional[EntitySnapshot]:
        entity = self._state.get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    def upsert(self, entity_id: str, snapshot: EntitySnapshot) -> None:
        self._state[entity_id] = snapshot.model_copy(deep=True)

    def remove(self, entity_id: str) -> bool:
        return self._state.pop(entity_id, None) is not None

    def entity_ids(self) -> List[str]:
        return list(self._state)

    def apply_delta(self, delta: WorldDelta) -> EntitySnapshot:
        """
        Re-apply an approved delta's proposed changes to the entity as it is
        stored now and keep region ownership consistent with faction control
        lists. ``delta.after`` reflects canon at diff time and is ignored.

        Capability-only deltas carry no change and leave canon untouched.
        """
        if delta.proposed_changes is None:
            logger.info("delta %s carries no changes; canon unchanged", delta.delta_id)
            current = self._state.get(delta.entity_id)
            return current.model_copy(deep=True) if current else EntitySnapshot()

        current = self._state.get(delta.entity_id, EntitySnapshot())
        self._state[delta.entity_id] = apply_proposed_changes(current, delta.proposed_changes)

        control = delta.proposed_changes.control
        if control is not None:
            for region_id in control.add:
                region = self._state.setdefault(region_id, EntitySnapshot())
                previous = region.controlling_faction
                if previous and previous != delta.entity_id:
                    self._release(previous, region_id)
                region.controlling_faction = delta.entity_id
            for region_id in control.remove:
                region = self._state.get(region_id)
                if region and region.controlling_faction == delta.entity_id:
                    region.controlling_faction = None

        logger.info("applied delta %s to canon entity %s", delta.delta_id, delta.entity_id)
        return self._state[delta.entity_id].model_copy(deep=True)

    def _release(self, faction_id: str, region_id: str) -> None:
        faction = self._state.get(faction_id)
        if faction and faction.control and region_id in faction.control:
            faction.control = [r for r in faction.control if r != region_id]
