"""Canon State — the world's source-of-truth snapshot per entity."""

from typing import Dict, List, Optional

from pydantic import BaseModel


class EntitySnapshot(BaseModel):
    """Current world facts for one entity. Unset fields are unknown, not empty."""

    control: Optional[List[str]] = None     # faction: regions under control
    status: Optional[str] = None            # region: "stable" | "threatened" | "devastated"
    controlling_faction: Optional[str] = None
    threats: Optional[List[str]] = None


CanonState = Dict[str, EntitySnapshot]


def copy_canon_state(state: Dict[str, object]) -> CanonState:
    """Typed deep copy of a canon mapping. Accepts raw dicts as values."""
    copied: CanonState = {}
    for entity_id, snapshot in (state or {}).items():
        if isinstance(snapshot, EntitySnapshot):
            copied[entity_id] = snapshot.model_copy(deep=True)
        else:
            copied[entity_id] = EntitySnapshot.model_validate(snapshot or {})
    return copied
