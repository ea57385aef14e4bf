"""
Lexicon — static catalog of known world entities.

Each entry carries a canonical name and aliases used for matching, and may
carry a default canon snapshot used to seed world state for offline runs.
"""

from typing import Dict, Iterable, List, Optional

from lore_pipeline.models.canon import CanonState, EntitySnapshot
from lore_pipeline.models.lexicon import LexiconEntry


DEFAULT_LEXICON: List[LexiconEntry] = [
    LexiconEntry(
        entity_id="faction.tempered-accord",
        entity_type="faction",
        canonical_name="Tempered Accord Custodial Council",
        aliases=["Tempered Accord", "Custodial Council"],
        tags=["faction", "canon", "safety"],
        default_state=EntitySnapshot(control=["region.auric-steppe"]),
    ),
    LexiconEntry(
        entity_id="faction.prismwell-kite-guild",
        entity_type="faction",
        canonical_name="Prismwell Kite Guild",
        aliases=["Kite Guild", "Prismwell Guild"],
        tags=["faction", "aerial"],
    ),
    LexiconEntry(
        entity_id="faction.echo-ledger-conclave",
        entity_type="faction",
        canonical_name="Echo Ledger Conclave",
        aliases=["Echo Conclave", "Ledger Conclave"],
        tags=["faction", "echo"],
        default_state=EntitySnapshot(control=["region.sable-crescent"]),
    ),
    LexiconEntry(
        entity_id="region.auric-steppe",
        entity_type="region",
        canonical_name="Auric Steppe Corridor",
        aliases=["Auric Steppe", "Auric Corridor"],
        tags=["region", "prismwell"],
        default_state=EntitySnapshot(
            status="stable",
            controlling_faction="faction.tempered-accord",
            threats=[],
        ),
    ),
    LexiconEntry(
        entity_id="region.kyther-range",
        entity_type="region",
        canonical_name="Kyther Range Vault",
        aliases=["Kyther Range", "Kyther Vault"],
        tags=["region", "lattice"],
        default_state=EntitySnapshot(status="stable", threats=[]),
    ),
    LexiconEntry(
        entity_id="region.sable-crescent",
        entity_type="region",
        canonical_name="Sable Crescent Basin",
        aliases=["Sable Crescent", "Crescent Basin"],
        tags=["region", "echo"],
        default_state=EntitySnapshot(
            status="stable",
            controlling_faction="faction.echo-ledger-conclave",
            threats=[],
        ),
    ),
    LexiconEntry(
        entity_id="anchor.prism-spire.auric-step",
        entity_type="anchor",
        canonical_name="Auric Step Prism Spire",
        aliases=["Auric Prism Spire", "Auric Spire"],
        tags=["anchor", "prismwell"],
    ),
    LexiconEntry(
        entity_id="artifact.spectrum-bloom-array",
        entity_type="artifact",
        canonical_name="Spectrum Bloom Flux Array",
        aliases=["Spectrum Bloom", "Flux Array"],
        tags=["artifact", "capability", "legendary"],
    ),
]


class Lexicon:
    """An ordered, copy-on-read collection of lexicon entries."""

    def __init__(self, entries: Optional[Iterable[LexiconEntry]] = None):
        source = DEFAULT_LEXICON if entries is None else entries
        self._entries: List[LexiconEntry] = [
            LexiconEntry.model_validate(e) if isinstance(e, dict) else e.model_copy(deep=True)
            for e in source
        ]
        self._by_id: Dict[str, LexiconEntry] = {e.entity_id: e for e in self._entries}

    @classmethod
    def default(cls) -> "Lexicon":
        return cls()

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[LexiconEntry]:
        """Deep copies of every entry, in catalog order."""
        return [e.model_copy(deep=True) for e in self._entries]

    def get(self, entity_id: str) -> Optional[LexiconEntry]:
        entry = self._by_id.get(entity_id)
        return entry.model_copy(deep=True) if entry else None

    def of_type(self, entity_type: str) -> List[LexiconEntry]:
        return [e for e in self._entries if e.entity_type == entity_type]

    def canon_state(self) -> CanonState:
        """Seed a canon snapshot from each entry's default state."""
        return {
            e.entity_id: e.default_state.model_copy(deep=True)
            for e in self._entries
            if e.default_state is not None
        }
