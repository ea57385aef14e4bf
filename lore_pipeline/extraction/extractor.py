"""
Entity Extractor — finds actionable entity mentions in transcript text.

Each transcript entry is split into sentences. Every lexicon entry is
tested against every sentence, first by word-boundary match on the canonical
name, then on each alias, and finally by plain substring ("fuzzy"). Matches
are scored, annotated with proposed world changes and capability references,
and deduplicated per (entity, session, scene, turn, sentence).

Behavioral Contract:
- Confidence is always within [0, 0.99]
- Mentions below the minimum confidence are discarded
- Mentions with neither a proposed change nor a capability reference are discarded
- At most one mention per dedupe key survives, the highest-confidence one
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence

from lore_pipeline.clock import IdFactory, new_id
from lore_pipeline.errors import ContractViolation
from lore_pipeline.extraction.lexicon import Lexicon
from lore_pipeline.moderation.capabilities import CapabilityRegistry
from lore_pipeline.models.lexicon import CapabilityRef, LexiconEntry
from lore_pipeline.models.mention import (
    ExtractionConfig,
    ExtractionResult,
    ListChange,
    MatchType,
    Mention,
    MentionContext,
    MentionMatch,
    MentionSource,
    ProposedChanges,
)
from lore_pipeline.models.transcript import TranscriptEntry

logger = logging.getLogger(__name__)


CONTROL_GAIN_KEYWORDS = [
    "seized",
    "secured",
    "claimed",
    "captured",
    "took control of",
    "stabilised",
    "stabilized",
    "liberated",
]

CONTROL_LOSS_KEYWORDS = ["lost", "ceded", "abandoned", "retreated from"]

# Ordered: first match wins.
STATUS_PATTERNS = [
    (re.compile(r"under (serious )?threat", re.IGNORECASE), "threatened"),
    (re.compile(r"(devastated|ruined|ravaged)", re.IGNORECASE), "devastated"),
    (re.compile(r"(stabilised|stabilized|secured)", re.IGNORECASE), "stable"),
]

UNCERTAIN_TOKENS = ["rumor", "rumour", "rumored", "rumoured", "allegedly", "unconfirmed"]

MATCH_CONFIDENCE = {
    MatchType.CANONICAL: 0.95,
    MatchType.ALIAS: 0.85,
    MatchType.FUZZY: 0.55,
}
DEFAULT_CONFIDENCE = 0.5
UNCERTAINTY_PENALTY = 0.3
MAX_CONFIDENCE = 0.99

_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


@dataclass
class _NameMatcher:
    name: str
    match_type: MatchType
    boundary: Pattern
    lowered: str


def _boundary_pattern(name: str) -> Pattern:
    return re.compile(r"\b" + re.escape(name) + r"\b", re.IGNORECASE)


def split_sentences(text: str) -> List[str]:
    """Split on whitespace following sentence-ending punctuation."""
    return [s.strip() for s in _SENTENCE_BREAK.split(text) if s.strip()]


def compute_confidence(match_type: Optional[MatchType], sentence: str) -> float:
    score = MATCH_CONFIDENCE.get(match_type, DEFAULT_CONFIDENCE)
    lowered = sentence.lower()
    if any(token in lowered for token in UNCERTAIN_TOKENS):
        score = max(0.0, score - UNCERTAINTY_PENALTY)
    return round(max(0.0, min(MAX_CONFIDENCE, score)), 4)


def _build_matchers(entry: LexiconEntry) -> List[_NameMatcher]:
    matchers = [
        _NameMatcher(
            name=entry.canonical_name,
            match_type=MatchType.CANONICAL,
            boundary=_boundary_pattern(entry.canonical_name),
            lowered=entry.canonical_name.lower(),
        )
    ]
    for alias in entry.aliases:
        matchers.append(_NameMatcher(
            name=alias,
            match_type=MatchType.ALIAS,
            boundary=_boundary_pattern(alias),
            lowered=alias.lower(),
        ))
    return matchers


def find_name_match(sentence: str, matchers: Sequence[_NameMatcher]) -> Optional[MentionMatch]:
    """Boundary matches (canonical, then alias) beat any substring match."""
    for matcher in matchers:
        if matcher.boundary.search(sentence):
            return MentionMatch(type=matcher.match_type, value=matcher.name)

    lowered = sentence.lower()
    for matcher in matchers:
        if matcher.lowered in lowered:
            return MentionMatch(type=MatchType.FUZZY, value=matcher.name)

    return None


def detect_control_changes(
    entry: LexiconEntry,
    sentence: str,
    regions: Iterable[LexiconEntry],
) -> Optional[ProposedChanges]:
    """A faction gains or loses each region named alongside a gain/loss keyword."""
    if entry.entity_type != "faction":
        return None

    lowered = sentence.lower()
    gained = any(keyword in lowered for keyword in CONTROL_GAIN_KEYWORDS)
    lost = any(keyword in lowered for keyword in CONTROL_LOSS_KEYWORDS)
    if gained == lost:
        # Both or neither: the sentence makes no usable control claim.
        return None

    targets: List[str] = []
    for region in regions:
        if any(_boundary_pattern(name).search(sentence) for name in region.names):
            if region.entity_id not in targets:
                targets.append(region.entity_id)

    if not targets:
        return None

    if gained:
        return ProposedChanges(control=ListChange(add=targets, remove=[]))
    return ProposedChanges(control=ListChange(add=[], remove=targets))


def detect_region_status(entry: LexiconEntry, sentence: str) -> Optional[ProposedChanges]:
    if entry.entity_type != "region":
        return None

    for pattern, status in STATUS_PATTERNS:
        if pattern.search(sentence):
            return ProposedChanges(status=status)
    return None


def dedupe_mentions(mentions: Iterable[Mention]) -> List[Mention]:
    """
    Drop non-actionable mentions, then keep the highest-confidence mention
    per dedupe key. Order follows first appearance of each key.
    """
    kept: Dict[tuple, Mention] = {}
    for mention in mentions:
        if not mention.actionable:
            continue
        key = mention.dedupe_key
        existing = kept.get(key)
        if existing is None or mention.confidence > existing.confidence:
            kept[key] = mention
    return list(kept.values())


class EntityExtractor:
    """Scans transcripts against a Lexicon and a Capability Registry."""

    def __init__(
        self,
        lexicon: Optional[Lexicon] = None,
        capability_registry: Optional[CapabilityRegistry] = None,
        config: Optional[ExtractionConfig] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self.lexicon = lexicon or Lexicon.default()
        self.capabilities = capability_registry or CapabilityRegistry()
        self.config = config or ExtractionConfig()
        self._new_id = id_factory or new_id

    def extract(
        self,
        transcript: Sequence[TranscriptEntry],
        session_id: Optional[str] = None,
        lexicon: Optional[Lexicon] = None,
        min_confidence: Optional[float] = None,
    ) -> ExtractionResult:
        """Extract deduplicated, actionable mentions from a transcript."""
        if transcript is None:
            raise ContractViolation("requires_transcript")

        active_lexicon = lexicon or self.lexicon
        threshold = self.config.min_confidence if min_confidence is None else min_confidence
        entries = list(active_lexicon)
        regions = [e for e in entries if e.entity_type == "region"]
        matcher_sets = [(entry, _build_matchers(entry)) for entry in entries]
        capability_index = [
            (c.capability_id, c.label.lower(), c.severity)
            for c in self.capabilities.list_capabilities()
        ]

        mentions: List[Mention] = []
        for raw_turn in transcript:
            turn = (
                TranscriptEntry.model_validate(raw_turn)
                if isinstance(raw_turn, dict) else raw_turn
            )
            if not turn.text or not turn.text.strip():
                continue

            sentences = split_sentences(turn.text)
            for index, sentence in enumerate(sentences):
                capability_refs = self._detect_capability_refs(sentence, capability_index)

                for entry, matchers in matcher_sets:
                    match = find_name_match(sentence, matchers)
                    if match is None:
                        continue

                    confidence = compute_confidence(match.type, sentence)
                    if confidence < threshold:
                        continue

                    proposed = (
                        detect_control_changes(entry, sentence, regions)
                        or detect_region_status(entry, sentence)
                    )

                    mentions.append(Mention(
                        mention_id=self._new_id("mention"),
                        entity_id=entry.entity_id,
                        entity_type=entry.entity_type,
                        canonical_name=entry.canonical_name,
                        match=match,
                        confidence=confidence,
                        sentence=sentence,
                        source=MentionSource(
                            session_id=session_id,
                            scene_id=turn.scene_id,
                            turn_id=turn.turn_id,
                            speaker=turn.speaker,
                            sentence_index=index,
                        ),
                        proposed_changes=proposed,
                        capability_refs=[r.model_copy() for r in capability_refs],
                        context=MentionContext(
                            previous=sentences[index - 1] if index > 0 else None,
                            next=sentences[index + 1] if index + 1 < len(sentences) else None,
                        ),
                    ))

        deduped = dedupe_mentions(mentions)
        logger.debug(
            "extracted %d actionable mentions (%d raw) for session %s",
            len(deduped), len(mentions), session_id,
        )
        return ExtractionResult(mentions=deduped, lexicon=active_lexicon.entries())

    @staticmethod
    def _detect_capability_refs(sentence: str, capability_index) -> List[CapabilityRef]:
        lowered = sentence.lower()
        return [
            CapabilityRef(capability_id=capability_id, severity=severity, source="transcript")
            for capability_id, label, severity in capability_index
            if label in lowered
        ]


def extract_entities(
    transcript: Sequence[TranscriptEntry],
    session_id: Optional[str] = None,
    lexicon: Optional[Lexicon] = None,
    min_confidence: Optional[float] = None,
    capability_registry: Optional[CapabilityRegistry] = None,
) -> ExtractionResult:
    """Convenience wrapper around a default-configured EntityExtractor."""
    extractor = EntityExtractor(lexicon=lexicon, capability_registry=capability_registry)
    return extractor.extract(transcript, session_id=session_id, min_confidence=min_confidence)
