"""
World Delta Queue — turns mentions into proposed canon changes.

Behavioral Contract:
- Reads canon from a private deep copy taken at construction; never writes it
- One delta per qualifying mention (proposed change or capability reference)
- Safety reasons are drawn from {low_confidence, capability_violation, conflict_detected}
- requires_moderation is true iff at least one safety reason is present
- Exactly one admin alert is published per moderation-required delta
- Capability validation errors propagate to the caller
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from lore_pipeline.clock import Clock, IdFactory, new_id, utc_now
from lore_pipeline.delta.publisher import AlertPublisher, LoggingAlertPublisher
from lore_pipeline.errors import ContractViolation
from lore_pipeline.moderation.capabilities import CapabilityRegistry
from lore_pipeline.models.canon import CanonState, EntitySnapshot, copy_canon_state
from lore_pipeline.models.delta import (
    Conflict,
    ConflictType,
    DeltaQueueConfig,
    DeltaSafety,
    DeltaStatus,
    SafetyReason,
    WorldDelta,
)
from lore_pipeline.models.lexicon import CapabilityRef
from lore_pipeline.models.mention import ListChange, Mention, ProposedChanges

logger = logging.getLogger(__name__)


def confidence_tier(score: float) -> str:
    if score >= 0.85:
        return "high"
    if score >= 0.65:
        return "medium"
    return "low"


def _apply_list_change(current: Optional[List[str]], change: ListChange) -> List[str]:
    result = list(current or [])
    for item in change.add:
        if item not in result:
            result.append(item)
    return [item for item in result if item not in change.remove]


def apply_proposed_changes(before: EntitySnapshot, changes: ProposedChanges) -> EntitySnapshot:
    """Virtually apply a change set to a snapshot. The input is not modified."""
    after = before.model_copy(deep=True)
    if changes.control is not None:
        after.control = _apply_list_change(after.control, changes.control)
    if changes.status:
        after.status = changes.status
    if changes.threats is not None:
        after.threats = _apply_list_change(after.threats, changes.threats)
    return after


def _normalized(snapshot: EntitySnapshot) -> dict:
    # An absent list and an empty list describe the same world.
    data = snapshot.model_dump()
    for field in ("control", "threats"):
        if not data.get(field):
            data[field] = None
    return data


def is_meaningful_change(before: EntitySnapshot, after: EntitySnapshot) -> bool:
    return _normalized(before) != _normalized(after)


# --- Conflict rules ---

FieldIndex = Dict[Tuple[str, str], Tuple[object, str]]


def _check_control_collision(
    mention: Mention, canon: CanonState, field_index: FieldIndex
) -> List[Conflict]:
    conflicts = []
    control = mention.proposed_changes.control if mention.proposed_changes else None
    if control is None:
        return conflicts

    for target in control.add:
        region = canon.get(target)
        if region and region.controlling_faction and region.controlling_faction != mention.entity_id:
            conflicts.append(Conflict(
                type=ConflictType.CONTROL_COLLISION,
                target=target,
                current_owner=region.controlling_faction,
            ))
    return conflicts


def _check_pending_control(
    mention: Mention, canon: CanonState, field_index: FieldIndex
) -> List[Conflict]:
    conflicts = []
    control = mention.proposed_changes.control if mention.proposed_changes else None
    if control is None:
        return conflicts

    indexed = field_index.get((mention.entity_id, "control"))
    if indexed is None:
        return conflicts

    pending_change, pending_delta_id = indexed
    for target in control.add:
        if pending_change.add and target not in pending_change.add:
            conflicts.append(Conflict(
                type=ConflictType.PENDING_DELTA_CONFLICT,
                target=target,
                conflicting_delta_id=pending_delta_id,
            ))
    return conflicts


def _check_pending_status(
    mention: Mention, canon: CanonState, field_index: FieldIndex
) -> List[Conflict]:
    proposed = mention.proposed_changes.status if mention.proposed_changes else None
    if not proposed:
        return []

    indexed = field_index.get((mention.entity_id, "status"))
    if indexed is None:
        return []

    pending_status, pending_delta_id = indexed
    if pending_status != proposed:
        return [Conflict(
            type=ConflictType.STATUS_CONFLICT,
            previous=pending_status,
            proposed=proposed,
            conflicting_delta_id=pending_delta_id,
        )]
    return []


CONFLICT_RULES: List[Callable[[Mention, CanonState, FieldIndex], List[Conflict]]] = [
    _check_control_collision,
    _check_pending_control,
    _check_pending_status,
]


def detect_conflicts(mention: Mention, canon: CanonState, field_index: FieldIndex) -> List[Conflict]:
    conflicts: List[Conflict] = []
    for rule in CONFLICT_RULES:
        conflicts.extend(rule(mention, canon, field_index))
    return conflicts


class WorldDeltaQueue:
    """
    Diffs mentions against a canonical world snapshot and queues the results.
    """

    def __init__(
        self,
        canon_state: Optional[Dict[str, object]] = None,
        publisher: Optional[AlertPublisher] = None,
        capability_registry: Optional[CapabilityRegistry] = None,
        config: Optional[DeltaQueueConfig] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self.canon: CanonState = copy_canon_state(canon_state or {})
        self.publisher = publisher or LoggingAlertPublisher()
        self.capabilities = capability_registry or CapabilityRegistry()
        self.config = config or DeltaQueueConfig()
        self.clock = clock or utc_now
        self._new_id = id_factory or new_id
        self._queue: List[WorldDelta] = []
        self._field_index: FieldIndex = {}

    def enqueue_from_mentions(self, mentions: Sequence[Mention]) -> List[WorldDelta]:
        """Create, queue, and return one delta per qualifying mention, in input order."""
        if mentions is None:
            raise ContractViolation("requires_mentions")

        deltas = []
        for raw in mentions:
            mention = Mention.model_validate(raw) if isinstance(raw, dict) else raw
            delta = self.create_delta(mention)
            if delta is None:
                continue

            self._queue.append(delta)
            deltas.append(delta)

            if delta.safety.requires_moderation:
                self.publisher.publish_alert(self._alert_payload(delta))

        moderated = sum(1 for d in deltas if d.safety.requires_moderation)
        logger.info(
            "queued %d deltas from %d mentions (%d require moderation)",
            len(deltas), len(mentions), moderated,
        )
        return deltas

    def create_delta(self, mention: Mention) -> Optional[WorldDelta]:
        """Build a delta for one mention, or None if the mention changes nothing."""
        capability_refs = self.capabilities.validate_refs(mention.capability_refs)
        before = self.canon.get(mention.entity_id, EntitySnapshot()).model_copy(deep=True)

        if mention.proposed_changes is None:
            if capability_refs:
                return self._build_delta(mention, before, before.model_copy(deep=True), capability_refs)
            return None

        after = apply_proposed_changes(before, mention.proposed_changes)

        if not is_meaningful_change(before, after):
            if capability_refs:
                return self._build_delta(mention, before, before.model_copy(deep=True), capability_refs)
            return None

        delta = self._build_delta(mention, before, after, capability_refs)
        self._index_fields(delta)
        return delta

    def _build_delta(
        self,
        mention: Mention,
        before: EntitySnapshot,
        after: EntitySnapshot,
        capability_refs: List[CapabilityRef],
    ) -> WorldDelta:
        safety = self.evaluate_safety(mention, capability_refs)
        return WorldDelta(
            delta_id=self._new_id("delta"),
            entity_id=mention.entity_id,
            entity_type=mention.entity_type,
            canonical_name=mention.canonical_name,
            confidence=mention.confidence,
            confidence_tier=confidence_tier(mention.confidence),
            source=mention.source.model_copy(),
            proposed_changes=(
                mention.proposed_changes.model_copy(deep=True)
                if mention.proposed_changes else None
            ),
            capability_refs=capability_refs,
            before=before,
            after=after,
            safety=safety,
            status=DeltaStatus.NEEDS_REVIEW if safety.requires_moderation else DeltaStatus.PENDING,
            created_at=self.clock(),
        )

    def evaluate_safety(
        self, mention: Mention, capability_refs: List[CapabilityRef]
    ) -> DeltaSafety:
        reasons: List[SafetyReason] = []

        if mention.confidence < self.config.low_confidence_threshold:
            reasons.append(SafetyReason.LOW_CONFIDENCE)

        if capability_refs:
            reasons.append(SafetyReason.CAPABILITY_VIOLATION)

        conflicts = detect_conflicts(mention, self.canon, self._field_index)
        if conflicts:
            reasons.append(SafetyReason.CONFLICT_DETECTED)

        return DeltaSafety(
            requires_moderation=len(reasons) > 0,
            reasons=reasons,
            conflicts=conflicts,
            capability_violations=[r.model_copy() for r in capability_refs],
            confidence=confidence_tier(mention.confidence),
        )

    def _index_fields(self, delta: WorldDelta) -> None:
        changes = delta.proposed_changes
        if changes is None:
            return
        if changes.control is not None:
            self._field_index[(delta.entity_id, "control")] = (changes.control, delta.delta_id)
        if changes.status:
            self._field_index[(delta.entity_id, "status")] = (changes.status, delta.delta_id)

    @staticmethod
    def _alert_payload(delta: WorldDelta) -> dict:
        return {
            "topic": "admin.alert",
            "severity": "high",
            "reason": "world_delta_requires_moderation",
            "data": {
                "delta_id": delta.delta_id,
                "entity_id": delta.entity_id,
                "safety": delta.safety.model_dump(mode="json"),
            },
            "delta": delta.model_copy(deep=True),
        }

    def get_pending(self) -> List[WorldDelta]:
        """Copies of every delta queued so far."""
        return [d.model_copy(deep=True) for d in self._queue]
