"""Moderation Summary — pure aggregation over a delta list."""

from typing import Iterable, Set

from lore_pipeline.models.delta import SafetyReason, WorldDelta
from lore_pipeline.models.moderation import ModerationRollup


def summarize_moderation(deltas: Iterable[WorldDelta]) -> ModerationRollup:
    """
    Roll up delta safety metadata. Each counter counts deltas carrying the
    matching reason, not reason occurrences.
    """
    rollup = ModerationRollup()
    reasons: Set[SafetyReason] = set()

    for delta in deltas or []:
        if delta is None:
            continue
        safety = delta.safety
        if safety.requires_moderation:
            rollup.requires_moderation = True

        delta_reasons = set(safety.reasons)
        reasons |= delta_reasons
        if SafetyReason.CAPABILITY_VIOLATION in delta_reasons:
            rollup.capability_violations += 1
        if SafetyReason.CONFLICT_DETECTED in delta_reasons:
            rollup.conflict_detections += 1
        if SafetyReason.LOW_CONFIDENCE in delta_reasons:
            rollup.low_confidence_findings += 1

    rollup.reasons = sorted(reasons, key=lambda r: r.value)
    return rollup
