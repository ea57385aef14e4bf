"""
Moderation queue view — the per-session list of deltas awaiting review,
with countdowns against the session's moderation window.
"""

from datetime import datetime
from typing import Iterable, Optional

from lore_pipeline.clock import Clock, utc_now
from lore_pipeline.errors import ContractViolation
from lore_pipeline.models.delta import DeltaStatus, WorldDelta
from lore_pipeline.models.moderation import (
    ModerationQueueCadence,
    ModerationQueueItem,
    ModerationQueueState,
    ModerationQueueWindow,
)
from lore_pipeline.models.publishing import PublishingSchedule


def _countdown_ms(target: Optional[datetime], now: datetime) -> Optional[int]:
    if target is None:
        return None
    remaining = int((target - now).total_seconds() * 1000)
    return max(0, remaining)


def build_moderation_queue_state(
    session_id: str,
    deltas: Iterable[WorldDelta] = (),
    schedule: Optional[PublishingSchedule] = None,
    clock: Optional[Clock] = None,
) -> ModerationQueueState:
    if not session_id:
        raise ContractViolation("requires_session")

    now = (clock or utc_now)()
    window = schedule.moderation if schedule else None

    items = []
    for delta in deltas or []:
        if not delta.safety.requires_moderation:
            continue
        items.append(ModerationQueueItem(
            delta_id=delta.delta_id,
            session_id=session_id,
            entity_id=delta.entity_id,
            entity_type=delta.entity_type,
            canonical_name=delta.canonical_name,
            created_at=delta.created_at or now,
            status=DeltaStatus.NEEDS_REVIEW.value,
            blocking=True,
            reasons=list(dict.fromkeys(delta.safety.reasons)),
            capability_violations=[r.model_copy() for r in delta.capability_refs],
            confidence_tier=delta.safety.confidence,
            conflicts=[c.model_copy() for c in delta.safety.conflicts],
            proposed_changes=(
                delta.proposed_changes.model_copy(deep=True) if delta.proposed_changes else None
            ),
            before=delta.before.model_copy(deep=True),
            after=delta.after.model_copy(deep=True),
            countdown_ms=_countdown_ms(window.end_at if window else None, now),
            deadline_at=window.end_at if window else None,
            window_start_at=window.start_at if window else None,
            escalations_at=list(window.escalations) if window else [],
        ))

    pending_count = sum(1 for item in items if item.blocking)

    return ModerationQueueState(
        session_id=session_id,
        generated_at=now,
        status="awaiting_moderation" if pending_count > 0 else "clear",
        pending_count=pending_count,
        items=items,
        window=ModerationQueueWindow(
            status=window.status.value,
            start_at=window.start_at,
            end_at=window.end_at,
            escalations=list(window.escalations),
            notes=window.notes,
        ) if window else None,
        cadence=ModerationQueueCadence(
            next_batch_at=schedule.batches[0].run_at if schedule.batches else None,
            next_digest_at=schedule.digest.run_at if schedule.digest else None,
        ) if schedule else None,
    )
