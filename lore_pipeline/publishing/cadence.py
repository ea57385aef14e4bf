"""
Publishing Cadence — per-session batch scheduling and the batch state machine.

A closed session gets one schedule: a moderation window shortly after
closure, an hourly lore batch, and the next daily digest run. Schedules are
created once and then only transitioned; batches are never deleted.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from croniter import croniter

from lore_pipeline.clock import Clock, IdFactory, new_id, to_datetime, utc_now
from lore_pipeline.errors import ContractViolation
from lore_pipeline.models.publishing import (
    Batch,
    BatchStatus,
    CadenceConfig,
    DigestRun,
    ModerationWindow,
    ModerationWindowStatus,
    PublishingSchedule,
    ScheduleOverride,
)
from lore_pipeline.publishing.state_store import (
    InMemoryPublishingStateStore,
    PublishingStateStore,
)

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime, None]


def compute_digest_run(reference: datetime, config: CadenceConfig) -> datetime:
    """Next digest run strictly after ``reference``, in the configured local offset."""
    offset = timedelta(minutes=config.timezone_offset_minutes)
    local_reference = reference + offset
    expression = f"{config.digest_minute} {config.digest_hour} * * *"
    local_run = croniter(expression, local_reference).get_next(datetime)
    return local_run - offset


def _batch_id(session_id: str, index: int) -> str:
    return f"{session_id}-batch-{index}"


class PublishingCadence:
    """Plans schedules and records every transition in session history."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        config: Optional[CadenceConfig] = None,
        state_store: Optional[PublishingStateStore] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self.clock = clock or utc_now
        self.config = config or CadenceConfig()
        self.state_store = state_store or InMemoryPublishingStateStore(clock=self.clock)
        self._new_id = id_factory or new_id

    def plan_for_session(
        self,
        session_id: str,
        session_closed_at: Timestamp = None,
        config: Optional[CadenceConfig] = None,
    ) -> PublishingSchedule:
        """Create the session's schedule. An existing schedule is returned unchanged."""
        if not session_id:
            raise ContractViolation("requires_session")

        existing = self.state_store.get_session(session_id)
        if existing is not None:
            return existing

        effective = config or self.config
        closed_at = to_datetime(session_closed_at, fallback=self.clock())
        moderation_start = closed_at + timedelta(minutes=effective.moderation_delay_minutes)
        moderation_end = moderation_start + timedelta(minutes=effective.moderation_window_minutes)

        schedule = PublishingSchedule(
            session_id=session_id,
            session_closed_at=closed_at,
            moderation=ModerationWindow(
                start_at=moderation_start,
                end_at=moderation_end,
                escalations=[
                    moderation_start + timedelta(minutes=offset)
                    for offset in effective.moderation_escalation_minutes
                ],
                status=ModerationWindowStatus.SCHEDULED,
            ),
            batches=[
                Batch(
                    batch_id=_batch_id(session_id, 0),
                    type="hourly",
                    run_at=closed_at + timedelta(minutes=effective.lore_batch_delay_minutes),
                ),
            ],
            digest=DigestRun(run_at=compute_digest_run(closed_at, effective)),
        )

        self.state_store.create_session(session_id, schedule)
        logger.info(
            "planned publishing cadence for session %s (batch at %s)",
            session_id, schedule.batches[0].run_at.isoformat(),
        )
        return self.state_store.append_history(session_id, "cadence.initialised", {
            "session_closed_at": closed_at.isoformat(),
            "moderation_start_at": moderation_start.isoformat(),
            "lore_batch_run_at": schedule.batches[0].run_at.isoformat(),
            "digest_run_at": schedule.digest.run_at.isoformat(),
        })

    def get_schedule(self, session_id: str) -> Optional[PublishingSchedule]:
        return self.state_store.get_session(session_id)

    def apply_override(
        self,
        session_id: str,
        target: str = "loreBatch",
        batch_index: int = 0,
        defer_until: Timestamp = None,
        defer_by_minutes: Optional[float] = None,
        actor: str = "admin.system",
        reason: Optional[str] = None,
    ) -> PublishingSchedule:
        """Defer a scheduled batch to a later run time."""
        schedule = self.state_store.get_session(session_id)
        if schedule is None:
            raise ContractViolation("unknown_session", session_id=session_id)
        if target != "loreBatch":
            raise ContractViolation("override_target_unsupported", target=target)
        if batch_index < 0 or batch_index >= len(schedule.batches):
            raise ContractViolation("batch_missing", batch_index=batch_index)

        batch = schedule.batches[batch_index]
        if defer_until is not None:
            new_run_at = to_datetime(defer_until)
        else:
            new_run_at = batch.run_at + timedelta(minutes=defer_by_minutes or 0)

        if new_run_at <= batch.run_at:
            raise ContractViolation("override_requires_future_time")
        if new_run_at - batch.run_at > timedelta(minutes=self.config.max_override_defer_minutes):
            raise ContractViolation("override_exceeds_limit")

        override = ScheduleOverride(
            override_id=self._new_id("override"),
            target=target,
            batch_id=batch.batch_id,
            actor=actor,
            reason=reason,
            applied_at=self.clock(),
            defer_until=new_run_at,
        )

        def _defer(state: PublishingSchedule) -> PublishingSchedule:
            state.batches[batch_index].run_at = new_run_at
            state.batches[batch_index].override = override
            state.overrides.append(override)
            return state

        self.state_store.update_session(session_id, _defer)
        return self.state_store.append_history(
            session_id, "cadence.override.applied", override.model_dump(mode="json")
        )

    def update_batch_status(
        self,
        session_id: str,
        batch_id: str,
        status: BatchStatus,
        prepared_at: Optional[datetime] = None,
        published_at: Optional[datetime] = None,
        delta_count: Optional[int] = None,
        latency_ms: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> PublishingSchedule:
        if not batch_id or not status:
            raise ContractViolation("batch_status_requires_identifiers")

        status = BatchStatus(status)

        def _transition(state: PublishingSchedule) -> PublishingSchedule:
            batch = state.find_batch(batch_id)
            if batch is None:
                raise ContractViolation("batch_missing", batch_id=batch_id)
            batch.status = status
            if prepared_at is not None:
                batch.prepared_at = prepared_at
            if published_at is not None:
                batch.published_at = published_at
            if delta_count is not None:
                batch.delta_count = delta_count
            if latency_ms is not None:
                batch.latency_ms = latency_ms
            if notes:
                batch.notes = notes
            return state

        self.state_store.update_session(session_id, _transition)
        logger.debug("batch %s of session %s -> %s", batch_id, session_id, status.value)

        metadata = {
            "prepared_at": prepared_at.isoformat() if prepared_at else None,
            "published_at": published_at.isoformat() if published_at else None,
            "delta_count": delta_count,
            "latency_ms": latency_ms,
            "notes": notes,
        }
        return self.state_store.append_history(session_id, "cadence.batch.status", {
            "batch_id": batch_id,
            "status": status.value,
            "metadata": {k: v for k, v in metadata.items() if v is not None},
        })

    def update_moderation_status(
        self,
        session_id: str,
        status: ModerationWindowStatus,
        notes: Optional[str] = None,
    ) -> PublishingSchedule:
        status = ModerationWindowStatus(status)
        now = self.clock()

        def _moderate(state: PublishingSchedule) -> PublishingSchedule:
            state.moderation.status = status
            state.moderation.notes = notes
            state.moderation.updated_at = now
            return state

        self.state_store.update_session(session_id, _moderate)
        return self.state_store.append_history(session_id, "cadence.moderation.status", {
            "status": status.value,
            "notes": notes,
        })
