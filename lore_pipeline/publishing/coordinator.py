"""
Publishing Coordinator — the pipeline's entry point.

Orchestrates cadence, the moderation gate, the bundle composer and search
sync. Two operations drive a batch through its lifecycle:

  prepare_batch:          scheduled → awaiting_moderation | ready
  mark_batch_published:   ready | published | retry_pending → published | retry_pending

Behavioral Contract:
- Never composes artifacts while any delta requires moderation and no
  moderation decision id was supplied
- A batch that already reached ready/published/retry_pending is not
  recomposed unless the caller asks to republish
- Telemetry is fire-and-forget and never changes control flow
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Union

from lore_pipeline.clock import Clock, to_datetime, utc_now
from lore_pipeline.errors import ContractViolation
from lore_pipeline.models.delta import WorldDelta
from lore_pipeline.models.publishing import (
    Batch,
    BatchStatus,
    CadenceConfig,
    ModerationWindowStatus,
    PreparationResult,
    PublicationResult,
    PublishingSchedule,
)
from lore_pipeline.models.search import SearchPlan, SearchResult
from lore_pipeline.moderation.queue import build_moderation_queue_state
from lore_pipeline.moderation.summary import summarize_moderation
from lore_pipeline.publishing.cadence import PublishingCadence
from lore_pipeline.publishing.composer import BundleComposer
from lore_pipeline.publishing.state_store import (
    InMemoryPublishingStateStore,
    PublishingStateStore,
)
from lore_pipeline.search.planner import SearchSyncPlanner
from lore_pipeline.search.retry_queue import SearchSyncRetryQueue
from lore_pipeline.telemetry.metrics import MetricsSink, PublishingMetrics

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime, None]

PREPARED_STATUSES = (BatchStatus.READY, BatchStatus.PUBLISHED, BatchStatus.RETRY_PENDING)


class PublishingCoordinator:
    def __init__(
        self,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsSink] = None,
        state_store: Optional[PublishingStateStore] = None,
        cadence: Optional[PublishingCadence] = None,
        composer: Optional[BundleComposer] = None,
        search_planner: Optional[SearchSyncPlanner] = None,
        retry_queue: Optional[SearchSyncRetryQueue] = None,
        config: Optional[CadenceConfig] = None,
    ):
        self.clock = clock or utc_now
        self.metrics = metrics or PublishingMetrics()
        self.state_store = state_store or InMemoryPublishingStateStore(clock=self.clock)
        self.cadence = cadence or PublishingCadence(
            clock=self.clock, config=config, state_store=self.state_store
        )
        self.composer = composer or BundleComposer(clock=self.clock, metrics=self.metrics)
        self.search_planner = search_planner or SearchSyncPlanner(metrics=self.metrics)
        self.retry_queue = retry_queue or SearchSyncRetryQueue(
            clock=self.clock, metrics=self.metrics
        )

    # --- Schedule access ---

    def ensure_session(
        self, session_id: str, session_closed_at: Timestamp = None
    ) -> PublishingSchedule:
        """Return the session's schedule, planning it on first use."""
        if not session_id:
            raise ContractViolation("requires_session")
        return self.cadence.plan_for_session(session_id, session_closed_at)

    def get_schedule(self, session_id: str) -> Optional[PublishingSchedule]:
        if not session_id:
            raise ContractViolation("requires_session")
        return self.cadence.get_schedule(session_id)

    def apply_override(self, session_id: str, **override) -> PublishingSchedule:
        return self.cadence.apply_override(session_id, **override)

    # --- Lifecycle ---

    def prepare_batch(
        self,
        session_id: str,
        session_closed_at: Timestamp = None,
        batch_id: Optional[str] = None,
        deltas: Iterable[WorldDelta] = (),
        moderation_decision_id: Optional[str] = None,
        approved_by: str = "admin.auto",
        republish: bool = False,
    ) -> PreparationResult:
        """
        Run the moderation gate for one batch and, when it passes, compose
        artifacts and plan the search jobs that index them.
        """
        if not session_id:
            raise ContractViolation("requires_session")

        deltas: List[WorldDelta] = list(deltas or [])
        schedule = self.ensure_session(session_id, session_closed_at)
        batch = self._resolve_batch(schedule, batch_id)

        if batch.status in PREPARED_STATUSES and not republish:
            raise ContractViolation(
                "batch_already_prepared",
                f"batch {batch.batch_id} is {batch.status.value}",
                batch_id=batch.batch_id,
            )

        moderation = summarize_moderation(deltas)

        if moderation.requires_moderation and not moderation_decision_id:
            self.cadence.update_batch_status(
                session_id,
                batch.batch_id,
                BatchStatus.AWAITING_MODERATION,
                delta_count=len(deltas),
                notes="moderation_gate_pending",
            )
            schedule = self.cadence.update_moderation_status(
                session_id,
                ModerationWindowStatus.AWAITING_REVIEW,
                notes=f"{sum(1 for d in deltas if d.safety.requires_moderation)} deltas pending review",
            )
            logger.info(
                "batch %s of session %s held for moderation (%s)",
                batch.batch_id, session_id, ", ".join(r.value for r in moderation.reasons),
            )
            return PreparationResult(
                status=BatchStatus.AWAITING_MODERATION.value,
                schedule=schedule,
                publishing=None,
                search_plan=SearchPlan(jobs=[], status="blocked"),
                moderation=moderation,
                moderation_queue=build_moderation_queue_state(
                    session_id, deltas, schedule, clock=self.clock
                ),
            )

        publishing = self.composer.compose(
            session_id=session_id,
            batch_id=batch.batch_id,
            deltas=deltas,
            scheduled_at=batch.run_at,
            moderation_decision_id=moderation_decision_id,
            approved_by=approved_by,
        )
        self.cadence.update_batch_status(
            session_id,
            batch.batch_id,
            BatchStatus.READY,
            prepared_at=publishing.prepared_at,
            delta_count=len(deltas),
            notes=f"moderation_decision:{moderation_decision_id}" if moderation_decision_id else None,
        )
        schedule = self.cadence.update_moderation_status(session_id, ModerationWindowStatus.CLEAR)
        search_plan = self.search_planner.plan(
            publishing, session_id=session_id, batch_id=batch.batch_id
        )

        logger.info(
            "batch %s of session %s ready with %d search jobs",
            batch.batch_id, session_id, len(search_plan.jobs),
        )
        return PreparationResult(
            status=BatchStatus.READY.value,
            schedule=schedule,
            publishing=publishing,
            search_plan=search_plan,
            moderation=moderation,
            moderation_queue=build_moderation_queue_state(
                session_id, (), schedule, clock=self.clock
            ),
        )

    def mark_batch_published(
        self,
        session_id: str,
        batch_id: str,
        search_results: Iterable[Union[SearchResult, dict]] = (),
        published_at: Timestamp = None,
        attempt: int = 1,
        delta_count: Optional[int] = None,
    ) -> PublicationResult:
        """
        Record a publication, turn any drifted search results into retries,
        and settle the batch as published or retry_pending.
        """
        if not session_id:
            raise ContractViolation("requires_session")

        schedule = self.cadence.get_schedule(session_id)
        if schedule is None:
            raise ContractViolation("unknown_session", session_id=session_id)
        batch = schedule.find_batch(batch_id) if batch_id else None
        if batch is None:
            raise ContractViolation("batch_missing", batch_id=batch_id)
        if batch.status not in PREPARED_STATUSES:
            raise ContractViolation(
                "batch_not_prepared", f"{batch_id} is {batch.status.value}", batch_id=batch_id
            )

        published = to_datetime(published_at, fallback=self.clock())
        latency_ms = max(0, int((published - batch.run_at).total_seconds() * 1000))
        effective_count = delta_count if delta_count is not None else (batch.delta_count or 0)

        self.metrics.record_batch_published(
            session_id=session_id,
            batch_id=batch_id,
            delta_count=effective_count,
            published_at=published,
            latency_ms=latency_ms,
        )

        drifts = self.search_planner.evaluate(search_results)
        retry_jobs = [
            self.retry_queue.enqueue(
                drift, session_id=session_id, batch_id=batch_id, attempt=attempt
            )
            for drift in drifts
        ]
        retry_summary = self.retry_queue.summarize(session_id=session_id, batch_id=batch_id)
        status = BatchStatus.RETRY_PENDING if retry_summary.pending_count else BatchStatus.PUBLISHED

        schedule = self.cadence.update_batch_status(
            session_id,
            batch_id,
            status,
            published_at=published,
            delta_count=effective_count,
            latency_ms=latency_ms,
            notes="search_drift_detected" if drifts else None,
        )

        if drifts:
            logger.warning(
                "batch %s of session %s published with %d drifted search jobs",
                batch_id, session_id, len(drifts),
            )
        return PublicationResult(
            schedule=schedule,
            latency_ms=latency_ms,
            drifts=drifts,
            retry_jobs=retry_jobs,
            retry_summary=retry_summary,
        )

    def _resolve_batch(self, schedule: PublishingSchedule, batch_id: Optional[str]) -> Batch:
        if not schedule.batches:
            raise ContractViolation("no_batches", session_id=schedule.session_id)
        if batch_id is None:
            return schedule.batches[0]
        batch = schedule.find_batch(batch_id)
        if batch is None:
            raise ContractViolation("batch_missing", batch_id=batch_id)
        return batch
