"""
Search Sync Retry Queue — exponential-backoff retries for drifted jobs.

One instance may be shared by every session in a process. The pending list
is guarded by a lock so concurrent enqueue/drain calls do not lose updates.
"""

import logging
import threading
from datetime import timedelta
from typing import List, Optional

from lore_pipeline.clock import Clock, IdFactory, new_id, utc_now
from lore_pipeline.errors import ContractViolation
from lore_pipeline.models.search import (
    RetryJob,
    RetryQueueConfig,
    RetryQueueStatus,
    RetrySummary,
    SearchDrift,
)
from lore_pipeline.telemetry.metrics import MetricsSink, PublishingMetrics

logger = logging.getLogger(__name__)


class SearchSyncRetryQueue:
    def __init__(
        self,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsSink] = None,
        config: Optional[RetryQueueConfig] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self.clock = clock or utc_now
        self.metrics = metrics or PublishingMetrics()
        self.config = config or RetryQueueConfig()
        self._new_id = id_factory or new_id
        self._jobs: List[RetryJob] = []
        self._lock = threading.Lock()

    @property
    def base_delay_ms(self) -> int:
        return self.config.base_delay_ms

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    def backoff_ms(self, attempt: int) -> int:
        return self.base_delay_ms * 2 ** (self.clamp_attempt(attempt) - 1)

    def clamp_attempt(self, attempt: Optional[int]) -> int:
        return max(1, min(attempt or 1, self.max_attempts))

    def enqueue(
        self,
        drift: Optional[SearchDrift],
        session_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        attempt: int = 1,
    ) -> RetryJob:
        """Schedule a retry for one drifted job and return a copy of it."""
        if isinstance(drift, dict):
            drift = SearchDrift.model_validate(drift)
        if drift is None or not drift.job_id:
            raise ContractViolation("requires_job")

        effective_attempt = self.clamp_attempt(attempt)
        retry_at = self.clock() + timedelta(milliseconds=self.backoff_ms(effective_attempt))

        job = RetryJob(
            retry_id=self._new_id("search-retry"),
            session_id=session_id,
            batch_id=batch_id,
            job_id=drift.job_id,
            index=drift.index,
            document_id=drift.document_id,
            attempt=effective_attempt,
            retry_at=retry_at,
            reason=drift.reason or "unknown",
            payload=drift.model_dump(mode="json"),
        )

        with self._lock:
            self._jobs.append(job)

        self.metrics.record_search_retry_queued(
            session_id=job.session_id,
            batch_id=job.batch_id,
            job_id=job.job_id,
            index=job.index,
            document_id=job.document_id,
            attempt=job.attempt,
            retry_at=job.retry_at,
            reason=job.reason,
        )
        logger.info(
            "queued search retry %s for %s (attempt %d, at %s)",
            job.retry_id, job.job_id, job.attempt, job.retry_at.isoformat(),
        )
        return job.model_copy(deep=True)

    def get_pending(
        self, session_id: Optional[str] = None, batch_id: Optional[str] = None
    ) -> List[RetryJob]:
        """Copies of pending jobs, optionally narrowed to one session or batch."""
        with self._lock:
            jobs = list(self._jobs)
        return [
            job.model_copy(deep=True)
            for job in jobs
            if (session_id is None or job.session_id == session_id)
            and (batch_id is None or job.batch_id == batch_id)
        ]

    def pending_for(self, job_id: str) -> List[RetryJob]:
        return [job for job in self.get_pending() if job.job_id == job_id]

    def summarize(
        self, session_id: Optional[str] = None, batch_id: Optional[str] = None
    ) -> RetrySummary:
        jobs = self.get_pending(session_id=session_id, batch_id=batch_id)
        return RetrySummary(
            pending_count=len(jobs),
            status=RetryQueueStatus.PENDING if jobs else RetryQueueStatus.CLEAR,
            next_retry_at=min((job.retry_at for job in jobs), default=None),
            jobs=jobs,
        )

    def drain(self) -> List[RetryJob]:
        """Atomically hand back every pending job and start a fresh queue."""
        with self._lock:
            drained, self._jobs = self._jobs, []
        return [job.model_copy(deep=True) for job in drained]
