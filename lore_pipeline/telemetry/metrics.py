"""
Publishing telemetry.

Every sink call is fire-and-forget: return values are ignored and no
pipeline decision depends on them.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


class MetricsSink(Protocol):
    def record_batch_prepared(
        self, *, session_id: str, batch_id: str, delta_count: int, scheduled_at: datetime
    ) -> None: ...

    def record_batch_published(
        self,
        *,
        session_id: str,
        batch_id: str,
        delta_count: int,
        published_at: datetime,
        latency_ms: int,
    ) -> None: ...

    def record_search_sync_planned(
        self, *, session_id: Optional[str], batch_id: Optional[str], job_count: int
    ) -> None: ...

    def record_search_drift(
        self,
        *,
        index: Optional[str],
        document_id: Optional[str],
        reason: str,
        expected_version: Optional[int],
        actual_version: Optional[int],
    ) -> None: ...

    def record_search_retry_queued(
        self,
        *,
        session_id: Optional[str],
        batch_id: Optional[str],
        job_id: str,
        index: Optional[str],
        document_id: Optional[str],
        attempt: int,
        retry_at: datetime,
        reason: str,
    ) -> None: ...


class PublishingMetrics:
    """Default sink: logs each event and keeps in-process counters."""

    def __init__(self):
        self.counters: Counter = Counter()
        self._events: List[dict] = []

    def _emit(self, event: str, payload: dict) -> None:
        self.counters[event] += 1
        self._events.append({"event": event, **payload})
        logger.info("telemetry %s %s", event, payload)

    @property
    def events(self) -> List[dict]:
        return list(self._events)

    def record_batch_prepared(self, *, session_id, batch_id, delta_count, scheduled_at) -> None:
        self._emit("publishing.batch.prepared", {
            "session_id": session_id,
            "batch_id": batch_id,
            "delta_count": delta_count,
            "scheduled_at": scheduled_at.isoformat(),
        })

    def record_batch_published(
        self, *, session_id, batch_id, delta_count, published_at, latency_ms
    ) -> None:
        self._emit("publishing.batch.published", {
            "session_id": session_id,
            "batch_id": batch_id,
            "delta_count": delta_count,
            "published_at": published_at.isoformat(),
            "latency_ms": latency_ms,
        })

    def record_search_sync_planned(self, *, session_id, batch_id, job_count) -> None:
        self._emit("publishing.search.planned", {
            "session_id": session_id,
            "batch_id": batch_id,
            "job_count": job_count,
        })

    def record_search_drift(
        self, *, index, document_id, reason, expected_version, actual_version
    ) -> None:
        self._emit("publishing.search.drift", {
            "index": index,
            "document_id": document_id,
            "reason": reason,
            "expected_version": expected_version,
            "actual_version": actual_version,
        })

    def record_search_retry_queued(
        self, *, session_id, batch_id, job_id, index, document_id, attempt, retry_at, reason
    ) -> None:
        self._emit("publishing.search.retry_queued", {
            "session_id": session_id,
            "batch_id": batch_id,
            "job_id": job_id,
            "index": index,
            "document_id": document_id,
            "attempt": attempt,
            "retry_at": retry_at.isoformat(),
            "reason": reason,
        })
