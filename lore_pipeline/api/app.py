"""
Lore Pipeline API — FastAPI endpoints.

Exposes the offline publishing pipeline over HTTP for:
- Transcript extraction
- World delta computation
- Batch preparation and publication
- Schedule inspection and overrides
- Search retry queue inspection
- Canon inspection
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from lore_pipeline.canon.store import CanonStore
from lore_pipeline.clock import Clock, utc_now
from lore_pipeline.config import LorePipelineSettings, get_settings
from lore_pipeline.delta.publisher import AlertPublisher, LoggingAlertPublisher
from lore_pipeline.delta.queue import WorldDeltaQueue
from lore_pipeline.errors import PipelineError
from lore_pipeline.extraction.extractor import EntityExtractor
from lore_pipeline.extraction.lexicon import Lexicon
from lore_pipeline.models.delta import WorldDelta
from lore_pipeline.models.mention import Mention
from lore_pipeline.models.publishing import BatchStatus
from lore_pipeline.models.search import SearchResult
from lore_pipeline.models.transcript import TranscriptEntry
from lore_pipeline.publishing.cadence import PublishingCadence
from lore_pipeline.publishing.composer import BundleComposer
from lore_pipeline.publishing.coordinator import PublishingCoordinator
from lore_pipeline.publishing.state_store import (
    PublishingStateStore,
    SqlitePublishingStateStore,
)
from lore_pipeline.search.retry_queue import SearchSyncRetryQueue
from lore_pipeline.telemetry.metrics import MetricsSink, PublishingMetrics

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"unknown_session", "session_missing", "batch_missing"}


# --- Request/Response Models ---

class ExtractRequest(BaseModel):
    transcript: List[TranscriptEntry]
    min_confidence: Optional[float] = None


class DeltaRequest(BaseModel):
    mentions: Optional[List[Mention]] = None
    transcript: Optional[List[TranscriptEntry]] = None


class PrepareRequest(BaseModel):
    session_closed_at: Optional[datetime] = None
    batch_id: Optional[str] = None
    delta_ids: Optional[List[str]] = None
    moderation_decision_id: Optional[str] = None
    approved_by: str = "admin.auto"
    republish: bool = False


class PublishedRequest(BaseModel):
    search_results: List[SearchResult] = []
    published_at: Optional[datetime] = None
    attempt: int = 1
    delta_count: Optional[int] = None


class OverrideRequest(BaseModel):
    target: str = "loreBatch"
    batch_index: int = 0
    defer_until: Optional[datetime] = None
    defer_by_minutes: Optional[float] = None
    actor: str = "admin.system"
    reason: Optional[str] = None


def _http_error(exc: PipelineError) -> HTTPException:
    status = 404 if exc.code in NOT_FOUND_CODES else 400
    return HTTPException(status, detail={"code": exc.code, "message": str(exc)})


# --- Application Factory ---

def create_app(
    settings: Optional[LorePipelineSettings] = None,
    clock: Optional[Clock] = None,
    canon_store: Optional[CanonStore] = None,
    state_store: Optional[PublishingStateStore] = None,
    metrics: Optional[MetricsSink] = None,
    publisher: Optional[AlertPublisher] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Lore Pipeline API",
        description="Offline lore publishing pipeline",
        version="0.1.0",
    )

    # Initialize components
    cfg = settings or get_settings()
    now = clock or utc_now
    lexicon = Lexicon.default()
    canon = canon_store or CanonStore.from_lexicon(lexicon)
    store = state_store or SqlitePublishingStateStore(db_path=cfg.STATE_DB_PATH, clock=now)
    sink = metrics or PublishingMetrics()
    alerts = publisher or LoggingAlertPublisher()

    extractor = EntityExtractor(lexicon=lexicon, config=cfg.extraction_config())
    retry_queue = SearchSyncRetryQueue(clock=now, metrics=sink, config=cfg.retry_queue_config())
    coordinator = PublishingCoordinator(
        clock=now,
        metrics=sink,
        state_store=store,
        cadence=PublishingCadence(clock=now, config=cfg.cadence_config(), state_store=store),
        composer=BundleComposer(clock=now, metrics=sink, config=cfg.composer_config()),
        retry_queue=retry_queue,
    )
    session_deltas: Dict[str, Dict[str, WorldDelta]] = {}
    # (session_id, batch_id) -> delta ids composed into that batch
    batch_deltas: Dict[Tuple[str, str], List[str]] = {}

    # Store components on app state for access in endpoints
    app.state.settings = cfg
    app.state.canon_store = canon
    app.state.state_store = store
    app.state.metrics = sink
    app.state.extractor = extractor
    app.state.coordinator = coordinator
    app.state.retry_queue = retry_queue
    app.state.session_deltas = session_deltas
    app.state.batch_deltas = batch_deltas

    def _release_batch_deltas(session_id: str, batch_id: str) -> None:
        """Forget the deltas of a batch that has settled as published."""
        delta_ids = batch_deltas.pop((session_id, batch_id), [])
        stored = session_deltas.get(session_id)
        if stored is None:
            return
        for delta_id in delta_ids:
            stored.pop(delta_id, None)
        if not stored:
            del session_deltas[session_id]
        logger.info(
            "released %d deltas of settled batch %s (session %s)", len(delta_ids), batch_id, session_id
        )

    # === EXTRACTION ===

    @app.post("/sessions/{session_id}/extract")
    def extract(session_id: str, req: ExtractRequest):
        """Extract actionable mentions from a transcript."""
        try:
            result = extractor.extract(
                req.transcript, session_id=session_id, min_confidence=req.min_confidence
            )
        except PipelineError as exc:
            raise _http_error(exc)
        return {
            "session_id": session_id,
            "mention_count": len(result.mentions),
            "mentions": [m.model_dump(mode="json") for m in result.mentions],
        }

    # === WORLD DELTAS ===

    @app.post("/sessions/{session_id}/deltas")
    def compute_deltas(session_id: str, req: DeltaRequest):
        """Diff mentions (or a transcript's mentions) against the current canon."""
        try:
            mentions = req.mentions
            if mentions is None:
                if req.transcript is None:
                    raise HTTPException(400, "mentions or transcript required")
                mentions = extractor.extract(req.transcript, session_id=session_id).mentions

            queue = WorldDeltaQueue(
                canon_state=canon.snapshot(),
                publisher=alerts,
                config=cfg.delta_queue_config(),
                clock=now,
            )
            deltas = queue.enqueue_from_mentions(mentions)
        except PipelineError as exc:
            raise _http_error(exc)

        stored = session_deltas.setdefault(session_id, {})
        for delta in deltas:
            stored[delta.delta_id] = delta

        return {
            "session_id": session_id,
            "delta_count": len(deltas),
            "requires_moderation": any(d.safety.requires_moderation for d in deltas),
            "deltas": [d.model_dump(mode="json") for d in deltas],
        }

    # === PUBLISHING ===

    @app.post("/sessions/{session_id}/batches/prepare")
    def prepare_batch(session_id: str, req: PrepareRequest):
        """Run the moderation gate and, if it passes, compose and plan indexing."""
        stored = session_deltas.get(session_id, {})
        if req.delta_ids is None:
            deltas = list(stored.values())
        else:
            missing = [d for d in req.delta_ids if d not in stored]
            if missing:
                raise HTTPException(404, f"Unknown deltas: {', '.join(missing)}")
            deltas = [stored[d] for d in req.delta_ids]

        try:
            result = coordinator.prepare_batch(
                session_id,
                session_closed_at=req.session_closed_at,
                batch_id=req.batch_id,
                deltas=deltas,
                moderation_decision_id=req.moderation_decision_id,
                approved_by=req.approved_by,
                republish=req.republish,
            )
        except PipelineError as exc:
            raise _http_error(exc)

        if result.publishing is not None:
            for delta in deltas:
                canon.apply_delta(delta)
            batch_deltas[(session_id, result.publishing.batch_id)] = [d.delta_id for d in deltas]
        return result.model_dump(mode="json")

    @app.post("/sessions/{session_id}/batches/{batch_id}/published")
    def mark_published(session_id: str, batch_id: str, req: PublishedRequest):
        """Record a publication and queue retries for drifted search jobs."""
        try:
            result = coordinator.mark_batch_published(
                session_id,
                batch_id,
                search_results=req.search_results,
                published_at=req.published_at,
                attempt=req.attempt,
                delta_count=req.delta_count,
            )
        except PipelineError as exc:
            raise _http_error(exc)

        batch = result.schedule.find_batch(batch_id)
        if batch is not None and batch.status == BatchStatus.PUBLISHED:
            _release_batch_deltas(session_id, batch_id)
        return result.model_dump(mode="json")

    @app.get("/sessions/{session_id}/schedule")
    def get_schedule(session_id: str):
        """Get a session's publishing schedule."""
        schedule = coordinator.get_schedule(session_id)
        if schedule is None:
            raise HTTPException(404, "Session not found")
        return schedule.model_dump(mode="json")

    @app.post("/sessions/{session_id}/overrides")
    def apply_override(session_id: str, req: OverrideRequest):
        """Defer a scheduled batch."""
        try:
            schedule = coordinator.apply_override(session_id, **req.model_dump())
        except PipelineError as exc:
            raise _http_error(exc)
        return schedule.model_dump(mode="json")

    # === SEARCH SYNC ===

    @app.get("/search/retries")
    def list_retries(session_id: Optional[str] = None, batch_id: Optional[str] = None):
        """Summarize pending search retries."""
        return retry_queue.summarize(session_id=session_id, batch_id=batch_id).model_dump(mode="json")

    @app.post("/search/retries/drain")
    def drain_retries():
        """Hand every pending retry to the caller and clear the queue."""
        drained = retry_queue.drain()
        logger.info("drained %d search retries", len(drained))
        return {"drained": len(drained), "jobs": [j.model_dump(mode="json") for j in drained]}

    # === CANON ===

    @app.get("/canon")
    def get_canon():
        """Get the current canon snapshot."""
        return {
            entity_id: snapshot.model_dump(mode="json")
            for entity_id, snapshot in canon.snapshot().items()
        }

    # === HEALTH ===

    @app.get("/health")
    def health():
        return {"status": "ok", "version": "0.1.0"}

    return app


# Default application instance
app = create_app()
