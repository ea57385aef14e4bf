"""
Search Sync Planner — plans indexing work and reads back drift.

The planner never talks to a search engine. It emits one job per artifact
and later compares caller-reported results against what it asked for.
"""

import logging
from typing import Iterable, List, Optional

from lore_pipeline.models.artifacts import LoreBundle, NewsCard, PublishingResult
from lore_pipeline.models.search import SearchDrift, SearchJob, SearchPlan, SearchResult
from lore_pipeline.telemetry.metrics import MetricsSink, PublishingMetrics

logger = logging.getLogger(__name__)

LORE_INDEX = "lore_bundles"
NEWS_INDEX = "news_cards"


def build_lore_job(bundle: LoreBundle) -> SearchJob:
    return SearchJob(
        job_id=f"index-lore-{bundle.bundle_id}",
        index=LORE_INDEX,
        document_id=bundle.bundle_id,
        type="loreBundle",
        body={
            "bundle_id": bundle.bundle_id,
            "summary_markdown": bundle.summary_markdown,
            "entity_id": bundle.entity_id,
            "publish_at": bundle.publish_at.isoformat(),
            "safety_tags": [tag.value for tag in bundle.safety_tags],
            "provenance": bundle.provenance.model_dump(mode="json"),
        },
        expected_version=bundle.version,
    )


def build_news_job(card: NewsCard) -> SearchJob:
    return SearchJob(
        job_id=f"index-news-{card.card_id}",
        index=NEWS_INDEX,
        document_id=card.card_id,
        type="newsCard",
        body={
            "card_id": card.card_id,
            "headline": card.headline,
            "lead": card.lead,
            "publish_at": card.publish_at.isoformat(),
            "expires_at": card.expires_at.isoformat(),
            "urgency": card.urgency,
            "safety_tags": [tag.value for tag in card.safety_tags],
        },
        expected_version=1,
    )


def to_drift(result: SearchResult, reason: str) -> SearchDrift:
    data = result.model_dump()
    data["reason"] = reason
    if not data.get("job_id"):
        data["job_id"] = f"{result.index or 'search'}-{result.document_id or 'document'}"
    return SearchDrift.model_validate(data)


class SearchSyncPlanner:
    def __init__(self, metrics: Optional[MetricsSink] = None):
        self.metrics = metrics or PublishingMetrics()

    def plan(
        self,
        publishing: Optional[PublishingResult],
        session_id: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> SearchPlan:
        jobs: List[SearchJob] = []
        if publishing is not None:
            jobs.extend(build_lore_job(bundle) for bundle in publishing.lore_bundles)
            jobs.extend(build_news_job(card) for card in publishing.news_cards)

        self.metrics.record_search_sync_planned(
            session_id=session_id,
            batch_id=batch_id,
            job_count=len(jobs),
        )
        return SearchPlan(jobs=jobs, status="ready")

    def evaluate(self, results: Iterable[SearchResult]) -> List[SearchDrift]:
        """
        Non-success results drift with their status as the reason. Successes
        drift only when both versions are known and differ.
        """
        drifts: List[SearchDrift] = []
        for raw in results or []:
            result = SearchResult.model_validate(raw) if isinstance(raw, dict) else raw

            if result.status != "success":
                drift = to_drift(result, result.status)
            elif (
                result.expected_version is not None
                and result.actual_version is not None
                and result.expected_version != result.actual_version
            ):
                drift = to_drift(result, "version_mismatch")
            else:
                continue

            self.metrics.record_search_drift(
                index=drift.index,
                document_id=drift.document_id,
                reason=drift.reason,
                expected_version=drift.expected_version,
                actual_version=drift.actual_version,
            )
            drifts.append(drift)

        if drifts:
            logger.warning("detected %d search drifts", len(drifts))
        return drifts
