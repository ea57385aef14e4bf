"""Search indexing jobs, reported results, drift, and retry scheduling."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SearchJob(BaseModel):
    job_id: str
    index: str                              # "lore_bundles" | "news_cards"
    document_id: str
    type: str                               # "loreBundle" | "newsCard"
    body: dict
    expected_version: int


class SearchPlan(BaseModel):
    jobs: List[SearchJob] = []
    status: str = "ready"                   # "ready" | "blocked"


class SearchResult(BaseModel):
    """An indexing outcome reported by the caller after running a job."""

    model_config = ConfigDict(extra="allow")

    index: Optional[str] = None
    document_id: Optional[str] = None
    status: str
    expected_version: Optional[int] = None
    actual_version: Optional[int] = None
    job_id: Optional[str] = None


class SearchDrift(SearchResult):
    """A result that left the index out of step with published artifacts."""

    reason: str                             # "version_mismatch" or the verbatim status


class RetryQueueStatus(str, Enum):
    PENDING = "pending"
    CLEAR = "clear"


class RetryJob(BaseModel):
    retry_id: str
    session_id: Optional[str] = None
    batch_id: Optional[str] = None
    job_id: str
    index: Optional[str] = None
    document_id: Optional[str] = None
    attempt: int = Field(ge=1)
    retry_at: datetime
    reason: str = "unknown"
    payload: dict = {}


class RetrySummary(BaseModel):
    pending_count: int = 0
    status: RetryQueueStatus = RetryQueueStatus.CLEAR
    next_retry_at: Optional[datetime] = None
    jobs: List[RetryJob] = []


class RetryQueueConfig(BaseModel):
    """Configuration for the Search Sync Retry Queue."""

    base_delay_ms: int = Field(ge=0, default=5 * 60 * 1000)
    max_attempts: int = Field(ge=1, default=3)
