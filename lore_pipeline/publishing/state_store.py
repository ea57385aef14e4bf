"""
Publishing State Store — persists one PublishingSchedule per session.

Behavioral Contract:
- create_session never overwrites: an existing schedule is returned unchanged
- Reads return deep copies; callers mutate only through update_session
- Every update stamps updated_at from the injected clock
- History is append-only
"""

import json
import sqlite3
from typing import Callable, Dict, Optional

from lore_pipeline.clock import Clock, utc_now
from lore_pipeline.errors import StateStoreError
from lore_pipeline.models.publishing import HistoryEvent, PublishingSchedule

Mutator = Callable[[PublishingSchedule], Optional[PublishingSchedule]]


class PublishingStateStore:
    """Shared create/update/history logic. Subclasses provide storage."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now

    # --- Storage hooks ---

    def _load(self, session_id: str) -> Optional[PublishingSchedule]:
        raise NotImplementedError

    def _insert(self, schedule: PublishingSchedule) -> None:
        raise NotImplementedError

    def _save(self, schedule: PublishingSchedule) -> None:
        raise NotImplementedError

    # --- Public API ---

    def create_session(self, session_id: str, schedule: PublishingSchedule) -> PublishingSchedule:
        if not session_id:
            raise StateStoreError("requires_session")

        existing = self._load(session_id)
        if existing is not None:
            return existing

        now = self.clock()
        state = schedule.model_copy(deep=True)
        state.session_id = session_id
        state.created_at = now
        state.updated_at = now
        self._insert(state)
        return state.model_copy(deep=True)

    def get_session(self, session_id: str) -> Optional[PublishingSchedule]:
        if not session_id:
            raise StateStoreError("requires_session")
        return self._load(session_id)

    def update_session(self, session_id: str, mutator: Mutator) -> PublishingSchedule:
        current = self._load(session_id)
        if current is None:
            raise StateStoreError("session_missing", session_id=session_id)

        draft = current.model_copy(deep=True)
        updated = mutator(draft) or draft
        updated.updated_at = self.clock()
        self._save(updated)
        return updated.model_copy(deep=True)

    def append_history(
        self, session_id: str, event_type: str, payload: Optional[dict] = None
    ) -> PublishingSchedule:
        if not event_type:
            raise StateStoreError("history_requires_type")

        event = HistoryEvent(
            type=event_type,
            occurred_at=self.clock(),
            payload=json.loads(json.dumps(payload or {}, default=str)),
        )

        def _append(state: PublishingSchedule) -> PublishingSchedule:
            state.history.append(event)
            return state

        return self.update_session(session_id, _append)


class InMemoryPublishingStateStore(PublishingStateStore):
    """Default store for tests and single-process offline runs."""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._sessions: Dict[str, PublishingSchedule] = {}

    def _load(self, session_id: str) -> Optional[PublishingSchedule]:
        schedule = self._sessions.get(session_id)
        return schedule.model_copy(deep=True) if schedule else None

    def _insert(self, schedule: PublishingSchedule) -> None:
        self._sessions[schedule.session_id] = schedule.model_copy(deep=True)

    def _save(self, schedule: PublishingSchedule) -> None:
        self._sessions[schedule.session_id] = schedule.model_copy(deep=True)


class SqlitePublishingStateStore(PublishingStateStore):
    """
    SQLite-backed store: one JSON document per session.
    Production deployments use the same layout on PostgreSQL/JSONB.
    """

    def __init__(self, db_path: str = ":memory:", clock: Optional[Clock] = None):
        super().__init__(clock)
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the state table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS publishing_cadence_state (
                session_id TEXT PRIMARY KEY,
                state_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def _load(self, session_id: str) -> Optional[PublishingSchedule]:
        row = self._conn.execute(
            "SELECT state_json FROM publishing_cadence_state WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return PublishingSchedule.model_validate_json(row["state_json"]) if row else None

    def _insert(self, schedule: PublishingSchedule) -> None:
        self._conn.execute(
            """
            INSERT OR IGNORE INTO publishing_cadence_state (
                session_id, state_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?)
            """,
            (
                schedule.session_id,
                schedule.model_dump_json(),
                schedule.created_at.isoformat(),
                schedule.updated_at.isoformat(),
            ),
        )
        self._conn.commit()

    def _save(self, schedule: PublishingSchedule) -> None:
        self._conn.execute(
            """
            UPDATE publishing_cadence_state
               SET state_json = ?, updated_at = ?
             WHERE session_id = ?
            """,
            (
                schedule.model_dump_json(),
                schedule.updated_at.isoformat(),
                schedule.session_id,
            ),
        )
        self._conn.commit()

    def count(self) -> int:
        """Total number of stored sessions."""
        row = self._conn.execute(
            "SELECT COUNT(*) as cnt FROM publishing_cadence_state"
        ).fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
