"""
In-process PersistenceGateway.

Keeps sessions, reviews and tracking state in dictionaries. Used for
offline re-scoring from the CLI and as the gateway in tests: every call
is recorded in `calls`, and `fail_on` makes chosen operations raise
GatewayError.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from src.core.errors import GatewayError
from src.core.gateway import (
    DailyActivity,
    FsrsStateRecord,
    ReviewItem,
    ReviewSubmission,
    SessionClose,
    SessionRecord,
    StudentStatsUpdate,
)
from src.core.mastery import BktSnapshot, Instrument
from src.study.retention_engine import ItemState, ScheduleState


@dataclass
class StoredSession:
    session_id: str
    session_type: Instrument
    started_at: datetime
    closed: SessionClose | None = None


@dataclass
class MemoryGateway:
    """Dictionary-backed gateway with call recording and failure injection."""

    sessions: dict[str, StoredSession] = field(default_factory=dict)
    reviews: list[ReviewSubmission] = field(default_factory=list)
    item_states: dict[str, ItemState] = field(default_factory=dict)
    concept_states: dict[str, BktSnapshot] = field(default_factory=dict)
    daily_activities: list[DailyActivity] = field(default_factory=list)
    student_stats: list[StudentStatsUpdate] = field(default_factory=list)
    queue: list[ReviewItem] = field(default_factory=list)
    calls: list[tuple[str, Any]] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)
    healthy: bool = True

    def _record(self, operation: str, argument: Any = None) -> None:
        self.calls.append((operation, argument))
        if operation in self.fail_on:
            logger.debug(f"MemoryGateway: injected failure for {operation}")
            raise GatewayError(f"Injected failure for {operation}", operation=operation)

    def count(self, operation: str) -> int:
        """How many times an operation was attempted."""
        return sum(1 for name, _ in self.calls if name == operation)

    async def create_session(self, session_type: Instrument) -> SessionRecord:
        self._record("create_session", session_type)
        session_id = str(uuid.uuid4())
        started_at = datetime.now(UTC)
        self.sessions[session_id] = StoredSession(
            session_id=session_id,
            session_type=Instrument(session_type),
            started_at=started_at,
        )
        return SessionRecord(session_id=session_id, started_at=started_at)

    async def submit_review(self, review: ReviewSubmission) -> None:
        self._record("submit_review", review)
        if review.session_id not in self.sessions:
            raise GatewayError(
                f"Unknown session {review.session_id}", operation="submit_review", status_code=404
            )
        self.reviews.append(review)

    async def close_session(self, close: SessionClose) -> None:
        self._record("close_session", close)
        stored = self.sessions.get(close.session_id)
        if stored is None:
            raise GatewayError(
                f"Unknown session {close.session_id}", operation="close_session", status_code=404
            )
        stored.closed = close

    async def upsert_fsrs_state(self, item_id: str, state: ItemState) -> None:
        self._record("upsert_fsrs_state", (item_id, state))
        self.item_states[item_id] = state

    async def upsert_bkt_state(self, snapshot: BktSnapshot) -> None:
        self._record("upsert_bkt_state", snapshot)
        self.concept_states[snapshot.concept_id] = snapshot

    async def upsert_daily_activity(self, activity: DailyActivity) -> None:
        self._record("upsert_daily_activity", activity)
        self.daily_activities.append(activity)

    async def upsert_student_stats(self, stats: StudentStatsUpdate) -> None:
        self._record("upsert_student_stats", stats)
        self.student_stats.append(stats)

    async def fetch_concept_states(self) -> list[BktSnapshot]:
        self._record("fetch_concept_states")
        return list(self.concept_states.values())

    async def fetch_item_states(
        self,
        due_before: datetime | None = None,
        state: ScheduleState | None = None,
        limit: int | None = None,
    ) -> list[FsrsStateRecord]:
        self._record("fetch_item_states", {"due_before": due_before, "state": state, "limit": limit})
        records = []
        for item_id, item_state in self.item_states.items():
            if state and item_state.state != state:
                continue
            if due_before and item_state.due_at and item_state.due_at > due_before:
                continue
            records.append(
                FsrsStateRecord(
                    item_id=item_id,
                    stability=item_state.stability,
                    difficulty=item_state.difficulty,
                    state=item_state.state,
                    reps=item_state.reps,
                    lapses=item_state.lapses,
                    due_at=item_state.due_at,
                    last_review_at=item_state.last_review_at,
                )
            )
        return records[:limit] if limit else records

    async def fetch_study_queue(
        self,
        course_id: str | None = None,
        limit: int | None = None,
    ) -> list[ReviewItem]:
        self._record("fetch_study_queue", {"course_id": course_id, "limit": limit})
        return self.queue[:limit] if limit else list(self.queue)

    async def health_check(self) -> bool:
        self.calls.append(("health_check", None))
        return self.healthy
