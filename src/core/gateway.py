"""
Persistence gateway interface and wire records.

The review core never talks to storage directly. It depends on the
PersistenceGateway protocol below; PlatformClient implements it over
HTTP and MemoryGateway implements it in-process.

Responses are normalized here, once: list payloads arrive either as a
bare array or wrapped as {"items": [...]}, and server field names
(flashcard_id, subtopic_id, fsrs_state) differ from the core's. Records
are validated with pydantic and converted to core types before they
leave this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Annotated, Any, Protocol, runtime_checkable

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from src.core.errors import GatewayError
from src.core.mastery import BktSnapshot, Instrument
from src.study.retention_engine import (
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    MIN_STABILITY,
    ItemState,
    ScheduleState,
)


def as_utc(value: datetime) -> datetime:
    """Normalize a timestamp to UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


# =============================================================================
# Core-side payloads
# =============================================================================


@dataclass
class ReviewItem:
    """
    One entry of a review queue.

    schedule is the item's current FSRS state; None means the item has
    never been reviewed and starts from the scheduler's initial state.
    """

    item_id: str
    instrument: Instrument = Instrument.FLASHCARD
    concept_id: str | None = None
    schedule: ItemState | None = None


@dataclass(frozen=True)
class ReviewSubmission:
    """A graded review event, create-only on the server."""

    session_id: str
    item_id: str
    instrument_type: Instrument
    grade: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "item_id": self.item_id,
            "instrument_type": Instrument(self.instrument_type).value,
            "grade": int(self.grade),
        }


@dataclass(frozen=True)
class SessionClose:
    """Closing totals for a finished session."""

    session_id: str
    ended_at: datetime
    duration_seconds: int
    total_reviews: int
    correct_reviews: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "ended_at": self.ended_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "total_reviews": self.total_reviews,
            "correct_reviews": self.correct_reviews,
        }


@dataclass(frozen=True)
class DailyActivity:
    """Per-day roll-up increment; the server adds it to the day's totals."""

    activity_date: date
    reviews_count: int
    correct_count: int
    time_spent_seconds: int
    sessions_count: int = 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "activity_date": self.activity_date.isoformat(),
            "reviews_count": self.reviews_count,
            "correct_count": self.correct_count,
            "time_spent_seconds": self.time_spent_seconds,
            "sessions_count": self.sessions_count,
        }


@dataclass(frozen=True)
class StudentStatsUpdate:
    """Lifetime roll-up increment for the signed-in learner."""

    total_reviews: int
    total_time_seconds: int
    last_study_date: date
    total_sessions: int = 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "total_reviews": self.total_reviews,
            "total_time_seconds": self.total_time_seconds,
            "total_sessions": self.total_sessions,
            "last_study_date": self.last_study_date.isoformat(),
        }


def fsrs_payload(item_id: str, state: ItemState) -> dict[str, Any]:
    """UpsertFsrsState body."""
    return {
        "flashcard_id": item_id,
        "stability": state.stability,
        "difficulty": state.difficulty,
        "state": state.state.value,
        "reps": state.reps,
        "lapses": state.lapses,
        "due_at": state.due_at.isoformat() if state.due_at else None,
        "last_review_at": state.last_review_at.isoformat() if state.last_review_at else None,
    }


def bkt_payload(snapshot: BktSnapshot) -> dict[str, Any]:
    """UpsertBktState body."""
    return {
        "subtopic_id": snapshot.concept_id,
        "p_know": snapshot.p_know,
        "p_transit": snapshot.p_transit,
        "p_slip": snapshot.p_slip,
        "p_guess": snapshot.p_guess,
        "delta": snapshot.delta,
        "total_attempts": snapshot.total_attempts,
        "correct_attempts": snapshot.correct_attempts,
        "last_attempt_at": (
            snapshot.last_attempt_at.isoformat() if snapshot.last_attempt_at else None
        ),
    }


# =============================================================================
# Wire records
# =============================================================================


class SessionRecord(BaseModel):
    """CreateSession response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    session_id: str = Field(validation_alias=AliasChoices("id", "session_id"))
    started_at: UtcDatetime | None = None


class BktStateRecord(BaseModel):
    """A stored BKT snapshot as returned by the platform."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    concept_id: str = Field(validation_alias=AliasChoices("subtopic_id", "concept_id"))
    p_know: float = Field(ge=0.0, le=1.0)
    p_transit: float = 0.1
    p_slip: float = 0.1
    p_guess: float = 0.25
    total_attempts: int = Field(default=0, ge=0)
    correct_attempts: int = Field(default=0, ge=0)
    last_attempt_at: UtcDatetime | None = None
    delta: float = 0.0

    def to_snapshot(self) -> BktSnapshot:
        return BktSnapshot(
            concept_id=self.concept_id,
            p_know=self.p_know,
            p_transit=self.p_transit,
            p_slip=self.p_slip,
            p_guess=self.p_guess,
            total_attempts=self.total_attempts,
            correct_attempts=min(self.correct_attempts, self.total_attempts),
            last_attempt_at=self.last_attempt_at,
            delta=self.delta,
        )


def _schedule_from_fields(
    stability: float,
    difficulty: float,
    state: ScheduleState,
    reps: int,
    lapses: int,
    due_at: datetime | None,
    last_review_at: datetime | None,
) -> ItemState:
    # Stored rows may carry 0 stability or unclamped difficulty
    return ItemState(
        stability=max(MIN_STABILITY, stability),
        difficulty=max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, difficulty)),
        state=state,
        reps=reps,
        lapses=lapses,
        due_at=due_at,
        last_review_at=last_review_at,
    )


class FsrsStateRecord(BaseModel):
    """A stored item schedule as returned by the platform."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    item_id: str = Field(validation_alias=AliasChoices("flashcard_id", "item_id"))
    stability: float = 0.0
    difficulty: float = 5.0
    state: ScheduleState = ScheduleState.NEW
    reps: int = Field(default=0, ge=0)
    lapses: int = Field(default=0, ge=0)
    due_at: UtcDatetime | None = None
    last_review_at: UtcDatetime | None = None

    def to_item_state(self) -> ItemState:
        return _schedule_from_fields(
            self.stability,
            self.difficulty,
            self.state,
            self.reps,
            self.lapses,
            self.due_at,
            self.last_review_at,
        )


class StudyQueueEntry(BaseModel):
    """One row of the server-ranked study queue."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    item_id: str = Field(validation_alias=AliasChoices("flashcard_id", "item_id"))
    concept_id: str | None = Field(
        default=None, validation_alias=AliasChoices("subtopic_id", "concept_id")
    )
    keyword_id: str | None = None
    state: ScheduleState = Field(
        default=ScheduleState.NEW, validation_alias=AliasChoices("fsrs_state", "state")
    )
    stability: float = 0.0
    difficulty: float = 5.0
    reps: int = 0
    lapses: int = 0
    due_at: UtcDatetime | None = None
    last_review_at: UtcDatetime | None = None
    is_new: bool = False
    p_know: float | None = None
    need_score: float | None = None

    def to_review_item(self) -> ReviewItem:
        schedule = None
        if not self.is_new and self.state != ScheduleState.NEW:
            schedule = _schedule_from_fields(
                self.stability,
                self.difficulty,
                self.state,
                self.reps,
                self.lapses,
                self.due_at,
                self.last_review_at,
            )
        return ReviewItem(
            item_id=self.item_id,
            instrument=Instrument.FLASHCARD,
            concept_id=self.concept_id,
            schedule=schedule,
        )


def extract_items(payload: Any, operation: str = "list") -> list[dict[str, Any]]:
    """
    Normalize a list response to a list of dicts.

    Accepts a bare array or an {"items": [...]} envelope; anything else
    is a protocol error.
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict) and isinstance(payload.get("items"), list):
        rows = payload["items"]
    else:
        raise GatewayError(
            f"Unexpected list payload of type {type(payload).__name__}",
            operation=operation,
        )
    if not all(isinstance(row, dict) for row in rows):
        raise GatewayError("List payload contains non-object rows", operation=operation)
    return rows


def parse_records(model: type[BaseModel], payload: Any, operation: str) -> list[Any]:
    """Validate every row of a list payload into `model`."""
    try:
        return [model.model_validate(row) for row in extract_items(payload, operation)]
    except ValidationError as e:
        raise GatewayError(f"Invalid {operation} payload: {e}", operation=operation) from e


# =============================================================================
# Gateway protocol
# =============================================================================


@runtime_checkable
class PersistenceGateway(Protocol):
    """Storage operations the review core depends on."""

    async def create_session(self, session_type: Instrument) -> SessionRecord:
        """Open a session; must complete before any submit_review for it."""
        ...

    async def submit_review(self, review: ReviewSubmission) -> None:
        """Persist one graded review event (create-only)."""
        ...

    async def close_session(self, close: SessionClose) -> None:
        """Record closing totals for a session."""
        ...

    async def upsert_fsrs_state(self, item_id: str, state: ItemState) -> None:
        """Store an item schedule (last-write-wins)."""
        ...

    async def upsert_bkt_state(self, snapshot: BktSnapshot) -> None:
        """Store a concept snapshot (last-write-wins)."""
        ...

    async def upsert_daily_activity(self, activity: DailyActivity) -> None:
        """Add a finished session to the learner's totals for that day."""
        ...

    async def upsert_student_stats(self, stats: StudentStatsUpdate) -> None:
        """Add a finished session to the learner's lifetime totals."""
        ...

    async def fetch_concept_states(self) -> list[BktSnapshot]:
        """All concept snapshots for the current learner, in one call."""
        ...

    async def fetch_item_states(
        self,
        due_before: datetime | None = None,
        state: ScheduleState | None = None,
        limit: int | None = None,
    ) -> list[FsrsStateRecord]:
        """Stored item schedules, optionally filtered."""
        ...

    async def fetch_study_queue(
        self,
        course_id: str | None = None,
        limit: int | None = None,
    ) -> list[ReviewItem]:
        """Server-ranked review queue."""
        ...

    async def health_check(self) -> bool:
        ...
