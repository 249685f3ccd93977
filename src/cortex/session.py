"""
Review Session: orchestration layer for flashcard and quiz review.

State machine:
    IDLE --start()--> REVIEWING --grade() on last item--> FINISHED
    REVIEWING --abort()--> IDLE
    FINISHED --restart()--> IDLE

Per grade, in order:
1. Submit the review event and wait for it. A failure raises
   SubmissionError and the cursor stays on the same item.
2. Advance, or on the last item close the session. A failed close is
   logged; the session is FINISHED either way and the summary is built
   from the locally held events. The daily-activity and student-stats
   roll-ups are then queued.
3. Compute the new FSRS schedule (always) and BKT snapshot (items with a
   concept) in-process, then hand the two upserts to the TrackingQueue
   without waiting for them. Any failure here goes to the sink; the grade
   has already succeeded.

If stored concept state cannot be loaded at start(), BKT writes are
skipped for the whole session rather than rebuilt from the prior.

abort() never closes the session server-side; the record stays open.
"""

from __future__ import annotations

import functools
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from loguru import logger

from src.core.errors import (
    EmptyQueueError,
    SessionStateError,
    SubmissionError,
    TrackingUpdateError,
)
from src.core.gateway import (
    DailyActivity,
    PersistenceGateway,
    ReviewItem,
    ReviewSubmission,
    SessionClose,
    StudentStatsUpdate,
)
from src.core.mastery import (
    DEFAULT_MASTERY_CONFIG,
    BktSnapshot,
    Instrument,
    MasteryConfig,
    apply_observation,
    is_correct_grade,
)
from src.cortex.tracking_queue import TrackingQueue
from src.study.retention_engine import FSRSScheduler, ReviewGrade, validate_grade


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReviewPhase(str, Enum):
    IDLE = "idle"
    REVIEWING = "reviewing"
    FINISHED = "finished"


@dataclass(frozen=True)
class ReviewEvent:
    """One graded review, in presentation order."""

    session_id: str
    item_id: str
    instrument_type: Instrument
    grade: ReviewGrade
    reviewed_at: datetime

    @property
    def is_correct(self) -> bool:
        return is_correct_grade(self.grade)


@dataclass
class SessionSummary:
    """Statistics for a finished session, derived from its events only."""

    session_id: str
    session_type: Instrument
    started_at: datetime
    ended_at: datetime
    events: tuple[ReviewEvent, ...] = ()
    closed: bool = False  # server acknowledged the close
    histogram: dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_events(
        cls,
        session_id: str,
        session_type: Instrument,
        started_at: datetime,
        ended_at: datetime,
        events: Sequence[ReviewEvent],
        closed: bool = False,
    ) -> "SessionSummary":
        counts = Counter(int(e.grade) for e in events)
        return cls(
            session_id=session_id,
            session_type=session_type,
            started_at=started_at,
            ended_at=ended_at,
            events=tuple(events),
            closed=closed,
            histogram={g: counts.get(g, 0) for g in (1, 2, 3, 4)},
        )

    @property
    def total_reviews(self) -> int:
        return len(self.events)

    @property
    def correct_reviews(self) -> int:
        return sum(1 for e in self.events if e.is_correct)

    @property
    def correct_percentage(self) -> int:
        if not self.events:
            return 0
        return round(self.correct_reviews / self.total_reviews * 100)

    @property
    def duration_seconds(self) -> int:
        return max(0, round((self.ended_at - self.started_at).total_seconds()))


class ReviewSessionOrchestrator:
    """
    Drives one learner through a queue of review items.

    One orchestrator serves one learner context and runs at most one
    session at a time. The FSRS scheduler and mastery config are shared,
    read-only collaborators.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        tracker: TrackingQueue | None = None,
        scheduler: FSRSScheduler | None = None,
        mastery_config: MasteryConfig = DEFAULT_MASTERY_CONFIG,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.gateway = gateway
        self.tracker = tracker or TrackingQueue()
        self.scheduler = scheduler or FSRSScheduler()
        self.mastery_config = mastery_config
        self.clock = clock

        self._phase = ReviewPhase.IDLE
        self._session_id: str | None = None
        self._session_type = Instrument.FLASHCARD
        self._started_at: datetime | None = None
        self._items: list[ReviewItem] = []
        self._index = 0
        self._events: list[ReviewEvent] = []
        self._summary: SessionSummary | None = None
        self._busy = False
        # Bumped on every start/abort/restart so late awaits can detect a reset
        self._generation = 0

        # Concept state for the current session
        self._concepts: dict[str, BktSnapshot] = {}
        self._peaks: dict[str, float] = {}
        # Set when stored concept state could not be loaded; BKT writes are skipped
        self._concept_load_error: Exception | None = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def phase(self) -> ReviewPhase:
        return self._phase

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def items(self) -> list[ReviewItem]:
        return list(self._items)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_item(self) -> ReviewItem | None:
        if self._phase is not ReviewPhase.REVIEWING or self._index >= len(self._items):
            return None
        return self._items[self._index]

    @property
    def events(self) -> tuple[ReviewEvent, ...]:
        return tuple(self._events)

    @property
    def summary(self) -> SessionSummary | None:
        return self._summary

    def concept_state(self, concept_id: str) -> BktSnapshot | None:
        return self._concepts.get(concept_id)

    def _reset(self) -> None:
        self._generation += 1
        self._phase = ReviewPhase.IDLE
        self._session_id = None
        self._started_at = None
        self._items = []
        self._index = 0
        self._events = []
        self._summary = None
        self._busy = False
        self._concepts = {}
        self._peaks = {}
        self._concept_load_error = None

    # =========================================================================
    # Transitions
    # =========================================================================

    async def start(
        self,
        items: Sequence[ReviewItem],
        session_type: Instrument | None = None,
    ) -> str:
        """
        Open a session over `items` and return its id.

        Raises:
            EmptyQueueError: no items to review (no session is created)
            SessionStateError: a session is already active
            GatewayError: the session could not be created
        """
        if self._phase is not ReviewPhase.IDLE or self._busy:
            raise SessionStateError(f"Cannot start a session while {self._phase.value}")
        if not items:
            raise EmptyQueueError("Review queue has no eligible items")

        session_type = Instrument(session_type or items[0].instrument)
        self._busy = True
        generation = self._generation
        try:
            record = await self.gateway.create_session(session_type)
        finally:
            if generation == self._generation:
                self._busy = False

        if generation != self._generation:
            raise SessionStateError("Orchestrator was reset while the session was being created")

        self._session_id = record.session_id
        self._session_type = session_type
        self._started_at = self.clock()
        self._items = list(items)
        self._index = 0
        self._events = []
        self._summary = None
        self._phase = ReviewPhase.REVIEWING

        await self._load_concepts(generation)

        logger.info(
            f"Started {session_type.value} session {record.session_id} "
            f"with {len(self._items)} items"
        )
        return record.session_id

    async def _load_concepts(self, generation: int) -> None:
        self._concepts = {}
        self._peaks = {}
        self._concept_load_error = None
        if not any(item.concept_id for item in self._items):
            return
        try:
            snapshots = await self.gateway.fetch_concept_states()
        except Exception as e:
            logger.warning(f"Could not load concept states, BKT updates disabled for this session: {e}")
            if generation == self._generation:
                self._concept_load_error = e
            return
        if generation != self._generation:
            return
        for snapshot in snapshots:
            self._concepts[snapshot.concept_id] = snapshot
            self._peaks[snapshot.concept_id] = snapshot.p_know

    async def grade(self, session_id: str, item_id: str, grade: int) -> ReviewPhase:
        """
        Grade the current item and move the session forward.

        Returns:
            The phase after the grade (REVIEWING or FINISHED)

        Raises:
            SessionStateError: not the active session, not the current item,
                or a previous grade is still being submitted
            InvalidGradeError: grade is not in 1-4
            SubmissionError: the review could not be submitted; retry the
                same item
        """
        if self._phase is not ReviewPhase.REVIEWING or session_id != self._session_id:
            raise SessionStateError(f"Session {session_id} is not being reviewed")
        review_grade = validate_grade(grade)
        if self._busy:
            raise SessionStateError("A grade is already being submitted")

        item = self._items[self._index]
        if item.item_id != item_id:
            raise SessionStateError(
                f"Item {item_id} is not the current item ({item.item_id})"
            )

        generation = self._generation
        self._busy = True
        try:
            try:
                await self.gateway.submit_review(
                    ReviewSubmission(
                        session_id=session_id,
                        item_id=item_id,
                        instrument_type=item.instrument,
                        grade=int(review_grade),
                    )
                )
            except Exception as e:
                logger.warning(f"Review submission failed for {item_id}: {e}")
                raise SubmissionError(item_id, e) from e

            if generation != self._generation:
                # Aborted while the submission was in flight
                return self._phase

            now = self.clock()
            self._events.append(
                ReviewEvent(
                    session_id=session_id,
                    item_id=item_id,
                    instrument_type=item.instrument,
                    grade=review_grade,
                    reviewed_at=now,
                )
            )
            self._index += 1
            if self._index >= len(self._items):
                await self._finish(generation, now)
        finally:
            if generation == self._generation:
                self._busy = False

        if generation == self._generation:
            self._dispatch_tracking(item, review_grade, now)
        return self._phase

    async def _finish(self, generation: int, now: datetime) -> None:
        assert self._session_id is not None and self._started_at is not None
        summary = SessionSummary.from_events(
            session_id=self._session_id,
            session_type=self._session_type,
            started_at=self._started_at,
            ended_at=now,
            events=self._events,
        )

        try:
            await self.gateway.close_session(
                SessionClose(
                    session_id=summary.session_id,
                    ended_at=summary.ended_at,
                    duration_seconds=summary.duration_seconds,
                    total_reviews=summary.total_reviews,
                    correct_reviews=summary.correct_reviews,
                )
            )
            summary.closed = True
        except Exception as e:
            logger.error(f"Failed to close session {summary.session_id}: {e}")

        if generation != self._generation:
            return
        self._summary = summary
        self._phase = ReviewPhase.FINISHED
        logger.info(
            f"Session {summary.session_id} finished: "
            f"{summary.correct_reviews}/{summary.total_reviews} correct ({summary.correct_percentage}%)"
        )
        self._guarded("rollup", summary.session_id, self._track_rollups, summary)

    # =========================================================================
    # Tracking
    # =========================================================================

    def _guarded(self, kind: str, key: str, step: Callable[..., None], *args: Any) -> None:
        """Run a tracking step; a failure is reported to the sink, never raised."""
        try:
            step(*args)
        except Exception as e:
            logger.warning(f"Could not queue {kind} update for {key}: {e}")
            self.tracker.report(TrackingUpdateError(kind, key, e))

    def _dispatch_tracking(self, item: ReviewItem, grade: ReviewGrade, now: datetime) -> None:
        self._guarded("fsrs", item.item_id, self._track_schedule, item, grade, now)
        if item.concept_id:
            self._guarded("bkt", item.concept_id, self._track_concept, item, grade, now)

    def _track_schedule(self, item: ReviewItem, grade: ReviewGrade, now: datetime) -> None:
        schedule = item.schedule or self.scheduler.initial_state(now)
        item.schedule = self.scheduler.review(schedule, grade, now)
        self.tracker.submit(
            "fsrs",
            item.item_id,
            functools.partial(self.gateway.upsert_fsrs_state, item.item_id, item.schedule),
        )

    def _track_concept(self, item: ReviewItem, grade: ReviewGrade, now: datetime) -> None:
        concept_id = item.concept_id
        assert concept_id is not None
        if self._concept_load_error is not None:
            # Writing from the prior would overwrite the stored snapshot
            logger.warning(f"Skipping BKT update for {concept_id}: stored state unavailable")
            self.tracker.report(TrackingUpdateError("bkt", concept_id, self._concept_load_error))
            return

        snapshot = apply_observation(
            self._concepts.get(concept_id),
            concept_id,
            is_correct_grade(grade),
            item.instrument,
            previous_max=self._peaks.get(concept_id),
            now=now,
            config=self.mastery_config,
        )
        self._concepts[concept_id] = snapshot
        self._peaks[concept_id] = max(self._peaks.get(concept_id, 0.0), snapshot.p_know)
        self.tracker.submit(
            "bkt",
            concept_id,
            functools.partial(self.gateway.upsert_bkt_state, snapshot),
        )

    def _track_rollups(self, summary: SessionSummary) -> None:
        study_date = summary.ended_at.astimezone(UTC).date()
        self.tracker.submit(
            "daily_activity",
            study_date.isoformat(),
            functools.partial(
                self.gateway.upsert_daily_activity,
                DailyActivity(
                    activity_date=study_date,
                    reviews_count=summary.total_reviews,
                    correct_count=summary.correct_reviews,
                    time_spent_seconds=summary.duration_seconds,
                ),
            ),
        )
        self.tracker.submit(
            "student_stats",
            summary.session_id,
            functools.partial(
                self.gateway.upsert_student_stats,
                StudentStatsUpdate(
                    total_reviews=summary.total_reviews,
                    total_time_seconds=summary.duration_seconds,
                    last_study_date=study_date,
                ),
            ),
        )

    # =========================================================================
    # Abort / Restart
    # =========================================================================

    def abort(self) -> None:
        """
        Drop the current session and return to IDLE.

        No close is sent; requests already in flight finish on their own.
        """
        if self._session_id:
            logger.info(
                f"Aborted session {self._session_id} after {len(self._events)} reviews; "
                "left open server-side"
            )
        self._reset()

    def restart(self) -> None:
        """Leave FINISHED (or IDLE) for a fresh IDLE orchestrator."""
        if self._phase is ReviewPhase.REVIEWING:
            raise SessionStateError("Use abort() to leave an active session")
        self._reset()
