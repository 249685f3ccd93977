"""
Retention Engine - Spaced Repetition Scheduling.

FSRS-4.5 scheduler for individual reviewable items (flashcards, quiz
questions). Given an item's memory state and a 1-4 grade it computes the
next stability, difficulty and due date.

Model:
- Retrievability follows the FSRS power forgetting curve
  R(t) = (1 + 19/81 * t / S) ^ -0.5, so R(S) = 0.9
- Successful recall grows stability; growth is larger for higher grades
  and never below a per-grade floor (same-day reviews still count)
- A lapse shrinks stability and schedules a short relearning step
- Difficulty drifts toward the "Good" baseline (mean reversion)

Based on research from:
- Ye (FSRS algorithm, default weights from FSRS-4.5)
- Wozniak (SM algorithms)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum, IntEnum

from src.core.errors import InvalidGradeError


# =============================================================================
# FSRS-4.5 CONSTANTS
# =============================================================================

DEFAULT_WEIGHTS: tuple[float, ...] = (
    0.4872,   # w0: initial stability for Again
    1.4003,   # w1: initial stability for Hard
    3.7145,   # w2: initial stability for Good
    13.8206,  # w3: initial stability for Easy
    5.1618,   # w4: initial difficulty for Good
    1.2298,   # w5: initial difficulty slope per grade
    0.8975,   # w6: difficulty change per grade
    0.031,    # w7: mean reversion weight
    1.6474,   # w8: recall stability scale (exp)
    0.1367,   # w9: stability saturation
    1.0461,   # w10: retrievability gain
    2.1072,   # w11: forget stability scale
    0.0793,   # w12: forget difficulty exponent
    0.3246,   # w13: forget stability exponent
    1.587,    # w14: forget retrievability gain
    0.2272,   # w15: hard penalty
    2.8755,   # w16: easy bonus
)

# R(t) = (1 + FACTOR * t / S) ^ DECAY
DECAY = -0.5
FACTOR = 19 / 81

MIN_STABILITY = 0.1
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0


class ReviewGrade(IntEnum):
    """Learner-reported recall quality."""

    AGAIN = 1  # Forgot
    HARD = 2   # Recalled with serious effort
    GOOD = 3   # Recalled with normal effort
    EASY = 4   # Recalled with little effort


class ScheduleState(str, Enum):
    """Lifecycle of a reviewable item."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


@dataclass(frozen=True)
class FsrsParameters:
    """
    Read-only scheduler configuration, shared across sessions.

    min_growth is the smallest factor a successful recall multiplies
    stability by, indexed by grade (Hard, Good, Easy).
    """

    weights: tuple[float, ...] = DEFAULT_WEIGHTS
    desired_retention: float = 0.90
    maximum_interval_days: int = 365
    relearning_minutes: int = 10
    initial_stability: float = 0.5
    initial_difficulty: float = 5.0
    lapse_factor: float = 0.5
    min_growth: dict[int, float] = field(
        default_factory=lambda: {
            ReviewGrade.HARD: 1.1,
            ReviewGrade.GOOD: 1.3,
            ReviewGrade.EASY: 1.6,
        }
    )

    def __post_init__(self):
        if len(self.weights) != 17:
            raise ValueError(f"FSRS expects 17 weights, got {len(self.weights)}")
        if not 0.0 < self.desired_retention < 1.0:
            raise ValueError(
                f"desired_retention must be within (0, 1), got {self.desired_retention}"
            )
        if self.maximum_interval_days < 1:
            raise ValueError("maximum_interval_days must be at least 1")
        if self.initial_stability <= 0:
            raise ValueError("initial_stability must be positive")
        if not 0.0 < self.lapse_factor < 1.0:
            raise ValueError("lapse_factor must be within (0, 1)")
        growth = [self.min_growth[g] for g in (ReviewGrade.HARD, ReviewGrade.GOOD, ReviewGrade.EASY)]
        if not 1.0 < growth[0] <= growth[1] <= growth[2]:
            raise ValueError(f"min_growth must be > 1 and non-decreasing by grade, got {growth}")


DEFAULT_FSRS_PARAMETERS = FsrsParameters()


@dataclass(frozen=True)
class ItemState:
    """Memory state for one reviewable item."""

    stability: float                # Days until recall probability falls to 90%
    difficulty: float               # 1 (easy) to 10 (hard)
    state: ScheduleState = ScheduleState.NEW
    reps: int = 0                   # Successful reviews
    lapses: int = 0                 # Times forgotten
    due_at: datetime | None = None
    last_review_at: datetime | None = None

    def __post_init__(self):
        if self.stability <= 0:
            raise ValueError(f"stability must be positive, got {self.stability}")
        if not MIN_DIFFICULTY <= self.difficulty <= MAX_DIFFICULTY:
            raise ValueError(f"difficulty must be within [1, 10], got {self.difficulty}")
        if self.reps < 0 or self.lapses < 0:
            raise ValueError("reps and lapses must be non-negative")

    def is_due(self, now: datetime | None = None) -> bool:
        if self.due_at is None:
            return True
        return self.due_at <= (now or datetime.now(UTC))


def validate_grade(grade: object) -> ReviewGrade:
    """Coerce a raw grade to ReviewGrade, rejecting anything outside 1-4."""
    if isinstance(grade, bool) or not isinstance(grade, int):
        raise InvalidGradeError(grade)
    try:
        return ReviewGrade(grade)
    except ValueError:
        raise InvalidGradeError(grade) from None


class FSRSScheduler:
    """
    FSRS-4.5 Spaced Repetition Scheduler.

    Stateless between calls: every method takes the current ItemState
    and returns a new one, so a single instance can be shared by any
    number of concurrent sessions.
    """

    def __init__(self, params: FsrsParameters | None = None):
        self.params = params or DEFAULT_FSRS_PARAMETERS
        self.w = self.params.weights

    def initial_state(self, now: datetime | None = None) -> ItemState:
        """Deterministic starting point for an item never reviewed."""
        now = now or datetime.now(UTC)
        return ItemState(
            stability=self.params.initial_stability,
            difficulty=self.params.initial_difficulty,
            state=ScheduleState.NEW,
            reps=0,
            lapses=0,
            due_at=now,
            last_review_at=None,
        )

    @staticmethod
    def grade_from_answer(is_correct: bool, hint_used: bool = False) -> ReviewGrade:
        """
        Convert a quiz answer to an FSRS grade.

        Quiz questions have no self-rating, so a correct answer maps to
        Good, a correct answer after a hint to Hard, and a wrong answer
        to Again.
        """
        if not is_correct:
            return ReviewGrade.AGAIN
        if hint_used:
            return ReviewGrade.HARD
        return ReviewGrade.GOOD

    def retrievability(self, state: ItemState, now: datetime | None = None) -> float:
        """Current recall probability (0-1)."""
        if state.last_review_at is None:
            return 0.0
        now = now or datetime.now(UTC)
        elapsed_days = max(0.0, (now - state.last_review_at).total_seconds() / 86400)
        return math.pow(1 + FACTOR * elapsed_days / state.stability, DECAY)

    def review(
        self,
        state: ItemState,
        grade: int,
        now: datetime | None = None,
    ) -> ItemState:
        """
        Process a review and return the new memory state.

        Raises:
            InvalidGradeError: grade is not in 1-4
        """
        grade = validate_grade(grade)
        now = now or datetime.now(UTC)

        first_review = state.last_review_at is None

        if grade == ReviewGrade.AGAIN:
            if first_review:
                forget = self.w[0]
            else:
                forget = self._next_forget_stability(
                    state.difficulty, state.stability, self.retrievability(state, now)
                )
            stability = max(MIN_STABILITY, min(forget, state.stability * self.params.lapse_factor))
            next_state = (
                ScheduleState.LEARNING
                if state.state in (ScheduleState.NEW, ScheduleState.LEARNING)
                else ScheduleState.RELEARNING
            )
            return replace(
                state,
                stability=stability,
                difficulty=self._difficulty_after(state, grade, first_review),
                state=next_state,
                lapses=state.lapses + 1,
                due_at=now + timedelta(minutes=self.params.relearning_minutes),
                last_review_at=now,
            )

        floor = state.stability * self.params.min_growth[grade]
        if first_review:
            stability = max(self.w[grade - 1], floor)
        else:
            stability = max(
                self._next_recall_stability(
                    state.difficulty, state.stability, self.retrievability(state, now), grade
                ),
                floor,
            )

        return replace(
            state,
            stability=stability,
            difficulty=self._difficulty_after(state, grade, first_review),
            state=ScheduleState.REVIEW,
            reps=state.reps + 1,
            due_at=now + timedelta(days=self.next_interval(stability)),
            last_review_at=now,
        )

    def next_interval(self, stability: float) -> int:
        """Days until recall probability drops to the desired retention."""
        r = self.params.desired_retention
        interval = stability / FACTOR * (math.pow(r, 1 / DECAY) - 1)
        return max(1, min(self.params.maximum_interval_days, round(interval)))

    def _difficulty_after(self, state: ItemState, grade: int, first_review: bool) -> float:
        if first_review:
            return self._clamp_difficulty(self._initial_difficulty(grade))
        return self._next_difficulty(state.difficulty, grade)

    def _initial_difficulty(self, grade: int) -> float:
        return self.w[4] - (grade - 3) * self.w[5]

    def _next_difficulty(self, d: float, grade: int) -> float:
        """Shift by grade, then revert toward the Good baseline."""
        shifted = d - self.w[6] * (grade - 3)
        reverted = self.w[7] * self._initial_difficulty(ReviewGrade.GOOD) + (1 - self.w[7]) * shifted
        return self._clamp_difficulty(reverted)

    @staticmethod
    def _clamp_difficulty(d: float) -> float:
        return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, d))

    def _next_recall_stability(
        self, d: float, s: float, r: float, grade: int
    ) -> float:
        """Calculate new stability after successful recall."""
        hard_penalty = self.w[15] if grade == ReviewGrade.HARD else 1.0
        easy_bonus = self.w[16] if grade == ReviewGrade.EASY else 1.0

        return s * (
            1 + math.exp(self.w[8]) *
            (11 - d) *
            math.pow(s, -self.w[9]) *
            (math.exp((1 - r) * self.w[10]) - 1) *
            hard_penalty *
            easy_bonus
        )

    def _next_forget_stability(self, d: float, s: float, r: float) -> float:
        """Calculate new stability after forgetting."""
        return self.w[11] * math.pow(d, -self.w[12]) * (
            math.pow(s + 1, self.w[13]) - 1
        ) * math.exp((1 - r) * self.w[14])


_default_scheduler = FSRSScheduler()


def initial_state(now: datetime | None = None) -> ItemState:
    """Initial state using the default parameters."""
    return _default_scheduler.initial_state(now)


def schedule_update(
    state: ItemState,
    grade: int,
    now: datetime | None = None,
    scheduler: FSRSScheduler | None = None,
) -> ItemState:
    """Apply one graded review to an item's schedule."""
    return (scheduler or _default_scheduler).review(state, grade, now)
