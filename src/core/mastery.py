"""
Core Mastery Module.

Concept-level mastery tracking with Bayesian Knowledge Tracing (BKT).

Design:
- MasteryConfig: Immutable BKT constants and color thresholds, built once
- Instrument: Which kind of observation produced a grade (flashcard / quiz)
- MasteryColor: Four-band classification consumed by UI badges
- BktSnapshot: One persisted concept state (last-write-wins)
- update_mastery / apply_observation: Pure update functions

BKT answers "how well does the learner know this concept";
FSRS (src.study.retention_engine) answers "when should this item be seen again".
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum

# Sentinel for "no mastery data"; outside [0, 1] on purpose.
NO_DATA = -1.0

# Grades at or above this count as a correct recall.
CORRECT_GRADE_THRESHOLD = 3


class Instrument(str, Enum):
    """Source of a graded observation."""

    FLASHCARD = "flashcard"
    QUIZ = "quiz"


@dataclass(frozen=True)
class MasteryConfig:
    """
    Process-wide BKT configuration.

    Constructed once (see config.Settings.mastery_config) and passed by
    reference; the update functions never read module globals.
    """

    p_learn: float = 0.18
    p_forget: float = 0.25
    recovery_factor: float = 3.0
    quiz_multiplier: float = 0.70
    flashcard_multiplier: float = 1.00

    # Reported alongside p_know; not learned online
    p_transit: float = 0.1
    p_slip: float = 0.1
    p_guess: float = 0.25

    # Prior for a concept with no snapshot yet
    p_init: float = 0.0

    # Color bands
    green_threshold: float = 0.80
    yellow_threshold: float = 0.50

    def __post_init__(self):
        if not 0.0 <= self.yellow_threshold <= self.green_threshold <= 1.0:
            raise ValueError(
                "Mastery thresholds must satisfy 0 <= yellow <= green <= 1, "
                f"got yellow={self.yellow_threshold}, green={self.green_threshold}"
            )
        if not 0.0 <= self.p_init <= 1.0:
            raise ValueError(f"p_init must be within [0, 1], got {self.p_init}")

    def multiplier_for(self, instrument: Instrument) -> float:
        """Weight of a correct answer from this instrument."""
        if Instrument(instrument) is Instrument.QUIZ:
            return self.quiz_multiplier
        return self.flashcard_multiplier


DEFAULT_MASTERY_CONFIG = MasteryConfig()


class MasteryColor(str, Enum):
    """
    Keyword mastery bands.

    GREEN  >= 0.80 (mastered)
    YELLOW >= 0.50 (learning)
    RED    <  0.50 (weak)
    GRAY   no data
    """

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    GRAY = "gray"

    @classmethod
    def from_score(
        cls,
        score: float,
        config: MasteryConfig = DEFAULT_MASTERY_CONFIG,
    ) -> MasteryColor:
        """
        Convert a mastery value (or NO_DATA) to a color band.

        Args:
            score: Mastery between 0 and 1, or NO_DATA
            config: Thresholds to apply

        Returns:
            Corresponding MasteryColor
        """
        if score < 0:
            return cls.GRAY
        if score >= config.green_threshold:
            return cls.GREEN
        if score >= config.yellow_threshold:
            return cls.YELLOW
        return cls.RED

    @property
    def label(self) -> str:
        """Human-readable band name."""
        return {
            MasteryColor.GREEN: "Mastered",
            MasteryColor.YELLOW: "Learning",
            MasteryColor.RED: "Weak",
            MasteryColor.GRAY: "No data",
        }[self]

    @property
    def style(self) -> str:
        """Rich color for CLI display."""
        return {
            MasteryColor.GREEN: "green",
            MasteryColor.YELLOW: "yellow",
            MasteryColor.RED: "red",
            MasteryColor.GRAY: "dim",
        }[self]


@dataclass(frozen=True)
class BktSnapshot:
    """
    Persisted BKT state for one (learner, concept) pair.

    Each update produces a new snapshot; the store keeps the last write.
    """

    concept_id: str
    p_know: float
    p_transit: float = 0.1
    p_slip: float = 0.1
    p_guess: float = 0.25
    total_attempts: int = 0
    correct_attempts: int = 0
    last_attempt_at: datetime | None = None
    delta: float = 0.0

    def __post_init__(self):
        if not 0.0 <= self.p_know <= 1.0:
            raise ValueError(f"p_know must be within [0, 1], got {self.p_know}")
        if not 0 <= self.correct_attempts <= self.total_attempts:
            raise ValueError(
                f"correct_attempts ({self.correct_attempts}) must be between 0 "
                f"and total_attempts ({self.total_attempts})"
            )

    @property
    def accuracy(self) -> float:
        """Share of correct attempts (0 when never attempted)."""
        if self.total_attempts == 0:
            return 0.0
        return self.correct_attempts / self.total_attempts


# ============================================================================
# BKT Update
# ============================================================================


def update_mastery(
    current: float,
    is_correct: bool,
    instrument: Instrument = Instrument.FLASHCARD,
    previous_max: float | None = None,
    config: MasteryConfig = DEFAULT_MASTERY_CONFIG,
) -> float:
    """
    Update a concept's probability of being known after one observation.

    Formula:
        correct:   p + (1 - p) * P_LEARN * type_multiplier * recovery_multiplier
        incorrect: p * (1 - P_FORGET)

    The recovery multiplier applies when the concept was previously known
    better than it is now (previous_max > current). Quiz answers are a
    weaker signal than flashcard recall and are weighted down.

    Args:
        current: Current p_know, expected in [0, 1]
        is_correct: Whether the observation was a correct recall
        instrument: Flashcard or quiz
        previous_max: Highest p_know previously reached, if known
        config: BKT constants

    Returns:
        New p_know clamped to [0, 1]
    """
    type_multiplier = config.multiplier_for(instrument)
    recovery_multiplier = (
        config.recovery_factor
        if previous_max is not None and previous_max > current
        else 1.0
    )

    if is_correct:
        new = current + (1 - current) * config.p_learn * type_multiplier * recovery_multiplier
    else:
        new = current * (1 - config.p_forget)

    return min(1.0, max(0.0, new))


def is_correct_grade(grade: int) -> bool:
    """Grades 3 (Good) and 4 (Easy) count as correct recalls."""
    return grade >= CORRECT_GRADE_THRESHOLD


def apply_observation(
    snapshot: BktSnapshot | None,
    concept_id: str,
    is_correct: bool,
    instrument: Instrument = Instrument.FLASHCARD,
    previous_max: float | None = None,
    now: datetime | None = None,
    config: MasteryConfig = DEFAULT_MASTERY_CONFIG,
) -> BktSnapshot:
    """
    Produce the next snapshot for a concept after one graded observation.

    A missing snapshot means the concept has never been attempted; it is
    created lazily from the configured prior.
    """
    if now is None:
        now = datetime.now(UTC)

    if snapshot is None:
        snapshot = BktSnapshot(
            concept_id=concept_id,
            p_know=config.p_init,
            p_transit=config.p_transit,
            p_slip=config.p_slip,
            p_guess=config.p_guess,
        )

    new_p = update_mastery(
        snapshot.p_know,
        is_correct,
        instrument,
        previous_max=previous_max,
        config=config,
    )

    return replace(
        snapshot,
        p_know=new_p,
        p_transit=config.p_transit,
        p_slip=config.p_slip,
        p_guess=config.p_guess,
        total_attempts=snapshot.total_attempts + 1,
        correct_attempts=snapshot.correct_attempts + (1 if is_correct else 0),
        last_attempt_at=now,
        delta=new_p - snapshot.p_know,
    )
