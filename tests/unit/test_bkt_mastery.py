"""
Unit tests for the BKT mastery model.

Pure functions only; no gateway involved.
"""

from datetime import UTC, datetime

import pytest

from src.core.mastery import (
    DEFAULT_MASTERY_CONFIG,
    NO_DATA,
    BktSnapshot,
    Instrument,
    MasteryColor,
    MasteryConfig,
    apply_observation,
    is_correct_grade,
    update_mastery,
)

GRID = [i / 20 for i in range(21)]


class TestUpdateMastery:
    def test_correct_flashcard_from_zero(self):
        assert update_mastery(0.0, True, Instrument.FLASHCARD) == pytest.approx(0.18)

    def test_correct_quiz_is_weighted_down(self):
        assert update_mastery(0.0, True, Instrument.QUIZ) == pytest.approx(0.18 * 0.70)

    def test_incorrect_applies_forget_rate(self):
        assert update_mastery(0.8, False, Instrument.FLASHCARD) == pytest.approx(0.6)

    @pytest.mark.parametrize("current", GRID)
    @pytest.mark.parametrize("instrument", list(Instrument))
    @pytest.mark.parametrize("is_correct", [True, False])
    @pytest.mark.parametrize("previous_max", [None, 0.0, 0.5, 1.0])
    def test_result_stays_in_unit_interval(self, current, instrument, is_correct, previous_max):
        result = update_mastery(current, is_correct, instrument, previous_max)
        assert 0.0 <= result <= 1.0

    @pytest.mark.parametrize("current", GRID)
    def test_correct_never_decreases(self, current):
        result = update_mastery(current, True, Instrument.FLASHCARD, None)
        if current == 1.0:
            assert result == 1.0
        else:
            assert result > current

    @pytest.mark.parametrize("current", GRID)
    def test_incorrect_never_increases(self, current):
        result = update_mastery(current, False, Instrument.FLASHCARD, None)
        if current == 0.0:
            assert result == 0.0
        else:
            assert result < current

    @pytest.mark.parametrize("current", GRID)
    @pytest.mark.parametrize("previous_max", [None, 0.3, 0.9])
    def test_quiz_never_beats_flashcard(self, current, previous_max):
        quiz = update_mastery(current, True, Instrument.QUIZ, previous_max)
        flashcard = update_mastery(current, True, Instrument.FLASHCARD, previous_max)
        assert quiz <= flashcard

    def test_recovery_boost_when_previously_higher(self):
        boosted = update_mastery(0.2, True, Instrument.FLASHCARD, 0.9)
        plain = update_mastery(0.2, True, Instrument.FLASHCARD, None)
        assert boosted > plain
        assert boosted == pytest.approx(0.2 + 0.8 * 0.18 * 3.0)

    def test_no_recovery_when_previous_max_not_higher(self):
        assert update_mastery(0.5, True, Instrument.FLASHCARD, 0.5) == pytest.approx(
            update_mastery(0.5, True, Instrument.FLASHCARD, None)
        )

    def test_recovery_is_clamped(self):
        config = MasteryConfig(p_learn=0.9, recovery_factor=3.0)
        assert update_mastery(0.1, True, Instrument.FLASHCARD, 0.95, config=config) == 1.0

    def test_recovery_does_not_apply_to_incorrect(self):
        assert update_mastery(0.4, False, Instrument.FLASHCARD, 0.9) == pytest.approx(0.3)

    def test_custom_config_is_used(self):
        config = MasteryConfig(p_learn=0.5)
        assert update_mastery(0.0, True, config=config) == pytest.approx(0.5)

    def test_deterministic(self):
        first = update_mastery(0.37, True, Instrument.QUIZ, 0.8)
        assert all(update_mastery(0.37, True, Instrument.QUIZ, 0.8) == first for _ in range(5))


class TestMasteryConfig:
    def test_defaults(self):
        config = DEFAULT_MASTERY_CONFIG
        assert config.p_learn == 0.18
        assert config.p_forget == 0.25
        assert config.recovery_factor == 3.0
        assert config.quiz_multiplier == 0.70
        assert config.flashcard_multiplier == 1.00

    def test_is_immutable(self):
        with pytest.raises(AttributeError):
            DEFAULT_MASTERY_CONFIG.p_learn = 0.5

    def test_rejects_inverted_thresholds(self):
        with pytest.raises(ValueError):
            MasteryConfig(green_threshold=0.4, yellow_threshold=0.6)

    def test_multiplier_accepts_raw_value(self):
        assert DEFAULT_MASTERY_CONFIG.multiplier_for("quiz") == 0.70


class TestMasteryColor:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (1.0, MasteryColor.GREEN),
            (0.80, MasteryColor.GREEN),
            (0.79, MasteryColor.YELLOW),
            (0.50, MasteryColor.YELLOW),
            (0.49, MasteryColor.RED),
            (0.0, MasteryColor.RED),
            (NO_DATA, MasteryColor.GRAY),
        ],
    )
    def test_bands(self, score, expected):
        assert MasteryColor.from_score(score) is expected

    def test_labels(self):
        assert MasteryColor.GREEN.label == "Mastered"
        assert MasteryColor.YELLOW.label == "Learning"
        assert MasteryColor.RED.label == "Weak"
        assert MasteryColor.GRAY.label == "No data"


class TestObservation:
    @pytest.mark.parametrize("grade,expected", [(1, False), (2, False), (3, True), (4, True)])
    def test_is_correct_grade(self, grade, expected):
        assert is_correct_grade(grade) is expected

    def test_first_observation_creates_snapshot(self):
        at = datetime(2025, 1, 1, tzinfo=UTC)
        snapshot = apply_observation(None, "sub-1", True, Instrument.FLASHCARD, now=at)

        assert snapshot.concept_id == "sub-1"
        assert snapshot.p_know == pytest.approx(0.18)
        assert snapshot.delta == pytest.approx(0.18)
        assert snapshot.total_attempts == 1
        assert snapshot.correct_attempts == 1
        assert snapshot.last_attempt_at == at
        assert (snapshot.p_transit, snapshot.p_slip, snapshot.p_guess) == (0.1, 0.1, 0.25)

    def test_subsequent_observation_builds_on_snapshot(self):
        previous = BktSnapshot(concept_id="sub-1", p_know=0.6, total_attempts=3, correct_attempts=2)
        snapshot = apply_observation(previous, "sub-1", False, Instrument.QUIZ)

        assert snapshot.p_know == pytest.approx(0.45)
        assert snapshot.delta == pytest.approx(-0.15)
        assert snapshot.total_attempts == 4
        assert snapshot.correct_attempts == 2
        assert previous.p_know == 0.6

    def test_snapshot_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            BktSnapshot(concept_id="x", p_know=1.2)
        with pytest.raises(ValueError):
            BktSnapshot(concept_id="x", p_know=0.5, total_attempts=1, correct_attempts=2)
