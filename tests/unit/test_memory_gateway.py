"""
Unit tests for the in-process gateway and the offline replay built on it.
"""

from datetime import UTC, timedelta

import pytest

from src.cli.main import ReplayEvent, replay_events
from src.core.errors import GatewayError
from src.core.gateway import PersistenceGateway, ReviewSubmission
from src.core.mastery import DEFAULT_MASTERY_CONFIG, BktSnapshot, Instrument
from src.cortex.tracking_queue import TrackingQueue
from src.study.retention_engine import FSRSScheduler, ItemState, ScheduleState


def test_satisfies_gateway_protocol(memory_gateway):
    assert isinstance(memory_gateway, PersistenceGateway)


@pytest.mark.asyncio
async def test_review_for_unknown_session_is_404(memory_gateway):
    with pytest.raises(GatewayError) as exc_info:
        await memory_gateway.submit_review(
            ReviewSubmission(session_id="nope", item_id="fc-1", instrument_type=Instrument.QUIZ, grade=3)
        )
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_fail_on_injects_errors_and_records_attempts(memory_gateway):
    memory_gateway.fail_on.add("upsert_bkt_state")

    with pytest.raises(GatewayError) as exc_info:
        await memory_gateway.upsert_bkt_state(BktSnapshot(concept_id="c1", p_know=0.3))

    assert exc_info.value.operation == "upsert_bkt_state"
    assert memory_gateway.count("upsert_bkt_state") == 1
    assert memory_gateway.concept_states == {}


@pytest.mark.asyncio
async def test_fetch_item_states_filters(memory_gateway, now):
    memory_gateway.item_states = {
        "due": ItemState(stability=2.0, difficulty=5.0, state=ScheduleState.REVIEW, due_at=now - timedelta(days=1)),
        "later": ItemState(stability=9.0, difficulty=5.0, state=ScheduleState.REVIEW, due_at=now + timedelta(days=3)),
        "relearn": ItemState(stability=0.4, difficulty=7.0, state=ScheduleState.RELEARNING, due_at=now),
    }

    due = await memory_gateway.fetch_item_states(due_before=now)
    assert {r.item_id for r in due} == {"due", "relearn"}

    relearning = await memory_gateway.fetch_item_states(state=ScheduleState.RELEARNING)
    assert [r.item_id for r in relearning] == ["relearn"]

    assert len(await memory_gateway.fetch_item_states(limit=1)) == 1


class TestReplay:
    @pytest.mark.asyncio
    async def test_replay_chains_reviews_of_the_same_item(self, now):
        events = [
            ReplayEvent(item_id="fc-1", grade=3, concept_id="sub-1", reviewed_at=now),
            ReplayEvent(item_id="fc-1", grade=3, concept_id="sub-1", reviewed_at=now + timedelta(days=4)),
        ]

        gateway = await replay_events(events, FSRSScheduler(), DEFAULT_MASTERY_CONFIG)

        assert len(gateway.reviews) == 2
        state = gateway.item_states["fc-1"]
        assert state.reps == 2
        assert state.last_review_at == now + timedelta(days=4)
        snapshot = gateway.concept_states["sub-1"]
        assert snapshot.total_attempts == 2
        assert snapshot.correct_attempts == 2
        assert snapshot.p_know > 0.18

    @pytest.mark.asyncio
    async def test_replay_closes_session(self, now):
        events = [ReplayEvent(item_id="q-1", grade=1, instrument=Instrument.QUIZ, reviewed_at=now)]

        gateway = await replay_events(events, FSRSScheduler(), DEFAULT_MASTERY_CONFIG)

        (stored,) = gateway.sessions.values()
        assert stored.session_type is Instrument.QUIZ
        assert stored.closed is not None
        assert stored.closed.correct_reviews == 0
        assert gateway.concept_states == {}

    @pytest.mark.asyncio
    async def test_replay_uses_given_tracker(self, now):
        tracker = TrackingQueue(maxsize=8, workers=1)
        events = [ReplayEvent(item_id="fc-1", grade=3, concept_id="sub-1", reviewed_at=now)]

        gateway = await replay_events(events, FSRSScheduler(), DEFAULT_MASTERY_CONFIG, tracker=tracker)

        # fsrs + bkt + daily activity + student stats
        assert tracker.stats.completed == 4
        assert not tracker.running
        assert len(gateway.daily_activities) == 1

    def test_offsetless_reviewed_at_is_utc(self):
        event = ReplayEvent.model_validate({"item_id": "fc-1", "grade": 3, "reviewed_at": "2025-03-01T09:00:00"})
        assert event.reviewed_at.tzinfo is UTC

    @pytest.mark.asyncio
    async def test_replay_nothing(self):
        gateway = await replay_events([], FSRSScheduler(), DEFAULT_MASTERY_CONFIG)
        assert gateway.calls == []
