"""
Cortex: review session orchestration.

Components:
- session: ReviewSessionOrchestrator state machine and session summary
- tracking_queue: Bounded background queue for FSRS/BKT writes
"""

from .session import (
    ReviewEvent,
    ReviewPhase,
    ReviewSessionOrchestrator,
    SessionSummary,
)
from .tracking_queue import LoguruSink, ObservabilitySink, TrackingQueue

__all__ = [
    "ReviewEvent",
    "ReviewPhase",
    "ReviewSessionOrchestrator",
    "SessionSummary",
    "LoguruSink",
    "ObservabilitySink",
    "TrackingQueue",
]
