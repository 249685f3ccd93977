"""
Core Module - Shared domain models and interfaces.

Components:
- errors: Exception hierarchy (AdaptiveCoreError and subclasses)
- mastery: BKT mastery model (update_mastery, MasteryConfig, MasteryColor)
- gateway: PersistenceGateway protocol and wire records
- platform_client: HTTP gateway for the learning platform
- memory_gateway: In-process gateway for offline replay and tests

Only the leaf modules are re-exported here; import the gateway modules
directly (they depend on src.study).
"""

from src.core.errors import (
    AdaptiveCoreError,
    EmptyQueueError,
    GatewayError,
    InvalidGradeError,
    SessionStateError,
    SubmissionError,
    TrackingUpdateError,
)
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

__all__ = [
    # Errors
    "AdaptiveCoreError",
    "EmptyQueueError",
    "GatewayError",
    "InvalidGradeError",
    "SessionStateError",
    "SubmissionError",
    "TrackingUpdateError",
    # Mastery
    "DEFAULT_MASTERY_CONFIG",
    "NO_DATA",
    "BktSnapshot",
    "Instrument",
    "MasteryColor",
    "MasteryConfig",
    "apply_observation",
    "is_correct_grade",
    "update_mastery",
]
