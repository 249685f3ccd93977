"""
Error types for the adaptive learning core.

Only EmptyQueueError and SubmissionError are meant to be handled by
callers of the review orchestrator. Everything else is either caller
misuse (SessionStateError, InvalidGradeError) or is logged and absorbed
inside the core (GatewayError from tracking writes, TrackingUpdateError).
"""

from __future__ import annotations


class AdaptiveCoreError(Exception):
    """Base class for all errors raised by this package."""
    pass


class EmptyQueueError(AdaptiveCoreError):
    """Raised when a review session is started with no eligible items."""
    pass


class SessionStateError(AdaptiveCoreError):
    """Raised when an operation does not fit the current session phase."""
    pass


class InvalidGradeError(AdaptiveCoreError, ValueError):
    """Raised for grades outside the 1-4 (Again/Hard/Good/Easy) scale."""

    def __init__(self, grade: object):
        super().__init__(f"Grade must be an integer 1-4, got {grade!r}")
        self.grade = grade


class GatewayError(AdaptiveCoreError):
    """A persistence gateway call failed (transport, status or payload)."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class SubmissionError(AdaptiveCoreError):
    """
    A review event could not be submitted.

    The session stays on the same item so the caller can retry.
    """

    def __init__(self, item_id: str, cause: BaseException | None = None):
        super().__init__(f"Failed to submit review for item {item_id}: {cause}")
        self.item_id = item_id
        self.cause = cause


class TrackingUpdateError(AdaptiveCoreError):
    """A background FSRS/BKT write failed. Reported, never raised to callers."""

    def __init__(self, kind: str, key: str, cause: BaseException | None = None):
        super().__init__(f"{kind} update for {key} failed: {cause}")
        self.kind = kind
        self.key = key
        self.cause = cause
