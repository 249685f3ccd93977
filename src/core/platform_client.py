"""
Learning Platform Client

HTTP implementation of the PersistenceGateway for the learning platform's
REST service.

Header convention:
    Authorization: Bearer <anon key>   always (gateway key)
    X-Access-Token: <user jwt>         when a learner is signed in

Response convention:
    success: {"data": ...}  (unwrapped here)
    error:   {"error": "message"}  (raised as GatewayError)

Usage:
    async with PlatformClient(settings.api_config()) as client:
        session = await client.create_session(Instrument.FLASHCARD)
        await client.submit_review(ReviewSubmission(...))
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from src.core.errors import GatewayError
from src.core.gateway import (
    BktStateRecord,
    DailyActivity,
    FsrsStateRecord,
    ReviewItem,
    ReviewSubmission,
    SessionClose,
    SessionRecord,
    StudentStatsUpdate,
    StudyQueueEntry,
    bkt_payload,
    fsrs_payload,
    parse_records,
)
from src.core.mastery import BktSnapshot, Instrument
from src.study.retention_engine import ItemState, ScheduleState


class ApiConfig(BaseModel):
    """Connection settings for the learning platform."""

    base_url: str = "http://localhost:54321/functions/v1/server"
    anon_key: str = ""
    access_token: str | None = None
    timeout_seconds: float = 30.0

    # Endpoints
    sessions_endpoint: str = "/study-sessions"
    reviews_endpoint: str = "/reviews"
    fsrs_states_endpoint: str = "/fsrs-states"
    bkt_states_endpoint: str = "/bkt-states"
    study_queue_endpoint: str = "/study-queue"
    daily_activities_endpoint: str = "/daily-activities"
    student_stats_endpoint: str = "/student-stats"
    health_endpoint: str = "/health"


class PlatformClient:
    """
    HTTP client for the learning platform API.

    Every call either returns the unwrapped payload or raises
    GatewayError; deciding which failures are fatal is the caller's job.
    """

    def __init__(self, config: ApiConfig):
        self.config = config
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PlatformClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.anon_key}",
        }
        if self.config.access_token:
            headers["X-Access-Token"] = self.config.access_token
        return headers

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def set_access_token(self, token: str | None) -> None:
        """Switch the signed-in learner (None signs out)."""
        self.config = self.config.model_copy(update={"access_token": token})
        if self._client is None:
            return
        if token:
            self._client.headers["X-Access-Token"] = token
        else:
            self._client.headers.pop("X-Access-Token", None)

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and unwrap the response envelope."""
        client = await self._ensure_client()
        logger.debug("{} {}", method, path)

        try:
            response = await client.request(method, path, json=json, params=params)
        except httpx.RequestError as e:
            logger.error(f"Connection error during {operation}: {e}")
            raise GatewayError(f"Connection error: {e}", operation=operation) from e

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(
                f"Invalid response from server ({response.status_code})",
                operation=operation,
                status_code=response.status_code,
            ) from e

        if response.status_code >= 400:
            message = (
                body.get("error") if isinstance(body, dict) and body.get("error") else None
            ) or f"API Error {response.status_code}"
            logger.warning(f"{operation} failed ({response.status_code}): {message}")
            raise GatewayError(message, operation=operation, status_code=response.status_code)

        if isinstance(body, dict):
            if "data" in body:
                return body["data"]
            if body.get("error"):
                raise GatewayError(
                    str(body["error"]), operation=operation, status_code=response.status_code
                )
        return body

    # =========================================================================
    # Sessions & Reviews
    # =========================================================================

    async def create_session(self, session_type: Instrument) -> SessionRecord:
        data = await self._request(
            "POST",
            self.config.sessions_endpoint,
            "create_session",
            json={"session_type": Instrument(session_type).value},
        )
        try:
            record = SessionRecord.model_validate(data)
        except ValidationError as e:
            raise GatewayError(f"Invalid session payload: {e}", operation="create_session") from e
        logger.debug(f"Created {session_type} session {record.session_id}")
        return record

    async def submit_review(self, review: ReviewSubmission) -> None:
        await self._request(
            "POST",
            self.config.reviews_endpoint,
            "submit_review",
            json=review.to_payload(),
        )

    async def close_session(self, close: SessionClose) -> None:
        await self._request(
            "PUT",
            f"{self.config.sessions_endpoint}/{close.session_id}",
            "close_session",
            json=close.to_payload(),
        )

    # =========================================================================
    # Tracking State
    # =========================================================================

    async def upsert_fsrs_state(self, item_id: str, state: ItemState) -> None:
        await self._request(
            "POST",
            self.config.fsrs_states_endpoint,
            "upsert_fsrs_state",
            json=fsrs_payload(item_id, state),
        )

    async def upsert_bkt_state(self, snapshot: BktSnapshot) -> None:
        await self._request(
            "POST",
            self.config.bkt_states_endpoint,
            "upsert_bkt_state",
            json=bkt_payload(snapshot),
        )

    async def upsert_daily_activity(self, activity: DailyActivity) -> None:
        await self._request(
            "POST",
            self.config.daily_activities_endpoint,
            "upsert_daily_activity",
            json=activity.to_payload(),
        )

    async def upsert_student_stats(self, stats: StudentStatsUpdate) -> None:
        await self._request(
            "POST",
            self.config.student_stats_endpoint,
            "upsert_student_stats",
            json=stats.to_payload(),
        )

    async def fetch_concept_states(self) -> list[BktSnapshot]:
        """One batch call for every concept of the signed-in learner."""
        data = await self._request(
            "GET", self.config.bkt_states_endpoint, "fetch_concept_states"
        )
        records = parse_records(BktStateRecord, data, "fetch_concept_states")
        logger.debug(f"Fetched {len(records)} concept states")
        return [record.to_snapshot() for record in records]

    async def fetch_item_states(
        self,
        due_before: datetime | None = None,
        state: ScheduleState | None = None,
        limit: int | None = None,
    ) -> list[FsrsStateRecord]:
        params: dict[str, Any] = {}
        if due_before:
            params["due_before"] = due_before.isoformat()
        if state:
            params["state"] = ScheduleState(state).value
        if limit:
            params["limit"] = limit

        data = await self._request(
            "GET",
            self.config.fsrs_states_endpoint,
            "fetch_item_states",
            params=params or None,
        )
        return parse_records(FsrsStateRecord, data, "fetch_item_states")

    async def fetch_study_queue(
        self,
        course_id: str | None = None,
        limit: int | None = None,
    ) -> list[ReviewItem]:
        params: dict[str, Any] = {}
        if course_id:
            params["course_id"] = course_id
        if limit:
            params["limit"] = limit

        data = await self._request(
            "GET",
            self.config.study_queue_endpoint,
            "fetch_study_queue",
            params=params or None,
        )
        entries = parse_records(StudyQueueEntry, data, "fetch_study_queue")
        return [entry.to_review_item() for entry in entries]

    # =========================================================================
    # Health Check
    # =========================================================================

    async def health_check(self) -> bool:
        """Check if the platform is reachable."""
        try:
            client = await self._ensure_client()
            response = await client.get(self.config.health_endpoint, timeout=5.0)
            return response.status_code == 200
        except (httpx.RequestError, asyncio.TimeoutError):
            return False
