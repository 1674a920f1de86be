"""Client-side RSVP state for a single match.

``RSVPSession`` loads the match's attendee count and the signed-in
supporter's confirmation, and submits new confirmations with a bounded
retry. It never raises to its caller: load failures land in ``error``,
submit failures in ``submit_error`` and in the returned
``SubmissionResult``.

Typical use::

    async with RSVPSession(event, user, base_url=site_url) as session:
        result = await session.submit_rsvp(RSVPSubmission(...))
"""
from __future__ import annotations

import asyncio
import datetime as dt
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from . import messages
from .models import CONFIRMED, AuthUser, Event, RSVPRecord, RSVPSubmission, SubmissionResult
from .schemas import ApiErrorResponse, AttendeeCountResponse, RSVPStatusResponse, RSVPSubmitResponse

logger = logging.getLogger(__name__)

RETRY_ATTEMPTS = 3
RETRY_DELAY = 1.0

# Failures of the read-only fetches: transport, HTTP status and malformed bodies.
_FETCH_ERRORS = (httpx.HTTPError, ValueError)


class SessionState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SUBMITTING = "submitting"


class SubmitPhase(str, enum.Enum):
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"


@dataclass
class SubmitAttempt:
    """Progress of one ``submit_rsvp`` call through its retry states."""

    phase: SubmitPhase = SubmitPhase.ATTEMPTING
    attempts: int = 0
    message: Optional[str] = None
    response: Optional[RSVPSubmitResponse] = None


class RSVPSession:
    def __init__(
        self,
        event: Event,
        user: Optional[AuthUser] = None,
        *,
        enabled: bool = True,
        base_url: str = "http://localhost:8000",
        client: Optional[httpx.AsyncClient] = None,
        api_prefix: str = "/api/rsvp",
        max_attempts: int = RETRY_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.event = event
        self.user = user
        self.enabled = enabled
        self.api_prefix = api_prefix.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=10.0)
        self._owns_client = client is None
        self._closed = False

        self.state = SessionState.IDLE
        self.current_rsvp: Optional[RSVPRecord] = None
        self.attendee_count = 0
        self.is_fetching_count = False
        self.error: Optional[str] = None
        self.submit_error: Optional[str] = None

    async def __aenter__(self) -> "RSVPSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def is_loading(self) -> bool:
        return self.state is SessionState.LOADING

    @property
    def is_submitting(self) -> bool:
        return self.state is SessionState.SUBMITTING

    @property
    def has_existing_rsvp(self) -> bool:
        return self.current_rsvp is not None and self.current_rsvp.is_confirmed

    @property
    def can_submit(self) -> bool:
        return self.enabled

    async def start(self) -> None:
        """Initial load. A disabled session stays idle and makes no requests."""
        if self.enabled:
            await self.refresh_data()

    async def refresh_data(self) -> None:
        if not self.enabled or self._closed:
            return

        self.state = SessionState.LOADING
        self.error = None

        count_result, status_result = await asyncio.gather(
            self._fetch_attendee_count(),
            self._fetch_current_rsvp(),
            return_exceptions=True,
        )
        for result in (count_result, status_result):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        if self._closed:
            return

        if isinstance(count_result, Exception):
            logger.warning("Attendee count for match %s unavailable (%s)", self.event.id, count_result)
            self.attendee_count = 0
            self.error = messages.RSVP_LOAD_ERROR
        else:
            self.attendee_count = count_result

        if isinstance(status_result, Exception):
            logger.info("RSVP status for match %s unavailable (%s)", self.event.id, status_result)
            self.current_rsvp = None
        else:
            self.current_rsvp = status_result

        self.state = SessionState.READY

    async def submit_rsvp(self, submission: RSVPSubmission) -> SubmissionResult:
        if not self.enabled:
            self.submit_error = messages.RSVP_SUBMIT_DISABLED
            return SubmissionResult(False, messages.RSVP_SUBMIT_DISABLED)

        self.state = SessionState.SUBMITTING
        self.submit_error = None
        payload = submission.to_payload(self.event.id, self.user.id if self.user else None)

        attempt = SubmitAttempt()
        try:
            while attempt.phase is SubmitPhase.ATTEMPTING:
                await self._advance(attempt, payload)
        except Exception:
            logger.exception("Unexpected failure submitting RSVP for match %s", self.event.id)
            attempt.phase = SubmitPhase.EXHAUSTED
            attempt.message = messages.RSVP_SUBMIT_ERROR
        finally:
            if not self._closed:
                self.state = SessionState.READY

        if attempt.phase is not SubmitPhase.SUCCEEDED:
            logger.info(
                "RSVP submission for match %s %s after %d attempt(s): %s",
                self.event.id,
                attempt.phase.value,
                attempt.attempts,
                attempt.message,
            )
            if not self._closed:
                self.submit_error = attempt.message
            return SubmissionResult(False, attempt.message)

        if not self._closed:
            await self._apply_success(submission, attempt.response)
        return SubmissionResult(True, attempt.message)

    def clear_errors(self) -> None:
        self.error = None
        self.submit_error = None

    async def aclose(self) -> None:
        """Unmount. Results that arrive afterwards are discarded."""
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Submission states

    async def _advance(self, attempt: SubmitAttempt, payload: Dict[str, Any]) -> None:
        attempt.attempts += 1
        try:
            response = await self._client.post(
                self._path(""),
                params=self._match_params(),
                json=payload,
                headers=self._headers(),
            )
        except httpx.RequestError as exc:
            await self._retry_or_exhaust(attempt, messages.RSVP_NETWORK_ERROR, exc)
            return

        if not response.is_success:
            attempt.phase = SubmitPhase.REJECTED
            attempt.message = self._rejection_message(response)
            return

        try:
            body = RSVPSubmitResponse.model_validate(response.json())
        except ValueError as exc:
            await self._retry_or_exhaust(attempt, messages.RSVP_SUBMIT_ERROR, exc)
            return

        if not body.success:
            attempt.phase = SubmitPhase.REJECTED
            attempt.message = body.error or body.message or messages.RSVP_SUBMIT_ERROR
            return

        attempt.phase = SubmitPhase.SUCCEEDED
        attempt.message = body.message or messages.RSVP_CREATED
        attempt.response = body

    async def _retry_or_exhaust(self, attempt: SubmitAttempt, message: str, exc: Exception) -> None:
        attempt.message = message
        if attempt.attempts >= self.max_attempts:
            attempt.phase = SubmitPhase.EXHAUSTED
            return

        delay = self.retry_delay * (2 ** (attempt.attempts - 1))
        logger.warning(
            "RSVP submission attempt %d/%d failed (%s); retrying in %.1fs",
            attempt.attempts,
            self.max_attempts,
            exc,
            delay,
        )
        if delay > 0:
            await asyncio.sleep(delay)

    async def _apply_success(self, submission: RSVPSubmission, body: Optional[RSVPSubmitResponse]) -> None:
        now = dt.datetime.now(dt.UTC)
        previous = self.current_rsvp
        self.current_rsvp = RSVPRecord(
            status=CONFIRMED,
            attendees=submission.attendees,
            message=submission.message,
            created_at=previous.created_at if previous and previous.created_at else now,
            updated_at=now,
        )

        self.is_fetching_count = True
        try:
            count = await self._fetch_attendee_count()
        except _FETCH_ERRORS as exc:
            logger.warning("Refreshing attendee count after RSVP failed (%s)", exc)
            if body is not None and body.total_attendees is not None and not self._closed:
                self.attendee_count = body.total_attendees
        else:
            if not self._closed:
                self.attendee_count = count
        finally:
            self.is_fetching_count = False

    # ------------------------------------------------------------------
    # Fetches

    async def _fetch_attendee_count(self) -> int:
        response = await self._client.get(
            self._path("/attendees"),
            params=self._match_params(),
            headers=self._headers(),
        )
        response.raise_for_status()
        return AttendeeCountResponse.model_validate(response.json()).count

    async def _fetch_current_rsvp(self) -> Optional[RSVPRecord]:
        if self.user is None:
            return None

        response = await self._client.get(
            self._path("/status"),
            params=self._match_params(),
            headers=self._headers(),
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()

        body = RSVPStatusResponse.model_validate(response.json())
        status = body.status or CONFIRMED
        if not body.success or status != CONFIRMED:
            return None
        return RSVPRecord(
            status=status,
            attendees=body.attendees or 1,
            message=body.message,
            created_at=body.created_at,
            updated_at=body.updated_at,
        )

    # ------------------------------------------------------------------
    # Request helpers

    def _path(self, suffix: str) -> str:
        return f"{self.api_prefix}{suffix}"

    def _match_params(self) -> Optional[Dict[str, Any]]:
        if self.event.id is None:
            return None
        return {"match": self.event.id}

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.user is not None and self.user.token:
            headers["Authorization"] = f"Bearer {self.user.token}"
        return headers

    @staticmethod
    def _rejection_message(response: httpx.Response) -> str:
        try:
            body = ApiErrorResponse.model_validate(response.json())
        except ValueError:
            return messages.RSVP_SUBMIT_ERROR
        return body.error or body.message or messages.RSVP_SUBMIT_ERROR
