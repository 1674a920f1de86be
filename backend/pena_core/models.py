from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, Optional

CONFIRMED = "confirmed"


@dataclass
class Event:
    """A match supporters can confirm attendance for.

    Only ``id`` matters to the RSVP endpoints; an event without one is
    still usable and falls back to the next upcoming match server-side.
    """

    id: Optional[int] = None
    title: str = ""
    date: Optional[dt.datetime] = None
    location: str = ""
    description: str = ""


@dataclass
class AuthUser:
    id: str
    token: Optional[str] = None
    email: Optional[str] = None


@dataclass
class RSVPRecord:
    status: str
    attendees: int
    message: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == CONFIRMED


@dataclass
class RSVPSubmission:
    name: str
    email: str
    attendees: int
    message: Optional[str] = None
    whatsapp_interest: bool = False
    match_id: Optional[int] = None

    def to_payload(self, event_id: Optional[int], user_id: Optional[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "email": self.email,
            "attendees": self.attendees,
            "whatsappInterest": self.whatsapp_interest,
        }
        if self.message is not None:
            payload["message"] = self.message
        match_id = self.match_id if self.match_id is not None else event_id
        if match_id is not None:
            payload["matchId"] = match_id
        if user_id:
            payload["userId"] = user_id
        return payload


@dataclass(frozen=True)
class SubmissionResult:
    success: bool
    message: Optional[str] = None
