"""Core club domain: RSVPs, shirt voting and merchandise."""

from .documents import DocumentError, JsonDocument, MerchandiseCatalog, VotingBoard
from .features import FeatureFlags
from .models import AuthUser, Event, RSVPRecord, RSVPSubmission, SubmissionResult
from .notifier import AdminNotifier
from .rsvp_client import RSVPSession
from .store import ClubStore

__all__ = [
    "AdminNotifier",
    "AuthUser",
    "ClubStore",
    "DocumentError",
    "Event",
    "FeatureFlags",
    "JsonDocument",
    "MerchandiseCatalog",
    "RSVPRecord",
    "RSVPSession",
    "RSVPSubmission",
    "SubmissionResult",
    "VotingBoard",
]
