from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class AdminNotifier:
    """Tells the admins about new confirmations. Best effort only."""

    def __init__(self, url: Optional[str] = None, token: Optional[str] = None, timeout: float = 5.0) -> None:
        self.url = url if url is not None else os.getenv("ADMIN_NOTIFY_URL", "")
        self.token = token if token is not None else os.getenv("ADMIN_NOTIFY_TOKEN", "")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def rsvp_received(self, record: Dict[str, Any], match: Optional[Dict[str, Any]], is_update: bool) -> bool:
        if not self.configured:
            return False

        payload = {
            "type": "rsvp",
            "isUpdate": is_update,
            "name": record.get("name"),
            "email": record.get("email"),
            "attendees": record.get("attendees"),
            "message": record.get("message") or "",
            "whatsappInterest": bool(record.get("whatsapp_interest")),
            "match": match or {},
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Admin notification for %s failed (%s)", record.get("email"), exc)
            return False
        return True
