"""Match and RSVP persistence backed by Supabase, with a local JSON fallback."""
from __future__ import annotations

import datetime as dt
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx

from . import messages
from .documents import parse_timestamp, utc_now_iso

logger = logging.getLogger(__name__)

MATCH_FIELDS = "id,opponent,date_time,competition"
RECENT_WINDOW = dt.timedelta(hours=24)


class ClubStore:
    """Reads and writes matches and RSVPs.

    Talks to the Supabase REST API when ``SUPABASE_URL`` and a key are
    configured; otherwise everything lives in JSON files under ``data_dir``
    so the site can run locally without a database.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        env_dir = os.getenv("PENA_DATA_DIR")
        self.data_dir = data_dir or (Path(env_dir) if env_dir else Path(__file__).parent.parent / "data")

        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.supabase_rsvps_table = os.getenv("SUPABASE_RSVPS_TABLE", "rsvps")
        self.supabase_matches_table = os.getenv("SUPABASE_MATCHES_TABLE", "matches")

        self.local_rsvps_path = self.data_dir / "rsvps_local.json"
        self.local_matches_path = self.data_dir / "matches_local.json"
        self._local_lock = threading.Lock()

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    # ------------------------------------------------------------------
    # Matches

    def fetch_match(self, match_id: int) -> Optional[Dict[str, Any]]:
        if self.uses_supabase:
            rows = self._rest_get(
                self.supabase_matches_table,
                {"select": MATCH_FIELDS, "id": f"eq.{match_id}", "limit": "1"},
            )
        else:
            rows = [row for row in self._local_matches() if row.get("id") == match_id]
        return self._match_summary(rows[0]) if rows else None

    def upcoming_match(self) -> Optional[Dict[str, Any]]:
        now = dt.datetime.now(dt.UTC)
        if self.uses_supabase:
            rows = self._rest_get(
                self.supabase_matches_table,
                {
                    "select": MATCH_FIELDS,
                    "date_time": f"gte.{now.isoformat()}",
                    "order": "date_time.asc",
                    "limit": "1",
                },
            )
        else:
            upcoming = []
            for row in self._local_matches():
                kickoff = parse_timestamp(row.get("date_time"))
                if kickoff is not None and kickoff >= now:
                    upcoming.append((kickoff, row))
            upcoming.sort(key=lambda item: item[0])
            rows = [row for _, row in upcoming[:1]]
        return self._match_summary(rows[0]) if rows else None

    def resolve_match(self, match_id: Optional[int]) -> Optional[Dict[str, Any]]:
        """Return the requested match, or the next upcoming one when no id is given.

        An explicit id that does not exist raises ``LookupError``.
        """
        if match_id is not None:
            match = self.fetch_match(match_id)
            if match is None:
                raise LookupError(messages.MATCH_NOT_FOUND)
            return match

        try:
            return self.upcoming_match()
        except RuntimeError as exc:
            logger.warning("Upcoming match lookup failed (%s); using unscoped RSVPs", exc)
            return None

    # ------------------------------------------------------------------
    # RSVPs

    def list_rsvps(self, match: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        match_id = match.get("id") if match else None
        if self.uses_supabase:
            params = {"select": "*", "order": "created_at.asc"}
            params["match_id"] = f"eq.{match_id}" if match_id is not None else "is.null"
            return self._rest_get(self.supabase_rsvps_table, params)

        rows = [row for row in self._local_rsvps() if row.get("match_id") == match_id]
        rows.sort(key=lambda row: str(row.get("created_at") or ""))
        return rows

    def match_totals(self, match: Optional[Dict[str, Any]]) -> Tuple[int, int]:
        rows = self.list_rsvps(match)
        total = sum(int(row.get("attendees") or 0) for row in rows)
        return total, len(rows)

    def attendee_summary(self, match_id: Optional[int]) -> Dict[str, Any]:
        match = self.resolve_match(match_id)
        rows = self.list_rsvps(match)

        total = sum(int(row.get("attendees") or 0) for row in rows)
        confirmed = len(rows)
        cutoff = dt.datetime.now(dt.UTC) - RECENT_WINDOW
        recent = 0
        for row in rows:
            created = parse_timestamp(row.get("created_at"))
            if created is not None and created >= cutoff:
                recent += 1

        return {
            "success": True,
            "count": total,
            "details": {
                "totalAttendees": total,
                "confirmedCount": confirmed,
                "recentConfirmations": recent,
                "averageGroupSize": round(total / confirmed, 1) if confirmed else 0,
            },
            "match": match or self._match_summary(None),
        }

    def rsvp_status(
        self,
        match_id: Optional[int],
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Latest RSVP for the match by user id, falling back to e-mail."""
        if not user_id and not email:
            raise PermissionError(messages.UNAUTHORIZED)

        match = self.resolve_match(match_id)
        scoped_id = match.get("id") if match else None
        email_key = email.strip().lower() if email else None

        if self.uses_supabase:
            params = {"select": "*", "order": "created_at.desc", "limit": "1"}
            params["match_id"] = f"eq.{scoped_id}" if scoped_id is not None else "is.null"
            if user_id:
                params["user_id"] = f"eq.{user_id}"
            else:
                params["email"] = f"eq.{email_key}"
            rows = self._rest_get(self.supabase_rsvps_table, params)
        else:
            rows = []
            for row in self._local_rsvps():
                if row.get("match_id") != scoped_id:
                    continue
                if user_id and row.get("user_id") != user_id:
                    continue
                if not user_id and str(row.get("email", "")).lower() != email_key:
                    continue
                rows.append(row)
            rows.sort(key=lambda row: str(row.get("created_at") or ""), reverse=True)

        if not rows:
            return None
        return {"record": rows[0], "match": match or self._match_summary(None)}

    def submit_rsvp(self, payload: Dict[str, Any], match_id: Optional[int]) -> Dict[str, Any]:
        """Create or replace the RSVP for (e-mail or user id, match).

        ``payload`` is a validated RSVP form using snake_case keys. An
        existing confirmation is replaced, keeping its original
        ``created_at``.
        """
        target_id = match_id if match_id is not None else payload.get("match_id")
        match = self.resolve_match(target_id)
        scoped_id = match.get("id") if match else None

        now_iso = utc_now_iso()
        record = {
            "name": payload["name"].strip(),
            "email": payload["email"].strip().lower(),
            "attendees": int(payload["attendees"]),
            "message": (payload.get("message") or "").strip(),
            "whatsapp_interest": bool(payload.get("whatsapp_interest")),
            "match_id": scoped_id,
            "match_date": match.get("date") if match else None,
            "user_id": payload.get("user_id") or None,
            "created_at": now_iso,
            "updated_at": None,
        }

        if self.uses_supabase:
            saved, is_update = self._submit_rsvp_supabase(record)
        else:
            saved, is_update = self._submit_rsvp_local(record)

        total, confirmed = self.match_totals(match)
        logger.info(
            "%s RSVP from %s for match %s (%d attendees)",
            "Updated" if is_update else "New",
            record["email"],
            scoped_id,
            record["attendees"],
        )
        return {
            "record": saved,
            "isUpdate": is_update,
            "match": match or self._match_summary(None),
            "totalAttendees": total,
            "confirmedCount": confirmed,
        }

    def delete_rsvp(self, rsvp_id: Optional[int] = None, email: Optional[str] = None) -> int:
        if rsvp_id is None and not email:
            raise ValueError(messages.RSVP_DELETE_TARGET_REQUIRED)

        if self.uses_supabase:
            params = {"id": f"eq.{rsvp_id}"} if rsvp_id is not None else {"email": f"eq.{email.strip().lower()}"}
            deleted = self._rest_delete(self.supabase_rsvps_table, params)
            return len(deleted)

        email_key = email.strip().lower() if email else None
        with self._local_lock:
            rows = self._local_rsvps(strict=True)
            if rsvp_id is not None:
                remaining = [row for row in rows if row.get("id") != rsvp_id]
            else:
                remaining = [row for row in rows if str(row.get("email", "")).lower() != email_key]
            removed = len(rows) - len(remaining)
            if removed:
                self._write_json_file(self.local_rsvps_path, remaining)
        return removed

    def _existing_rsvps(self, rows: List[Dict[str, Any]], record: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Rows for the same match sharing the record's e-mail or user id."""
        found: List[Dict[str, Any]] = []
        seen = set()
        for row in rows:
            if row.get("match_id") != record["match_id"] or row.get("id") in seen:
                continue
            same_email = str(row.get("email", "")).lower() == record["email"]
            same_user = bool(record["user_id"]) and row.get("user_id") == record["user_id"]
            if same_email or same_user:
                seen.add(row.get("id"))
                found.append(row)
        return found

    @staticmethod
    def _carry_over(record: Dict[str, Any], existing: List[Dict[str, Any]]) -> None:
        stamps = [str(row["created_at"]) for row in existing if row.get("created_at")]
        if stamps:
            record["created_at"] = min(stamps)
        record["updated_at"] = utc_now_iso()

    def _submit_rsvp_supabase(self, record: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        scope = {
            "select": "id,email,user_id,match_id,created_at",
            "match_id": f"eq.{record['match_id']}" if record["match_id"] is not None else "is.null",
        }
        rows = self._rest_get(self.supabase_rsvps_table, {**scope, "email": f"eq.{record['email']}"})
        if record["user_id"]:
            rows += self._rest_get(self.supabase_rsvps_table, {**scope, "user_id": f"eq.{record['user_id']}"})
        existing = self._existing_rsvps(rows, record)

        if existing:
            # Replace rather than PATCH so a stale row never survives a partial update.
            for row in existing:
                self._rest_delete(self.supabase_rsvps_table, {"id": f"eq.{row['id']}"})
            self._carry_over(record, existing)

        rows = self._rest_post(self.supabase_rsvps_table, record)
        return (rows[0] if rows else record), bool(existing)

    def _submit_rsvp_local(self, record: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        with self._local_lock:
            rows = self._local_rsvps(strict=True)
            next_id = max((int(row.get("id") or 0) for row in rows), default=0) + 1
            existing = self._existing_rsvps(rows, record)
            if existing:
                rows = [row for row in rows if not any(row is old for old in existing)]
                self._carry_over(record, existing)

            saved = {"id": next_id, **record}
            rows.append(saved)
            self._write_json_file(self.local_rsvps_path, rows)
        return saved, bool(existing)

    # ------------------------------------------------------------------
    # Supabase REST helpers

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(self, prefer: str | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
            headers["Content-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _rest_get(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        endpoint = self._supabase_endpoint(table)
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.get(endpoint, params=params, headers=self._supabase_headers())
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            raise RuntimeError(f"Supabase query on {table} failed: {detail or exc}") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Supabase query on {table} failed: {exc}") from exc
        except ValueError as exc:
            raise RuntimeError(f"Supabase returned malformed JSON for {table}") from exc

        if not isinstance(rows, list):
            logger.warning("Supabase %s query returned unexpected payload: %s", table, type(rows))
            return []
        return [row for row in rows if isinstance(row, dict)]

    def _rest_post(self, table: str, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        endpoint = self._supabase_endpoint(table)
        headers = self._supabase_headers("return=representation")
        headers["Content-Type"] = "application/json"
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(endpoint, params={"select": "*"}, json=record, headers=headers)
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            detail = self._extract_supabase_detail(exc.response)
            if status_code is not None and 400 <= status_code < 500:
                raise ValueError(detail or f"Supabase rejected insert into {table}") from exc
            raise RuntimeError(f"Supabase insert into {table} failed: {detail or exc}") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Supabase insert into {table} failed: {exc}") from exc

        if isinstance(rows, list):
            return [row for row in rows if isinstance(row, dict)]
        if isinstance(rows, dict):
            return [rows]
        return []

    def _rest_delete(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        endpoint = self._supabase_endpoint(table)
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.delete(
                    endpoint,
                    params=params,
                    headers=self._supabase_headers("return=representation"),
                )
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            raise RuntimeError(f"Supabase delete on {table} failed: {detail or exc}") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Supabase delete on {table} failed: {exc}") from exc
        except ValueError:
            return []

        return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            payload = payload[0]
        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None

    # ------------------------------------------------------------------
    # Local fallback

    def _local_matches(self) -> List[Dict[str, Any]]:
        data = self._read_json_file(self.local_matches_path, [])
        return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []

    def _local_rsvps(self, strict: bool = False) -> List[Dict[str, Any]]:
        data = self._read_json_file(self.local_rsvps_path, [], strict=strict)
        if strict and not isinstance(data, list):
            raise RuntimeError(f"Local data store {self.local_rsvps_path} does not hold a list")
        return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []

    def _read_json_file(self, path: Path, default: Any, strict: bool = False) -> Any:
        """Load a local JSON file.

        Readers fall back to ``default`` when the file is unreadable. Writers
        pass ``strict=True`` so a damaged file is never overwritten.
        """
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            if strict:
                raise RuntimeError(f"Local data store {path} is unreadable: {exc}") from exc
            logger.warning("Falling back to default for %s due to read error: %s", path, exc)
            return default

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True, ensure_ascii=False)
        except OSError as exc:
            raise RuntimeError(f"Failed to write local data store {path}") from exc

    @staticmethod
    def _match_summary(row: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not row:
            return {"id": None, "opponent": None, "date": None, "competition": None}
        return {
            "id": row.get("id"),
            "opponent": row.get("opponent"),
            "date": row.get("date_time") or row.get("date"),
            "competition": row.get("competition"),
        }
