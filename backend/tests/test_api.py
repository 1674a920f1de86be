from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from typing import Any, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from app import main as main_module
from pena_core import messages
from pena_core.models import Event, RSVPSubmission
from pena_core.rsvp_client import RSVPSession

PROVIDERS = ("store", "voting_board", "catalog", "notifier", "features")


class _RecordingNotifier:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def rsvp_received(self, record: Dict[str, Any], match: Dict[str, Any], is_update: bool) -> bool:
        self.calls.append({"record": record, "match": match, "is_update": is_update})
        return True


def _clear_providers() -> None:
    for name in PROVIDERS:
        getattr(main_module, name).cache_clear()


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY", "SUPABASE_ANON_KEY"):
        monkeypatch.delenv(name, raising=False)
    for name in ("FEATURE_RSVP", "FEATURE_CAMISETA_VOTING", "FEATURE_MERCHANDISE", "ADMIN_NOTIFY_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PENA_DATA_DIR", str(tmp_path))

    kickoff = (dt.datetime.now(dt.UTC) + dt.timedelta(days=4)).isoformat()
    (tmp_path / "matches_local.json").write_text(
        json.dumps([{"id": 42, "opponent": "Celtic", "date_time": kickoff, "competition": "Amistoso"}]),
        encoding="utf-8",
    )
    _clear_providers()
    main_module.limiter.reset()
    yield tmp_path
    main_module.app.dependency_overrides.clear()


@pytest.fixture
def notifier(data_dir: Path, monkeypatch: pytest.MonkeyPatch) -> _RecordingNotifier:
    recorder = _RecordingNotifier()
    monkeypatch.setattr(main_module, "notifier", lambda: recorder)
    return recorder


@pytest.fixture
def client(data_dir: Path) -> TestClient:
    return TestClient(main_module.app)


@pytest.fixture
def admin(client: TestClient) -> Dict[str, Any]:
    user = {"id": "admin-1", "email": "admin@example.com"}
    main_module.app.dependency_overrides[main_module.require_user] = lambda: user
    return user


def _rsvp(**overrides: Any) -> Dict[str, Any]:
    data = {"name": "Pepe Pérez", "email": "pepe@example.com", "attendees": 2, "message": "¡Vamos!"}
    data.update(overrides)
    return data


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["features"]["rsvp"] is True


def test_submit_and_update_rsvp(client: TestClient, notifier: _RecordingNotifier) -> None:
    created = client.post("/api/rsvp", params={"match": 42}, json=_rsvp())
    assert created.status_code == 200
    assert created.json() == {
        "success": True,
        "message": "Confirmación recibida correctamente",
        "totalAttendees": 2,
        "confirmedCount": 1,
    }

    updated = client.post("/api/rsvp", params={"match": 42}, json=_rsvp(attendees=4))
    assert updated.json()["message"] == "Confirmación actualizada correctamente"
    assert updated.json()["totalAttendees"] == 4

    assert [call["is_update"] for call in notifier.calls] == [False, True]
    assert notifier.calls[0]["match"]["opponent"] == "Celtic"


def test_submit_rsvp_validation_errors(client: TestClient, notifier: _RecordingNotifier) -> None:
    response = client.post("/api/rsvp", json=_rsvp(attendees=11, email="nope"))

    body = response.json()
    assert response.status_code == 400
    assert body["success"] is False
    assert body["error"] == "Formato de email inválido"
    assert {issue["field"] for issue in body["details"]} == {"email", "attendees"}
    assert notifier.calls == []


def test_submit_rsvp_unknown_match(client: TestClient, notifier: _RecordingNotifier) -> None:
    response = client.post("/api/rsvp", params={"match": 7}, json=_rsvp())

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": messages.MATCH_NOT_FOUND}


def test_submit_rsvp_is_rate_limited_per_client(client: TestClient, notifier: _RecordingNotifier) -> None:
    for attempt in range(5):
        response = client.post("/api/rsvp", json=_rsvp(email=f"fan{attempt}@example.com"))
        assert response.status_code == 200

    limited = client.post("/api/rsvp", json=_rsvp(email="late@example.com"))
    assert limited.status_code == 429
    assert limited.json() == {"success": False, "error": messages.TOO_MANY_REQUESTS}
    assert len(notifier.calls) == 5

    other = client.post("/api/rsvp", json=_rsvp(email="late@example.com"), headers={"X-Forwarded-For": "203.0.113.9"})
    assert other.status_code == 200
    assert client.get("/api/rsvp").status_code == 200


def test_bearer_token_ignored_without_supabase_auth(client: TestClient, notifier: _RecordingNotifier) -> None:
    headers = {"Authorization": "Bearer local-token"}

    created = client.post("/api/rsvp", json=_rsvp(), headers=headers)
    assert created.status_code == 200
    assert notifier.calls[0]["record"]["user_id"] is None

    found = client.get("/api/rsvp/status", params={"email": "pepe@example.com"}, headers=headers)
    assert found.status_code == 200
    assert found.json()["attendees"] == 2


def test_submit_rsvp_keeps_damaged_local_file(client: TestClient, data_dir: Path, notifier: _RecordingNotifier) -> None:
    rsvps = data_dir / "rsvps_local.json"
    rsvps.write_text('[{"id": 1, "email": "a@x.com"} ,BROKEN', encoding="utf-8")

    response = client.post("/api/rsvp", json=_rsvp(email="new@example.com"))

    assert response.status_code == 502
    assert response.json() == {"success": False, "error": messages.RSVP_SUBMIT_ERROR}
    assert rsvps.read_text(encoding="utf-8") == '[{"id": 1, "email": "a@x.com"} ,BROKEN'
    assert notifier.calls == []



def test_attendees_and_overview(client: TestClient, notifier: _RecordingNotifier) -> None:
    client.post("/api/rsvp", json=_rsvp(attendees=3))
    client.post("/api/rsvp", json=_rsvp(email="ana@example.com", attendees=1))

    attendees = client.get("/api/rsvp/attendees", params={"match": 42}).json()
    assert attendees["count"] == 4
    assert attendees["details"]["confirmedCount"] == 2
    assert attendees["details"]["averageGroupSize"] == 2.0

    overview = client.get("/api/rsvp").json()
    assert overview["currentMatch"]["id"] == 42
    assert overview["totalAttendees"] == 4
    assert overview["confirmedCount"] == 2

    missing = client.get("/api/rsvp/attendees", params={"match": 9})
    assert missing.status_code == 404

    invalid = client.get("/api/rsvp/attendees", params={"match": 0})
    assert invalid.status_code == 400
    assert invalid.json()["details"][0]["field"] == "match"


def test_rsvp_status_by_email(client: TestClient, notifier: _RecordingNotifier) -> None:
    client.post("/api/rsvp", params={"match": 42}, json=_rsvp(attendees=3, whatsappInterest=True))

    found = client.get("/api/rsvp/status", params={"match": 42, "email": "PEPE@example.com"})
    assert found.status_code == 200
    body = found.json()
    assert body["success"] is True
    assert body["status"] == "confirmed"
    assert body["attendees"] == 3
    assert body["message"] == "¡Vamos!"
    assert body["whatsapp_interest"] is True
    assert body["match"]["id"] == 42

    missing = client.get("/api/rsvp/status", params={"match": 42, "email": "ana@example.com"})
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "error": "Recurso no encontrado"}

    anonymous = client.get("/api/rsvp/status", params={"match": 42})
    assert anonymous.status_code == 401
    assert anonymous.json()["error"] == messages.UNAUTHORIZED


def test_rsvp_status_for_signed_in_user(client: TestClient, notifier: _RecordingNotifier) -> None:
    main_module.app.dependency_overrides[main_module.optional_user] = lambda: {"id": "user-7"}
    client.post("/api/rsvp", json=_rsvp(attendees=5))

    response = client.get("/api/rsvp/status")

    assert response.status_code == 200
    assert response.json()["attendees"] == 5


def test_delete_rsvp_requires_auth(client: TestClient) -> None:
    response = client.delete("/api/rsvp", params={"email": "pepe@example.com"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": messages.UNAUTHORIZED}


def test_delete_rsvp(client: TestClient, admin: Dict[str, Any], notifier: _RecordingNotifier) -> None:
    client.post("/api/rsvp", json=_rsvp())

    deleted = client.delete("/api/rsvp", params={"email": "pepe@example.com"})
    assert deleted.status_code == 200
    assert deleted.json()["message"] == messages.RSVP_DELETED

    again = client.delete("/api/rsvp", params={"email": "pepe@example.com"})
    assert again.status_code == 404
    assert again.json()["error"] == messages.RSVP_DELETE_NOT_FOUND

    no_target = client.delete("/api/rsvp")
    assert no_target.status_code == 400
    assert no_target.json()["error"] == messages.RSVP_DELETE_TARGET_REQUIRED


def test_voting_flow(client: TestClient) -> None:
    snapshot = client.get("/api/camiseta-voting").json()
    assert snapshot["voting"]["totalVotes"] == 0

    vote = {"action": "vote", "designId": "design_1", "voter": {"name": "Ana", "email": "ana@example.com"}}
    first = client.post("/api/camiseta-voting", json=vote)
    assert first.json() == {"success": True, "message": messages.VOTE_RECORDED, "totalVotes": 1}

    duplicate = client.post("/api/camiseta-voting", json=vote)
    assert duplicate.status_code == 400
    assert duplicate.json() == {"success": False, "error": messages.VOTING_ALREADY_VOTED}

    order = {
        "action": "preOrder",
        "orderData": {"name": "Ana", "email": "ana@example.com", "size": "L", "quantity": 2, "preferredDesign": "design_1"},
    }
    placed = client.post("/api/camiseta-voting", json=order).json()
    assert placed["success"] is True
    assert placed["message"] == messages.PRE_ORDER_RECORDED
    assert placed["totalOrders"] == 1

    stored = client.get("/api/camiseta-voting").json()["preOrders"]["orders"][0]
    assert stored["preferredDesign"] == "design_1"
    assert stored["status"] == "pending"


def test_voting_rejects_invalid_payload(client: TestClient) -> None:
    response = client.post(
        "/api/camiseta-voting",
        json={"action": "vote", "designId": "design_1", "voter": {"name": "A", "email": "ana@example.com"}},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "El nombre debe tener al menos 2 caracteres"


def test_voting_reports_corrupt_document(client: TestClient, data_dir: Path) -> None:
    (data_dir / "camiseta-voting.json").write_text("{oops", encoding="utf-8")

    response = client.get("/api/camiseta-voting")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": messages.VOTING_DATA_ERROR}


def test_merchandise_listing_filters(client: TestClient) -> None:
    listing = client.get("/api/merchandise").json()
    assert listing["success"] is True
    assert listing["totalItems"] == 4

    featured = client.get("/api/merchandise", params={"featured": "true", "category": "accessories"}).json()
    assert [item["id"] for item in featured["items"]] == ["merch_001"]

    everything = client.get("/api/merchandise", params={"inStock": "false"}).json()
    assert everything["totalItems"] == 5


def test_merchandise_admin_crud(client: TestClient, admin: Dict[str, Any]) -> None:
    created = client.post(
        "/api/merchandise",
        json={
            "name": "Taza",
            "description": "Taza verdiblanca",
            "price": 9.99,
            "images": ["/images/merch/taza.jpg"],
            "category": "collectibles",
        },
    )
    assert created.status_code == 200
    item = created.json()["item"]
    assert item["inStock"] is True
    assert created.json()["message"] == messages.PRODUCT_ADDED

    updated = client.put("/api/merchandise", params={"id": item["id"]}, json={"price": 12.5})
    assert updated.json()["item"]["price"] == 12.5
    assert updated.json()["item"]["name"] == "Taza"

    assert client.delete("/api/merchandise", params={"id": item["id"]}).json()["message"] == messages.PRODUCT_DELETED
    assert client.delete("/api/merchandise", params={"id": item["id"]}).status_code == 404
    assert client.put("/api/merchandise", json={"price": 1}).json()["error"] == messages.PRODUCT_ID_REQUIRED


def test_merchandise_writes_require_auth(client: TestClient) -> None:
    response = client.delete("/api/merchandise", params={"id": "merch_001"})

    assert response.status_code == 401


def test_disabled_feature_hides_routes(client: TestClient) -> None:
    main_module.features().reload({"FEATURE_MERCHANDISE": "off"})

    response = client.get("/api/merchandise")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": messages.FEATURE_DISABLED}
    assert client.get("/api/camiseta-voting").status_code == 200


class _AuthClient:
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        pass

    def __enter__(self) -> "_AuthClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def get(self, endpoint: str, headers: Dict[str, str]) -> httpx.Response:
        request = httpx.Request("GET", endpoint)
        if headers["Authorization"] == "Bearer good-token":
            return httpx.Response(200, request=request, json={"id": "user-1", "email": "ana@example.com"})
        return httpx.Response(401, request=request, json={"msg": "invalid JWT"})


class _DummyHTTPX:
    Client = _AuthClient
    HTTPError = httpx.HTTPError
    HTTPStatusError = httpx.HTTPStatusError


def test_bearer_token_verified_against_supabase(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setattr(main_module, "httpx", _DummyHTTPX)

    assert main_module.require_user("Bearer good-token")["id"] == "user-1"

    rejected = client.delete("/api/merchandise", params={"id": "merch_001"}, headers={"Authorization": "Bearer bad"})
    assert rejected.status_code == 401
    assert rejected.json()["error"] == messages.INVALID_TOKEN


@pytest.mark.asyncio
async def test_session_round_trip_against_app(data_dir: Path, notifier: _RecordingNotifier) -> None:
    transport = httpx.ASGITransport(app=main_module.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        session = RSVPSession(Event(id=42, title="Betis - Celtic"), client=http, retry_delay=0)
        await session.start()
        assert session.attendee_count == 0

        result = await session.submit_rsvp(
            RSVPSubmission(name="Test User", email="test@example.com", attendees=3, message="¡Allí estaremos!")
        )

        assert result.success is True
        assert result.message == messages.RSVP_CREATED
        assert session.attendee_count == 3
        assert session.has_existing_rsvp is True
        await session.aclose()

    assert notifier.calls[0]["record"]["email"] == "test@example.com"
