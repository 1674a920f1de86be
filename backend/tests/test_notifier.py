from __future__ import annotations

from typing import Any, Dict, List

import httpx
import pytest

from pena_core import notifier as notifier_module
from pena_core.notifier import AdminNotifier

RECORD = {"name": "Pepe", "email": "pepe@example.com", "attendees": 2, "message": "", "whatsapp_interest": True}
MATCH = {"id": 42, "opponent": "Celtic", "date": "2030-05-01T19:00:00+00:00", "competition": "Amistoso"}


class _RecordingClient:
    posts: List[Dict[str, Any]] = []
    status_code = 204

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        pass

    def __enter__(self) -> "_RecordingClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def post(self, url: str, json: Any, headers: Dict[str, str]) -> httpx.Response:
        _RecordingClient.posts.append({"url": url, "json": json, "headers": headers})
        return httpx.Response(self.status_code, request=httpx.Request("POST", url))


class _DummyHTTPX:
    Client = _RecordingClient
    HTTPError = httpx.HTTPError


@pytest.fixture(autouse=True)
def recorder(monkeypatch: pytest.MonkeyPatch):
    _RecordingClient.posts = []
    _RecordingClient.status_code = 204
    monkeypatch.setattr(notifier_module, "httpx", _DummyHTTPX)
    yield _RecordingClient


def test_unconfigured_notifier_is_a_no_op(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ADMIN_NOTIFY_URL", raising=False)
    notifier = AdminNotifier()

    assert notifier.configured is False
    assert notifier.rsvp_received(RECORD, MATCH, is_update=False) is False
    assert _RecordingClient.posts == []


def test_posts_rsvp_summary() -> None:
    notifier = AdminNotifier(url="https://hooks.example.com/rsvp", token="secret")

    assert notifier.rsvp_received(RECORD, MATCH, is_update=True) is True

    post = _RecordingClient.posts[0]
    assert post["url"] == "https://hooks.example.com/rsvp"
    assert post["headers"]["Authorization"] == "Bearer secret"
    assert post["json"]["isUpdate"] is True
    assert post["json"]["whatsappInterest"] is True
    assert post["json"]["match"]["opponent"] == "Celtic"


def test_failed_delivery_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    _RecordingClient.status_code = 503
    notifier = AdminNotifier(url="https://hooks.example.com/rsvp", token="")

    with caplog.at_level("WARNING", logger="pena_core.notifier"):
        assert notifier.rsvp_received(RECORD, None, is_update=False) is False

    assert "pepe@example.com" in caplog.text
    assert "Authorization" not in _RecordingClient.posts[0]["headers"]
