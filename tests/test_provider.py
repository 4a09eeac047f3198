import json
import socket
from datetime import datetime, timezone
from urllib.error import URLError

import pytest

import provider as provider_module
from models import CapabilityFlags, Room, Viewer, Visibility
from provider import HttpMeetingProvider, ProviderError, StaticMeetingProvider, build_provider

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

ROOM = Room(
    id="r1",
    meet_id="K7PQ2M9X",
    meet_name="Office hours",
    visibility=Visibility.PUBLIC,
    creator_uid="ada",
    max_participants=12,
    capability_flags=CapabilityFlags(allow_screen_share=True),
    created_at=NOW,
    updated_at=NOW,
)
VIEWER = Viewer(uid="mia")


class FakeResponse:
    def __init__(self, body):
        self.body = body

    def read(self):
        return json.dumps(self.body).encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_static_provider():
    provider = StaticMeetingProvider("https://meet.example.org/")
    assert provider.join_url(ROOM, VIEWER) == "https://meet.example.org/K7PQ2M9X"


def test_http_provider_posts_room_and_flags(monkeypatch):
    captured = {}

    def fake_urlopen(req, timeout):
        captured["url"] = req.full_url
        captured["timeout"] = timeout
        captured["auth"] = req.get_header("Authorization")
        captured["body"] = json.loads(req.data)
        return FakeResponse({"join_url": "https://meet.example.org/K7PQ2M9X?jwt=abc"})

    monkeypatch.setattr(provider_module, "urlopen", fake_urlopen)
    provider = HttpMeetingProvider("https://provider.example.org/api/", api_key="k3y", timeout_seconds=2.5)

    assert provider.join_url(ROOM, VIEWER) == "https://meet.example.org/K7PQ2M9X?jwt=abc"
    assert captured["url"] == "https://provider.example.org/api/rooms/K7PQ2M9X/join"
    assert captured["timeout"] == 2.5
    assert captured["auth"] == "Bearer k3y"
    assert captured["body"]["uid"] == "mia"
    assert captured["body"]["flags"] == {"allow_mic": True, "allow_video": True, "allow_screen_share": True}


@pytest.mark.parametrize("error", [socket.timeout("timed out"), URLError("connection refused"), ValueError("bad json")])
def test_http_provider_failures_become_provider_errors(monkeypatch, error):
    def fake_urlopen(req, timeout):
        raise error

    monkeypatch.setattr(provider_module, "urlopen", fake_urlopen)
    with pytest.raises(ProviderError):
        HttpMeetingProvider("https://provider.example.org").join_url(ROOM, VIEWER)


def test_http_provider_requires_join_url(monkeypatch):
    monkeypatch.setattr(provider_module, "urlopen", lambda req, timeout: FakeResponse({"status": "ok"}))
    with pytest.raises(ProviderError):
        HttpMeetingProvider("https://provider.example.org").join_url(ROOM, VIEWER)


def test_http_provider_needs_url():
    with pytest.raises(ProviderError):
        HttpMeetingProvider("")


def test_build_provider(monkeypatch):
    assert isinstance(build_provider("static"), StaticMeetingProvider)
    monkeypatch.setattr(provider_module, "MEET_PROVIDER_URL", "https://provider.example.org")
    assert isinstance(build_provider("HTTP"), HttpMeetingProvider)
