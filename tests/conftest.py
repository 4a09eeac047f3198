import threading
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import fakeredis
import pytest

import security
from backend import RedisBackend
from communities import RedisCommunityDirectory
from models import CommunityRole, PlatformRole, Viewer, Visibility
from provider import MeetingProvider, ProviderError
from registry import RoomDraft
from services import build_services

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingProvider(MeetingProvider):
    """Meeting provider double that counts calls and can be told to fail."""

    def __init__(self):
        self.calls = []
        self.fail = False
        self._lock = threading.Lock()

    def join_url(self, room, viewer):
        with self._lock:
            self.calls.append((room.id, viewer.uid))
        if self.fail:
            raise ProviderError("timed out")
        return f"https://meet.test/{room.meet_id}?u={viewer.uid}"


def run_concurrently(count, target):
    """Call `target(i)` from `count` threads released together."""
    barrier = threading.Barrier(count)
    results, errors = [], []
    lock = threading.Lock()

    def worker(i):
        barrier.wait()
        try:
            result = target(i)
        except Exception as e:
            with lock:
                errors.append(e)
        else:
            with lock:
                results.append(result)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, errors


def invite_token_from(link: str) -> str:
    return parse_qs(urlparse(link).query)["invite"][0]


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(security, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def redis_client():
    server = fakeredis.FakeServer()
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def backend(redis_client):
    return RedisBackend(client=redis_client)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def directory(backend):
    directory = RedisCommunityDirectory(backend)
    directory.add_community("c1", "Algorithms", code="CS101")
    directory.add_community("c2", "Databases", code="CS202")
    directory.set_role("c1", "olivia", CommunityRole.OWNER)
    directory.set_role("c1", "mo", CommunityRole.MODERATOR)
    directory.set_role("c1", "mia", CommunityRole.MEMBER)
    directory.set_role("c1", "max", CommunityRole.MEMBER)
    directory.set_role("c2", "dora", CommunityRole.MODERATOR)
    return directory


@pytest.fixture
def services(backend, provider, directory, clock):
    return build_services(backend, provider=provider, communities=directory, clock=clock)


@pytest.fixture
def admin():
    return Viewer(uid="ada", platform_role=PlatformRole.ADMIN)


@pytest.fixture
def platform_owner():
    return Viewer(uid="otto", platform_role=PlatformRole.OWNER)


@pytest.fixture
def community_owner():
    return Viewer(uid="olivia")


@pytest.fixture
def moderator():
    return Viewer(uid="mo")


@pytest.fixture
def member():
    return Viewer(uid="mia")


@pytest.fixture
def other_member():
    return Viewer(uid="max")


@pytest.fixture
def outsider():
    return Viewer(uid="sam")


@pytest.fixture
def make_room(services, admin):
    """Create a room directly; returns (room, invite_token or None)."""

    def _make(creator=None, **fields):
        fields.setdefault("meet_name", "Weekly sync")
        fields.setdefault("visibility", Visibility.PUBLIC)
        room, link = services.registry.create(creator or admin, RoomDraft(**fields))
        return room, invite_token_from(link) if link else None

    return _make
