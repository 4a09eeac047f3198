import json
from typing import Optional
from urllib.parse import quote
from urllib.request import Request, urlopen

from constants import (
    MEET_BASE_URL,
    MEET_PROVIDER,
    MEET_PROVIDER_API_KEY,
    MEET_PROVIDER_URL,
    PROVIDER_TIMEOUT_SECONDS,
)
from logging_config import get_logger
from models import Room, Viewer

logger = get_logger(__name__)


class ProviderError(Exception):
    pass


class MeetingProvider:
    """Hands out the opaque URL a participant opens to enter a meeting."""

    def join_url(self, room: Room, viewer: Viewer) -> str:
        raise NotImplementedError


class StaticMeetingProvider(MeetingProvider):
    """Jitsi-style provider: the meeting lives at `{base}/{meet_id}`."""

    def __init__(self, base_url: str = MEET_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def join_url(self, room: Room, viewer: Viewer) -> str:
        return f"{self.base_url}/{quote(room.meet_id)}"


class HttpMeetingProvider(MeetingProvider):
    """Asks a remote meeting service for a per-participant join URL.

    POSTs the room and capability flags as JSON and expects `{"join_url": ...}`
    back. Every call is bounded by `timeout_seconds`.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS):
        if not base_url:
            raise ProviderError("Meeting provider URL not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def join_url(self, room: Room, viewer: Viewer) -> str:
        resp = self._post(
            f"{self.base_url}/rooms/{quote(room.meet_id)}/join",
            {
                "meet_id": room.meet_id,
                "meet_name": room.meet_name,
                "uid": viewer.uid,
                "max_participants": room.max_participants,
                "flags": room.capability_flags.model_dump(),
            },
        )
        url = resp.get("join_url")
        if not url:
            raise ProviderError(f"Unexpected provider response: {resp}")
        return url

    def _post(self, url: str, payload: dict) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers)
        try:
            with urlopen(req, timeout=self.timeout_seconds) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except Exception as exc:
            raise ProviderError(str(exc)) from exc


def build_provider(kind: Optional[str] = None) -> MeetingProvider:
    kind = (kind or MEET_PROVIDER).lower()
    if kind == "http":
        logger.info(f"Using HTTP meeting provider at {MEET_PROVIDER_URL}")
        return HttpMeetingProvider(MEET_PROVIDER_URL, MEET_PROVIDER_API_KEY, PROVIDER_TIMEOUT_SECONDS)
    logger.info(f"Using static meeting provider at {MEET_BASE_URL}")
    return StaticMeetingProvider(MEET_BASE_URL)
