from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlencode

from backend import RedisBackend
from constants import PUBLIC_BASE_URL
from errors import NotFound, RoomClosed, ValidationFailed
from logging_config import get_logger
from models import Room, Visibility
from security import digests_match, new_invite_token, token_digest

logger = get_logger(__name__)


class InviteTokenIssuer:
    """Mints and checks the single active invite token of a private room.

    Only the SHA-256 digest is stored, on the room record itself. A token stops
    validating as soon as the room is ended or canceled, or when it is rotated.
    """

    def __init__(self, backend: RedisBackend, clock: Callable[[], datetime], base_url: str = PUBLIC_BASE_URL):
        self.backend = backend
        self.clock = clock
        self.base_url = base_url.rstrip("/")

    @staticmethod
    def mint() -> tuple[str, str]:
        token = new_invite_token()
        return token, token_digest(token)

    def build_link(self, meet_id: str, token: str) -> str:
        return f"{self.base_url}/rooms?{urlencode({'room': meet_id, 'invite': token})}"

    def issue(self, room_id: str) -> str:
        """Bind a fresh token to `room_id`, replacing any previous one."""
        token, digest = self.mint()
        key = self.backend.room_key(room_id)

        def txn(pipe):
            room = self.backend.read_room(pipe, room_id)
            if room is None:
                raise NotFound("Room not found.")
            if room.visibility != Visibility.PRIVATE:
                raise ValidationFailed("Invite tokens exist only for private rooms.")
            if room.is_closed:
                raise RoomClosed("This room is no longer active.")
            now = self.clock()
            updated = room.model_copy(update={"invite_token_digest": digest, "invite_issued_at": now, "updated_at": now})
            pipe.multi()
            self.backend.write_room(pipe, updated)
            return updated

        self.backend.atomic(txn, key)
        logger.info(f"Invite token issued for room {room_id}")
        return token

    def rotate(self, room_id: str) -> str:
        token = self.issue(room_id)
        logger.info(f"Invite token rotated for room {room_id}; previous token revoked")
        return token

    def validate(self, room_id: str, token: Optional[str]) -> bool:
        room = self.backend.get_room(room_id)
        return room is not None and self.matches(room, token)

    def matches(self, room: Room, token: Optional[str]) -> bool:
        if room.is_closed or not token:
            return False
        return digests_match(token_digest(token), room.invite_token_digest)
