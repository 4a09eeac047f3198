from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from backend import RedisBackend
from errors import (
    CREDENTIALS_MESSAGE,
    InvalidInviteToken,
    InvalidPassword,
    InvalidTransition,
    NotCommunityMember,
    NotFound,
    ProviderUnavailable,
    RoomClosed,
    RoomFull,
    RoomNotStarted,
    Unauthorized,
)
from invites import InviteTokenIssuer
from lifecycle import RoomLifecycleController
from logging_config import get_logger
from models import Room, RoomState, Viewer, Visibility
from policy import VisibilityPolicy
from provider import MeetingProvider, ProviderError
from security import verify_password

logger = get_logger(__name__)


@dataclass
class JoinResult:
    join_url: str
    room: Room
    already_joined: bool = False


@dataclass
class Session:
    room: Room
    active_participants: int
    participant_status: str
    can_manage: bool


class JoinAuthorizer:
    """Decides whether a caller may obtain a join URL for a room.

    The order of checks: existence, start (or refusal to start), closed state,
    visibility gate, atomic capacity reservation, provider call.
    """

    def __init__(
        self,
        backend: RedisBackend,
        policy: VisibilityPolicy,
        lifecycle: RoomLifecycleController,
        issuer: InviteTokenIssuer,
        provider: MeetingProvider,
        clock: Callable[[], datetime],
    ):
        self.backend = backend
        self.policy = policy
        self.lifecycle = lifecycle
        self.issuer = issuer
        self.provider = provider
        self.clock = clock

    def _start_time_reached(self, room: Room) -> bool:
        return room.scheduled_at is None or room.scheduled_at <= self.clock()

    def join(self, caller: Viewer, room_id: str, invite_token: Optional[str] = None, password: Optional[str] = None) -> JoinResult:
        logger.info(f"Join room request for {room_id} from {caller.uid}")
        room = self.backend.get_room(room_id)
        if room is None:
            logger.warning(f"Join room failed: Room {room_id} not found")
            raise NotFound("Room not found.")

        manager = self.policy.can_manage(caller, room)
        if room.state == RoomState.SCHEDULED and not manager and not self._start_time_reached(room):
            logger.warning(f"Join room failed: Room {room_id} has not started")
            raise RoomNotStarted("This room has not started yet.")
        if room.is_closed:
            logger.warning(f"Join room failed: Room {room_id} is {room.state.value}")
            raise RoomClosed("This room is no longer active.")

        self._check_access(caller, room, manager, invite_token, password)

        if room.state == RoomState.SCHEDULED:
            try:
                room = self.lifecycle.start_for_join(caller, room_id)
            except InvalidTransition as e:
                # Canceled between our read and the start.
                raise RoomClosed("This room is no longer active.") from e

        room, newly_reserved = self._reserve(caller, room_id)
        if not newly_reserved:
            cached = self.backend.get_join_url(room_id, caller.uid)
            if cached:
                logger.info(f"Join room repeated for {room_id} by {caller.uid}; returning issued URL")
                return JoinResult(join_url=cached, room=room, already_joined=True)

        try:
            join_url = self.provider.join_url(room, caller)
        except ProviderError as e:
            logger.error(f"Meeting provider failed for room {room_id}: {e}")
            if newly_reserved:
                self.backend.remove_participant(room_id, caller.uid)
            raise ProviderUnavailable("Meeting provider is unavailable. Please retry.") from e
        self._record_join_url(caller, room_id, join_url)
        logger.info(f"Join room successful for {room_id} by {caller.uid}")
        return JoinResult(join_url=join_url, room=room, already_joined=not newly_reserved)

    def _check_access(self, caller: Viewer, room: Room, manager: bool, invite_token: Optional[str], password: Optional[str]):
        if manager or room.visibility == Visibility.PUBLIC:
            return
        if room.visibility == Visibility.COURSE_EXCLUSIVE:
            if not self.policy.is_member(caller, room.community_id):
                logger.warning(f"Join room failed: {caller.uid} is not a member of community {room.community_id}")
                raise NotCommunityMember("You are not allowed to join this course room.")
            return

        # Both checks always run; the surface message never says which failed.
        token_ok = self.issuer.matches(room, invite_token)
        password_ok = True
        if room.has_password:
            password_ok = verify_password(password, room.password_hash)
        if token_ok and password_ok:
            return

        required = ["invite_token"] + (["password"] if room.has_password else [])
        missing = [name for name, value in (("invite_token", invite_token), ("password", password)) if name in required and not value]
        details = {"required_credentials": required, "missing_credentials": missing} if missing else {}
        logger.warning(f"Join room failed: credentials rejected for room {room.id} from {caller.uid}")
        if not token_ok:
            raise InvalidInviteToken(CREDENTIALS_MESSAGE, details)
        raise InvalidPassword(CREDENTIALS_MESSAGE, details)

    def _reserve(self, caller: Viewer, room_id: str) -> tuple[Room, bool]:
        """Check-and-reserve a participant slot in one conditional write."""

        def txn(pipe):
            room = self.backend.read_room(pipe, room_id)
            if room is None:
                raise NotFound("Room not found.")
            if room.is_closed:
                raise RoomClosed("This room is no longer active.")
            if room.state != RoomState.LIVE:
                raise RoomNotStarted("This room has not started yet.")
            if self.backend.is_participant(pipe, room_id, caller.uid):
                return room, False
            count = self.backend.participant_count(pipe, room_id)
            if count >= room.max_participants:
                logger.warning(f"Join room failed: Room {room_id} is full ({count}/{room.max_participants})")
                raise RoomFull("Room is full.")
            pipe.multi()
            self.backend.add_participant(pipe, room_id, caller.uid)
            return room, True

        return self.backend.atomic(txn, self.backend.room_key(room_id), self.backend.participants_key(room_id))

    def _record_join_url(self, caller: Viewer, room_id: str, join_url: str):
        """Remember the issued URL unless the room closed or the slot was released meanwhile."""

        def txn(pipe):
            room = self.backend.read_room(pipe, room_id)
            if room is None or room.is_closed:
                return False
            if not self.backend.is_participant(pipe, room_id, caller.uid):
                return True
            pipe.multi()
            self.backend.set_join_url(pipe, room_id, caller.uid, join_url)
            return True

        if not self.backend.atomic(txn, self.backend.room_key(room_id), self.backend.participants_key(room_id)):
            logger.warning(f"Join room failed: Room {room_id} closed while {caller.uid} was joining")
            raise RoomClosed("This room is no longer active.")

    def leave(self, caller: Viewer, room_id: str) -> bool:
        """Release the caller's slot. Safe to call any number of times."""
        if self.backend.get_room(room_id) is None:
            raise NotFound("Room not found.")
        released = self.backend.remove_participant(room_id, caller.uid)
        logger.info(f"Leave room {room_id} by {caller.uid}: released={released}")
        return released

    def session(self, caller: Viewer, room_id: str) -> Session:
        room = self.backend.get_room(room_id)
        if room is None:
            raise NotFound("Room not found.")
        manager = self.policy.can_manage(caller, room)
        participating = self.backend.is_participant(self.backend.redis_client, room_id, caller.uid)
        allowed = manager or participating or room.visibility == Visibility.PUBLIC
        if not allowed and room.visibility == Visibility.COURSE_EXCLUSIVE:
            allowed = self.policy.is_member(caller, room.community_id)
        if not allowed:
            raise Unauthorized("You are not allowed to view this room session.")
        return Session(
            room=room,
            active_participants=self.backend.participant_count(self.backend.redis_client, room_id),
            participant_status="active" if participating else "none",
            can_manage=manager,
        )
