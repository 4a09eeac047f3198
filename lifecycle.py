from datetime import datetime
from typing import Callable

from backend import RedisBackend
from errors import InvalidTransition, NotFound, Unauthorized
from invites import InviteTokenIssuer
from logging_config import get_logger
from models import Room, RoomState, Viewer, Visibility
from policy import VisibilityPolicy

logger = get_logger(__name__)

# (from, to) pairs; everything else is an InvalidTransition.
TRANSITIONS = {
    (RoomState.SCHEDULED, RoomState.LIVE),
    (RoomState.SCHEDULED, RoomState.CANCELED),
    (RoomState.LIVE, RoomState.ENDED),
}

EVENT_FOR_STATE = {
    RoomState.LIVE: "start_room",
    RoomState.ENDED: "end_room",
    RoomState.CANCELED: "cancel_room",
}


class RoomLifecycleController:
    def __init__(
        self,
        backend: RedisBackend,
        policy: VisibilityPolicy,
        issuer: InviteTokenIssuer,
        clock: Callable[[], datetime],
    ):
        self.backend = backend
        self.policy = policy
        self.issuer = issuer
        self.clock = clock

    def _load_managed(self, viewer: Viewer, room_id: str, action: str) -> Room:
        room = self.backend.get_room(room_id)
        if room is None:
            logger.warning(f"{action} failed: Room {room_id} not found")
            raise NotFound("Room not found.")
        if not self.policy.can_manage(viewer, room):
            logger.warning(f"{action} failed: {viewer.uid} cannot manage room {room_id}")
            raise Unauthorized(f"You are not allowed to {action} this room.")
        return room

    def start(self, viewer: Viewer, room_id: str) -> Room:
        self._load_managed(viewer, room_id, "start")
        return self._transition(viewer, room_id, RoomState.LIVE)

    def start_for_join(self, viewer: Viewer, room_id: str) -> Room:
        """Start a scheduled room on behalf of an authorized joiner.

        A room that someone else already started is simply returned.
        """
        return self._transition(viewer, room_id, RoomState.LIVE, source="join", any_starter=True)

    def end(self, viewer: Viewer, room_id: str) -> Room:
        self._load_managed(viewer, room_id, "end")
        return self._transition(viewer, room_id, RoomState.ENDED)

    def cancel(self, viewer: Viewer, room_id: str) -> Room:
        self._load_managed(viewer, room_id, "cancel")
        return self._transition(viewer, room_id, RoomState.CANCELED)

    def rotate_invite(self, viewer: Viewer, room_id: str) -> str:
        room = self._load_managed(viewer, room_id, "rotate the invite of")
        token = self.issuer.rotate(room_id)
        self.backend.record_event(room_id, viewer.uid, "rotate_invite", self.clock())
        return self.issuer.build_link(room.meet_id, token)

    def _transition(self, viewer: Viewer, room_id: str, target: RoomState, source: str = "explicit", any_starter: bool = False) -> Room:
        """Move a room to `target` with a single conditional write.

        The room record is watched, so of two concurrent callers exactly one
        commits the change and the other re-reads the new state.
        """
        logger.info(f"Transition request for room {room_id} to {target.value} by {viewer.uid} ({source})")

        def txn(pipe):
            room = self.backend.read_room(pipe, room_id)
            if room is None:
                raise NotFound("Room not found.")
            if room.state == target:
                if target == RoomState.LIVE and not any_starter and room.started_by != viewer.uid:
                    raise InvalidTransition(target.value, room.state.value)
                return room, False
            if (room.state, target) not in TRANSITIONS:
                raise InvalidTransition(target.value, room.state.value)
            now = self.clock()
            changes = {"state": target, "updated_at": now}
            if target == RoomState.LIVE:
                changes.update(started_at=now, started_by=viewer.uid)
            else:
                changes["ended_at"] = now
            updated = room.model_copy(update=changes)
            pipe.multi()
            self.backend.write_room(pipe, updated)
            if updated.is_closed:
                # Closing drops every slot; the invite stops validating with the state change.
                self.backend.clear_participants(pipe, room_id)
            return updated, True

        try:
            room, changed = self.backend.atomic(txn, self.backend.room_key(room_id))
        except InvalidTransition as e:
            logger.warning(f"Transition refused for room {room_id}: {e.message}")
            raise
        if changed:
            meta = {"source": source}
            if room.visibility == Visibility.PRIVATE and room.is_closed:
                meta["invite_revoked"] = True
            self.backend.record_event(room_id, viewer.uid, EVENT_FOR_STATE[target], self.clock(), meta)
            logger.info(f"Room {room_id} moved to {target.value} by {viewer.uid}")
        else:
            logger.info(f"Room {room_id} already {target.value}; nothing to do")
        return room

    def list_events(self, viewer: Viewer, room_id: str) -> list[dict]:
        """Moderation history of a room, newest first. Managers only."""
        self._load_managed(viewer, room_id, "view the history of")
        return self.backend.list_events(room_id)
