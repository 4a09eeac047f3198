import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from backend import RedisBackend
from communities import CommunityCapabilityProvider
from constants import DEFAULT_MAX_PARTICIPANTS, MAX_PARTICIPANTS_LIMIT, MIN_PASSWORD_LENGTH, SCHEDULE_GRACE_SECONDS
from errors import MeetIdUnavailable, NotFound, Unauthorized, ValidationFailed
from invites import InviteTokenIssuer
from logging_config import get_logger
from models import CapabilityFlags, Room, RoomState, Viewer, Visibility
from policy import VisibilityPolicy
from security import generate_meet_id, hash_password

logger = get_logger(__name__)

MEET_ID_ATTEMPTS = 24
MAX_MEET_NAME_LENGTH = 120
MAX_PAGE_SIZE = 50

STATE_ORDER = {
    RoomState.LIVE: 0,
    RoomState.SCHEDULED: 1,
    RoomState.ENDED: 2,
    RoomState.CANCELED: 3,
}


@dataclass
class RoomDraft:
    """Validated input for a room, shared by direct creation and requests."""

    meet_name: str
    visibility: Visibility
    community_id: Optional[str] = None
    max_participants: int = DEFAULT_MAX_PARTICIPANTS
    scheduled_at: Optional[datetime] = None
    password: Optional[str] = None
    capability_flags: CapabilityFlags = field(default_factory=CapabilityFlags)


class RoomRegistry:
    def __init__(
        self,
        backend: RedisBackend,
        policy: VisibilityPolicy,
        communities: CommunityCapabilityProvider,
        issuer: InviteTokenIssuer,
        clock: Callable[[], datetime],
    ):
        self.backend = backend
        self.policy = policy
        self.communities = communities
        self.issuer = issuer
        self.clock = clock

    def validate_draft(self, draft: RoomDraft) -> RoomDraft:
        meet_name = (draft.meet_name or "").strip()
        if not meet_name or len(meet_name) > MAX_MEET_NAME_LENGTH:
            raise ValidationFailed(f"Meet name must be 1 to {MAX_MEET_NAME_LENGTH} characters.")
        if draft.max_participants < 1 or draft.max_participants > MAX_PARTICIPANTS_LIMIT:
            raise ValidationFailed(f"Maximum participants must be between 1 and {MAX_PARTICIPANTS_LIMIT}.")
        password = draft.password or None
        if password and draft.visibility != Visibility.PRIVATE:
            raise ValidationFailed("Password is allowed only for private rooms.")
        if password and len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Room password must be at least {MIN_PASSWORD_LENGTH} characters.")
        scheduled_at = draft.scheduled_at
        if scheduled_at is not None:
            if scheduled_at.tzinfo is None:
                raise ValidationFailed("Scheduled time must include a timezone.")
            if scheduled_at < self.clock() - timedelta(seconds=SCHEDULE_GRACE_SECONDS):
                raise ValidationFailed("Scheduled time cannot be in the past.")
        community_id = draft.community_id or None
        if community_id and self.communities.get_community(community_id) is None:
            raise NotFound("Selected course community was not found.")
        return replace(draft, meet_name=meet_name, password=password, community_id=community_id)

    def pick_meet_id(self, pipe) -> str:
        for _ in range(MEET_ID_ATTEMPTS):
            meet_id = generate_meet_id()
            if not self.backend.meet_id_taken(pipe, meet_id):
                return meet_id
        logger.error(f"No free meet id after {MEET_ID_ATTEMPTS} attempts")
        raise MeetIdUnavailable("Unable to generate a unique meet ID. Please retry.")

    def build_room(
        self,
        pipe,
        *,
        meet_name: str,
        visibility: Visibility,
        community_id: Optional[str],
        creator_uid: str,
        max_participants: int,
        scheduled_at: Optional[datetime],
        password_hash: Optional[str],
        capability_flags: CapabilityFlags,
        source_request_id: Optional[str] = None,
    ) -> tuple[Room, Optional[str]]:
        """Assemble a new scheduled room inside a watching transaction.

        Must be called before `pipe.multi()` since it reads the meet id index.
        Returns the room and, for private rooms, the plaintext invite token.
        """
        now = self.clock()
        token = digest = None
        if visibility == Visibility.PRIVATE:
            token, digest = self.issuer.mint()
        room = Room(
            id=uuid.uuid4().hex,
            meet_id=self.pick_meet_id(pipe),
            meet_name=meet_name,
            visibility=visibility,
            community_id=community_id,
            state=RoomState.SCHEDULED,
            creator_uid=creator_uid,
            max_participants=max_participants,
            scheduled_at=scheduled_at,
            password_hash=password_hash,
            capability_flags=capability_flags,
            invite_token_digest=digest,
            invite_issued_at=now if digest else None,
            source_request_id=source_request_id,
            created_at=now,
            updated_at=now,
        )
        return room, token

    def create(self, viewer: Viewer, draft: RoomDraft) -> tuple[Room, Optional[str]]:
        """Direct-create path. Returns the room and its invite link, if private."""
        logger.info(f"Room creation request from {viewer.uid}: name={draft.meet_name!r}, visibility={draft.visibility.value}")
        rights = self.policy.resolve(viewer, draft.visibility, draft.community_id or None)
        draft = self.validate_draft(draft)
        if not rights.can_create_directly:
            logger.warning(f"Room creation refused for {viewer.uid}: no direct rights in {draft.community_id or 'platform'}")
            raise Unauthorized("You cannot create this room directly. Submit a room request instead.")
        password_hash = hash_password(draft.password) if draft.password else None

        def txn(pipe):
            room, token = self.build_room(
                pipe,
                meet_name=draft.meet_name,
                visibility=draft.visibility,
                community_id=draft.community_id,
                creator_uid=viewer.uid,
                max_participants=draft.max_participants,
                scheduled_at=draft.scheduled_at,
                password_hash=password_hash,
                capability_flags=draft.capability_flags,
            )
            pipe.multi()
            self.backend.write_room(pipe, room, is_new=True)
            return room, token

        room, token = self.backend.atomic(txn, self.backend.meet_ids_key)
        self.backend.record_event(room.id, viewer.uid, "create_room", self.clock(), {"visibility": room.visibility.value})
        logger.info(f"Room {room.id} created successfully: meet_id={room.meet_id}, max_participants={room.max_participants}")
        return room, self.issuer.build_link(room.meet_id, token) if token else None

    def get(self, room_id: str) -> Room:
        room = self.backend.get_room(room_id)
        if room is None:
            logger.warning(f"Room {room_id} not found")
            raise NotFound("Room not found.")
        return room

    def find_by_meet_id(self, viewer: Viewer, meet_id: str) -> Room:
        room_id = self.backend.get_room_id_by_meet_id((meet_id or "").strip().upper())
        room = self.backend.get_room(room_id) if room_id else None
        # Closed rooms and rooms the viewer cannot reach look the same as missing ones.
        if room is None or room.is_closed:
            raise NotFound("Room not found.")
        if room.visibility != Visibility.PRIVATE and not self.policy.can_see(viewer, room):
            raise NotFound("Room not found.")
        return room

    def list_rooms(
        self,
        viewer: Viewer,
        context: str = "all",
        community_id: Optional[str] = None,
        state: Optional[RoomState] = None,
        mine_only: bool = False,
        page: int = 1,
        page_size: int = 18,
    ) -> list[Room]:
        if context == "community" and not community_id:
            raise ValidationFailed("community_id is required for community context.")
        rooms = self.backend.get_rooms(self.backend.list_room_ids(community_id if context == "community" else None))
        visible = []
        for room in rooms:
            if context == "platform" and room.community_id:
                continue
            if state is not None and room.state != state:
                continue
            if mine_only and room.creator_uid != viewer.uid:
                continue
            if not self.policy.can_see(viewer, room):
                continue
            visible.append(room)
        visible.sort(key=lambda r: (r.scheduled_at or r.created_at).timestamp(), reverse=True)
        visible.sort(key=lambda r: STATE_ORDER[r.state])
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        offset = (max(page, 1) - 1) * page_size
        logger.debug(f"Listing rooms for {viewer.uid}: context={context}, {len(visible)} visible")
        return visible[offset:offset + page_size]
