from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from models import CapabilityFlags, Room, RoomState, Visibility


class CreateRoomRequest(BaseModel):
    meet_name: str = Field(min_length=1, max_length=120)
    visibility: Visibility = Visibility.PUBLIC
    community_id: Optional[str] = None
    max_participants: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    password: Optional[str] = Field(default=None, max_length=72)
    flags: CapabilityFlags = Field(default_factory=CapabilityFlags)

class RoomResponse(BaseModel):
    id: str
    meet_id: str
    meet_name: str
    visibility: Visibility
    community_id: Optional[str]
    state: RoomState
    creator_uid: str
    max_participants: int
    scheduled_at: Optional[datetime]
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    has_password: bool
    flags: CapabilityFlags
    source_request_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    can_manage: bool = False
    active_participants: Optional[int] = None

    @classmethod
    def from_room(cls, room: Room, can_manage: bool = False, active_participants: Optional[int] = None) -> "RoomResponse":
        return cls(
            id=room.id,
            meet_id=room.meet_id,
            meet_name=room.meet_name,
            visibility=room.visibility,
            community_id=room.community_id,
            state=room.state,
            creator_uid=room.creator_uid,
            max_participants=room.max_participants,
            scheduled_at=room.scheduled_at,
            started_at=room.started_at,
            ended_at=room.ended_at,
            has_password=room.has_password,
            flags=room.capability_flags,
            source_request_id=room.source_request_id,
            created_at=room.created_at,
            updated_at=room.updated_at,
            can_manage=can_manage,
            active_participants=active_participants,
        )

class CreateRoomResponse(BaseModel):
    room: RoomResponse
    invite_link: Optional[str] = None

class RoomListResponse(BaseModel):
    rooms: list[RoomResponse]
    page: int
    page_size: int
    count: int

class JoinRoomRequest(BaseModel):
    invite_token: Optional[str] = Field(default=None, max_length=512)
    password: Optional[str] = Field(default=None, max_length=72)

class JoinRoomResponse(BaseModel):
    join_url: str
    room_id: str
    meet_id: str
    state: RoomState
    already_joined: bool

class LeaveRoomResponse(BaseModel):
    left: bool
    room_id: str
    state: RoomState

class SessionResponse(BaseModel):
    room_id: str
    meet_id: str
    state: RoomState
    active_participants: int
    participant_status: str
    can_manage: bool
    ended_at: Optional[datetime]
    updated_at: datetime

class InviteResponse(BaseModel):
    invite_link: str

class RoomEvent(BaseModel):
    room_id: Optional[str]
    actor_uid: str
    action: str
    meta: dict
    created_at: str

class ContextRightsResponse(BaseModel):
    can_create_directly: bool
    allowed_visibilities: list[Visibility]

class CommunityCapabilities(BaseModel):
    id: str
    name: str
    code: Optional[str]
    membership: Optional[str]
    is_moderator: bool
    can_create_here: bool
    can_request_here: bool
    allowed_visibilities: list[Visibility]

class ViewerSummary(BaseModel):
    uid: str
    platform_role: str
    can_create_public_rooms: bool
    can_review_requests: bool

class BootstrapResponse(BaseModel):
    viewer: ViewerSummary
    platform: ContextRightsResponse
    communities: list[CommunityCapabilities]
    pending_requests_to_review: int
