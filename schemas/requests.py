from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from models import CapabilityFlags, RequestStatus, RoomRequest, Visibility
from schemas.rooms import RoomResponse


class SubmitRoomRequest(BaseModel):
    meet_name: str = Field(min_length=1, max_length=120)
    visibility: Visibility
    community_id: Optional[str] = None
    max_participants: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    password: Optional[str] = Field(default=None, max_length=72)
    flags: CapabilityFlags = Field(default_factory=CapabilityFlags)

class ResolveRequest(BaseModel):
    note: Optional[str] = Field(default=None, max_length=800)

class RoomRequestResponse(BaseModel):
    id: str
    meet_name: str
    visibility: Visibility
    community_id: Optional[str]
    requester_uid: str
    status: RequestStatus
    expires_at: datetime
    max_participants: int
    scheduled_at: Optional[datetime]
    has_password: bool
    flags: CapabilityFlags
    resolution_note: Optional[str]
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    approved_room_id: Optional[str]
    created_at: datetime

    @classmethod
    def from_request(cls, request: RoomRequest) -> "RoomRequestResponse":
        return cls(
            id=request.id,
            meet_name=request.meet_name,
            visibility=request.visibility,
            community_id=request.community_id,
            requester_uid=request.requester_uid,
            status=request.status,
            expires_at=request.expires_at,
            max_participants=request.max_participants,
            scheduled_at=request.scheduled_at,
            has_password=bool(request.password_hash),
            flags=request.capability_flags,
            resolution_note=request.resolution_note,
            resolved_by=request.resolved_by,
            resolved_at=request.resolved_at,
            approved_room_id=request.approved_room_id,
            created_at=request.created_at,
        )

class RoomRequestListResponse(BaseModel):
    requests: list[RoomRequestResponse]
    count: int

class ApproveRequestResponse(BaseModel):
    room: RoomResponse
    invite_link: Optional[str] = None
