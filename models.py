from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    COURSE_EXCLUSIVE = "course_exclusive"


class RoomState(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    CANCELED = "canceled"


TERMINAL_STATES = {RoomState.ENDED, RoomState.CANCELED}


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class PlatformRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class CommunityRole(str, Enum):
    OWNER = "owner"
    MODERATOR = "moderator"
    MEMBER = "member"


def normalize_platform_role(value: Optional[str]) -> PlatformRole:
    normalized = (value or "").strip().lower()
    if normalized == "administrator":
        normalized = "admin"
    try:
        return PlatformRole(normalized)
    except ValueError:
        return PlatformRole.MEMBER


class Viewer(BaseModel):
    """An already-authenticated caller."""

    uid: str
    platform_role: PlatformRole = PlatformRole.MEMBER

    @property
    def is_platform_admin(self) -> bool:
        return self.platform_role in (PlatformRole.OWNER, PlatformRole.ADMIN)


class CapabilityFlags(BaseModel):
    # Advisory only, forwarded to the meeting provider.
    allow_mic: bool = True
    allow_video: bool = True
    allow_screen_share: bool = False


class Room(BaseModel):
    id: str
    meet_id: str
    meet_name: str
    visibility: Visibility
    community_id: Optional[str] = None
    state: RoomState = RoomState.SCHEDULED
    creator_uid: str
    max_participants: int = Field(ge=1)
    scheduled_at: Optional[datetime] = None
    password_hash: Optional[str] = None
    capability_flags: CapabilityFlags = Field(default_factory=CapabilityFlags)
    invite_token_digest: Optional[str] = None
    invite_issued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    started_by: Optional[str] = None
    ended_at: Optional[datetime] = None
    source_request_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def check_visibility_invariants(self):
        if self.visibility == Visibility.PRIVATE and not self.invite_token_digest:
            raise ValueError("private rooms must carry an invite token")
        if self.visibility == Visibility.COURSE_EXCLUSIVE and not self.community_id:
            raise ValueError("course_exclusive rooms must belong to a community")
        if self.visibility == Visibility.PUBLIC and self.community_id:
            raise ValueError("public rooms cannot belong to a community")
        return self

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @property
    def is_closed(self) -> bool:
        return self.state in TERMINAL_STATES


class RoomRequest(BaseModel):
    id: str
    meet_name: str
    visibility: Visibility
    community_id: Optional[str] = None
    requester_uid: str
    status: RequestStatus = RequestStatus.PENDING
    expires_at: datetime
    max_participants: int = Field(ge=1)
    scheduled_at: Optional[datetime] = None
    password_hash: Optional[str] = None
    capability_flags: CapabilityFlags = Field(default_factory=CapabilityFlags)
    resolution_note: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    approved_room_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.status == RequestStatus.PENDING and now >= self.expires_at

    def effective_status(self, now: datetime) -> RequestStatus:
        # Expiry is reported on read, never written back by a read.
        if self.is_expired(now):
            return RequestStatus.EXPIRED
        return self.status

    def as_of(self, now: datetime) -> "RoomRequest":
        return self.model_copy(update={"status": self.effective_status(now)})
