"""Who may create, request, review, manage and enter rooms.

The decision functions at module level are pure and take the viewer's
community role as an argument. `VisibilityPolicy` binds them to a
CommunityCapabilityProvider for callers that only hold identifiers.
"""
from dataclasses import dataclass, field
from typing import Optional

from communities import CommunityCapabilityProvider
from errors import InvalidVisibilityForContext
from logging_config import get_logger
from models import CommunityRole, Room, Viewer, Visibility

logger = get_logger(__name__)

COMMUNITY_MANAGER_ROLES = {CommunityRole.OWNER, CommunityRole.MODERATOR}
COMMUNITY_MEMBER_ROLES = {CommunityRole.OWNER, CommunityRole.MODERATOR, CommunityRole.MEMBER}

PLATFORM_VISIBILITIES = [Visibility.PUBLIC, Visibility.PRIVATE]
COMMUNITY_VISIBILITIES = [Visibility.COURSE_EXCLUSIVE, Visibility.PRIVATE]


@dataclass
class ContextRights:
    can_create_directly: bool
    allowed_visibilities: list = field(default_factory=list)

    @property
    def must_request(self) -> bool:
        return not self.can_create_directly


def decide(viewer: Viewer, community_id: Optional[str], community_role: Optional[CommunityRole]) -> ContextRights:
    """Rights of `viewer` in the platform-wide context or in one community."""
    if not community_id:
        return ContextRights(
            can_create_directly=viewer.is_platform_admin,
            allowed_visibilities=list(PLATFORM_VISIBILITIES),
        )
    return ContextRights(
        can_create_directly=viewer.is_platform_admin or community_role in COMMUNITY_MANAGER_ROLES,
        allowed_visibilities=list(COMMUNITY_VISIBILITIES),
    )


def check_visibility(visibility: Visibility, community_id: Optional[str]):
    """Fail unless `visibility` is eligible in the context `community_id` resolves to."""
    if visibility == Visibility.PUBLIC and community_id:
        raise InvalidVisibilityForContext("Public rooms cannot target a community.")
    if visibility == Visibility.COURSE_EXCLUSIVE and not community_id:
        raise InvalidVisibilityForContext("Course-exclusive rooms require a course community.")


def can_manage_room(viewer: Viewer, room: Room, community_role: Optional[CommunityRole]) -> bool:
    if viewer.is_platform_admin or viewer.uid == room.creator_uid:
        return True
    return bool(room.community_id) and community_role in COMMUNITY_MANAGER_ROLES


def can_review_scope(viewer: Viewer, community_id: Optional[str], community_role: Optional[CommunityRole]) -> bool:
    if viewer.is_platform_admin:
        return True
    return bool(community_id) and community_role in COMMUNITY_MANAGER_ROLES


class VisibilityPolicy:
    def __init__(self, communities: CommunityCapabilityProvider):
        self.communities = communities

    def community_role(self, viewer: Viewer, community_id: Optional[str]) -> Optional[CommunityRole]:
        if not community_id:
            return None
        return self.communities.community_role(community_id, viewer.uid)

    def rights_for(self, viewer: Viewer, community_id: Optional[str]) -> ContextRights:
        return decide(viewer, community_id, self.community_role(viewer, community_id))

    def resolve(self, viewer: Viewer, visibility: Visibility, community_id: Optional[str]) -> ContextRights:
        check_visibility(visibility, community_id)
        rights = self.rights_for(viewer, community_id)
        logger.debug(
            f"Rights of {viewer.uid} for {visibility.value} in {community_id or 'platform'}: "
            f"direct={rights.can_create_directly}"
        )
        return rights

    def can_manage(self, viewer: Viewer, room: Room) -> bool:
        if viewer.is_platform_admin or viewer.uid == room.creator_uid:
            return True
        return can_manage_room(viewer, room, self.community_role(viewer, room.community_id))

    def can_review(self, viewer: Viewer, community_id: Optional[str]) -> bool:
        if viewer.is_platform_admin:
            return True
        return can_review_scope(viewer, community_id, self.community_role(viewer, community_id))

    def is_member(self, viewer: Viewer, community_id: Optional[str]) -> bool:
        return self.community_role(viewer, community_id) in COMMUNITY_MEMBER_ROLES

    def reviewable_communities(self, viewer: Viewer) -> list[str]:
        return [
            community["id"]
            for community in self.communities.list_communities()
            if self.can_review(viewer, community["id"])
        ]

    def can_see(self, viewer: Viewer, room: Room) -> bool:
        if self.can_manage(viewer, room):
            return True
        if room.visibility == Visibility.PUBLIC:
            return True
        if room.visibility == Visibility.COURSE_EXCLUSIVE:
            return self.is_member(viewer, room.community_id)
        return False
