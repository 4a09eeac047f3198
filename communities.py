from typing import Optional, Protocol

import redis

from backend import RedisBackend
from errors import ProviderUnavailable
from logging_config import get_logger
from models import CommunityRole
from redis_keys import REDIS_COMMUNITIES_INDEX, REDIS_COMMUNITY_KEY, REDIS_COMMUNITY_ROLE_KEY

logger = get_logger(__name__)

# Checked strongest first.
ROLE_ORDER = (CommunityRole.OWNER, CommunityRole.MODERATOR, CommunityRole.MEMBER)


class CommunityCapabilityProvider(Protocol):
    """Answers membership and role questions about course communities."""

    def community_role(self, community_id: str, uid: str) -> Optional[CommunityRole]:
        ...

    def get_community(self, community_id: str) -> Optional[dict]:
        ...

    def list_communities(self) -> list[dict]:
        ...


class RedisCommunityDirectory:
    """Community roles kept in redis sets, one set per (community, role).

    Membership is owned by the wider platform; `add_community` and `set_role`
    exist so operators and tests can seed the directory.
    """

    def __init__(self, backend: RedisBackend):
        self.redis_client = backend.redis_client

    def _role_key(self, community_id: str, role: CommunityRole) -> str:
        return REDIS_COMMUNITY_ROLE_KEY.format(role=role.value, community_id=community_id)

    def community_role(self, community_id: str, uid: str) -> Optional[CommunityRole]:
        if not community_id or not uid:
            return None
        try:
            pipe = self.redis_client.pipeline(transaction=False)
            for role in ROLE_ORDER:
                pipe.sismember(self._role_key(community_id, role), uid)
            flags = pipe.execute()
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
            logger.error(f"Community role lookup failed for {uid} in {community_id}: {e}")
            raise ProviderUnavailable("Community directory is unavailable.") from e
        for role, present in zip(ROLE_ORDER, flags):
            if present:
                return role
        return None

    def get_community(self, community_id: str) -> Optional[dict]:
        if not community_id:
            return None
        data = self.redis_client.hgetall(REDIS_COMMUNITY_KEY.format(community_id=community_id))
        if not data:
            return None
        return {"id": community_id, "name": data.get("name", ""), "code": data.get("code") or None}

    def list_communities(self) -> list[dict]:
        communities = []
        for community_id in sorted(self.redis_client.smembers(REDIS_COMMUNITIES_INDEX)):
            community = self.get_community(community_id)
            if community:
                communities.append(community)
        communities.sort(key=lambda c: c["name"].lower())
        return communities

    def add_community(self, community_id: str, name: str, code: Optional[str] = None) -> dict:
        mapping = {"name": name}
        if code:
            mapping["code"] = code
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.hset(REDIS_COMMUNITY_KEY.format(community_id=community_id), mapping=mapping)
        pipe.sadd(REDIS_COMMUNITIES_INDEX, community_id)
        pipe.execute()
        logger.info(f"Community {community_id} registered: name={name}")
        return {"id": community_id, "name": name, "code": code}

    def set_role(self, community_id: str, uid: str, role: Optional[CommunityRole]):
        """Give `uid` exactly one role in the community, or none."""
        pipe = self.redis_client.pipeline(transaction=True)
        for existing in ROLE_ORDER:
            pipe.srem(self._role_key(community_id, existing), uid)
        if role is not None:
            pipe.sadd(self._role_key(community_id, role), uid)
        pipe.execute()
        logger.debug(f"Community {community_id}: role of {uid} set to {role.value if role else None}")
