import json
from datetime import datetime
from typing import Callable, Iterable, Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, ROOM_EVENTS_KEPT
from logging_config import get_logger
from models import Room, RoomRequest
from redis_keys import (
    REDIS_ROOM_KEY,
    REDIS_ROOMS_INDEX,
    REDIS_COMMUNITY_ROOMS_KEY,
    REDIS_MEET_IDS_KEY,
    REDIS_PARTICIPANTS_KEY,
    REDIS_JOIN_URLS_KEY,
    REDIS_EVENTS_KEY,
    REDIS_REQUEST_KEY,
    REDIS_REQUESTS_INDEX,
    REDIS_REQUESTER_KEY,
    REDIS_REQUEST_EVENTS_KEY,
)

logger = get_logger(__name__)


def create_redis_client() -> redis.Redis:
    # Connections are opened lazily; app startup pings.
    return redis.Redis(
        host=REDIS_HOST,
        port=REDIS_PORT,
        password=REDIS_PASSWORD,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


def encode_hash(data: dict) -> dict:
    """Serialize a record for a redis hash, one json value per field, skipping None."""
    encoded = {}
    for k, v in data.items():
        if v is None:
            continue
        encoded[k] = json.dumps(v)
    return encoded


def decode_hash(raw: dict) -> dict:
    result = {}
    for k, v in raw.items():
        try:
            result[k] = json.loads(v)
        except (json.JSONDecodeError, TypeError):
            result[k] = v
    return result


class RedisBackend:
    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client if client is not None else create_redis_client()
        logger.info(f"Initializing RedisBackend (injected_client={client is not None})")

    def ping(self) -> bool:
        return bool(self.redis_client.ping())

    def atomic(self, func: Callable, *watch_keys: str):
        """Run `func(pipe)` as an optimistic transaction over `watch_keys`.

        `func` reads through the pipe while it is watching, calls `pipe.multi()`
        before queuing writes and may be re-run if a watched key changes
        underneath it. Its return value is returned once EXEC succeeds.
        """
        return self.redis_client.transaction(func, *watch_keys, value_from_callable=True)

    # Rooms

    @staticmethod
    def room_key(room_id: str) -> str:
        return REDIS_ROOM_KEY.format(room_id=room_id)

    @staticmethod
    def participants_key(room_id: str) -> str:
        return REDIS_PARTICIPANTS_KEY.format(room_id=room_id)

    @staticmethod
    def join_urls_key(room_id: str) -> str:
        return REDIS_JOIN_URLS_KEY.format(room_id=room_id)

    meet_ids_key = REDIS_MEET_IDS_KEY

    def read_room(self, conn, room_id: str) -> Optional[Room]:
        raw = conn.hgetall(self.room_key(room_id))
        if not raw:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return Room.model_validate(decode_hash(raw))

    def get_room(self, room_id: str) -> Optional[Room]:
        logger.debug(f"Fetching room {room_id}")
        return self.read_room(self.redis_client, room_id)

    def get_rooms(self, room_ids: Iterable[str]) -> list[Room]:
        room_ids = list(room_ids)
        if not room_ids:
            return []
        pipe = self.redis_client.pipeline(transaction=False)
        for room_id in room_ids:
            pipe.hgetall(self.room_key(room_id))
        rooms = []
        for raw in pipe.execute():
            if raw:
                rooms.append(Room.model_validate(decode_hash(raw)))
        return rooms

    def meet_id_taken(self, conn, meet_id: str) -> bool:
        return bool(conn.hexists(self.meet_ids_key, meet_id))

    def get_room_id_by_meet_id(self, meet_id: str) -> Optional[str]:
        return self.redis_client.hget(self.meet_ids_key, meet_id)

    def list_room_ids(self, community_id: Optional[str] = None) -> list[str]:
        if community_id:
            key = REDIS_COMMUNITY_ROOMS_KEY.format(community_id=community_id)
        else:
            key = REDIS_ROOMS_INDEX
        return self.redis_client.zrevrange(key, 0, -1)

    def write_room(self, pipe, room: Room, is_new: bool = False):
        """Queue a full rewrite of a room record. Call after `pipe.multi()`."""
        key = self.room_key(room.id)
        pipe.delete(key)
        pipe.hset(key, mapping=encode_hash(room.model_dump(mode="json")))
        if is_new:
            score = room.created_at.timestamp()
            pipe.hset(self.meet_ids_key, room.meet_id, room.id)
            pipe.zadd(REDIS_ROOMS_INDEX, {room.id: score})
            if room.community_id:
                pipe.zadd(REDIS_COMMUNITY_ROOMS_KEY.format(community_id=room.community_id), {room.id: score})
        logger.debug(f"Queued write for room {room.id} (state={room.state.value}, new={is_new})")

    # Participants

    def participant_count(self, conn, room_id: str) -> int:
        return int(conn.scard(self.participants_key(room_id)))

    def is_participant(self, conn, room_id: str, uid: str) -> bool:
        return bool(conn.sismember(self.participants_key(room_id), uid))

    def add_participant(self, pipe, room_id: str, uid: str):
        pipe.sadd(self.participants_key(room_id), uid)

    def remove_participant(self, room_id: str, uid: str) -> bool:
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.srem(self.participants_key(room_id), uid)
        pipe.hdel(self.join_urls_key(room_id), uid)
        removed, _ = pipe.execute()
        logger.debug(f"User {uid} removed from room {room_id}: slot_released={bool(removed)}")
        return bool(removed)

    def clear_participants(self, pipe, room_id: str):
        pipe.delete(self.participants_key(room_id))
        pipe.delete(self.join_urls_key(room_id))

    def get_join_url(self, room_id: str, uid: str) -> Optional[str]:
        return self.redis_client.hget(self.join_urls_key(room_id), uid)

    def set_join_url(self, pipe, room_id: str, uid: str, url: str):
        pipe.hset(self.join_urls_key(room_id), uid, url)

    # Requests

    @staticmethod
    def request_key(request_id: str) -> str:
        return REDIS_REQUEST_KEY.format(request_id=request_id)

    @staticmethod
    def requester_key(uid: str) -> str:
        return REDIS_REQUESTER_KEY.format(uid=uid)

    def read_request(self, conn, request_id: str) -> Optional[RoomRequest]:
        raw = conn.hgetall(self.request_key(request_id))
        if not raw:
            logger.debug(f"Request {request_id} not found in Redis")
            return None
        return RoomRequest.model_validate(decode_hash(raw))

    def get_request(self, request_id: str) -> Optional[RoomRequest]:
        return self.read_request(self.redis_client, request_id)

    def get_requests(self, request_ids: Iterable[str]) -> list[RoomRequest]:
        request_ids = list(request_ids)
        if not request_ids:
            return []
        pipe = self.redis_client.pipeline(transaction=False)
        for request_id in request_ids:
            pipe.hgetall(self.request_key(request_id))
        return [RoomRequest.model_validate(decode_hash(raw)) for raw in pipe.execute() if raw]

    def list_request_ids(self) -> list[str]:
        return self.redis_client.zrevrange(REDIS_REQUESTS_INDEX, 0, -1)

    def requester_request_ids(self, conn, uid: str) -> list[str]:
        return list(conn.smembers(self.requester_key(uid)))

    def write_request(self, pipe, request: RoomRequest, is_new: bool = False):
        key = self.request_key(request.id)
        pipe.delete(key)
        pipe.hset(key, mapping=encode_hash(request.model_dump(mode="json")))
        if is_new:
            pipe.zadd(REDIS_REQUESTS_INDEX, {request.id: request.created_at.timestamp()})
            pipe.sadd(self.requester_key(request.requester_uid), request.id)
        logger.debug(f"Queued write for request {request.id} (status={request.status.value}, new={is_new})")

    # Moderation events

    def record_event(self, room_id: Optional[str], actor_uid: str, action: str, at: datetime, meta: Optional[dict] = None):
        event = {
            "room_id": room_id,
            "actor_uid": actor_uid,
            "action": action,
            "meta": meta or {},
            "created_at": at.isoformat(),
        }
        key = REDIS_EVENTS_KEY.format(room_id=room_id) if room_id else REDIS_REQUEST_EVENTS_KEY
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.lpush(key, json.dumps(event))
        pipe.ltrim(key, 0, ROOM_EVENTS_KEPT - 1)
        pipe.execute()
        logger.info(f"Moderation event {action} by {actor_uid} on room {room_id or '-'}")
        return event

    def list_events(self, room_id: str) -> list[dict]:
        key = REDIS_EVENTS_KEY.format(room_id=room_id)
        return [json.loads(raw) for raw in self.redis_client.lrange(key, 0, -1)]


redis_backend = RedisBackend()
