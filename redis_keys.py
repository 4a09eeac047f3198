REDIS_ROOM_KEY = "room:meta:{room_id}" # room id - room record hash
REDIS_ROOMS_INDEX = "rooms:index" # sorted set of room ids by creation time
REDIS_COMMUNITY_ROOMS_KEY = "rooms:community:{community_id}" # sorted set of room ids in one community
REDIS_MEET_IDS_KEY = "rooms:meet_ids" # hash meet id -> room id, never shrinks
REDIS_PARTICIPANTS_KEY = "room:participants:{room_id}" # set of uids holding a slot
REDIS_JOIN_URLS_KEY = "room:join_urls:{room_id}" # hash uid -> issued join url
REDIS_EVENTS_KEY = "room:events:{room_id}" # list of moderation events (json)

REDIS_REQUEST_KEY = "request:meta:{request_id}" # room request hash
REDIS_REQUESTS_INDEX = "requests:index" # sorted set of request ids by creation time
REDIS_REQUESTER_KEY = "requests:by_requester:{uid}" # set of request ids per requester
REDIS_REQUEST_EVENTS_KEY = "requests:events" # list of request moderation events (json)

REDIS_COMMUNITIES_INDEX = "communities:index" # set of community ids
REDIS_COMMUNITY_KEY = "community:meta:{community_id}" # community hash (name, code)
REDIS_COMMUNITY_ROLE_KEY = "community:{role}s:{community_id}" # set of uids per role

# **Example `room:meta:{id}` hash fields**
# - `id` = `{roomId}`
# - `meet_id` = short public code, unique via `rooms:meet_ids`
# - `state` = scheduled | live | ended | canceled
# - `password_hash` = bcrypt hash (optional)
# - `invite_token_digest` = sha256 of the active invite token (private rooms)
# - `capability_flags` = json string
