import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

DOMAIN = os.getenv("DOMAIN", "localhost")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", f"http://{DOMAIN}")

# Meeting provider
MEET_PROVIDER = os.getenv("MEET_PROVIDER", "static")
MEET_BASE_URL = os.getenv("MEET_BASE_URL", "https://meet.ffmuc.net")
MEET_PROVIDER_URL = os.getenv("MEET_PROVIDER_URL", "")
MEET_PROVIDER_API_KEY = os.getenv("MEET_PROVIDER_API_KEY", "")
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", 5))

# Room requests
REQUEST_TTL_SECONDS = int(os.getenv("REQUEST_TTL_SECONDS", 24 * 60 * 60))
MAX_PENDING_REQUESTS = int(os.getenv("MAX_PENDING_REQUESTS", 3))

# Rooms
DEFAULT_MAX_PARTICIPANTS = int(os.getenv("DEFAULT_MAX_PARTICIPANTS", 25))
MAX_PARTICIPANTS_LIMIT = int(os.getenv("MAX_PARTICIPANTS_LIMIT", 99))
MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", 6))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
SCHEDULE_GRACE_SECONDS = int(os.getenv("SCHEDULE_GRACE_SECONDS", 30))
MEET_ID_LENGTH = 8
MEET_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_EVENTS_KEPT = 200

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
RELOAD = os.getenv("RELOAD", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)
