import hashlib
import hmac
import secrets
from typing import Optional

import bcrypt

from constants import BCRYPT_ROUNDS, MEET_ID_ALPHABET, MEET_ID_LENGTH

INVITE_TOKEN_BYTES = 24


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: Optional[str], password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash or password over bcrypt's length limit
        return False


def new_invite_token() -> str:
    return secrets.token_urlsafe(INVITE_TOKEN_BYTES)


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def digests_match(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def generate_meet_id(length: int = MEET_ID_LENGTH) -> str:
    return "".join(secrets.choice(MEET_ID_ALPHABET) for _ in range(length))
