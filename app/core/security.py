from datetime import datetime, timezone
from passlib.context import CryptContext
import secrets
import string
import hashlib
import hmac

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)

_BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hash_password(password: str) -> str:
    if not password or not isinstance(password, str):
        raise ValueError("Password must be a non-empty string")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    if not isinstance(plain_password, str):
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception:
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(token: str, token_hash: str) -> bool:
    if not token or not token_hash:
        return False
    return hmac.compare_digest(hash_token(token), token_hash)


def generate_opaque_token() -> str:
    return secrets.token_urlsafe(32)


def generate_backup_code(length: int = 8) -> str:
    return "".join(secrets.choice(_BACKUP_CODE_ALPHABET) for _ in range(length))
