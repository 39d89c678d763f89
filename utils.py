import jwt
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from errors import NotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: str, resource_type: str) -> ObjectId:
    """Parse an id from a path/body; malformed ids are reported as a missing entity."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(resource_type, str(value))


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()

    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "iat": utcnow()})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and verify JWT access token"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except jwt.PyJWTError:
        return None


def verify_token(token: str) -> Optional[str]:
    """Verify token and return user_id if valid"""
    payload = decode_access_token(token)
    if payload is None:
        return None
    user_id = payload.get("user_id")
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id
