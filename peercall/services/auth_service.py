"""
Auth Service - bearer tokens for the signaling relay

Account management lives outside this project; the relay only needs to
issue and verify the HS256 tokens that identify a subscriber.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError

from peercall.config.settings import settings


def create_access_token(
    subject: str,
    username: Optional[str] = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=settings.JWT_EXP_DAYS)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"sub": subject, "exp": int(expire.timestamp())}
    if username:
        to_encode["username"] = username
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        return None


def username_from_claims(claims: dict) -> str:
    """Display name for the user list; falls back to the e-mail local part."""
    username = claims.get("username")
    if username:
        return username
    return str(claims.get("sub", "")).split("@")[0]
