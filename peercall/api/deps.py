from typing import Optional
import logging

from fastapi import Header, HTTPException, Query, status

from peercall.schemas.signal import UserSummary
from peercall.services.auth_service import decode_token, username_from_claims

logger = logging.getLogger(__name__)


def _authenticate(token: Optional[str]) -> UserSummary:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    payload = decode_token(token)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return UserSummary(email=email, username=username_from_claims(payload))


async def get_current_user(authorization: Optional[str] = Header(None)) -> UserSummary:
    """
    Dependency for bearer-authenticated endpoints.
    """
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Authorization header")
    return _authenticate(token)


async def get_stream_user(
    token: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
) -> UserSummary:
    """
    Dependency for the event stream.

    Event-stream clients cannot always set headers, so the token may also
    come as a `token` query parameter.
    """
    if not token and authorization:
        scheme, _, bearer = authorization.partition(" ")
        if scheme.lower() == "bearer":
            token = bearer
    if not token:
        logger.warning("[Relay] Subscription without token")
    return _authenticate(token)
