"""
Calls API - Records of the calls relayed through this server

Implements:
- Call history of the current user
- Details of one call
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from redis.exceptions import RedisError

from peercall.api.deps import get_current_user
from peercall.config.settings import settings
from peercall.schemas.call import CallHistoryResponse, CallRecord
from peercall.schemas.signal import UserSummary
from peercall.services.relay import call_records

router = APIRouter(tags=["calls"])


@router.get("/calls/history", response_model=CallHistoryResponse)
async def get_call_history(
    limit: int = Query(20, ge=1, le=settings.CALL_HISTORY_LIMIT),
    user: UserSummary = Depends(get_current_user),
):
    """
    Get the user's calls, newest first.
    """
    try:
        calls = await call_records.history(user.email, limit)
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Call records unavailable: {e}")
    return CallHistoryResponse(calls=calls)


@router.get("/calls/{session_id}", response_model=CallRecord)
async def get_call(session_id: str, user: UserSummary = Depends(get_current_user)):
    try:
        record = await call_records.get(session_id)
    except RedisError as e:
        raise HTTPException(status_code=503, detail=f"Call records unavailable: {e}")
    # Other people's calls are reported as missing
    if record is None or not record.involves(user.email):
        raise HTTPException(status_code=404, detail="Call not found")
    return record
