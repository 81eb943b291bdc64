from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import StreamingResponse

from peercall.api.deps import get_current_user, get_stream_user
from peercall.schemas.signal import SignalMessage, UserSummary
from peercall.services.relay import signal_hub

router = APIRouter(prefix="/sse", tags=["signaling"])


@router.get("/subscribe")
async def subscribe(user: UserSummary = Depends(get_stream_user)):
    subscriber = await signal_hub.subscribe(user.email, user.username)
    return StreamingResponse(
        signal_hub.stream(subscriber),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/signal", status_code=status.HTTP_204_NO_CONTENT)
async def send_signal(message: SignalMessage, user: UserSummary = Depends(get_current_user)):
    if message.sender != user.email:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Sender does not match token")
    if not message.target:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Missing target")
    # Offline targets are not an error; delivery is best-effort
    await signal_hub.send_signal(message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(user: UserSummary = Depends(get_current_user)):
    await signal_hub.logout(user.email)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users")
async def list_users(user: UserSummary = Depends(get_current_user)):
    return [u.model_dump() for u in signal_hub.user_list()]
