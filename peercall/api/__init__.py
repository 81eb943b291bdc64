from fastapi import APIRouter

from peercall.api import calls, sse

router = APIRouter()

router.include_router(sse.router)
router.include_router(calls.router)
