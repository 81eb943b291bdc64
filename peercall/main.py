"""
peercall Signaling Relay - Main Application

This is the entry point for the FastAPI application.
It handles:
- The server-push event stream each client subscribes to
- Relaying signals between subscribed identities
- Recording the calls relayed through it
- The heartbeat that keeps streams alive and evicts dead subscribers
"""
from contextlib import asynccontextmanager
import asyncio
import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from peercall.api import router as api_router
from peercall.config.settings import settings
from peercall.services.relay import signal_hub

# Configure logging
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Starts the heartbeat on startup and stops it on shutdown.
    """
    # === STARTUP ===
    logger.info("🚀 Starting peercall signaling relay...")
    heartbeat = asyncio.create_task(signal_hub.run_heartbeat())
    logger.info("✅ Heartbeat task started")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("🛑 Shutting down...")
    heartbeat.cancel()
    try:
        await heartbeat
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="peercall Signaling Relay",
    description="Server-push signaling for one-to-one WebRTC calls",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "peercall",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "subscribers": signal_hub.subscriber_count,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("peercall.main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
