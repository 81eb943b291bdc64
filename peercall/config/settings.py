from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Signaling relay
    API_BASE_URL: str = Field("http://localhost:8080")
    API_HOST: str = Field("0.0.0.0")
    API_PORT: int = Field(8080)
    SSE_RETRY_MS: int = Field(3000)
    SIGNAL_TIMEOUT_SECONDS: float = Field(10.0)
    HEARTBEAT_INTERVAL_SECONDS: float = Field(10.0)
    SUBSCRIBER_QUEUE_SIZE: int = Field(256)

    # WebRTC
    ICE_SERVERS: List[str] = Field(default_factory=lambda: ["stun:stun.l.google.com:19302"])

    # Redis (call intent persistence)
    REDIS_HOST: str = Field("localhost")
    REDIS_PORT: int = Field(6379)
    REDIS_PASSWORD: str | None = Field(None)
    REDIS_DB: int = Field(0)
    CALL_INTENT_PREFIX: str = Field("peercall:intent")
    CALL_INTENT_TTL_SECONDS: int = Field(3600)

    # Redis (relay call records)
    CALL_RECORD_PREFIX: str = Field("peercall:calls")
    CALL_RECORD_TTL_SECONDS: int = Field(7 * 24 * 3600)
    CALL_HISTORY_LIMIT: int = Field(50)

    # Auth
    JWT_SECRET_KEY: str = Field("supersecret")
    JWT_ALGORITHM: str = Field("HS256")
    JWT_EXP_DAYS: int = Field(1)

    # Media devices (any ffmpeg input understood by aiortc's MediaPlayer)
    CAMERA_DEVICE: str = Field("/dev/video0")
    CAMERA_FORMAT: str | None = Field("v4l2")
    MICROPHONE_DEVICE: str = Field("default")
    MICROPHONE_FORMAT: str | None = Field("pulse")
    SCREEN_DEVICE: str = Field(":0.0")
    SCREEN_FORMAT: str | None = Field("x11grab")
    VIDEO_SIZE: str = Field("640x480")
    VIDEO_FRAMERATE: int = Field(30)

    # App
    DEBUG: bool = Field(False)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_file_encoding="utf-8"
    )


settings = Settings()
