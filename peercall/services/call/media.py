"""
Local and remote media streams.

`MediaStream` bundles aiortc tracks the way a browser MediaStream does.
`DeviceMediaProvider` opens real devices through aiortc's MediaPlayer
(any ffmpeg input: v4l2 cameras, pulse/alsa microphones, x11grab,
avfoundation or gdigrab screens, or plain files for headless runs).
"""
import asyncio
import functools
import logging
import uuid
from typing import Iterable, List, Optional

import av
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from peercall.config.settings import settings
from .exceptions import MediaAcquisitionError

logger = logging.getLogger(__name__)


class MediaStream:
    """An ordered bundle of media tracks."""

    def __init__(self, tracks: Iterable[MediaStreamTrack] = (), stream_id: Optional[str] = None):
        self.id = stream_id or str(uuid.uuid4())
        self._tracks: List[MediaStreamTrack] = list(tracks)

    def add_track(self, track: MediaStreamTrack) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def get_tracks(self) -> List[MediaStreamTrack]:
        return list(self._tracks)

    def get_audio_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self._tracks if t.kind == "audio"]

    def get_video_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    @property
    def audio_track(self) -> Optional[MediaStreamTrack]:
        tracks = self.get_audio_tracks()
        return tracks[0] if tracks else None

    @property
    def video_track(self) -> Optional[MediaStreamTrack]:
        tracks = self.get_video_tracks()
        return tracks[0] if tracks else None

    def stop(self, keep: Iterable[MediaStreamTrack] = ()) -> None:
        """Stop every track except the ones in `keep`."""
        kept = {id(t) for t in keep}
        for track in self._tracks:
            if id(track) not in kept:
                track.stop()

    def __repr__(self) -> str:
        kinds = ",".join(t.kind for t in self._tracks)
        return f"MediaStream(id={self.id!r}, tracks=[{kinds}])"


class DeviceMediaProvider:
    """
    Opens camera, microphone and screen through MediaPlayer.

    Players are opened in the default executor because av.open() blocks
    while the device is probed.
    """

    def __init__(
        self,
        camera_device: Optional[str] = None,
        camera_format: Optional[str] = None,
        microphone_device: Optional[str] = None,
        microphone_format: Optional[str] = None,
        screen_device: Optional[str] = None,
        screen_format: Optional[str] = None,
        video_size: Optional[str] = None,
        framerate: Optional[int] = None,
    ):
        self.camera_device = camera_device or settings.CAMERA_DEVICE
        self.camera_format = camera_format if camera_format is not None else settings.CAMERA_FORMAT
        self.microphone_device = microphone_device or settings.MICROPHONE_DEVICE
        self.microphone_format = microphone_format if microphone_format is not None else settings.MICROPHONE_FORMAT
        self.screen_device = screen_device or settings.SCREEN_DEVICE
        self.screen_format = screen_format if screen_format is not None else settings.SCREEN_FORMAT
        self.video_size = video_size or settings.VIDEO_SIZE
        self.framerate = framerate or settings.VIDEO_FRAMERATE

    def _video_options(self) -> dict:
        return {"video_size": self.video_size, "framerate": str(self.framerate)}

    async def _open(self, device: str, fmt: Optional[str], options: Optional[dict] = None) -> MediaPlayer:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                functools.partial(MediaPlayer, device, format=fmt or None, options=options or {})
            )
        except (av.error.FFmpegError, OSError, ValueError) as e:
            raise MediaAcquisitionError(f"Cannot open {device} ({fmt or 'auto'}): {e}") from e

    async def get_user_media(self) -> MediaStream:
        camera = await self._open(self.camera_device, self.camera_format, self._video_options())
        if self.microphone_device == self.camera_device and self.microphone_format == self.camera_format:
            microphone = camera
        else:
            try:
                microphone = await self._open(self.microphone_device, self.microphone_format)
            except MediaAcquisitionError:
                if camera.video:
                    camera.video.stop()
                if camera.audio:
                    camera.audio.stop()
                raise

        tracks = [t for t in (microphone.audio, camera.video) if t is not None]
        if not tracks:
            raise MediaAcquisitionError("No audio or video track available")

        logger.info(f"[Media] Opened user media: {[t.kind for t in tracks]}")
        return MediaStream(tracks)

    async def get_display_media(self) -> MediaStream:
        player = await self._open(self.screen_device, self.screen_format, self._video_options())
        if player.video is None:
            if player.audio:
                player.audio.stop()
            raise MediaAcquisitionError(f"Screen source {self.screen_device} has no video")

        logger.info(f"[Media] Opened screen capture {self.screen_device}")
        return MediaStream([player.video])
