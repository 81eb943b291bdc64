"""
Protocol definitions for the collaborators of the call core.

This module defines interfaces (Python Protocols) that allow:
- Swapping implementations (real devices → files → synthetic tracks)
- Testing without cameras, screens or a network
- Clear contracts between the core and its presentation layer

Usage:
    from peercall.services.protocols import MediaProviderProtocol

    async def preview(provider: MediaProviderProtocol):
        stream = await provider.get_user_media()
        ...
        stream.stop()
"""

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from peercall.services.call.media import MediaStream


class MediaProviderProtocol(Protocol):
    """
    Interface for local media acquisition.

    Both methods raise MediaAcquisitionError when the device is denied or
    unavailable.
    """

    async def get_user_media(self) -> "MediaStream":
        """
        Open the camera and microphone.

        Returns:
            A stream holding at most one audio and one video track.
        """
        ...

    async def get_display_media(self) -> "MediaStream":
        """
        Open a screen capture.

        Returns:
            A stream holding one video track.
        """
        ...


class ChatSinkProtocol(Protocol):
    """
    Interface for the chat collaborator.

    The core only ever appends; storage and history belong to the implementation.
    """

    def add_message(self, sender: str, text: str) -> None:
        ...
