"""
Media capture collaborator.

Camera and microphone live on the client. The engine only ever sees the opaque
handle a capture returns and stores it untouched. Implementations raise
MissingCapability when the device or permission is unavailable.
"""
from typing import Protocol

RECORDING_MAX_SECONDS = 15  # rumor voice notes


class MediaCapture(Protocol):
    async def capture_image(self) -> str:
        ...

    async def record_audio(self, max_duration_seconds: int) -> str:
        ...
