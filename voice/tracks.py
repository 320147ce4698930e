"""Audio tracks for the voice mesh."""

import logging
from typing import Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from client.errors import MediaAcquisitionError

logger = logging.getLogger(__name__)


class GatedAudioTrack(MediaStreamTrack):
    """Forwards frames from a source track, replacing them with silence while disabled.

    Muting this way keeps the RTP stream flowing, so toggling never needs
    renegotiation.
    """

    kind = "audio"

    def __init__(self, source: MediaStreamTrack, enabled: bool = False):
        super().__init__()
        self._source = source
        self.enabled = enabled

    async def recv(self):
        frame = await self._source.recv()
        if not self.enabled:
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
        return frame

    def stop(self):
        super().stop()
        self._source.stop()


def open_microphone(device: str = "default", fmt: Optional[str] = "pulse") -> MediaPlayer:
    """Open the local capture device.

    Raises:
        MediaAcquisitionError: the device is missing, busy or denied.
    """
    try:
        player = MediaPlayer(device, format=fmt) if fmt else MediaPlayer(device)
    except Exception as e:
        # PyAV raises its own error hierarchy for missing or busy devices
        raise MediaAcquisitionError(f"Cannot open audio device {device!r}: {e}") from e
    if player.audio is None:
        raise MediaAcquisitionError(f"Audio device {device!r} has no audio stream")
    logger.info("Opened audio device %s", device)
    return player
