"""
Response playback unit.

An ``AudioReply`` is materialized into a ``PlaybackResource``, a scoped,
revocable handle on the decoded audio.  ``PlaybackUnit`` guarantees the
resource is released exactly once, whichever exit path is taken: natural
end (``finish``), user cancellation (``cancel``) or playback error
(``fail``).
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod

import numpy as np
import soundfile as sf

from voicerelay.core.exceptions import PlaybackError
from voicerelay.core.models import AudioReply

logger = logging.getLogger(__name__)


class PlaybackResource:
    """Decoded audio for one reply. Unusable once revoked."""

    def __init__(self, data: bytes, mime_type: str = "audio/mpeg") -> None:
        self.mime_type = mime_type
        self._data: bytes | None = data
        self._samples: np.ndarray | None = None
        self.sample_rate: int = 0
        self.revoked = False

    @property
    def data(self) -> bytes:
        if self._data is None:
            raise PlaybackError("Playback resource already revoked")
        return self._data

    def decode(self) -> tuple[np.ndarray, int]:
        """Decode the reply bytes into float32 samples (cached)."""
        if self._samples is None:
            try:
                samples, sample_rate = sf.read(io.BytesIO(self.data), dtype="float32")
            except (sf.LibsndfileError, RuntimeError, TypeError) as exc:
                raise PlaybackError(f"Cannot decode {self.mime_type} reply: {exc}") from exc
            self._samples, self.sample_rate = samples, sample_rate
        return self._samples, self.sample_rate

    def revoke(self) -> None:
        """Drop the audio data.

        Raises:
            PlaybackError: If the resource was already revoked.
        """
        if self.revoked:
            raise PlaybackError("Playback resource revoked twice")
        self.revoked = True
        self._data = None
        self._samples = None


class BasePlayer(ABC):
    """Interface for audio output backends."""

    @abstractmethod
    def start(self, resource: PlaybackResource) -> None:
        """Begin playing without blocking."""

    @abstractmethod
    def stop(self) -> None:
        """Stop playback immediately."""

    @abstractmethod
    async def wait(self) -> None:
        """Return when playback finished or was stopped.

        Raises:
            PlaybackError: If the output device failed mid-playback.
        """


class SoundDevicePlayer(BasePlayer):
    """Plays decoded replies on the default output device via sounddevice."""

    def start(self, resource: PlaybackResource) -> None:
        import sounddevice as sd

        samples, sample_rate = resource.decode()
        try:
            sd.play(samples, sample_rate)
        except sd.PortAudioError as exc:
            raise PlaybackError(f"Speaker not accessible: {exc}") from exc
        logger.info("Playing reply: %d samples at %d Hz", len(samples), sample_rate)

    def stop(self) -> None:
        import sounddevice as sd

        sd.stop()

    async def wait(self) -> None:
        import sounddevice as sd

        try:
            await asyncio.to_thread(sd.wait)
        except sd.PortAudioError as exc:
            raise PlaybackError(f"Playback failed: {exc}") from exc


class PlaybackUnit:
    """Owns the single active playback resource."""

    def __init__(self, player: BasePlayer) -> None:
        self.player = player
        self._current: PlaybackResource | None = None

    @property
    def current(self) -> PlaybackResource | None:
        return self._current

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    def play(self, reply: AudioReply) -> PlaybackResource:
        """Materialize the reply and start playing it.

        Any previous resource is cancelled first.

        Raises:
            PlaybackError: If the audio cannot be decoded or started; the new
                resource is already released when this is raised.
        """
        if self._current is not None:
            self.cancel()
        resource = PlaybackResource(reply.data, reply.mime_type)
        self._current = resource
        try:
            self.player.start(resource)
        except PlaybackError:
            self._release()
            raise
        return resource

    def finish(self) -> None:
        """Natural end of playback."""
        self._release()

    def cancel(self) -> None:
        """Stop playback now and release the resource."""
        if self._current is None:
            return
        self.player.stop()
        self._release()
        logger.info("Playback cancelled")

    def fail(self, error: Exception) -> None:
        logger.warning("Playback error: %s", error)
        if self._current is not None:
            self.player.stop()
        self._release()

    async def wait(self) -> None:
        await self.player.wait()

    def _release(self) -> None:
        resource, self._current = self._current, None
        if resource is not None:
            resource.revoke()
