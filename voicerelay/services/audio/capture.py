"""
Microphone capture unit.

``BaseCapture`` is the contract the session runtime drives:

- ``open()`` acquires the microphone (fails with ``PermissionDeniedError``,
  ``DeviceUnavailableError`` or ``CaptureTimeoutError``),
- ``chunks(interval_ms)`` yields binary chunks until the stream ends,
- ``close()`` releases the device and is idempotent.

``SoundDeviceCapture`` records from the local microphone through PortAudio;
``BufferedCapture`` replays audio that was already recorded elsewhere (for
example by the browser in the Streamlit page).
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from voicerelay.core.exceptions import (
    CaptureTimeoutError,
    DeviceUnavailableError,
    PermissionDeniedError,
)
from voicerelay.core.models import AudioPayload
from voicerelay.services.audio.processor import AudioProcessor

logger = logging.getLogger(__name__)

OPEN_TIMEOUT_SECONDS = 5.0
CHUNK_INTERVAL_MS = 100


class BaseCapture(ABC):
    """Interface every microphone capture implementation must provide."""

    mime_type: str = "audio/webm"

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently held."""

    @abstractmethod
    async def open(self) -> "BaseCapture":
        """Acquire the microphone and return the open stream handle."""

    @abstractmethod
    def chunks(self, interval_ms: int = CHUNK_INTERVAL_MS) -> AsyncIterator[bytes]:
        """Yield recorded chunks until ``close()`` or end of stream."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Safe to call any number of times."""

    def assemble(self, chunks: list[bytes]) -> AudioPayload:
        """Turn the buffered chunks into a single upload payload."""
        return AudioPayload.from_chunks(chunks, self.mime_type)

    async def __aenter__(self) -> "BaseCapture":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class BufferedCapture(BaseCapture):
    """Replays an already-recorded blob as a finite chunk stream."""

    def __init__(self, data: bytes, mime_type: str = "audio/webm", chunk_size: int = 4096) -> None:
        self.mime_type = mime_type
        self._data = data
        self._chunk_size = chunk_size
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> "BufferedCapture":
        self._open = True
        return self

    async def chunks(self, interval_ms: int = CHUNK_INTERVAL_MS) -> AsyncIterator[bytes]:
        offset = 0
        while self._open and offset < len(self._data):
            yield self._data[offset : offset + self._chunk_size]
            offset += self._chunk_size
            # Let other tasks (silence ticks, stop requests) interleave
            await asyncio.sleep(0)

    def close(self) -> None:
        self._open = False


class SoundDeviceCapture(BaseCapture):
    """Records 16-bit mono PCM from the default input device via sounddevice.

    PortAudio delivers blocks on its own thread; they are handed to the event
    loop with ``call_soon_threadsafe``.  Blocks whose RMS energy falls below
    ``silence_threshold`` are dropped, so a quiet room produces no chunks and
    the size-based silence detector sees no activity.  The recording is
    uploaded as WAV.
    """

    mime_type = "audio/wav"

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        device: int | str | None = None,
        open_timeout: float = OPEN_TIMEOUT_SECONDS,
        silence_threshold: float = 0.01,
    ) -> None:
        self._processor = AudioProcessor(sample_rate=sample_rate, channels=channels)
        self._device = device
        self._open_timeout = open_timeout
        self._silence_threshold = silence_threshold
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending = bytearray()

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    async def open(self) -> "SoundDeviceCapture":
        if self._stream is not None:
            return self
        self._loop = asyncio.get_running_loop()
        self._pending.clear()

        future = self._loop.run_in_executor(None, self._start_stream)
        try:
            self._stream = await asyncio.wait_for(asyncio.shield(future), self._open_timeout)
        except TimeoutError:
            # The device may still open later; close it as soon as it does
            future.add_done_callback(_close_late_stream)
            raise CaptureTimeoutError(self._open_timeout) from None
        except asyncio.CancelledError:
            future.add_done_callback(_close_late_stream)
            raise

        logger.info(
            "Microphone opened (%d Hz, %d ch)",
            self._processor.sample_rate,
            self._processor.channels,
        )
        return self

    def _start_stream(self):
        import sounddevice as sd

        try:
            sd.query_devices(self._device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            raise DeviceUnavailableError(f"No input device: {exc}") from exc

        try:
            stream = sd.RawInputStream(
                samplerate=self._processor.sample_rate,
                channels=self._processor.channels,
                dtype="int16",
                device=self._device,
                callback=self._on_block,
            )
            stream.start()
        except sd.PortAudioError as exc:
            message = str(exc)
            if "permission" in message.lower() or "not permitted" in message.lower():
                raise PermissionDeniedError(f"Microphone access denied: {message}") from exc
            raise DeviceUnavailableError(f"Microphone not accessible: {message}") from exc
        return stream

    def _on_block(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning("Audio input status: %s", status)
        block = bytes(indata)
        if self._processor.is_silent(block, self._silence_threshold):
            return
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._pending.extend, block)

    async def chunks(self, interval_ms: int = CHUNK_INTERVAL_MS) -> AsyncIterator[bytes]:
        while self._stream is not None:
            await asyncio.sleep(interval_ms / 1000)
            if self._pending:
                chunk = bytes(self._pending)
                self._pending.clear()
                yield chunk

    def close(self) -> None:
        stream, self._stream = self._stream, None
        self._pending.clear()
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception:
            logger.warning("Error while releasing microphone", exc_info=True)
        logger.info("Microphone released")

    def assemble(self, chunks: list[bytes]) -> AudioPayload:
        if not chunks:
            return AudioPayload(data=b"", mime_type=self.mime_type)
        return AudioPayload(data=self._processor.to_wav_bytes(b"".join(chunks)), mime_type=self.mime_type)


def _close_late_stream(future: asyncio.Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    stream = future.result()
    stream.stop()
    stream.close()
    logger.info("Closed microphone that opened after the timeout")
