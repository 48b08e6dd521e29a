"""Audio processing utilities for PCM data.

Converts raw PCM bytes to numpy arrays, frames them as WAV for upload,
and gates silent blocks via RMS energy.
"""

import io
import wave

import numpy as np


class AudioProcessor:
    """Handles PCM audio data conversion and analysis.

    Provides utilities for converting raw PCM bytes to numpy arrays,
    wrapping them in a WAV container, and detecting silence via RMS energy.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        sample_width: int = 2,
        channels: int = 1,
    ) -> None:
        """Initialize the audio processor.

        Args:
            sample_rate: Audio sample rate in Hz (default: 16 kHz).
            sample_width: Bytes per sample (2 = 16-bit signed PCM).
            channels: Number of audio channels (1 = mono).
        """
        self.sample_rate = sample_rate
        self.sample_width = sample_width
        self.channels = channels

    def pcm_to_ndarray(self, pcm_data: bytes) -> np.ndarray:
        """Convert raw PCM bytes (16-bit signed) to float32 numpy array.

        A trailing partial frame is dropped.

        Returns:
            Float32 numpy array normalized to [-1.0, 1.0].
        """
        frame_size = self.sample_width * self.channels
        usable = len(pcm_data) - (len(pcm_data) % frame_size)
        return np.frombuffer(pcm_data[:usable], dtype=np.int16).astype(np.float32) / 32768.0

    def to_wav_bytes(self, pcm_data: bytes) -> bytes:
        """Wrap raw PCM bytes in an in-memory WAV container."""
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(self.sample_width)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm_data)
        return buf.getvalue()

    def is_silent(self, pcm_data: bytes, threshold: float = 0.01) -> bool:
        """Check if a PCM block is silence based on RMS energy.

        Args:
            pcm_data: Raw PCM bytes (16-bit).
            threshold: RMS energy below this value is considered silence.

        Returns:
            True if the block is silence.
        """
        audio = self.pcm_to_ndarray(pcm_data)
        if len(audio) == 0:
            return True
        # RMS (Root Mean Square) measures signal energy; low RMS = silence
        rms = np.sqrt(np.mean(audio**2))
        return float(rms) < threshold
