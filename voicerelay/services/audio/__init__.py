"""
Audio module - Microphone capture, silence detection and reply playback.
"""

from .capture import BaseCapture, BufferedCapture, SoundDeviceCapture
from .playback import BasePlayer, PlaybackResource, PlaybackUnit, SoundDevicePlayer
from .processor import AudioProcessor
from .silence import SilenceDetector

__all__ = [
    "AudioProcessor",
    "BaseCapture",
    "BasePlayer",
    "BufferedCapture",
    "PlaybackResource",
    "PlaybackUnit",
    "SilenceDetector",
    "SoundDeviceCapture",
    "SoundDevicePlayer",
]
