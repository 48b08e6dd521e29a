"""
Session module - Recording session state machine and its events.
"""

from .controller import ControllerConfig, RecordingSession, SessionController, generate_session_id
from .events import (
    Action,
    AwaitPlayback,
    ButtonPressed,
    CancelPlayback,
    CancelSilenceTimer,
    ChunkReceived,
    CloseMicrophone,
    EnableFallback,
    Event,
    MicrophoneFailed,
    MicrophoneOpened,
    OpenMicrophone,
    PlaybackEnded,
    PlaybackFailed,
    RelayFailed,
    RelayResolved,
    Retry,
    SendAudio,
    SetEmail,
    SilenceTick,
    SilenceTimeout,
    Start,
    StartSilenceTimer,
    Stop,
    Teardown,
)
from .preferences import FALLBACK_KEY, FallbackPreference

__all__ = [
    "FALLBACK_KEY",
    "Action",
    "AwaitPlayback",
    "ButtonPressed",
    "CancelPlayback",
    "CancelSilenceTimer",
    "ChunkReceived",
    "CloseMicrophone",
    "ControllerConfig",
    "EnableFallback",
    "Event",
    "FallbackPreference",
    "MicrophoneFailed",
    "MicrophoneOpened",
    "OpenMicrophone",
    "PlaybackEnded",
    "PlaybackFailed",
    "RecordingSession",
    "RelayFailed",
    "RelayResolved",
    "Retry",
    "SendAudio",
    "SessionController",
    "SetEmail",
    "SilenceTick",
    "SilenceTimeout",
    "Start",
    "StartSilenceTimer",
    "Stop",
    "Teardown",
    "generate_session_id",
]
