"""Events consumed and actions emitted by the session controller.

Events are produced by the runtime (user input, device callbacks, timers,
relay results). Actions are the side effects the controller asks the
runtime to perform; the controller itself never awaits anything.
"""

from dataclasses import dataclass

from voicerelay.core.exceptions import VoiceRelayError
from voicerelay.core.models import RelayRequest, RelayResponse

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ButtonPressed:
    """Single toggle control: start, stop, or cancel depending on state."""


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class Stop:
    """User stop, or end of a finite capture stream (``generation`` set)."""

    generation: int | None = None


# Capture events carry the recording generation they were produced for;
# ``None`` means "the recording in progress".


@dataclass(frozen=True)
class MicrophoneOpened:
    generation: int | None = None


@dataclass(frozen=True)
class MicrophoneFailed:
    error: VoiceRelayError
    generation: int | None = None


@dataclass(frozen=True)
class ChunkReceived:
    data: bytes
    generation: int | None = None


@dataclass(frozen=True)
class SilenceTick:
    """Periodic timer tick while listening."""


@dataclass(frozen=True)
class SilenceTimeout:
    pass


@dataclass(frozen=True)
class RelayResolved:
    generation: int
    response: RelayResponse


@dataclass(frozen=True)
class RelayFailed:
    generation: int
    error: VoiceRelayError


@dataclass(frozen=True)
class PlaybackEnded:
    generation: int


@dataclass(frozen=True)
class PlaybackFailed:
    generation: int
    error: VoiceRelayError


@dataclass(frozen=True)
class CancelPlayback:
    pass


@dataclass(frozen=True)
class Retry:
    """Re-send the last recording after a failure."""


@dataclass(frozen=True)
class EnableFallback:
    pass


@dataclass(frozen=True)
class SetEmail:
    email: str


@dataclass(frozen=True)
class Teardown:
    """Component is going away: release everything."""


Event = (
    ButtonPressed
    | Start
    | Stop
    | MicrophoneOpened
    | MicrophoneFailed
    | ChunkReceived
    | SilenceTick
    | SilenceTimeout
    | RelayResolved
    | RelayFailed
    | PlaybackEnded
    | PlaybackFailed
    | CancelPlayback
    | Retry
    | EnableFallback
    | SetEmail
    | Teardown
)

# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OpenMicrophone:
    generation: int


@dataclass(frozen=True)
class CloseMicrophone:
    pass


@dataclass(frozen=True)
class StartSilenceTimer:
    interval_seconds: float


@dataclass(frozen=True)
class CancelSilenceTimer:
    pass


@dataclass(frozen=True)
class SendAudio:
    generation: int
    request: RelayRequest


@dataclass(frozen=True)
class AwaitPlayback:
    generation: int


Action = OpenMicrophone | CloseMicrophone | StartSilenceTimer | CancelSilenceTimer | SendAudio | AwaitPlayback
