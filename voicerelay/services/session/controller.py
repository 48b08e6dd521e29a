"""
Recording session controller: the voice assistant state machine.

States: idle -> listening -> loading -> speaking -> idle, with error
reachable from loading.

The controller is synchronous and framework-independent.  ``handle(event)``
applies one event, updates ``state`` / ``message`` and returns the actions
the runtime must carry out (open the microphone, start a timer, call the
relay, wait for playback).  Audio playback is the one side effect performed
inline, so that cancelling a reply is effective within the same call.
"""

import logging
import secrets
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from voicerelay.core.exceptions import (
    CaptureTimeoutError,
    DeviceUnavailableError,
    EmptyRecordingError,
    MalformedResponseError,
    PermissionDeniedError,
    PlaybackError,
    RelayHTTPError,
    RelayTimeoutError,
    RelayUnreachableError,
    VoiceRelayError,
)
from voicerelay.core.models import (
    AudioPayload,
    AudioReply,
    ErrorReply,
    RelayRequest,
    RelayResponse,
    StructuredReply,
    TextReply,
    UIState,
)
from voicerelay.services.audio.playback import PlaybackUnit
from voicerelay.services.audio.silence import SilenceDetector
from voicerelay.services.session.events import (
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
from voicerelay.services.session.preferences import FallbackPreference

logger = logging.getLogger(__name__)

GREETING = "Hello! How can I assist you?"
LISTENING_MESSAGE = "I'm listening..."
LOADING_MESSAGE = "Hold on a second, while I retrieve the information..."
SPEAKING_MESSAGE = "The assistant is responding..."
EMPTY_RECORDING_MESSAGE = "I didn't catch that. Please try again."
SILENCE_NOTICE = "I noticed you were silent, so I stopped listening."
INTERRUPTED_MESSAGE = "Response interrupted."
TEXT_RECEIVED_MESSAGE = "Response received. Thank you for your message."
FALLBACK_ENABLED_MESSAGE = "Fallback mode enabled. You can now try again."
DEGRADED_MESSAGE = "I'm having trouble connecting to our service, but I can still help you."
MICROPHONE_DEGRADED_MESSAGE = "Microphone access issue. I'll still try to help you."
TIMEOUT_MESSAGE = (
    "Request took too long. The AI assistant service may be busy. Please try again shortly."
)
MALFORMED_MESSAGE = "An unexpected response was received. Please try again."

_SESSION_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Opaque per-page-load identifier, e.g. ``session_k3j9...``."""
    return "session_" + "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(26))


@dataclass
class ControllerConfig:
    """Policy constants for one controller instance."""

    min_payload_bytes: int = 1024
    silence_timeout_ms: int = 5000
    silence_check_ms: int = 1000
    noise_floor_bytes: int = 10
    auto_fallback: bool = False  # Production deployments never show hard errors
    fallback_offer_after: int = 2  # Consecutive failures before offering fallback
    environment: str | None = None


@dataclass
class RecordingSession:
    """Chunks buffered for the recording in progress."""

    session_id: str
    mime_type: str
    started_at: float
    last_chunk_at: float
    chunks: list[bytes] = field(default_factory=list)
    active: bool = True

    def clear(self) -> None:
        self.chunks.clear()
        self.active = False


class SessionController:
    """Drives one recording/relay/playback cycle at a time."""

    def __init__(
        self,
        playback: PlaybackUnit,
        preference: FallbackPreference | None = None,
        config: ControllerConfig | None = None,
        assemble: Callable[[list[bytes]], AudioPayload] | None = None,
        mime_type: str = "audio/webm",
        clock: Callable[[], float] = time.monotonic,
        session_id: str | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            playback: Playback unit used for audio replies.
            preference: Session-scoped fallback preference.
            config: Policy constants (defaults match the browser client).
            assemble: Turns buffered chunks into a payload (capture-specific).
            mime_type: MIME type of the recorded chunks.
            clock: Monotonic clock in seconds.
            session_id: Reuse an existing identifier instead of generating one.
        """
        self.config = config or ControllerConfig()
        self.playback = playback
        self.preference = preference or FallbackPreference()
        self.detector = SilenceDetector(
            timeout_ms=self.config.silence_timeout_ms,
            noise_floor_bytes=self.config.noise_floor_bytes,
            check_interval_ms=self.config.silence_check_ms,
        )
        self.session_id = session_id or generate_session_id()
        self.user_email: str | None = None
        self.state = UIState.idle
        self.message = GREETING
        self.notice: str | None = None
        self.consecutive_failures = 0

        self._mime_type = mime_type
        self._assemble = assemble or (lambda chunks: AudioPayload.from_chunks(chunks, mime_type))
        self._clock = clock
        self._session: RecordingSession | None = None
        self._generation = 0
        self._recording_generation = 0
        self._playing_generation: int | None = None
        self._reply_text: str | None = None
        self._last_payload: AudioPayload | None = None

        self._handlers: dict[type, Callable[[Event], list[Action]]] = {
            ButtonPressed: self._on_button_pressed,
            Start: self._on_start,
            Stop: self._on_stop,
            MicrophoneOpened: self._on_microphone_opened,
            MicrophoneFailed: self._on_microphone_failed,
            ChunkReceived: self._on_chunk_received,
            SilenceTick: self._on_silence_tick,
            SilenceTimeout: self._on_silence_timeout,
            RelayResolved: self._on_relay_resolved,
            RelayFailed: self._on_relay_failed,
            PlaybackEnded: self._on_playback_ended,
            PlaybackFailed: self._on_playback_failed,
            CancelPlayback: self._on_cancel_playback,
            Retry: self._on_retry,
            EnableFallback: self._on_enable_fallback,
            SetEmail: self._on_set_email,
            Teardown: self._on_teardown,
        }

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    @property
    def recording_generation(self) -> int:
        """Generation of the most recent recording; capture events must match it."""
        return self._recording_generation

    @property
    def can_retry(self) -> bool:
        return self.state == UIState.error and self._last_payload is not None

    @property
    def offer_fallback(self) -> bool:
        """Whether the explicit "enable fallback" control should be shown."""
        return (
            self.state == UIState.error
            and self.consecutive_failures >= self.config.fallback_offer_after
            and not self.preference.enabled
        )

    def use_assembler(
        self, assemble: Callable[[list[bytes]], AudioPayload], mime_type: str
    ) -> None:
        """Build later recordings with ``assemble`` (the capture in use)."""
        self._assemble = assemble
        self._mime_type = mime_type

    def handle(self, event: Event) -> list[Action]:
        """Apply one event and return the side effects to perform."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unknown event: {type(event).__name__}")
        before = self.state
        actions = handler(event)
        if self.state != before:
            logger.debug("%s: %s -> %s", type(event).__name__, before, self.state)
        return actions

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _on_button_pressed(self, _event: ButtonPressed) -> list[Action]:
        if self.state == UIState.loading:
            return []
        if self.state == UIState.speaking:
            return self._on_cancel_playback(CancelPlayback())
        if self.state == UIState.listening:
            return self._on_stop(Stop())
        return self._on_start(Start())

    def _on_start(self, _event: Start) -> list[Action]:
        if self.state not in (UIState.idle, UIState.error):
            logger.debug("Start ignored while %s", self.state)
            return []
        now = self._clock()
        self._session = RecordingSession(
            session_id=self.session_id,
            mime_type=self._mime_type,
            started_at=now,
            last_chunk_at=now,
        )
        self._recording_generation += 1
        self._last_payload = None
        self.detector.arm(now)
        self.state = UIState.listening
        self.message = LISTENING_MESSAGE
        self.notice = None
        logger.info("Recording started (session=%s)", self.session_id)
        return [
            OpenMicrophone(generation=self._recording_generation),
            StartSilenceTimer(interval_seconds=self.config.silence_check_ms / 1000),
        ]

    def _is_stale_capture(self, generation: int | None) -> bool:
        if generation is None or generation == self._recording_generation:
            return False
        logger.debug("Ignoring capture event from recording %d", generation)
        return True

    def _on_microphone_opened(self, event: MicrophoneOpened) -> list[Action]:
        if self._is_stale_capture(event.generation):
            return []
        if self.state != UIState.listening:
            # Stopped while the permission prompt was pending
            return [CloseMicrophone()]
        return []

    def _on_microphone_failed(self, event: MicrophoneFailed) -> list[Action]:
        if self._is_stale_capture(event.generation):
            return []
        if self.state != UIState.listening:
            return [CloseMicrophone()]
        logger.warning("Microphone unavailable: %s", event.error.detail)
        self._abandon_session()
        self.state = UIState.idle
        if self.config.auto_fallback:
            self.preference.enable()
            self.message = MICROPHONE_DEGRADED_MESSAGE
        else:
            self.message = _describe_capture_error(event.error)
        return [CancelSilenceTimer(), CloseMicrophone()]

    def _on_chunk_received(self, event: ChunkReceived) -> list[Action]:
        if self._is_stale_capture(event.generation):
            return []
        session = self._session
        if session is None or not session.active or self.state != UIState.listening:
            return []
        if not event.data:
            return []
        now = self._clock()
        session.chunks.append(event.data)
        if self.detector.record_chunk(len(event.data), now):
            session.last_chunk_at = now
        return []

    def _on_silence_tick(self, _event: SilenceTick) -> list[Action]:
        if self.state != UIState.listening:
            return []
        if self.detector.tick(self._clock()):
            return self._on_silence_timeout(SilenceTimeout())
        return []

    def _on_silence_timeout(self, _event: SilenceTimeout) -> list[Action]:
        if self.state != UIState.listening:
            return []
        self.notice = SILENCE_NOTICE
        return self._finish_recording()

    def _on_stop(self, event: Stop) -> list[Action]:
        if self.state != UIState.listening or self._is_stale_capture(event.generation):
            return []
        return self._finish_recording()

    def _finish_recording(self) -> list[Action]:
        session = self._session
        actions: list[Action] = [CancelSilenceTimer(), CloseMicrophone()]
        self.detector.disarm()
        payload = self._assemble(list(session.chunks) if session else [])
        self._abandon_session()

        logger.info("Recording complete: %d bytes", payload.size_bytes)
        if payload.size_bytes < self.config.min_payload_bytes:
            logger.info(
                "Not sending: %s",
                EmptyRecordingError(payload.size_bytes, self.config.min_payload_bytes).detail,
            )
            self.state = UIState.idle
            self.message = EMPTY_RECORDING_MESSAGE
            return actions

        self._last_payload = payload
        actions.append(self._send(payload))
        return actions

    def _abandon_session(self) -> None:
        if self._session is not None:
            self._session.clear()
        self._session = None

    # ------------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------------

    def _send(self, payload: AudioPayload) -> SendAudio:
        self._generation += 1
        self.state = UIState.loading
        self.message = LOADING_MESSAGE
        request = RelayRequest(
            audio=payload,
            session_id=self.session_id,
            user_email=self.user_email,
            fallback_requested=self.preference.enabled,
            environment=self.config.environment,
        )
        return SendAudio(generation=self._generation, request=request)

    def _is_current(self, generation: int) -> bool:
        if generation != self._generation or self.state != UIState.loading:
            logger.debug("Ignoring stale relay result (generation %d)", generation)
            return False
        return True

    def _on_relay_resolved(self, event: RelayResolved) -> list[Action]:
        if not self._is_current(event.generation):
            return []
        reply: RelayResponse = event.response

        if isinstance(reply, AudioReply):
            self._succeed()
            self._reply_text = reply.text
            try:
                self.playback.play(reply)
            except PlaybackError as exc:
                self.state = UIState.idle
                self.message = f"Error playing audio response: {exc.detail}"
                return []
            self._playing_generation = event.generation
            self.state = UIState.speaking
            self.message = SPEAKING_MESSAGE
            return [AwaitPlayback(generation=event.generation)]

        if isinstance(reply, StructuredReply):
            if reply.is_fallback:
                self.preference.enable()
            if reply.timeout:
                return self._fail(RelayTimeoutError(reply.message))
            if not reply.success:
                return self._fail(RelayHTTPError(200, reply.message))
            self._succeed()
            self.state = UIState.idle
            self.message = reply.message
            return []

        if isinstance(reply, TextReply):
            self._succeed()
            self.state = UIState.idle
            self.message = reply.text.strip() or TEXT_RECEIVED_MESSAGE
            return []

        if isinstance(reply, ErrorReply):
            return self._fail(RelayHTTPError(reply.status_code, reply.message))

        raise TypeError(f"Unhandled relay reply: {type(reply).__name__}")

    def _on_relay_failed(self, event: RelayFailed) -> list[Action]:
        if not self._is_current(event.generation):
            return []
        return self._fail(event.error)

    def _succeed(self) -> None:
        self.consecutive_failures = 0
        self._last_payload = None

    def _fail(self, error: VoiceRelayError) -> list[Action]:
        self.consecutive_failures += 1
        logger.warning("Relay failed (%s): %s", error.code, error.detail)
        if self.config.auto_fallback:
            self.preference.enable()
            self._last_payload = None
            self.state = UIState.idle
            self.message = DEGRADED_MESSAGE
            return []
        self.state = UIState.error
        self.message = _describe_relay_error(error)
        return []

    def _on_retry(self, _event: Retry) -> list[Action]:
        if not self.can_retry:
            return []
        return [self._send(self._last_payload)]

    def _on_enable_fallback(self, _event: EnableFallback) -> list[Action]:
        self.preference.enable()
        if self.state == UIState.error:
            self.state = UIState.idle
            self.consecutive_failures = 0
            self.message = FALLBACK_ENABLED_MESSAGE
        return []

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def _on_cancel_playback(self, _event: CancelPlayback) -> list[Action]:
        if self.state != UIState.speaking:
            return []
        self.playback.cancel()
        self._playing_generation = None
        self.state = UIState.idle
        self.message = self._reply_text or INTERRUPTED_MESSAGE
        return []

    def _on_playback_ended(self, event: PlaybackEnded) -> list[Action]:
        if self.state != UIState.speaking or event.generation != self._playing_generation:
            return []
        self.playback.finish()
        self._playing_generation = None
        self.state = UIState.idle
        self.message = self._reply_text or GREETING
        return []

    def _on_playback_failed(self, event: PlaybackFailed) -> list[Action]:
        if self.state != UIState.speaking or event.generation != self._playing_generation:
            return []
        self.playback.fail(event.error)
        self._playing_generation = None
        self.state = UIState.idle
        self.message = f"Error playing audio response: {event.error.detail}"
        return []

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def _on_set_email(self, event: SetEmail) -> list[Action]:
        self.user_email = event.email.strip() or None
        return []

    def _on_teardown(self, _event: Teardown) -> list[Action]:
        if self.state == UIState.speaking:
            self.playback.cancel()
        self.detector.disarm()
        self._abandon_session()
        # Invalidate any relay call or playback still in flight
        self._generation += 1
        self._playing_generation = None
        self.state = UIState.idle
        return [CancelSilenceTimer(), CloseMicrophone()]


def _describe_capture_error(error: VoiceRelayError) -> str:
    if isinstance(error, PermissionDeniedError):
        return "Microphone access was denied. Please allow microphone access and try again."
    if isinstance(error, CaptureTimeoutError):
        return "Microphone access timed out. Please try again."
    if isinstance(error, DeviceUnavailableError):
        return f"Error accessing microphone: {error.detail}"
    return f"There was an error with the audio recording: {error.detail}"


def _describe_relay_error(error: VoiceRelayError) -> str:
    if isinstance(error, RelayTimeoutError):
        return TIMEOUT_MESSAGE
    if isinstance(error, RelayUnreachableError):
        return f"Connection error: {error.detail}. Please check your internet connection."
    if isinstance(error, MalformedResponseError):
        return MALFORMED_MESSAGE
    if isinstance(error, RelayHTTPError):
        return error.detail
    return f"Error: {error.detail}"
