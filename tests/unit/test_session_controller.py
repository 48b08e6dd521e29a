"""Tests for the recording session state machine.

The controller is driven purely by events; the fake clock from conftest
controls silence timing and the fake player stands in for the speakers.
"""

import re

import pytest

from voicerelay.core.exceptions import (
    DeviceUnavailableError,
    PermissionDeniedError,
    PlaybackError,
    RelayHTTPError,
    RelayTimeoutError,
    RelayUnreachableError,
)
from voicerelay.core.models import AudioReply, ErrorReply, StructuredReply, TextReply, UIState
from voicerelay.services.audio.playback import PlaybackUnit
from voicerelay.services.session import (
    AwaitPlayback,
    ButtonPressed,
    CancelPlayback,
    CancelSilenceTimer,
    ChunkReceived,
    CloseMicrophone,
    ControllerConfig,
    EnableFallback,
    FallbackPreference,
    MicrophoneFailed,
    MicrophoneOpened,
    OpenMicrophone,
    PlaybackEnded,
    PlaybackFailed,
    RelayFailed,
    RelayResolved,
    Retry,
    SendAudio,
    SessionController,
    SetEmail,
    SilenceTick,
    Start,
    StartSilenceTimer,
    Stop,
    Teardown,
    generate_session_id,
)
from voicerelay.services.session.controller import (
    DEGRADED_MESSAGE,
    EMPTY_RECORDING_MESSAGE,
    FALLBACK_ENABLED_MESSAGE,
    GREETING,
    INTERRUPTED_MESSAGE,
    LISTENING_MESSAGE,
    LOADING_MESSAGE,
    SILENCE_NOTICE,
    TIMEOUT_MESSAGE,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record(controller, *chunks: bytes) -> list:
    """Start listening, deliver chunks, stop; return the actions from Stop."""
    controller.handle(Start())
    controller.handle(MicrophoneOpened())
    for chunk in chunks:
        controller.handle(ChunkReceived(data=chunk))
    return controller.handle(Stop())


def _send(controller) -> SendAudio:
    """Record enough audio to be sent and return the SendAudio action."""
    actions = _record(controller, b"a" * 600, b"b" * 600)
    sends = [a for a in actions if isinstance(a, SendAudio)]
    assert len(sends) == 1
    return sends[0]


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


class TestStart:
    def test_initial_state(self, controller):
        assert controller.state == UIState.idle
        assert controller.message == GREETING

    def test_start_opens_microphone_and_timer(self, controller):
        actions = controller.handle(Start())

        assert actions == [OpenMicrophone(generation=1), StartSilenceTimer(interval_seconds=1.0)]
        assert controller.state == UIState.listening
        assert controller.message == LISTENING_MESSAGE
        assert controller.session is not None

    def test_start_while_listening_is_noop(self, controller):
        controller.handle(Start())
        assert controller.handle(Start()) == []

    def test_button_toggles_start_and_stop(self, controller):
        controller.handle(ButtonPressed())
        assert controller.state == UIState.listening

        controller.handle(ButtonPressed())
        assert controller.state == UIState.idle

    def test_microphone_opening_after_stop_is_closed(self, controller):
        controller.handle(Start())
        controller.handle(Stop())

        assert controller.handle(MicrophoneOpened()) == [CloseMicrophone()]


class TestRecordingGenerations:
    def test_each_start_opens_a_new_generation(self, controller):
        controller.handle(Start())
        controller.handle(Stop())
        actions = controller.handle(Start())

        assert OpenMicrophone(generation=2) in actions
        assert controller.recording_generation == 2

    def test_chunks_from_an_earlier_recording_are_dropped(self, controller):
        controller.handle(Start())
        first = controller.recording_generation
        controller.handle(Stop())
        controller.handle(Start())

        controller.handle(ChunkReceived(data=b"x" * 2000, generation=first))
        controller.handle(ChunkReceived(data=b"y" * 10, generation=controller.recording_generation))

        assert controller.session.chunks == [b"y" * 10]

    def test_end_of_an_earlier_stream_does_not_stop_the_new_recording(self, controller):
        controller.handle(Start())
        first = controller.recording_generation
        controller.handle(Stop())
        controller.handle(Start())

        assert controller.handle(Stop(generation=first)) == []
        assert controller.state == UIState.listening

    def test_late_open_from_an_earlier_recording_keeps_microphone(self, controller):
        controller.handle(Start())
        first = controller.recording_generation
        controller.handle(Stop())
        controller.handle(Start())

        assert controller.handle(MicrophoneOpened(generation=first)) == []
        stale_failure = MicrophoneFailed(error=PermissionDeniedError(), generation=first)
        assert controller.handle(stale_failure) == []
        assert controller.state == UIState.listening


class TestMicrophoneFailure:
    def test_permission_denied(self, controller):
        controller.handle(Start())

        actions = controller.handle(MicrophoneFailed(error=PermissionDeniedError()))

        assert CloseMicrophone() in actions
        assert CancelSilenceTimer() in actions
        assert controller.state == UIState.idle
        assert "denied" in controller.message
        assert controller.session is None

    def test_device_unavailable(self, controller):
        controller.handle(Start())
        controller.handle(MicrophoneFailed(error=DeviceUnavailableError("no input")))
        assert "no input" in controller.message

    def test_auto_fallback_enables_preference(self, player, storage):
        controller = SessionController(
            playback=PlaybackUnit(player),
            preference=FallbackPreference(storage),
            config=ControllerConfig(auto_fallback=True),
        )
        controller.handle(Start())

        controller.handle(MicrophoneFailed(error=PermissionDeniedError()))

        assert controller.state == UIState.idle
        assert storage["enableFallback"] == "true"


class TestStop:
    def test_short_recording_is_not_sent(self, controller):
        actions = _record(controller, b"x" * 100)

        assert not any(isinstance(a, SendAudio) for a in actions)
        assert controller.state == UIState.idle
        assert controller.message == EMPTY_RECORDING_MESSAGE

    def test_recording_without_chunks_is_not_sent(self, controller):
        actions = _record(controller)
        assert actions == [CancelSilenceTimer(), CloseMicrophone()]

    def test_recording_is_sent_in_order(self, controller):
        send = _send(controller)

        assert send.request.audio.data == b"a" * 600 + b"b" * 600
        assert send.request.session_id == "session_test"
        assert send.request.fallback_requested is False
        assert controller.state == UIState.loading
        assert controller.message == LOADING_MESSAGE

    def test_stop_releases_microphone_and_timer(self, controller):
        actions = _record(controller, b"a" * 2000)
        assert actions[:2] == [CancelSilenceTimer(), CloseMicrophone()]

    def test_chunks_after_stop_are_ignored(self, controller):
        _send(controller)
        controller.handle(ChunkReceived(data=b"late" * 100))
        assert controller.session is None

    def test_stop_when_idle_is_noop(self, controller):
        assert controller.handle(Stop()) == []

    def test_email_is_forwarded(self, controller):
        controller.handle(SetEmail(email=" user@example.com "))
        assert _send(controller).request.user_email == "user@example.com"


class TestSilence:
    def test_fires_after_five_quiet_seconds(self, controller, clock):
        controller.handle(Start())
        controller.handle(ChunkReceived(data=b"a" * 2000))

        clock.advance(4.0)
        assert controller.handle(SilenceTick()) == []

        clock.advance(1.0)
        actions = controller.handle(SilenceTick())

        assert any(isinstance(a, SendAudio) for a in actions)
        assert controller.notice == SILENCE_NOTICE

    def test_activity_resets_window(self, controller, clock):
        controller.handle(Start())
        clock.advance(4.0)
        controller.handle(ChunkReceived(data=b"a" * 2000))
        clock.advance(4.0)

        assert controller.handle(SilenceTick()) == []
        assert controller.state == UIState.listening

    def test_noise_chunks_do_not_reset_window(self, controller, clock):
        controller.handle(Start())
        for _ in range(5):
            clock.advance(1.0)
            controller.handle(ChunkReceived(data=b"n" * 10))

        controller.handle(SilenceTick())

        # Only noise was captured, so nothing is sent
        assert controller.state == UIState.idle
        assert controller.message == EMPTY_RECORDING_MESSAGE
        assert controller.notice == SILENCE_NOTICE

    def test_tick_outside_listening_is_ignored(self, controller, clock):
        clock.advance(60.0)
        assert controller.handle(SilenceTick()) == []


# ---------------------------------------------------------------------------
# Relay results
# ---------------------------------------------------------------------------


class TestRelayResolved:
    def test_audio_reply_starts_playback(self, controller, player):
        send = _send(controller)

        actions = controller.handle(
            RelayResolved(generation=send.generation, response=AudioReply(data=b"mp3"))
        )

        assert actions == [AwaitPlayback(generation=send.generation)]
        assert controller.state == UIState.speaking
        assert len(player.started) == 1

    def test_playback_end_returns_to_idle(self, controller, player):
        send = _send(controller)
        controller.handle(
            RelayResolved(
                generation=send.generation,
                response=AudioReply(data=b"mp3", text="It is sunny."),
            )
        )

        controller.handle(PlaybackEnded(generation=send.generation))

        assert controller.state == UIState.idle
        assert controller.message == "It is sunny."
        assert player.started[0].revoked is True

    def test_playback_start_failure(self, controller, player):
        player.start_error = PlaybackError("Speaker not accessible")
        send = _send(controller)

        controller.handle(RelayResolved(generation=send.generation, response=AudioReply(data=b"x")))

        assert controller.state == UIState.idle
        assert "Speaker not accessible" in controller.message

    def test_playback_failure_mid_stream(self, controller, player):
        send = _send(controller)
        controller.handle(RelayResolved(generation=send.generation, response=AudioReply(data=b"x")))

        controller.handle(PlaybackFailed(generation=send.generation, error=PlaybackError("lost")))

        assert controller.state == UIState.idle
        assert player.started[0].revoked is True

    def test_structured_success(self, controller):
        send = _send(controller)

        controller.handle(
            RelayResolved(
                generation=send.generation,
                response=StructuredReply(success=True, message="Done!"),
            )
        )

        assert controller.state == UIState.idle
        assert controller.message == "Done!"

    def test_fallback_reply_enables_preference(self, controller, storage):
        send = _send(controller)
        controller.handle(
            RelayResolved(
                generation=send.generation,
                response=StructuredReply(success=True, message="Hi", is_fallback=True),
            )
        )

        assert storage["enableFallback"] == "true"
        assert _send(controller).request.fallback_requested is True

    def test_text_reply(self, controller):
        send = _send(controller)
        controller.handle(RelayResolved(generation=send.generation, response=TextReply(text="hey")))
        assert controller.state == UIState.idle
        assert controller.message == "hey"

    def test_processing_reply_is_a_timeout(self, controller):
        send = _send(controller)
        controller.handle(
            RelayResolved(
                generation=send.generation,
                response=StructuredReply(success=True, message="Processing", timeout=True),
            )
        )
        assert controller.state == UIState.error
        assert controller.message == TIMEOUT_MESSAGE

    def test_error_reply(self, controller):
        send = _send(controller)
        controller.handle(
            RelayResolved(
                generation=send.generation,
                response=ErrorReply(status_code=500, message="Webhook exploded"),
            )
        )
        assert controller.state == UIState.error
        assert controller.message == "Webhook exploded"

    def test_stale_result_is_ignored(self, controller):
        send = _send(controller)
        controller.handle(Teardown())

        actions = controller.handle(
            RelayResolved(generation=send.generation, response=AudioReply(data=b"x"))
        )

        assert actions == []
        assert controller.state == UIState.idle

    def test_button_while_loading_is_noop(self, controller):
        _send(controller)
        assert controller.handle(ButtonPressed()) == []
        assert controller.state == UIState.loading


class TestRelayFailure:
    def test_timeout_message(self, controller):
        send = _send(controller)
        controller.handle(RelayFailed(generation=send.generation, error=RelayTimeoutError()))
        assert controller.state == UIState.error
        assert controller.message == TIMEOUT_MESSAGE

    def test_unreachable_message(self, controller):
        send = _send(controller)
        controller.handle(
            RelayFailed(generation=send.generation, error=RelayUnreachableError("refused"))
        )
        assert controller.message.startswith("Connection error: refused")

    def test_retry_resends_same_payload(self, controller):
        first = _send(controller)
        controller.handle(RelayFailed(generation=first.generation, error=RelayTimeoutError()))
        assert controller.can_retry is True

        (retry,) = controller.handle(Retry())

        assert isinstance(retry, SendAudio)
        assert retry.generation > first.generation
        assert retry.request.audio == first.request.audio
        assert controller.state == UIState.loading

    def test_retry_without_failure_is_noop(self, controller):
        assert controller.handle(Retry()) == []

    def test_fallback_offered_after_repeated_failures(self, controller):
        send = _send(controller)
        controller.handle(RelayFailed(generation=send.generation, error=RelayTimeoutError()))
        assert controller.offer_fallback is False

        (retry,) = controller.handle(Retry())
        controller.handle(RelayFailed(generation=retry.generation, error=RelayTimeoutError()))

        assert controller.offer_fallback is True

    def test_enable_fallback_recovers(self, controller, storage):
        send = _send(controller)
        controller.handle(RelayFailed(generation=send.generation, error=RelayTimeoutError()))

        controller.handle(EnableFallback())

        assert controller.state == UIState.idle
        assert controller.message == FALLBACK_ENABLED_MESSAGE
        assert storage["enableFallback"] == "true"
        assert controller.offer_fallback is False

    def test_start_after_error_is_allowed(self, controller):
        send = _send(controller)
        controller.handle(RelayFailed(generation=send.generation, error=RelayTimeoutError()))

        controller.handle(Start())

        assert controller.state == UIState.listening
        assert controller.can_retry is False

    def test_auto_fallback_hides_errors(self, player, storage):
        controller = SessionController(
            playback=PlaybackUnit(player),
            preference=FallbackPreference(storage),
            config=ControllerConfig(auto_fallback=True),
        )
        send = _send(controller)

        controller.handle(RelayFailed(generation=send.generation, error=RelayTimeoutError()))

        assert controller.state == UIState.idle
        assert controller.message == DEGRADED_MESSAGE
        assert storage["enableFallback"] == "true"


# ---------------------------------------------------------------------------
# Playback cancellation / teardown
# ---------------------------------------------------------------------------


class TestCancel:
    @pytest.fixture
    def speaking(self, controller):
        send = _send(controller)
        controller.handle(RelayResolved(generation=send.generation, response=AudioReply(data=b"x")))
        return send.generation

    def test_cancel_stops_playback(self, controller, player, speaking):
        controller.handle(CancelPlayback())

        assert controller.state == UIState.idle
        assert controller.message == INTERRUPTED_MESSAGE
        assert player.stop_calls == 1
        assert player.started[0].revoked is True

    def test_button_while_speaking_cancels(self, controller, speaking):
        controller.handle(ButtonPressed())
        assert controller.state == UIState.idle

    def test_late_playback_end_after_cancel_is_ignored(self, controller, speaking):
        controller.handle(CancelPlayback())
        assert controller.handle(PlaybackEnded(generation=speaking)) == []
        assert controller.message == INTERRUPTED_MESSAGE

    def test_teardown_releases_everything(self, controller, player, speaking):
        actions = controller.handle(Teardown())

        assert CloseMicrophone() in actions
        assert controller.state == UIState.idle
        assert player.started[0].revoked is True

    def test_teardown_while_listening(self, controller):
        controller.handle(Start())
        actions = controller.handle(Teardown())
        assert actions == [CancelSilenceTimer(), CloseMicrophone()]
        assert controller.session is None


def test_generated_session_id_format():
    assert re.fullmatch(r"session_[a-z0-9]{26}", generate_session_id())


def test_unknown_event_is_rejected(controller):
    with pytest.raises(TypeError):
        controller.handle(object())


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_two_kilobyte_recording_answered_with_hi(controller):
    actions = _record(controller, b"w" * 1000, b"w" * 1000)
    (send,) = [a for a in actions if isinstance(a, SendAudio)]
    assert send.request.audio.size_bytes == 2000

    controller.handle(
        RelayResolved(
            generation=send.generation,
            response=StructuredReply(success=True, message="Hi"),
        )
    )

    assert controller.state == UIState.idle
    assert controller.message == "Hi"


def test_upstream_500_offers_retry(controller):
    send = _send(controller)

    controller.handle(
        RelayFailed(
            generation=send.generation,
            error=RelayHTTPError(500, "The AI assistant service is currently unavailable."),
        )
    )

    assert controller.state == UIState.error
    assert "unavailable" in controller.message
    assert controller.can_retry is True
