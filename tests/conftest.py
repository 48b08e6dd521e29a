"""Shared pytest fixtures for the VoiceRelay test suite.

Provides synthetic PCM audio, a controllable clock, an in-memory audio
player and helpers for building relays on top of ``httpx.MockTransport``.
"""

import math
import struct

import httpx
import pytest
from tenacity import wait_none

from voicerelay.core.config import RelayConfig
from voicerelay.services.audio.playback import BasePlayer, PlaybackResource, PlaybackUnit
from voicerelay.services.relay import WebhookRelay
from voicerelay.services.session import FallbackPreference, SessionController

WEBHOOK_URL = "http://webhook.test/hook"


# ---------------------------------------------------------------------------
# Audio Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_pcm_bytes():
    """Generate 1 second of 440Hz sine-wave PCM audio (16kHz, 16-bit, mono).

    Returns:
        bytes: Raw PCM audio data.
    """
    sample_rate = 16000
    frequency = 440.0
    amplitude = 16000  # ~50% of max int16

    samples = []
    for i in range(sample_rate):
        value = int(amplitude * math.sin(2 * math.pi * frequency * i / sample_rate))
        samples.append(struct.pack("<h", value))
    return b"".join(samples)


@pytest.fixture
def silent_pcm_bytes():
    """Generate 1 second of silence as PCM audio (16kHz, 16-bit, mono)."""
    return b"\x00\x00" * 16000


# ---------------------------------------------------------------------------
# Controller Fixtures
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlayer(BasePlayer):
    """Records start/stop calls instead of touching an output device."""

    def __init__(self) -> None:
        self.started: list[PlaybackResource] = []
        self.stop_calls = 0
        self.start_error: Exception | None = None
        self.wait_error: Exception | None = None

    def start(self, resource: PlaybackResource) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started.append(resource)

    def stop(self) -> None:
        self.stop_calls += 1

    async def wait(self) -> None:
        if self.wait_error is not None:
            raise self.wait_error


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def storage():
    """Session-scoped storage backing the fallback preference."""
    return {}


@pytest.fixture
def controller(clock, player, storage):
    """A controller with a fixed session id and hand-driven clock."""
    return SessionController(
        playback=PlaybackUnit(player),
        preference=FallbackPreference(storage),
        clock=clock,
        session_id="session_test",
    )


# ---------------------------------------------------------------------------
# Relay Fixtures
# ---------------------------------------------------------------------------


def make_relay(handler, config: RelayConfig | None = None, url: str = WEBHOOK_URL) -> WebhookRelay:
    """Build a WebhookRelay whose outbound calls are answered by ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    relay = WebhookRelay(config=config or RelayConfig(), webhook_url=url, client=client)
    relay._retry_wait = wait_none()
    return relay


@pytest.fixture
def relay_factory():
    """Return the ``make_relay`` helper to tests."""
    return make_relay
