"""
VoiceRelay Streamlit page.

Run with: ``streamlit run voicerelay/ui/app.py``

The browser records the utterance (``st.audio_input``); the page replays it
through the same session controller and runtime the terminal loop uses,
then shows the assistant's reply and plays any audio it returned.
"""

# ---------------------------------------------------------------------------
# Ensure project root is on sys.path so ``from voicerelay.xxx`` imports work.
# Streamlit replaces sys.path[0] with the script directory (voicerelay/ui/).
# ---------------------------------------------------------------------------
import sys  # noqa: E402
from pathlib import Path  # noqa: E402

_project_root = str(Path(__file__).resolve().parent.parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import asyncio  # noqa: E402
import logging  # noqa: E402

import streamlit as st  # noqa: E402

from voicerelay.core.config import get_settings  # noqa: E402
from voicerelay.core.models import UIState  # noqa: E402
from voicerelay.services.audio import BasePlayer, BufferedCapture, PlaybackResource, PlaybackUnit  # noqa: E402
from voicerelay.services.session import (  # noqa: E402
    ControllerConfig,
    EnableFallback,
    FallbackPreference,
    Retry,
    SessionController,
    SetEmail,
    Start,
)
from voicerelay.ui.api_client import SpeechClient  # noqa: E402
from voicerelay.ui.runtime import VoiceLoop  # noqa: E402

logger = logging.getLogger(__name__)


class StreamlitPlayer(BasePlayer):
    """Hands reply audio to ``st.audio``; the browser does the playing."""

    def __init__(self) -> None:
        self.last_audio: tuple[bytes, str] | None = None

    def start(self, resource: PlaybackResource) -> None:
        self.last_audio = (resource.data, resource.mime_type)

    def stop(self) -> None:
        self.last_audio = None

    async def wait(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Page config (must be first Streamlit call)
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="VoiceRelay",
    page_icon="\U0001f399\ufe0f",
    layout="centered",
)

_settings = get_settings()

# ---------------------------------------------------------------------------
# Session state defaults
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "api_base_url": _settings.api_base_url,
    "user_email": "",
    "recorder_key": 0,
}

for key, value in _DEFAULTS.items():
    if key not in st.session_state:
        st.session_state[key] = value

if "controller" not in st.session_state:
    st.session_state.player = StreamlitPlayer()
    st.session_state.controller = SessionController(
        playback=PlaybackUnit(st.session_state.player),
        preference=FallbackPreference(st.session_state),
        config=ControllerConfig(
            auto_fallback=_settings.platform_deployment or _settings.enable_auto_fallback,
            environment="streamlit",
        ),
    )

controller: SessionController = st.session_state.controller
player: StreamlitPlayer = st.session_state.player


def _run_turn(audio_bytes: bytes, mime_type: str, first_event) -> None:
    """Drive one full turn (record -> relay -> playback) to completion."""

    async def _turn() -> None:
        capture = BufferedCapture(audio_bytes, mime_type=mime_type)
        client = SpeechClient(
            base_url=st.session_state.api_base_url,
            timeout=_settings.client_timeout_seconds,
        )
        loop = VoiceLoop(controller, capture, client)
        try:
            loop.post(first_event)
            await loop.drain()
        finally:
            await client.aclose()
            capture.close()

    player.last_audio = None
    asyncio.run(_turn())


# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
with st.sidebar:
    st.title("\U0001f399\ufe0f VoiceRelay")
    st.caption("Talk to the assistant")
    st.divider()
    st.session_state.api_base_url = st.text_input(
        "Relay server URL",
        value=st.session_state.api_base_url,
        help="URL of the VoiceRelay FastAPI server (default: http://localhost:8000)",
    )
    email = st.text_input("Email (optional)", value=st.session_state.user_email)
    if email != st.session_state.user_email:
        st.session_state.user_email = email
        controller.handle(SetEmail(email=email))

    if controller.preference.enabled:
        st.info("Fallback mode is on for this session.")
    st.caption(f"Session: `{controller.session_id}`")

# ---------------------------------------------------------------------------
# Main area
# ---------------------------------------------------------------------------
st.header("Voice Assistant")

recording = st.audio_input(
    "Press to talk",
    key=f"recorder_{st.session_state.recorder_key}",
)
if recording is not None and controller.state in (UIState.idle, UIState.error):
    # Shift the widget key so the next turn starts from an empty recorder
    st.session_state.recorder_key += 1
    with st.spinner(
        "Hold on a second, while I retrieve the information..."
    ):
        _run_turn(recording.getvalue(), recording.type or "audio/wav", Start())

if controller.notice:
    st.caption(controller.notice)

if controller.state == UIState.error:
    st.error(controller.message)
    col_retry, col_fallback = st.columns(2)
    with col_retry:
        if controller.can_retry and st.button("Try again", use_container_width=True):
            with st.spinner("Sending again..."):
                _run_turn(b"", "audio/wav", Retry())
            st.rerun()
    with col_fallback:
        if controller.offer_fallback and st.button("Enable fallback mode", use_container_width=True):
            controller.handle(EnableFallback())
            st.rerun()
else:
    st.write(controller.message)

if player.last_audio is not None:
    data, mime_type = player.last_audio
    st.audio(data, format=mime_type, autoplay=True)
