"""
Terminal voice loop.

Run with: ``voicerelay-talk`` (or ``python -m voicerelay.ui.talk``).

Press Enter to start talking and Enter again to send; recording also stops
by itself after five seconds of silence.  The reply is played on the
default output device.
"""

import argparse
import asyncio
import logging

from voicerelay.core.config import get_settings
from voicerelay.core.models import UIState
from voicerelay.services.audio import PlaybackUnit, SoundDeviceCapture, SoundDevicePlayer
from voicerelay.services.session import (
    ButtonPressed,
    CancelPlayback,
    ControllerConfig,
    EnableFallback,
    FallbackPreference,
    Retry,
    SessionController,
    SetEmail,
)
from voicerelay.ui.api_client import SpeechClient
from voicerelay.ui.runtime import VoiceLoop

logger = logging.getLogger(__name__)

HELP = (
    "Commands: <Enter> talk/stop/interrupt, c cancel reply, r retry, "
    "f enable fallback, e <address> set email, q quit"
)

_STATE_LABELS = {
    UIState.idle: "ready",
    UIState.listening: "listening",
    UIState.loading: "thinking",
    UIState.speaking: "speaking",
    UIState.error: "error",
}


def _render(controller: SessionController) -> None:
    if controller.notice:
        print(f"  ({controller.notice})")
    print(f"[{_STATE_LABELS[controller.state]}] {controller.message}")
    if controller.offer_fallback:
        print("  Type 'f' to continue in fallback mode.")
    elif controller.can_retry:
        print("  Type 'r' to send the same recording again.")


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Talk to the VoiceRelay assistant.")
    parser.add_argument("--api-url", default=settings.api_base_url, help="VoiceRelay server URL")
    parser.add_argument("--email", default=None, help="Email forwarded with every request")
    parser.add_argument("--device", default=None, help="Input device name or index")
    parser.add_argument(
        "--auto-fallback",
        action="store_true",
        default=settings.platform_deployment or settings.enable_auto_fallback,
        help="Never show hard errors; switch to fallback replies instead",
    )
    parser.add_argument("--log-level", default=settings.log_level)
    return parser


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    device = int(args.device) if args.device and args.device.isdigit() else args.device
    capture = SoundDeviceCapture(device=device)
    controller = SessionController(
        playback=PlaybackUnit(SoundDevicePlayer()),
        preference=FallbackPreference(),
        config=ControllerConfig(auto_fallback=args.auto_fallback, environment="terminal"),
        assemble=capture.assemble,
        mime_type=capture.mime_type,
    )
    client = SpeechClient(base_url=args.api_url, timeout=settings.client_timeout_seconds)
    loop = VoiceLoop(controller, capture, client, on_change=_render)

    if args.email:
        loop.post(SetEmail(email=args.email))
    print(HELP)
    _render(controller)

    try:
        while True:
            line = (await asyncio.to_thread(input)).strip()
            if line == "q":
                break
            if line == "":
                loop.post(ButtonPressed())
            elif line == "c":
                loop.post(CancelPlayback())
            elif line == "r":
                loop.post(Retry())
            elif line == "f":
                loop.post(EnableFallback())
            elif line.startswith("e "):
                loop.post(SetEmail(email=line[2:]))
                print(f"Email set to {controller.user_email or '-'}")
            else:
                print(HELP)
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await loop.aclose()


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
