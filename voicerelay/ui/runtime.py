"""
Asyncio runtime for the session controller.

``VoiceLoop`` feeds events into ``SessionController.handle`` and carries out
the returned actions as background tasks: the capture reader, the silence
ticker, the relay call and the playback watcher.  Every task reports back by
posting another event, so all state changes still go through the controller.
"""

import asyncio
import logging
from collections.abc import Callable

from voicerelay.core.exceptions import DeviceUnavailableError, PlaybackError, VoiceRelayError
from voicerelay.core.models import RelayRequest
from voicerelay.services.audio.capture import CHUNK_INTERVAL_MS, BaseCapture
from voicerelay.services.session import (
    Action,
    AwaitPlayback,
    CancelSilenceTimer,
    ChunkReceived,
    CloseMicrophone,
    Event,
    MicrophoneFailed,
    MicrophoneOpened,
    OpenMicrophone,
    PlaybackEnded,
    PlaybackFailed,
    RelayFailed,
    RelayResolved,
    SendAudio,
    SessionController,
    SilenceTick,
    StartSilenceTimer,
    Stop,
    Teardown,
)
from voicerelay.ui.api_client import SpeechClient

logger = logging.getLogger(__name__)


class VoiceLoop:
    """Executes controller actions on the running event loop."""

    def __init__(
        self,
        controller: SessionController,
        capture: BaseCapture,
        client: SpeechClient,
        chunk_interval_ms: int = CHUNK_INTERVAL_MS,
        on_change: Callable[[SessionController], None] | None = None,
    ) -> None:
        """Initialize the runtime.

        Args:
            controller: State machine receiving every event.
            capture: Microphone implementation opened on ``OpenMicrophone``;
                it also assembles the recordings the controller uploads.
            client: Speech client used for ``SendAudio``.
            chunk_interval_ms: Chunk delivery interval requested from capture.
            on_change: Called after every event with the controller.
        """
        self.controller = controller
        self.capture = capture
        controller.use_assembler(capture.assemble, capture.mime_type)
        self.client = client
        self._chunk_interval_ms = chunk_interval_ms
        self._on_change = on_change
        self._ticker_task: asyncio.Task | None = None
        self._capture_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    def post(self, event: Event) -> list[Action]:
        """Apply one event and start the side effects it requires."""
        actions = self.controller.handle(event)
        for action in actions:
            self._execute(action)
        if self._on_change is not None:
            self._on_change(self.controller)
        return actions

    async def drain(self) -> None:
        """Wait until no capture, relay or playback work is outstanding."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            # A capture task cancelled by a newer recording is not a failure
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    raise result

    async def aclose(self) -> None:
        """Tear the session down and release the microphone and client."""
        self.post(Teardown())
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.capture.close()
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Action execution
    # ------------------------------------------------------------------

    def _execute(self, action: Action) -> None:
        if isinstance(action, OpenMicrophone):
            self._cancel_capture()
            self._capture_task = self._spawn(self._run_capture(action.generation))
        elif isinstance(action, CloseMicrophone):
            self.capture.close()
        elif isinstance(action, StartSilenceTimer):
            self._cancel_ticker()
            self._ticker_task = asyncio.create_task(self._run_ticker(action.interval_seconds))
        elif isinstance(action, CancelSilenceTimer):
            self._cancel_ticker()
        elif isinstance(action, SendAudio):
            self._spawn(self._run_relay(action.generation, action.request))
        elif isinstance(action, AwaitPlayback):
            self._spawn(self._run_playback(action.generation))
        else:
            raise TypeError(f"Unknown action: {type(action).__name__}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_ticker(self) -> None:
        task, self._ticker_task = self._ticker_task, None
        if task is not None:
            task.cancel()

    def _cancel_capture(self) -> None:
        task, self._capture_task = self._capture_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run_capture(self, generation: int) -> None:
        try:
            await self.capture.open()
        except VoiceRelayError as exc:
            self.post(MicrophoneFailed(error=exc, generation=generation))
            return
        self.post(MicrophoneOpened(generation=generation))

        try:
            async for chunk in self.capture.chunks(self._chunk_interval_ms):
                self.post(ChunkReceived(data=chunk, generation=generation))
        except Exception as exc:
            logger.exception("Microphone stream failed")
            error = exc if isinstance(exc, VoiceRelayError) else DeviceUnavailableError(str(exc))
            self.post(MicrophoneFailed(error=error, generation=generation))
            return
        # A finite source ran out: treat it as the user stopping
        self.post(Stop(generation=generation))

    async def _run_ticker(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.post(SilenceTick())

    async def _run_relay(self, generation: int, request: RelayRequest) -> None:
        try:
            response = await self.client.send(request)
        except VoiceRelayError as exc:
            self.post(RelayFailed(generation=generation, error=exc))
            return
        self.post(RelayResolved(generation=generation, response=response))

    async def _run_playback(self, generation: int) -> None:
        try:
            await self.controller.playback.wait()
        except PlaybackError as exc:
            self.post(PlaybackFailed(generation=generation, error=exc))
            return
        self.post(PlaybackEnded(generation=generation))
