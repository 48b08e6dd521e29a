"""
Async HTTP client for the VoiceRelay speech endpoint.

Used by the session runtime to send one recording per call to
``POST /api/speech`` and turn the reply into a ``RelayResponse``.
"""

import asyncio
import logging

import httpx

from voicerelay.core.exceptions import (
    MalformedResponseError,
    RelayHTTPError,
    RelayTimeoutError,
    RelayUnreachableError,
)
from voicerelay.core.models import RelayRequest, RelayResponse, TextReply
from voicerelay.services.relay import normalize_reply

logger = logging.getLogger(__name__)

SPEECH_PATH = "/api/speech"


def _error_message(response: httpx.Response) -> str:
    """Pick the user-facing message out of an error body."""
    default = (
        f"The AI assistant encountered an error ({response.status_code}). "
        "Please try again later."
    )
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return default


class SpeechClient:
    """Thin async wrapper around httpx for calling the speech relay.

    All failures are raised as relay errors with user-friendly details so
    the session controller can render them directly.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Base URL of the VoiceRelay FastAPI server.
            timeout: Overall deadline for one speech call, in seconds.
            client: Pre-built client (tests inject one with a mock transport).
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

    @property
    def timeout(self) -> float:
        return self._timeout

    async def aclose(self) -> None:
        await self._client.aclose()

    async def health_check(self) -> dict:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RelayUnreachableError(f"Health check failed: {exc}") from None
        return response.json()

    async def send(self, request: RelayRequest) -> RelayResponse:
        """Post one recording and return the normalized reply.

        Raises:
            RelayTimeoutError: No answer within the deadline, or the server
                reported that the webhook is still processing (HTTP 202).
            RelayUnreachableError: The server could not be reached.
            RelayHTTPError: The server answered with a non-2xx status.
            MalformedResponseError: The reply body could not be parsed.
        """
        files = {
            "audio": (request.audio.filename, request.audio.data, request.audio.mime_type),
        }
        data: dict[str, str] = {}
        if request.session_id:
            data["sessionId"] = request.session_id
        if request.user_email:
            data["email"] = request.user_email
        if request.fallback_requested:
            data["enableFallback"] = "true"
        if request.test_mode:
            data["test"] = "true"
        if request.environment:
            data["environment"] = request.environment

        logger.info(
            "Sending %d bytes to %s%s (fallback=%s)",
            request.audio.size_bytes,
            self._base_url,
            SPEECH_PATH,
            request.fallback_requested,
        )
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.post(SPEECH_PATH, files=files, data=data)
        except (TimeoutError, httpx.TimeoutException):
            raise RelayTimeoutError(
                f"No reply from the speech server within {self._timeout:g}s"
            ) from None
        except httpx.ConnectError:
            raise RelayUnreachableError(
                "Backend server is not running. "
                "Start it with: `uvicorn voicerelay.api.app:app --port 8000`"
            ) from None
        except httpx.HTTPError as exc:
            raise RelayUnreachableError(f"Network error: {exc}") from None

        if response.status_code == 202:
            raise RelayTimeoutError(_error_message(response))
        if not response.is_success:
            raise RelayHTTPError(response.status_code, _error_message(response))

        if "application/json" in response.headers.get("content-type", ""):
            try:
                body = response.json()
            except ValueError as exc:
                raise MalformedResponseError(f"Invalid JSON from speech server: {exc}") from None
            if isinstance(body, dict) and set(body) == {"text"}:
                return TextReply(text=str(body["text"]))
        return normalize_reply(response)
