"""
Webhook relay: forwards recorded audio to the external automation webhook.

The relay builds a multipart request, posts it under a bounded deadline, and
normalizes whatever comes back (binary audio, JSON, plain text) into a
``RelayResponse`` variant.  Failures never escape as raw exceptions: they are
translated into the relay error taxonomy internally and then converted into
user-facing ``StructuredReply`` objects (or a fallback greeting when the relay
runs with ``auto_fallback``).
"""

import asyncio
import json
import logging

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from voicerelay.core.config import RelayConfig
from voicerelay.core.exceptions import (
    MalformedResponseError,
    RelayHTTPError,
    RelayTimeoutError,
    RelayUnreachableError,
    VoiceRelayError,
)
from voicerelay.core.models import (
    AudioReply,
    RelayOutcome,
    RelayRequest,
    RelayResponse,
    StructuredReply,
    TextReply,
)
from voicerelay.services.relay.fallback import (
    DEFAULT_SUCCESS_MESSAGE,
    debug_echo_reply,
    fallback_reply,
    malformed_reply,
    processing_reply,
    unavailable_reply,
    unreachable_reply,
)

logger = logging.getLogger(__name__)

_MESSAGE_KEYS = ("message", "output", "text", "response", "answer")

AI_TEXT_HEADER = "x-ai-response"


def structured_from_json(payload: object) -> StructuredReply:
    """Build a ``StructuredReply`` from a decoded JSON body.

    Webhook workflows answer either with an object or with a one-element list
    of objects; the assistant text may live under several keys.
    """
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    if not isinstance(payload, dict):
        return StructuredReply(success=True, message=str(payload))

    message = next(
        (payload[key] for key in _MESSAGE_KEYS if isinstance(payload.get(key), str) and payload[key]),
        None,
    )
    error = payload.get("error")
    success = bool(payload.get("success", error is None))
    if message is None:
        message = str(error) if error and not success else DEFAULT_SUCCESS_MESSAGE
    return StructuredReply(
        success=success,
        message=message,
        is_fallback=bool(payload.get("isFallback", False)),
        error=str(error) if error else None,
        timeout=bool(payload.get("timeout", False)),
    )


def normalize_reply(response: httpx.Response) -> RelayResponse:
    """Map a successful webhook reply onto a ``RelayResponse`` variant.

    Raises:
        MalformedResponseError: If a JSON-declared body does not parse.
    """
    content_type = response.headers.get("content-type", "")

    if "audio/" in content_type or "application/octet-stream" in content_type:
        return AudioReply(
            data=response.content,
            mime_type=content_type,
            text=response.headers.get(AI_TEXT_HEADER) or None,
        )

    if "application/json" in content_type:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Invalid JSON from webhook: {exc}") from exc
        return structured_from_json(payload)

    text = response.text
    # Some workflows send JSON with a text/plain header
    try:
        payload = json.loads(text)
    except ValueError:
        return TextReply(text=text)
    if isinstance(payload, (dict, list)):
        return structured_from_json(payload)
    return TextReply(text=text)


class WebhookRelay:
    """Forwards ``RelayRequest`` objects to the external webhook.

    Connection-establishment failures are retried (nothing has reached the
    webhook yet); read timeouts are not, since the webhook may still be
    working on the request.
    """

    def __init__(
        self,
        config: RelayConfig,
        webhook_url: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the relay.

        Args:
            config: Explicit mock / fallback / deadline options.
            webhook_url: URL used when a request carries no override.
            client: Shared HTTP client (created on demand if omitted).
        """
        self._config = config
        self._webhook_url = webhook_url
        self._client = client or httpx.AsyncClient()
        self._retry_wait = wait_exponential(multiplier=0.5, min=0.5, max=4)

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def webhook_url(self) -> str:
        return self._webhook_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def forward(self, request: RelayRequest) -> RelayOutcome:
        """Relay one recording and return the normalized reply with its status."""
        if request.test_mode:
            logger.info("Test mode request, echoing %d bytes", request.audio.size_bytes)
            return RelayOutcome(response=debug_echo_reply(request))

        if self._config.mock or request.fallback_requested:
            logger.info(
                "Serving fallback reply (mock=%s, requested=%s, session=%s)",
                self._config.mock,
                request.fallback_requested,
                request.session_id,
            )
            return RelayOutcome(response=fallback_reply())

        url = request.webhook_url or self._webhook_url
        try:
            response = await self._send(url, request)
            return RelayOutcome(response=normalize_reply(response))
        except RelayTimeoutError:
            logger.warning("Webhook timed out after %.0fs: %s", self._config.timeout_seconds, url)
            return self._degrade(processing_reply(), status_code=202)
        except RelayHTTPError as exc:
            return self._degrade(unavailable_reply(exc.upstream_status), status_code=500)
        except MalformedResponseError as exc:
            logger.error("Malformed webhook reply: %s", exc.detail)
            return self._degrade(malformed_reply(exc.detail), status_code=500)
        except VoiceRelayError as exc:
            return self._degrade(unreachable_reply(exc.detail), status_code=500)

    def _degrade(self, reply: StructuredReply, status_code: int) -> RelayOutcome:
        """Return the failure reply, or a fallback greeting in auto-fallback mode."""
        if self._config.auto_fallback:
            logger.info("Auto-fallback replacing failure: %s", reply.error or reply.message)
            return RelayOutcome(response=fallback_reply())
        return RelayOutcome(response=reply, status_code=status_code)

    async def _send(self, url: str, request: RelayRequest) -> httpx.Response:
        """POST the multipart request and translate transport errors.

        Raises:
            RelayTimeoutError: Deadline exceeded.
            RelayUnreachableError: Connection or protocol failure.
            RelayHTTPError: Non-2xx reply.
        """
        files = {
            "audio": (request.audio.filename, request.audio.data, request.audio.mime_type),
        }
        data: dict[str, str] = {}
        if request.session_id:
            data["sessionId"] = request.session_id
        if request.user_email:
            data["email"] = request.user_email

        logger.info(
            "Forwarding %d bytes to webhook %s (session=%s)",
            request.audio.size_bytes,
            url,
            request.session_id,
        )
        try:
            async with asyncio.timeout(self._config.timeout_seconds):
                response = await self._post_with_retry(url, files=files, data=data)
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise RelayTimeoutError(f"Webhook did not answer within {self._config.timeout_seconds:g}s") from exc
        except httpx.HTTPError as exc:
            logger.error("Error forwarding to webhook %s: %s", url, exc)
            raise RelayUnreachableError(str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            logger.error(
                "Webhook error %s: %s", response.status_code, response.text[:500]
            )
            raise RelayHTTPError(response.status_code)
        return response

    async def _post_with_retry(self, url: str, **kwargs) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.connect_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(httpx.ConnectError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying webhook connection (attempt %d)",
                        attempt.retry_state.attempt_number,
                    )
                return await self._client.post(
                    url,
                    timeout=httpx.Timeout(self._config.timeout_seconds),
                    **kwargs,
                )
        raise RelayUnreachableError("No connection attempt was made")
