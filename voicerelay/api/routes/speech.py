"""
Speech relay endpoints.

``POST /api/speech`` accepts a recorded utterance as multipart/form-data and
relays it to the external webhook; ``POST /api/webhook`` is the legacy alias
kept for older clients.  The handler only parses the form and renders the
relay outcome; all branching lives in ``WebhookRelay``.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from voicerelay.core.config import Settings
from voicerelay.core.exceptions import MissingAudioError
from voicerelay.core.models import (
    AudioPayload,
    AudioReply,
    ErrorReply,
    RelayOutcome,
    RelayRequest,
    StructuredReply,
    TextReply,
)
from voicerelay.services.relay import AI_TEXT_HEADER, WebhookRelay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["speech"])


def get_relay(request: Request) -> WebhookRelay:
    """Return the relay attached to the running application."""
    return request.app.state.relay


def get_app_settings(request: Request) -> Settings:
    """Return the settings the running application was built with."""
    return request.app.state.settings


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def render_outcome(outcome: RelayOutcome) -> Response:
    """Convert a relay outcome into the HTTP response sent to the caller.

    Args:
        outcome: Normalized relay reply and status code.

    Returns:
        Binary audio passthrough, or a JSON body.
    """
    reply = outcome.response
    if isinstance(reply, AudioReply):
        headers = {}
        if reply.text and reply.text.isascii():
            headers[AI_TEXT_HEADER] = reply.text
        return Response(
            content=reply.data,
            media_type=reply.mime_type,
            status_code=outcome.status_code,
            headers=headers,
        )
    if isinstance(reply, StructuredReply):
        return JSONResponse(content=reply.to_body(), status_code=outcome.status_code)
    if isinstance(reply, TextReply):
        return JSONResponse(content={"text": reply.text}, status_code=outcome.status_code)
    if isinstance(reply, ErrorReply):
        return JSONResponse(
            content={"success": False, "message": reply.message, "error": reply.message},
            status_code=reply.status_code,
        )
    raise TypeError(f"Unhandled relay reply: {type(reply).__name__}")


@router.post("/speech")
@router.post("/webhook")
async def relay_speech(
    audio: UploadFile | None = File(None),
    session_id: str | None = Form(None, alias="sessionId"),
    email: str | None = Form(None),
    enable_fallback: str | None = Form(None, alias="enableFallback"),
    test: str | None = Form(None),
    environment: str | None = Form(None),
    webhook_url: str | None = Form(None, alias="webhookUrl"),
    fallback: str | None = Query(None),
    relay: WebhookRelay = Depends(get_relay),
    settings: Settings = Depends(get_app_settings),
):
    """Relay one recorded utterance to the webhook.

    Form fields:
        audio: Recorded audio (required).
        sessionId: Opaque per-page-load session identifier.
        email: Optional user email forwarded to the workflow.
        enableFallback: ``"true"`` to get a fallback reply without forwarding.
        test: ``"true"`` to get a debug echo instead of forwarding.
        webhookUrl: Request-time webhook override (if allowed by settings).

    Query params:
        fallback: ``"true"`` behaves like ``enableFallback``.
    """
    if audio is None:
        raise MissingAudioError()

    data = await audio.read()
    if not data:
        raise MissingAudioError()

    request = RelayRequest(
        audio=AudioPayload(data=data, mime_type=audio.content_type or "audio/webm"),
        session_id=session_id or None,
        user_email=email or None,
        fallback_requested=_flag(enable_fallback) or _flag(fallback),
        test_mode=_flag(test),
        environment=environment or None,
        webhook_url=webhook_url if settings.allow_webhook_override and webhook_url else None,
    )
    logger.info(
        "Speech request: %d bytes %s, session=%s, environment=%s",
        request.audio.size_bytes,
        request.audio.mime_type,
        request.session_id,
        request.environment,
    )

    outcome = await relay.forward(request)
    return render_outcome(outcome)
