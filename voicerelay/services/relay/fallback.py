"""Canned assistant replies used when the external webhook is bypassed or fails."""

from voicerelay.core.models import RelayRequest, StructuredReply

FALLBACK_GREETING = (
    "Hello! I'm your AI assistant. Our voice service is running in limited mode "
    "right now, but I can still help. What are you looking for today?"
)
PROCESSING_MESSAGE = (
    "Your message is being processed in the background. "
    "Please wait a moment for the response."
)
UNREACHABLE_MESSAGE = (
    "I couldn't reach the AI assistant service. "
    "Please check your connection and try again."
)
MALFORMED_MESSAGE = "I received a response I couldn't understand. Please try again."
DEFAULT_SUCCESS_MESSAGE = "Your message has been processed successfully!"


def fallback_reply() -> StructuredReply:
    """Success-shaped synthetic reply marking the degraded mode."""
    return StructuredReply(success=True, message=FALLBACK_GREETING, is_fallback=True)


def unavailable_reply(upstream_status: int) -> StructuredReply:
    return StructuredReply(
        success=False,
        message=(
            "The AI assistant service is currently unavailable "
            f"(status {upstream_status}). Please try again later."
        ),
        error=f"Webhook returned status {upstream_status}",
    )


def processing_reply() -> StructuredReply:
    """Non-fatal deadline signal: the webhook may still finish the work."""
    return StructuredReply(success=True, message=PROCESSING_MESSAGE, timeout=True)


def unreachable_reply(detail: str) -> StructuredReply:
    return StructuredReply(
        success=False,
        message=UNREACHABLE_MESSAGE,
        error=f"Error forwarding to webhook: {detail}",
    )


def malformed_reply(detail: str) -> StructuredReply:
    return StructuredReply(success=False, message=MALFORMED_MESSAGE, error=detail)


def debug_echo_reply(request: RelayRequest) -> StructuredReply:
    """Debug echo returned for ``test=true`` requests instead of forwarding."""
    parts = [
        f"received {request.audio.size_bytes} bytes of {request.audio.mime_type}",
        f"session {request.session_id or '-'}",
    ]
    if request.user_email:
        parts.append(f"email {request.user_email}")
    if request.fallback_requested:
        parts.append("fallback requested")
    return StructuredReply(success=True, message="Test mode: " + ", ".join(parts))
