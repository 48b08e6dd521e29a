"""
VoiceRelay exception hierarchy.

All application-specific exceptions inherit from VoiceRelayError,
enabling centralized error handling in the API middleware layer and
uniform message rendering in the session controller.
"""

from datetime import UTC, datetime


class VoiceRelayError(Exception):
    """Base exception for all VoiceRelay errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "VOICERELAY_ERROR",
        status_code: int = 500,
    ) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Capture (client-side only)
# ---------------------------------------------------------------------------


class PermissionDeniedError(VoiceRelayError):
    """Raised when the user declines microphone access."""

    def __init__(self, detail: str = "Microphone permission denied") -> None:
        super().__init__(detail=detail, code="PERMISSION_DENIED", status_code=403)


class DeviceUnavailableError(VoiceRelayError):
    """Raised when no usable input device exists."""

    def __init__(self, detail: str = "No microphone available") -> None:
        super().__init__(detail=detail, code="DEVICE_UNAVAILABLE", status_code=503)


class CaptureTimeoutError(VoiceRelayError):
    """Raised when the microphone does not open within the deadline."""

    def __init__(self, seconds: float = 5.0) -> None:
        super().__init__(
            detail=f"Microphone access timed out after {seconds:g}s",
            code="CAPTURE_TIMEOUT",
            status_code=504,
        )


class EmptyRecordingError(VoiceRelayError):
    """Raised when an assembled recording is below the minimum payload size."""

    def __init__(self, size_bytes: int, minimum: int) -> None:
        self.size_bytes = size_bytes
        super().__init__(
            detail=f"Recording too short: {size_bytes} bytes (minimum {minimum})",
            code="EMPTY_RECORDING",
            status_code=400,
        )


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------


class MissingAudioError(VoiceRelayError):
    """Raised when a speech request carries no audio file."""

    def __init__(self) -> None:
        super().__init__(detail="No audio file provided", code="MISSING_AUDIO", status_code=400)


class RelayUnreachableError(VoiceRelayError):
    """Raised when the relay or webhook cannot be reached."""

    def __init__(self, detail: str = "Relay unreachable") -> None:
        super().__init__(detail=detail, code="RELAY_UNREACHABLE", status_code=502)


class RelayTimeoutError(VoiceRelayError):
    """Raised when a relay call exceeds its deadline."""

    def __init__(self, detail: str = "Relay request timed out") -> None:
        super().__init__(detail=detail, code="RELAY_TIMEOUT", status_code=504)


class RelayHTTPError(VoiceRelayError):
    """Raised when the relay or webhook answers with a non-2xx status."""

    def __init__(self, upstream_status: int, detail: str | None = None) -> None:
        self.upstream_status = upstream_status
        super().__init__(
            detail=detail or f"Webhook returned status {upstream_status}",
            code="RELAY_HTTP_ERROR",
            status_code=500,
        )


class MalformedResponseError(VoiceRelayError):
    """Raised when a reply body does not parse as its declared content kind."""

    def __init__(self, detail: str = "Malformed response body") -> None:
        super().__init__(detail=detail, code="MALFORMED_RESPONSE", status_code=500)


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------


class PlaybackError(VoiceRelayError):
    """Raised when an audio reply cannot be decoded or played."""

    def __init__(self, detail: str = "Audio playback failed") -> None:
        super().__init__(detail=detail, code="PLAYBACK_ERROR", status_code=500)
