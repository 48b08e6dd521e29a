"""
Pydantic v2 models shared by the relay API, the speech client and the
session controller.

The relay reply is a tagged union (``RelayResponse``) discriminated on
``kind``; every consumer branches on it exhaustively.
"""

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: datetime


# ---------------------------------------------------------------------------
# UI state
# ---------------------------------------------------------------------------


class UIState(StrEnum):
    """States of the recording session controller."""

    idle = "idle"
    listening = "listening"
    loading = "loading"
    speaking = "speaking"
    error = "error"


# ---------------------------------------------------------------------------
# Audio payload / relay request
# ---------------------------------------------------------------------------

_EXTENSIONS = {
    "audio/webm": ".webm",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/mp4": ".m4a",
    "audio/m4a": ".m4a",
    "audio/mpeg": ".mp3",
}


def filename_for_mime(mime_type: str) -> str:
    """Return the upload filename used for a given audio MIME type.

    Codec parameters (``audio/webm;codecs=opus``) are ignored; unknown types
    default to ``audio.webm`` which is what browsers record.
    """
    base = mime_type.split(";", 1)[0].strip().lower()
    return "audio" + _EXTENSIONS.get(base, ".webm")


class AudioPayload(BaseModel):
    """A finished recording ready to be sent. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "audio/webm"

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def filename(self) -> str:
        return filename_for_mime(self.mime_type)

    @classmethod
    def from_chunks(cls, chunks: list[bytes], mime_type: str) -> "AudioPayload":
        """Concatenate ordered chunks into a single payload."""
        return cls(data=b"".join(chunks), mime_type=mime_type)


class RelayRequest(BaseModel):
    """One send of a recording to the relay. Built once, never mutated."""

    model_config = ConfigDict(frozen=True)

    audio: AudioPayload
    session_id: str | None = None
    user_email: str | None = None
    fallback_requested: bool = False
    test_mode: bool = False
    environment: str | None = None
    webhook_url: str | None = None


# ---------------------------------------------------------------------------
# Relay response (tagged union)
# ---------------------------------------------------------------------------


class AudioReply(BaseModel):
    """Binary audio returned by the webhook."""

    kind: Literal["audio"] = "audio"
    data: bytes
    mime_type: str = "audio/mpeg"
    text: str | None = None  # Assistant text from the x-ai-response header


class StructuredReply(BaseModel):
    """JSON assistant reply, including synthetic fallback replies."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["structured"] = "structured"
    success: bool
    message: str
    is_fallback: bool = Field(default=False, alias="isFallback")
    error: str | None = None
    timeout: bool = False

    def to_body(self) -> dict:
        """Serialize to the JSON body returned by ``/api/speech``."""
        body: dict = {"success": self.success, "message": self.message}
        if self.is_fallback:
            body["isFallback"] = True
        if self.error:
            body["error"] = self.error
        if self.timeout:
            body["timeout"] = True
        return body


class TextReply(BaseModel):
    """Plain-text reply, wrapped as ``{"text": ...}`` on the wire."""

    kind: Literal["text"] = "text"
    text: str


class ErrorReply(BaseModel):
    """Unrecoverable relay failure surfaced to the caller."""

    kind: Literal["error"] = "error"
    status_code: int
    message: str


RelayResponse = Annotated[
    AudioReply | StructuredReply | TextReply | ErrorReply,
    Field(discriminator="kind"),
]


class RelayOutcome(BaseModel):
    """A normalized relay reply plus the HTTP status to answer with."""

    response: RelayResponse
    status_code: int = 200
