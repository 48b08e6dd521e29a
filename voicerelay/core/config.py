"""
Application configuration via pydantic-settings.

Loads values from .env file with sensible defaults for local development.
Use ``get_settings()`` to obtain the cached singleton instance and
``RelayConfig.from_settings()`` to derive the explicit relay options.
"""

from dataclasses import dataclass
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WEBHOOK_URL = "https://innovasense.app.n8n.cloud/webhook/lora/stt"


class Settings(BaseSettings):
    """VoiceRelay settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive).

    Attributes:
        webhook_url: Server-side webhook URL (``WEBHOOK_URL``).
        next_public_webhook_url: Public webhook URL (``NEXT_PUBLIC_WEBHOOK_URL``),
            takes precedence over ``webhook_url``.
        mock_mode: Answer every request with a synthetic reply.
        platform_deployment: Set on hosted deployments (``VERCEL``).
        enable_auto_fallback: Convert relay failures into fallback replies.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Outbound webhook ---
    # Resolution order: request override > NEXT_PUBLIC_WEBHOOK_URL > WEBHOOK_URL > default
    next_public_webhook_url: str = ""
    webhook_url: str = ""
    default_webhook_url: str = DEFAULT_WEBHOOK_URL
    allow_webhook_override: bool = True  # Honor the per-request ``webhookUrl`` form field

    # --- Fallback behaviour ---
    mock_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("mock_mode", "use_mock_webhook"),
    )
    platform_deployment: bool = Field(
        default=False,
        validation_alias=AliasChoices("platform_deployment", "vercel"),
    )
    enable_auto_fallback: bool = False

    # --- Deadlines ---
    relay_timeout_seconds: float = 50.0  # Server -> external webhook
    relay_connect_retries: int = 3  # Attempts for connection-establishment failures
    client_timeout_seconds: float = 60.0  # Controller -> relay

    # --- Client ---
    api_base_url: str = "http://localhost:8000"  # Where the talk loop / Streamlit page post audio

    # --- Application ---
    app_host: str = "0.0.0.0"  # Bind address for the FastAPI server
    app_port: int = 8000
    cors_origins: list[str] = [
        "http://localhost:8501",  # Streamlit
        "http://localhost:3000",  # Dev frontend
    ]
    log_level: str = "INFO"  # Python logging level


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()


@dataclass(frozen=True)
class RelayConfig:
    """Explicit options handed to ``WebhookRelay`` at construction time.

    Attributes:
        mock: Never call the external endpoint; always answer with a fallback reply.
        auto_fallback: Turn every relay failure into a success-shaped fallback reply.
        timeout_seconds: Deadline for the outbound webhook call.
        connect_attempts: Attempts made when the connection cannot be established.
    """

    mock: bool = False
    auto_fallback: bool = False
    timeout_seconds: float = 50.0
    connect_attempts: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayConfig":
        """Derive relay options from the environment-sourced flags.

        A hosted deployment with auto-fallback switched on runs fully mocked;
        a hosted deployment alone only degrades failures into fallback replies.
        """
        return cls(
            mock=settings.mock_mode
            or (settings.platform_deployment and settings.enable_auto_fallback),
            auto_fallback=settings.enable_auto_fallback or settings.platform_deployment,
            timeout_seconds=settings.relay_timeout_seconds,
            connect_attempts=max(1, settings.relay_connect_retries),
        )


def resolve_webhook_url(settings: Settings, override: str | None = None) -> str:
    """Resolve the outbound webhook URL.

    Precedence: request-time override, ``NEXT_PUBLIC_WEBHOOK_URL``,
    ``WEBHOOK_URL``, then the hardcoded default endpoint.
    """
    if override and settings.allow_webhook_override:
        return override
    return (
        settings.next_public_webhook_url
        or settings.webhook_url
        or settings.default_webhook_url
    )
