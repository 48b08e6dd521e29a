"""
Relay module - forwards recordings to the external automation webhook.

Factory function for creating a relay from application settings.
"""

import httpx

from voicerelay.core.config import RelayConfig, Settings, resolve_webhook_url

from .webhook import AI_TEXT_HEADER, WebhookRelay, normalize_reply, structured_from_json

__all__ = ["AI_TEXT_HEADER", "WebhookRelay", "create_relay", "normalize_reply", "structured_from_json"]


def create_relay(settings: Settings, client: httpx.AsyncClient | None = None) -> WebhookRelay:
    """
    Factory function to create a WebhookRelay from settings.

    Args:
        settings: Application settings (flags, deadlines, webhook URLs)
        client: Optional shared HTTP client

    Returns:
        Configured WebhookRelay instance
    """
    return WebhookRelay(
        config=RelayConfig.from_settings(settings),
        webhook_url=resolve_webhook_url(settings),
        client=client,
    )
