"""Per-browser-session fallback preference.

The flag lives in session-scoped storage (``st.session_state`` in the
Streamlit page, a plain dict elsewhere) and is re-read on every access so
that other code sharing the storage sees the same value.
"""

import logging
from collections.abc import MutableMapping

logger = logging.getLogger(__name__)

FALLBACK_KEY = "enableFallback"


class FallbackPreference:
    """Read/write access to the ``enableFallback`` session flag."""

    def __init__(self, storage: MutableMapping | None = None, key: str = FALLBACK_KEY) -> None:
        self._storage = storage if storage is not None else {}
        self._key = key

    @property
    def enabled(self) -> bool:
        return str(self._storage.get(self._key, "")).lower() == "true"

    def enable(self) -> None:
        if not self.enabled:
            logger.info("Fallback mode enabled for this session")
        self._storage[self._key] = "true"

    def disable(self) -> None:
        self._storage.pop(self._key, None)
