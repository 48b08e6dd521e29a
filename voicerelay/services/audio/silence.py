"""Silence detection for the recording session.

The detector is clock-agnostic: callers pass ``now`` (seconds, monotonic)
into every method, which keeps it deterministic under test.
"""

import logging

logger = logging.getLogger(__name__)

SILENCE_TIMEOUT_MS = 5000
CHECK_INTERVAL_MS = 1000
NOISE_FLOOR_BYTES = 10


class SilenceDetector:
    """Decides when a recording has been quiet long enough to stop.

    Activity is measured by chunk size: only chunks larger than the noise
    floor refresh ``last_activity_at``.  Once armed, ``tick()`` fires exactly
    once when the quiet window has elapsed and then disarms itself.
    """

    def __init__(
        self,
        timeout_ms: int = SILENCE_TIMEOUT_MS,
        noise_floor_bytes: int = NOISE_FLOOR_BYTES,
        check_interval_ms: int = CHECK_INTERVAL_MS,
    ) -> None:
        self.timeout_ms = timeout_ms
        self.noise_floor_bytes = noise_floor_bytes
        self.check_interval_ms = check_interval_ms
        self.last_activity_at: float | None = None
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self, now: float) -> None:
        """Start watching a new recording."""
        self.last_activity_at = now
        self._armed = True

    def disarm(self) -> None:
        self._armed = False

    def record_chunk(self, size: int, now: float) -> bool:
        """Register a received chunk. Returns True if it counted as activity."""
        if not self._armed or size <= self.noise_floor_bytes:
            return False
        self.last_activity_at = now
        return True

    def quiet_for_ms(self, now: float) -> float:
        if self.last_activity_at is None:
            return 0.0
        return (now - self.last_activity_at) * 1000

    def tick(self, now: float) -> bool:
        """Periodic check. Returns True exactly once when the window elapses."""
        if not self._armed:
            return False
        quiet_ms = self.quiet_for_ms(now)
        if quiet_ms < self.timeout_ms:
            return False
        logger.info("Silence for %.0f ms, stopping recording", quiet_ms)
        self._armed = False
        return True
