"""Wait time estimator and observed consultation average (EMA)."""

from redis.asyncio import Redis

from clinic_core.domain.queue_rules import estimate_wait_minutes


class WaitTimeEstimator:
    """Estimates queue wait from the configured consultation length.

    Also tracks an Exponential Moving Average of real consultation durations
    per clinic. The observed average is reported alongside the configured one
    but never replaces it; only a settings update changes the configured value.
    """

    def __init__(self, redis: Redis, alpha: float = 0.3):
        self.redis = redis
        self.alpha = alpha  # EMA weight (0.3 = 30% new, 70% historical)

    @staticmethod
    def _key(clinic_id: str) -> str:
        return f"queue:avg_consultation:{clinic_id}"

    async def record_consultation(self, clinic_id: str, duration_minutes: float, fallback_minutes: int) -> float:
        """Fold a completed consultation into the clinic's observed average.

        Uses EMA formula: new_avg = alpha * new_value + (1 - alpha) * old_avg,
        seeded with the configured average on first use.

        Returns:
            The updated observed average in minutes
        """
        key = self._key(clinic_id)
        current_avg = float(await self.redis.get(key) or fallback_minutes)
        new_avg = self.alpha * duration_minutes + (1 - self.alpha) * current_avg
        await self.redis.set(key, str(new_avg))
        return new_avg

    async def observed_average(self, clinic_id: str) -> float | None:
        """Observed consultation average in minutes, or None before any completion."""
        value = await self.redis.get(self._key(clinic_id))
        return round(float(value), 1) if value is not None else None

    @staticmethod
    def estimate_wait(entries_ahead: int, avg_consultation_minutes: int) -> int:
        """Estimated wait in minutes for an entry with ``entries_ahead`` before it."""
        return estimate_wait_minutes(entries_ahead, avg_consultation_minutes)

    @staticmethod
    def format_wait_time(minutes: int) -> str:
        """Format wait time as human-readable string.

        Args:
            minutes: Wait in minutes

        Returns:
            Human-readable string (e.g., "Next in line", "45 minutes", "2h 15m")
        """
        if minutes <= 0:
            return "Next in line"
        elif minutes < 60:
            return f"{minutes} minute{'s' if minutes != 1 else ''}"
        else:
            hours = minutes // 60
            remainder = minutes % 60
            if remainder > 0:
                return f"{hours}h {remainder}m"
            return f"{hours}h"
