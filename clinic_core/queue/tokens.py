"""Daily token allocation and duplicate check-in claims.

Token numbers must be distinct and gapless per admission scope and clinic
day across every server instance. The increment is an ``UPDATE ... RETURNING``
on a counter row inside the same store transaction that inserts the queue
entry, so a failed check-in rolls its number back with it.
"""

from datetime import date, timedelta

from redis.asyncio import Redis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.db.models.token_counter import QueueTokenCounter

# Claim keys are per day; the TTL only bounds how long stale days linger
KEY_RETENTION = timedelta(days=2)


class TokenAllocator:
    """Hands out queue token numbers per admission scope and clinic day."""

    async def next_token(self, session: AsyncSession, scope_key: str, day: date) -> int:
        """Increment the scope-day counter within ``session``'s transaction.

        The counter row stays locked until the caller commits or rolls back.
        Two first-of-day check-ins racing to create the row end with an
        IntegrityError for one of them; the caller retries that check-in.
        """
        result = await session.execute(
            update(QueueTokenCounter)
            .where(QueueTokenCounter.scope_key == scope_key, QueueTokenCounter.clinic_day == day)
            .values(last_token=QueueTokenCounter.last_token + 1)
            .returning(QueueTokenCounter.last_token)
            .execution_options(synchronize_session=False)
        )
        token = result.scalar_one_or_none()
        if token is not None:
            return token

        session.add(QueueTokenCounter(scope_key=scope_key, clinic_day=day, last_token=1))
        await session.flush()
        return 1

    async def current(self, session: AsyncSession, scope_key: str, day: date) -> int:
        """Last token issued for the scope-day (0 if none)."""
        counter = await session.get(QueueTokenCounter, (scope_key, day))
        return counter.last_token if counter is not None else 0


class CheckInClaims:
    """One live check-in per appointment per clinic day (Redis SET NX)."""

    KEY_PREFIX = "queue:checkin"

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, clinic_id: str, day: date, appointment_id: str) -> str:
        return f"{self.KEY_PREFIX}:{clinic_id}:{day.isoformat()}:{appointment_id}"

    async def claim(self, clinic_id: str, day: date, appointment_id: str) -> bool:
        """Claim the appointment for today. Returns False if already claimed."""
        key = self._key(clinic_id, day, appointment_id)
        claimed = await self.redis.set(key, "1", nx=True, ex=KEY_RETENTION)
        return bool(claimed)

    async def release(self, clinic_id: str, day: date, appointment_id: str) -> None:
        """Release a claim (check-in cancelled or failed to persist)."""
        await self.redis.delete(self._key(clinic_id, day, appointment_id))
