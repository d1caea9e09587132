"""Tests for daily token counters and check-in claims."""

from datetime import date

import pytest

from clinic_core.queue.tokens import CheckInClaims, TokenAllocator

pytestmark = pytest.mark.integration

DAY = date(2025, 3, 10)


@pytest.fixture
def allocator():
    return TokenAllocator()


async def issue(session_factory, allocator, scope_key: str, day: date = DAY) -> int:
    async with session_factory() as session:
        token = await allocator.next_token(session, scope_key, day)
        await session.commit()
        return token


async def test_tokens_increase_from_one(session_factory, allocator):
    tokens = [await issue(session_factory, allocator, "clinic:c1") for _ in range(3)]

    assert tokens == [1, 2, 3]
    async with session_factory() as session:
        assert await allocator.current(session, "clinic:c1", DAY) == 3


async def test_counters_are_per_scope_and_day(session_factory, allocator):
    await issue(session_factory, allocator, "clinic:c1")
    await issue(session_factory, allocator, "clinic:c1")

    assert await issue(session_factory, allocator, "clinic:c1:doctor:d1") == 1
    assert await issue(session_factory, allocator, "clinic:c2") == 1
    assert await issue(session_factory, allocator, "clinic:c1", date(2025, 3, 11)) == 1


async def test_current_is_zero_before_first_token(session_factory, allocator):
    async with session_factory() as session:
        assert await allocator.current(session, "clinic:c1", DAY) == 0


async def test_rolled_back_token_is_reissued(session_factory, allocator):
    assert await issue(session_factory, allocator, "clinic:c1") == 1

    async with session_factory() as session:
        assert await allocator.next_token(session, "clinic:c1", DAY) == 2
        await session.rollback()

    assert await issue(session_factory, allocator, "clinic:c1") == 2


async def test_rolled_back_first_token_is_reissued(session_factory, allocator):
    async with session_factory() as session:
        assert await allocator.next_token(session, "clinic:c1", DAY) == 1
        await session.rollback()

    assert await issue(session_factory, allocator, "clinic:c1") == 1


async def test_counter_survives_redis_flush(session_factory, allocator, redis):
    await issue(session_factory, allocator, "clinic:c1")
    await redis.flushall()

    assert await issue(session_factory, allocator, "clinic:c1") == 2


async def test_claim_is_exclusive_until_released(redis):
    claims = CheckInClaims(redis)

    assert await claims.claim("c1", DAY, "appt-1") is True
    assert await claims.claim("c1", DAY, "appt-1") is False
    assert await claims.claim("c1", date(2025, 3, 11), "appt-1") is True

    await claims.release("c1", DAY, "appt-1")
    assert await claims.claim("c1", DAY, "appt-1") is True


async def test_claim_keys_expire(redis):
    await CheckInClaims(redis).claim("c1", DAY, "appt-1")

    ttl = await redis.ttl("queue:checkin:c1:2025-03-10:appt-1")
    assert 0 < ttl <= 2 * 24 * 3600
