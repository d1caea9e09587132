"""Service-level fixtures: a clinic on the PRO tier with bookings."""

from datetime import UTC, date, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinic_core.db.base import create_tables
from clinic_core.db.models.appointment import Appointment
from clinic_core.services.queue_service import QueueService
from clinic_core.services.subscription_service import SubscriptionService

CLINIC_DAY = date(2025, 3, 10)


@pytest.fixture
def subscription_service(session_factory) -> SubscriptionService:
    return SubscriptionService(session_factory)


@pytest.fixture
def queue_service(session_factory, redis) -> QueueService:
    return QueueService(session_factory, redis)


@pytest.fixture
async def clinic_id(subscription_service) -> str:
    summary = await subscription_service.create_clinic("Sharma Family Clinic", tier="PRO", timezone="UTC")
    return summary["clinic_id"]


def make_booker(session_factory, default_clinic_id: str):
    async def _book(
        hour: int,
        minute: int = 0,
        *,
        patient_id: str = "patient-1",
        doctor_id: str | None = "doctor-1",
        status: str = "scheduled",
        for_clinic: str | None = None,
        day: date = CLINIC_DAY,
    ) -> str:
        async with session_factory() as session:
            appointment = Appointment(
                clinic_id=for_clinic or default_clinic_id,
                patient_id=patient_id,
                doctor_id=doctor_id,
                scheduled_time=datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC),
                status=status,
            )
            session.add(appointment)
            await session.commit()
            return appointment.id

    return _book


@pytest.fixture
def book(session_factory, clinic_id):
    """Create an appointment: ``await book(hour, minute, doctor_id=..., status=..., day=...)``."""
    return make_booker(session_factory, clinic_id)


@pytest.fixture
async def pooled_session_factory(engine, tmp_path):
    """Sessions on separate connections, so concurrent check-ins interleave for real.

    The in-memory SQLite engine shares one connection between sessions; SQLite
    runs switch to a file database with a regular pool.
    """
    if engine.dialect.name != "sqlite":
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return

    file_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    await create_tables(file_engine)
    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    await file_engine.dispose()


@pytest.fixture
def pooled_queue_service(pooled_session_factory, redis) -> QueueService:
    return QueueService(pooled_session_factory, redis)


@pytest.fixture
async def pooled_clinic_id(pooled_session_factory) -> str:
    summary = await SubscriptionService(pooled_session_factory).create_clinic(
        "Mehta Clinic", tier="PRO", timezone="UTC"
    )
    return summary["clinic_id"]


@pytest.fixture
def pooled_book(pooled_session_factory, pooled_clinic_id):
    return make_booker(pooled_session_factory, pooled_clinic_id)
