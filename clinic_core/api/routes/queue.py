"""Clinic queue API routes.

All routes require the QUEUE_MANAGEMENT feature (PRO tier and above).

GET   /api/clinics/{clinic_id}/queue/settings              - Admission settings
PUT   /api/clinics/{clinic_id}/queue/settings              - Partial settings update
POST  /api/clinics/{clinic_id}/queue/check-in              - Check in a booking or walk-in
GET   /api/clinics/{clinic_id}/queue                       - Today's queue
GET   /api/clinics/{clinic_id}/queue/stats                 - Today's counters
GET   /api/clinics/{clinic_id}/queue/awaiting-check-in     - Today's bookings not yet checked in
POST  /api/clinics/{clinic_id}/queue/call-next             - Call the next patient
GET   /api/clinics/{clinic_id}/queue/{entry_id}/wait-time  - Advisory wait for one entry
PATCH /api/clinics/{clinic_id}/queue/{entry_id}            - Lifecycle transition
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Response

from clinic_core.core.feature_flags import require_feature
from clinic_core.db.base import get_session_factory
from clinic_core.db.redis import get_redis
from clinic_core.domain.tiers import Feature
from clinic_core.queue.schemas import (
    AwaitingAppointment,
    CheckInRequest,
    QueueEntryResponse,
    QueueListResponse,
    QueueSettingsResponse,
    QueueSettingsUpdate,
    QueueStats,
    StatusUpdateRequest,
    WaitTimeResponse,
)
from clinic_core.services.queue_service import QueueService

router = APIRouter(dependencies=[Depends(require_feature(Feature.QUEUE_MANAGEMENT))])


def get_queue_service() -> QueueService:
    return QueueService(get_session_factory(), get_redis())


@router.get("/{clinic_id}/queue/settings", response_model=QueueSettingsResponse)
async def get_queue_settings(
    clinic_id: str,
    service: QueueService = Depends(get_queue_service),
) -> QueueSettingsResponse:
    settings = await service.get_settings(clinic_id)
    return QueueSettingsResponse(**asdict(settings))


@router.put("/{clinic_id}/queue/settings", response_model=QueueSettingsResponse)
async def update_queue_settings(
    clinic_id: str,
    request: QueueSettingsUpdate,
    service: QueueService = Depends(get_queue_service),
) -> QueueSettingsResponse:
    """Rejects (422) any result where grace < buffer, buffer < 0 or avg <= 0."""
    settings = await service.update_settings(clinic_id, request)
    return QueueSettingsResponse(**asdict(settings))


@router.post("/{clinic_id}/queue/check-in", response_model=QueueEntryResponse, status_code=201)
async def check_in(
    clinic_id: str,
    request: CheckInRequest,
    service: QueueService = Depends(get_queue_service),
) -> QueueEntryResponse:
    return await service.check_in(clinic_id, request)


@router.get("/{clinic_id}/queue", response_model=QueueListResponse)
async def list_queue(
    clinic_id: str,
    doctor_id: str | None = Query(None),
    service: QueueService = Depends(get_queue_service),
) -> QueueListResponse:
    return await service.list_queue(clinic_id, doctor_id=doctor_id)


@router.get("/{clinic_id}/queue/stats", response_model=QueueStats)
async def queue_stats(
    clinic_id: str,
    doctor_id: str | None = Query(None),
    service: QueueService = Depends(get_queue_service),
) -> QueueStats:
    return await service.get_stats(clinic_id, doctor_id=doctor_id)


@router.get("/{clinic_id}/queue/awaiting-check-in", response_model=list[AwaitingAppointment])
async def appointments_awaiting_check_in(
    clinic_id: str,
    doctor_id: str | None = Query(None),
    service: QueueService = Depends(get_queue_service),
) -> list[AwaitingAppointment]:
    return await service.appointments_awaiting_check_in(clinic_id, doctor_id=doctor_id)


@router.post("/{clinic_id}/queue/call-next", response_model=QueueEntryResponse)
async def call_next(
    clinic_id: str,
    doctor_id: str | None = Query(None),
    service: QueueService = Depends(get_queue_service),
):
    """Move the next admitted patient into consultation; 204 when nobody is due."""
    entry = await service.call_next(clinic_id, doctor_id=doctor_id)
    if entry is None:
        return Response(status_code=204)
    return entry


@router.get("/{clinic_id}/queue/{entry_id}/wait-time", response_model=WaitTimeResponse)
async def get_wait_time(
    clinic_id: str,
    entry_id: str,
    service: QueueService = Depends(get_queue_service),
) -> WaitTimeResponse:
    return await service.get_wait_time(clinic_id, entry_id)


@router.patch("/{clinic_id}/queue/{entry_id}", response_model=QueueEntryResponse)
async def update_entry_status(
    clinic_id: str,
    entry_id: str,
    request: StatusUpdateRequest,
    service: QueueService = Depends(get_queue_service),
) -> QueueEntryResponse:
    return await service.update_status(clinic_id, entry_id, request.status, notes=request.notes)
