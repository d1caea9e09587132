"""Queue schemas and entry lifecycle states."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from clinic_core.domain.queue_rules import ArrivalStatus, TokenType


class QueueEntryStatus(str, Enum):
    """Queue entry lifecycle states."""

    WAITING = "waiting"
    IN_CONSULTATION = "in-consultation"
    COMPLETED = "completed"
    NO_SHOW = "no-show"
    CANCELLED = "cancelled"


class QueueSettingsResponse(BaseModel):
    queue_buffer_minutes: int
    late_arrival_grace_minutes: int
    avg_consultation_minutes: int
    use_doctor_queues: bool


class QueueSettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    queue_buffer_minutes: int | None = None
    late_arrival_grace_minutes: int | None = None
    avg_consultation_minutes: int | None = None
    use_doctor_queues: bool | None = None


class CheckInRequest(BaseModel):
    """Check-in for a booked appointment or a walk-in.

    Booked: appointment_id (patient and doctor come from the appointment).
    Walk-in: patient_id, plus doctor_id when doctor queues are on.
    """

    appointment_id: str | None = None
    patient_id: str | None = None
    doctor_id: str | None = None
    priority: int = Field(0, ge=0, le=10)  # higher is served first within its band
    notes: str | None = None


class QueueEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    doctor_id: str | None
    patient_id: str
    appointment_id: str | None
    token_number: int
    token_type: TokenType
    arrival_status: ArrivalStatus
    status: QueueEntryStatus
    check_in_time: datetime
    scheduled_time: datetime | None
    admit_at: datetime
    priority: int = 0
    estimated_wait_minutes: int | None
    position: int | None = None  # entries ahead in the projected order
    called_at: datetime | None = None
    completed_at: datetime | None = None
    notes: str | None = None


class QueueListResponse(BaseModel):
    entries: list[QueueEntryResponse]
    avg_consultation_minutes: int


class StatusUpdateRequest(BaseModel):
    status: QueueEntryStatus
    notes: str | None = None


class WaitTimeResponse(BaseModel):
    entry_id: str
    status: QueueEntryStatus
    position: int | None
    estimated_wait_minutes: int
    message: str


class QueueStats(BaseModel):
    """Counters for one clinic-day (or doctor-day)."""

    waiting: int
    pending: int
    in_consultation: int
    completed: int
    no_show: int
    cancelled: int
    total: int
    on_time: int
    late: int
    walk_ins: int
    demoted: int
    avg_consultation_minutes: int
    observed_avg_consultation_minutes: float | None


class AwaitingAppointment(BaseModel):
    """A booking for today that has not been checked in yet."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str | None
    scheduled_time: datetime
    status: str
