"""QueueEntry model: one patient's admission into a clinic-day queue."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint

from clinic_core.db.base import Base


class QueueEntry(Base):
    __tablename__ = "queue_entries"
    __table_args__ = (
        UniqueConstraint("scope_key", "clinic_day", "token_number", name="uq_queue_entries_scope_day_token"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False, index=True)

    # Admission scope ("clinic:{id}" or "clinic:{id}:doctor:{id}") and day the token belongs to
    scope_key = Column(String(120), nullable=False, index=True)
    clinic_day = Column(Date, nullable=False, index=True)
    token_number = Column(Integer, nullable=False)

    token_type = Column(String(20), nullable=False)  # scheduled, walk-in
    arrival_status = Column(String(20), nullable=False)  # on-time, late, walk-in (fixed at check-in)
    status = Column(String(20), nullable=False, default="waiting")  # QueueEntryStatus values
    priority = Column(Integer, nullable=False, default=0)  # higher is served first within a band

    patient_id = Column(String(36), nullable=False, index=True)
    doctor_id = Column(String(36), nullable=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True, index=True)

    check_in_time = Column(DateTime(timezone=True), nullable=False)
    scheduled_time = Column(DateTime(timezone=True), nullable=True)  # null for walk-ins without a booking
    admit_at = Column(DateTime(timezone=True), nullable=False)  # later than check-in for early arrivals
    delta_minutes = Column(Float, nullable=True)

    estimated_wait_minutes = Column(Integer, nullable=True)  # at admission; advisory
    called_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Optimistic concurrency: two receptionists calling the same entry cannot both win
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
