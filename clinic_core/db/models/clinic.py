"""Clinic model: tenant row holding subscription and queue settings."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from clinic_core.db.base import Base


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)

    # Subscription
    tier = Column(String(20), nullable=False, default="CAPTURE")  # Tier enum names, never INTELLIGENCE
    intelligence_addon = Column(Boolean, nullable=False, default=False)
    subscription_status = Column(String(20), nullable=False, default="active")  # active, trial, past_due

    # Queue settings (nullable = use configured default)
    queue_buffer_minutes = Column(Integer, nullable=True)
    late_arrival_grace_minutes = Column(Integer, nullable=True)
    avg_consultation_minutes = Column(Integer, nullable=True)
    use_doctor_queues = Column(Boolean, nullable=True)

    # IANA zone for clinic-day boundaries (nullable = configured default)
    timezone = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
