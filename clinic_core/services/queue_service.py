"""QueueService: check-in, token assignment, serving order and wait estimates.

Orchestrates the pure admission rules in ``domain.queue_rules`` against the
clinic store (SQLAlchemy: entries and daily token counters) and Redis
(check-in claims, observed consultation averages).
"""

import uuid
from dataclasses import asdict, replace
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import structlog
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from clinic_core.core.config import Settings, get_settings
from clinic_core.core.exceptions import (
    AlreadyCheckedInError,
    AppointmentNotCheckInnableError,
    ConcurrentUpdateError,
    NotFoundError,
    QueueValidationError,
    TokenAssignmentError,
)
from clinic_core.db.models.appointment import Appointment
from clinic_core.db.models.clinic import Clinic
from clinic_core.db.models.queue_entry import QueueEntry
from clinic_core.domain.queue_rules import (
    ArrivalStatus,
    DoctorScope,
    QueueCandidate,
    QueueSettings,
    ServingOrder,
    TokenType,
    classify_arrival,
    clinic_day,
    estimate_pending_wait_minutes,
    estimate_wait_minutes,
    next_to_serve,
    order_waiting,
    resolve_scope,
    to_utc,
    validate_queue_settings,
)
from clinic_core.queue.estimator import WaitTimeEstimator
from clinic_core.queue.schemas import (
    AwaitingAppointment,
    CheckInRequest,
    QueueEntryResponse,
    QueueEntryStatus,
    QueueListResponse,
    QueueSettingsUpdate,
    QueueStats,
    WaitTimeResponse,
)
from clinic_core.queue.state_machine import QueueEntryStateMachine
from clinic_core.queue.tokens import CheckInClaims, TokenAllocator

logger = structlog.get_logger(__name__)

# Listing order: being seen, waiting, then closed entries
_STATUS_RANK = {
    QueueEntryStatus.IN_CONSULTATION.value: 0,
    QueueEntryStatus.WAITING.value: 1,
    QueueEntryStatus.COMPLETED.value: 2,
    QueueEntryStatus.NO_SHOW.value: 3,
    QueueEntryStatus.CANCELLED.value: 4,
}

CALL_NEXT_ATTEMPTS = 3

# Booking statuses a patient can still check in under
CHECK_IN_ELIGIBLE_STATUSES = ("scheduled", "confirmed")


def _optional_utc(moment: datetime | None) -> datetime | None:
    return to_utc(moment) if moment is not None else None


def _candidate(entry: QueueEntry) -> QueueCandidate:
    return QueueCandidate(
        entry_id=entry.id,
        token_number=entry.token_number,
        token_type=TokenType(entry.token_type),
        arrival_status=ArrivalStatus(entry.arrival_status),
        check_in_time=to_utc(entry.check_in_time),
        scheduled_time=_optional_utc(entry.scheduled_time),
        admit_at=to_utc(entry.admit_at),
        priority=entry.priority or 0,
    )


def _to_response(entry: QueueEntry, position: int | None = None, wait: int | None = None) -> QueueEntryResponse:
    return QueueEntryResponse(
        id=entry.id,
        clinic_id=entry.clinic_id,
        doctor_id=entry.doctor_id,
        patient_id=entry.patient_id,
        appointment_id=entry.appointment_id,
        token_number=entry.token_number,
        token_type=TokenType(entry.token_type),
        arrival_status=ArrivalStatus(entry.arrival_status),
        status=QueueEntryStatus(entry.status),
        check_in_time=to_utc(entry.check_in_time),
        scheduled_time=_optional_utc(entry.scheduled_time),
        admit_at=to_utc(entry.admit_at),
        priority=entry.priority or 0,
        estimated_wait_minutes=wait if wait is not None else entry.estimated_wait_minutes,
        position=position,
        called_at=_optional_utc(entry.called_at),
        completed_at=_optional_utc(entry.completed_at),
        notes=entry.notes,
    )


def _wait_for(candidate: QueueCandidate, order: ServingOrder, avg: int, now: datetime) -> tuple[int | None, int]:
    """(position, estimated wait) of a waiting entry within its scope's order."""
    position = order.position_of(candidate.entry_id)
    if position is not None:
        return position, estimate_wait_minutes(position, avg)
    return None, estimate_pending_wait_minutes(candidate, order, avg, now)


class QueueService:
    """Service layer for the clinic queue.

    All timing inputs accept an explicit ``now`` for deterministic testing.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.app_settings = settings or get_settings()
        self.tokens = TokenAllocator()
        self.claims = CheckInClaims(redis)
        self.estimator = WaitTimeEstimator(redis)

    # ── Settings ────────────────────────────────────────────────────

    def _settings_for(self, clinic: Clinic) -> QueueSettings:
        defaults = self.app_settings

        def pick(value, default):
            return default if value is None else value

        return QueueSettings(
            queue_buffer_minutes=pick(clinic.queue_buffer_minutes, defaults.default_queue_buffer_minutes),
            late_arrival_grace_minutes=pick(
                clinic.late_arrival_grace_minutes, defaults.default_late_arrival_grace_minutes
            ),
            avg_consultation_minutes=pick(clinic.avg_consultation_minutes, defaults.default_avg_consultation_minutes),
            use_doctor_queues=pick(clinic.use_doctor_queues, defaults.default_use_doctor_queues),
        )

    def _timezone_for(self, clinic: Clinic) -> str:
        return clinic.timezone or self.app_settings.default_clinic_timezone

    def _day_for(self, clinic: Clinic, now: datetime) -> date:
        return clinic_day(now, self._timezone_for(clinic))

    async def _load_clinic(self, session: AsyncSession, clinic_id: str) -> Clinic:
        result = await session.execute(select(Clinic).where(Clinic.id == clinic_id))
        clinic = result.scalar_one_or_none()
        if clinic is None:
            raise NotFoundError("Clinic not found")
        return clinic

    async def get_settings(self, clinic_id: str) -> QueueSettings:
        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            return self._settings_for(clinic)

    async def update_settings(self, clinic_id: str, update: QueueSettingsUpdate) -> QueueSettings:
        """Merge a partial update over the current settings, validate, and store.

        Invalid combinations are rejected as a whole; nothing is clamped.
        Applying the same payload twice leaves the same stored state.
        """
        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            changes = update.model_dump(exclude_none=True)
            merged = validate_queue_settings(replace(self._settings_for(clinic), **changes))

            for field, value in asdict(merged).items():
                setattr(clinic, field, value)
            await session.commit()

            logger.info("queue_settings_updated", clinic_id=clinic_id, changed=sorted(changes), **asdict(merged))
            return merged

    # ── Check-in ────────────────────────────────────────────────────

    async def _waiting_in_scope(self, session: AsyncSession, scope_key: str, day: date) -> list[QueueEntry]:
        result = await session.execute(
            select(QueueEntry).where(
                QueueEntry.scope_key == scope_key,
                QueueEntry.clinic_day == day,
                QueueEntry.status == QueueEntryStatus.WAITING.value,
            )
        )
        return list(result.scalars().all())

    async def _has_live_entry(self, session: AsyncSession, appointment_id: str, day: date) -> bool:
        result = await session.execute(
            select(QueueEntry.id).where(
                QueueEntry.appointment_id == appointment_id,
                QueueEntry.clinic_day == day,
                QueueEntry.status != QueueEntryStatus.CANCELLED.value,
            )
        )
        return result.first() is not None

    async def check_in(self, clinic_id: str, request: CheckInRequest, now: datetime | None = None) -> QueueEntryResponse:
        """Admit a patient into today's queue.

        Booked patients are classified against their appointment time; walk-ins
        go straight to the walk-in stream. The token comes from the scope-day
        counter, and the wait estimate from the projected serving order.

        Raises:
            NotFoundError: clinic or appointment missing (or another clinic's)
            AppointmentNotCheckInnableError: the appointment was cancelled
            QueueValidationError: appointment booked for another day, missing
                patient, or missing doctor for doctor queues
            AlreadyCheckedInError: the appointment already has a live entry today
            TokenAssignmentError: token allocation kept conflicting
        """
        now = to_utc(now or datetime.now(UTC))

        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            settings = self._settings_for(clinic)
            timezone_name = self._timezone_for(clinic)
            day = clinic_day(now, timezone_name)

            appointment_id = None
            if request.appointment_id:
                result = await session.execute(select(Appointment).where(Appointment.id == request.appointment_id))
                appointment = result.scalar_one_or_none()
                if appointment is None or appointment.clinic_id != clinic_id:
                    raise NotFoundError("Appointment not found")
                if appointment.status == "cancelled":
                    raise AppointmentNotCheckInnableError("Cannot check in a cancelled appointment")
                booked_day = clinic_day(appointment.scheduled_time, timezone_name)
                if booked_day != day:
                    raise QueueValidationError(
                        f"Appointment is booked for {booked_day.isoformat()}, not today ({day.isoformat()})"
                    )
                appointment_id = appointment.id
                patient_id = appointment.patient_id
                doctor_id = appointment.doctor_id or request.doctor_id
                scheduled_time = to_utc(appointment.scheduled_time)
            else:
                if not request.patient_id:
                    raise QueueValidationError("patient_id is required for a walk-in check-in")
                patient_id = request.patient_id
                doctor_id = request.doctor_id
                scheduled_time = None

            scope = resolve_scope(settings, clinic_id, doctor_id)
            classification = classify_arrival(now, scheduled_time, settings)

            if appointment_id is not None and await self._has_live_entry(session, appointment_id, day):
                raise AlreadyCheckedInError(appointment_id)

        if appointment_id is not None and not await self.claims.claim(clinic_id, day, appointment_id):
            raise AlreadyCheckedInError(appointment_id)

        notes = request.notes
        if classification.demoted and not notes:
            notes = f"Late arrival (scheduled: {scheduled_time.isoformat()}), booking forfeited"

        fields = dict(
            clinic_id=clinic_id,
            scope_key=scope.key,
            clinic_day=day,
            token_type=classification.token_type.value,
            arrival_status=classification.status.value,
            status=QueueEntryStatus.WAITING.value,
            priority=request.priority,
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_id=appointment_id,
            check_in_time=now,
            scheduled_time=scheduled_time,
            admit_at=classification.admit_at,
            delta_minutes=classification.delta_minutes,
            notes=notes,
        )

        try:
            entry, position, wait = await self._admit(fields, settings, now)
        except Exception:
            if appointment_id is not None:
                await self.claims.release(clinic_id, day, appointment_id)
            raise

        logger.info(
            "queue_check_in",
            clinic_id=clinic_id,
            scope_key=scope.key,
            entry_id=entry.id,
            token_number=entry.token_number,
            arrival_status=classification.status.value,
            token_type=classification.token_type.value,
            delta_minutes=classification.delta_minutes,
            pending=position is None,
            estimated_wait_minutes=wait,
        )
        return _to_response(entry, position=position, wait=wait)

    async def _admit(
        self, fields: dict, settings: QueueSettings, now: datetime
    ) -> tuple[QueueEntry, int | None, int]:
        """Take the next token and insert the entry in one store transaction.

        A rolled-back insert rolls the counter back too, so tokens stay gapless.
        Conflicting writers (first token of the day, locked database) are
        retried; repeated conflicts surface as TokenAssignmentError.
        """
        attempts = self.app_settings.token_assign_attempts
        scope_key, day = fields["scope_key"], fields["clinic_day"]

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((IntegrityError, OperationalError)),
                stop=stop_after_attempt(attempts),
                before_sleep=lambda rs: logger.warning(
                    "queue_token_conflict_retrying",
                    scope_key=scope_key,
                    attempt=rs.attempt_number,
                ),
            ):
                with attempt:
                    async with self.session_factory() as session:
                        token_number = await self.tokens.next_token(session, scope_key, day)
                        entry = QueueEntry(id=str(uuid.uuid4()), token_number=token_number, **fields)

                        waiting = [_candidate(e) for e in await self._waiting_in_scope(session, scope_key, day)]
                        candidate = _candidate(entry)
                        order = order_waiting(waiting + [candidate], now, settings.queue_buffer_minutes)
                        position, wait = _wait_for(candidate, order, settings.avg_consultation_minutes, now)
                        entry.estimated_wait_minutes = wait

                        session.add(entry)
                        await session.commit()
        except RetryError as exc:
            raise TokenAssignmentError(scope_key, attempts) from exc

        return entry, position, wait

    # ── Queue views ─────────────────────────────────────────────────

    async def _entries_for_day(
        self, session: AsyncSession, clinic_id: str, day: date, scope_key: str | None
    ) -> list[QueueEntry]:
        query = select(QueueEntry).where(QueueEntry.clinic_id == clinic_id, QueueEntry.clinic_day == day)
        if scope_key is not None:
            query = query.where(QueueEntry.scope_key == scope_key)
        result = await session.execute(query)
        return list(result.scalars().all())

    def _view_scope_key(self, settings: QueueSettings, clinic_id: str, doctor_id: str | None) -> str | None:
        """Scope filter for read views; doctor queues without a doctor show every queue."""
        if settings.use_doctor_queues and doctor_id:
            return DoctorScope(clinic_id=clinic_id, doctor_id=doctor_id).key
        return None

    async def list_queue(
        self, clinic_id: str, doctor_id: str | None = None, now: datetime | None = None
    ) -> QueueListResponse:
        """Today's entries with projected positions and waits, ordered for display."""
        now = to_utc(now or datetime.now(UTC))

        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            settings = self._settings_for(clinic)
            day = self._day_for(clinic, now)
            entries = await self._entries_for_day(
                session, clinic_id, day, self._view_scope_key(settings, clinic_id, doctor_id)
            )

        by_scope: dict[str, list[QueueEntry]] = {}
        for entry in entries:
            if entry.status == QueueEntryStatus.WAITING.value:
                by_scope.setdefault(entry.scope_key, []).append(entry)

        projections: dict[str, tuple[int | None, int]] = {}
        for scope_entries in by_scope.values():
            candidates = [_candidate(e) for e in scope_entries]
            order = order_waiting(candidates, now, settings.queue_buffer_minutes)
            for candidate in candidates:
                projections[candidate.entry_id] = _wait_for(
                    candidate, order, settings.avg_consultation_minutes, now
                )

        def sort_key(entry: QueueEntry) -> tuple:
            position, wait = projections.get(entry.id, (None, None))
            pending = entry.id in projections and position is None
            return (
                _STATUS_RANK.get(entry.status, 99),
                1 if pending else 0,
                wait if wait is not None else 0,
                position if position is not None else 0,
                entry.token_number,
            )

        responses = []
        for entry in sorted(entries, key=sort_key):
            position, wait = projections.get(entry.id, (None, None))
            responses.append(_to_response(entry, position=position, wait=wait))

        return QueueListResponse(entries=responses, avg_consultation_minutes=settings.avg_consultation_minutes)

    async def get_wait_time(self, clinic_id: str, entry_id: str, now: datetime | None = None) -> WaitTimeResponse:
        """Recompute the advisory wait for one entry."""
        now = to_utc(now or datetime.now(UTC))

        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            settings = self._settings_for(clinic)
            entry = await self._load_entry(session, clinic_id, entry_id)

            if entry.status != QueueEntryStatus.WAITING.value:
                return WaitTimeResponse(
                    entry_id=entry.id,
                    status=QueueEntryStatus(entry.status),
                    position=None,
                    estimated_wait_minutes=0,
                    message=self.estimator.format_wait_time(0),
                )

            candidates = [_candidate(e) for e in await self._waiting_in_scope(session, entry.scope_key, entry.clinic_day)]

        order = order_waiting(candidates, now, settings.queue_buffer_minutes)
        candidate = next(c for c in candidates if c.entry_id == entry.id)
        position, wait = _wait_for(candidate, order, settings.avg_consultation_minutes, now)
        return WaitTimeResponse(
            entry_id=entry.id,
            status=QueueEntryStatus.WAITING,
            position=position,
            estimated_wait_minutes=wait,
            message=self.estimator.format_wait_time(wait),
        )

    async def get_stats(self, clinic_id: str, doctor_id: str | None = None, now: datetime | None = None) -> QueueStats:
        now = to_utc(now or datetime.now(UTC))

        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            settings = self._settings_for(clinic)
            day = self._day_for(clinic, now)
            entries = await self._entries_for_day(
                session, clinic_id, day, self._view_scope_key(settings, clinic_id, doctor_id)
            )

        def count(predicate) -> int:
            return sum(1 for e in entries if predicate(e))

        waiting = [e for e in entries if e.status == QueueEntryStatus.WAITING.value]
        pending = sum(
            1 for e in waiting if e.token_type == TokenType.SCHEDULED.value and to_utc(e.admit_at) > now
        )

        return QueueStats(
            waiting=len(waiting) - pending,
            pending=pending,
            in_consultation=count(lambda e: e.status == QueueEntryStatus.IN_CONSULTATION.value),
            completed=count(lambda e: e.status == QueueEntryStatus.COMPLETED.value),
            no_show=count(lambda e: e.status == QueueEntryStatus.NO_SHOW.value),
            cancelled=count(lambda e: e.status == QueueEntryStatus.CANCELLED.value),
            total=len(entries),
            on_time=count(lambda e: e.arrival_status == ArrivalStatus.ON_TIME.value),
            late=count(lambda e: e.arrival_status == ArrivalStatus.LATE.value),
            walk_ins=count(lambda e: e.arrival_status == ArrivalStatus.WALK_IN.value),
            demoted=count(lambda e: e.arrival_status == ArrivalStatus.WALK_IN.value and e.appointment_id is not None),
            avg_consultation_minutes=settings.avg_consultation_minutes,
            observed_avg_consultation_minutes=await self.estimator.observed_average(clinic_id),
        )

    async def appointments_awaiting_check_in(
        self, clinic_id: str, doctor_id: str | None = None, now: datetime | None = None
    ) -> list[AwaitingAppointment]:
        """Today's scheduled or confirmed bookings with no live queue entry, by slot."""
        now = to_utc(now or datetime.now(UTC))

        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            zone = ZoneInfo(self._timezone_for(clinic))
            day = clinic_day(now, zone.key)
            day_start = datetime.combine(day, time.min, tzinfo=zone).astimezone(UTC)
            day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone).astimezone(UTC)

            checked_in = select(QueueEntry.appointment_id).where(
                QueueEntry.appointment_id.is_not(None),
                QueueEntry.status != QueueEntryStatus.CANCELLED.value,
            )
            query = (
                select(Appointment)
                .where(
                    Appointment.clinic_id == clinic_id,
                    Appointment.status.in_(CHECK_IN_ELIGIBLE_STATUSES),
                    Appointment.scheduled_time >= day_start,
                    Appointment.scheduled_time < day_end,
                    Appointment.id.not_in(checked_in),
                )
                .order_by(Appointment.scheduled_time)
            )
            if doctor_id:
                query = query.where(Appointment.doctor_id == doctor_id)

            result = await session.execute(query)
            appointments = result.scalars().all()

        return [
            AwaitingAppointment(
                id=a.id,
                patient_id=a.patient_id,
                doctor_id=a.doctor_id,
                scheduled_time=to_utc(a.scheduled_time),
                status=a.status,
            )
            for a in appointments
        ]

    # ── Lifecycle ───────────────────────────────────────────────────

    async def _load_entry(self, session: AsyncSession, clinic_id: str, entry_id: str) -> QueueEntry:
        result = await session.execute(select(QueueEntry).where(QueueEntry.id == entry_id))
        entry = result.scalar_one_or_none()
        if entry is None or entry.clinic_id != clinic_id:
            raise NotFoundError(f"Queue entry {entry_id} not found")
        return entry

    async def call_next(
        self, clinic_id: str, doctor_id: str | None = None, now: datetime | None = None
    ) -> QueueEntryResponse | None:
        """Move the next entry in serving order into consultation.

        Returns None when nobody is admitted (empty queue, or only early
        arrivals whose window has not opened).
        """
        now = to_utc(now or datetime.now(UTC))

        for attempt in range(1, CALL_NEXT_ATTEMPTS + 1):
            async with self.session_factory() as session:
                clinic = await self._load_clinic(session, clinic_id)
                settings = self._settings_for(clinic)
                day = self._day_for(clinic, now)
                scope = resolve_scope(settings, clinic_id, doctor_id)

                waiting = await self._waiting_in_scope(session, scope.key, day)
                chosen = next_to_serve([_candidate(e) for e in waiting], now, settings.queue_buffer_minutes)
                if chosen is None:
                    logger.info("queue_call_next_empty", clinic_id=clinic_id, scope_key=scope.key)
                    return None

                entry = next(e for e in waiting if e.id == chosen.entry_id)
                QueueEntryStateMachine.transition(entry, QueueEntryStatus.IN_CONSULTATION, now)
                try:
                    await session.commit()
                except StaleDataError:
                    await session.rollback()
                    logger.warning("queue_call_next_conflict", clinic_id=clinic_id, entry_id=entry.id, attempt=attempt)
                    continue

                logger.info(
                    "queue_call_next",
                    clinic_id=clinic_id,
                    scope_key=scope.key,
                    entry_id=entry.id,
                    token_number=entry.token_number,
                    token_type=entry.token_type,
                )
                return _to_response(entry)

        raise ConcurrentUpdateError(f"next in {clinic_id}")

    async def update_status(
        self,
        clinic_id: str,
        entry_id: str,
        new_status: QueueEntryStatus,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> QueueEntryResponse:
        """Apply a lifecycle transition (call in, complete, no-show, cancel).

        Completing records the consultation length into the observed average;
        cancelling releases the appointment's check-in claim. An early arrival
        cannot be called in before its booking window opens.
        """
        now = to_utc(now or datetime.now(UTC))

        async with self.session_factory() as session:
            clinic = await self._load_clinic(session, clinic_id)
            settings = self._settings_for(clinic)
            entry = await self._load_entry(session, clinic_id, entry_id)

            if (
                new_status == QueueEntryStatus.IN_CONSULTATION
                and entry.status == QueueEntryStatus.WAITING.value
                and to_utc(entry.admit_at) > now
            ):
                raise QueueValidationError(
                    f"Entry is held until {to_utc(entry.admit_at).isoformat()}, its booking window has not opened"
                )

            previous = QueueEntryStateMachine.transition(entry, new_status, now)
            if notes is not None:
                entry.notes = notes
            try:
                await session.commit()
            except StaleDataError as exc:
                await session.rollback()
                raise ConcurrentUpdateError(entry_id) from exc

            logger.info(
                "queue_entry_status_changed",
                clinic_id=clinic_id,
                entry_id=entry_id,
                from_status=previous.value,
                to_status=new_status.value,
            )

            if new_status == QueueEntryStatus.COMPLETED and entry.called_at is not None:
                duration = (now - to_utc(entry.called_at)).total_seconds() / 60
                observed = await self.estimator.record_consultation(
                    clinic_id, duration, settings.avg_consultation_minutes
                )
                logger.info(
                    "consultation_recorded",
                    clinic_id=clinic_id,
                    duration_minutes=round(duration, 1),
                    observed_avg_minutes=round(observed, 1),
                )
            elif new_status == QueueEntryStatus.CANCELLED and entry.appointment_id:
                await self.claims.release(clinic_id, entry.clinic_day, entry.appointment_id)

            return _to_response(entry)
