"""Queue admission rules: arrival classification, scopes and serving order.

Pure domain functions. No DB or Redis access; every time-dependent function
takes ``now`` explicitly so results are deterministic.
"""

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from zoneinfo import ZoneInfo

from clinic_core.core.exceptions import QueueValidationError


class ArrivalStatus(StrEnum):
    """How a check-in relates to its booking. Fixed at check-in time."""

    ON_TIME = "on-time"
    LATE = "late"
    WALK_IN = "walk-in"


class TokenType(StrEnum):
    SCHEDULED = "scheduled"
    WALK_IN = "walk-in"


@dataclass(frozen=True)
class QueueSettings:
    """Per-clinic queue timing configuration."""

    queue_buffer_minutes: int = 10
    late_arrival_grace_minutes: int = 30
    avg_consultation_minutes: int = 15
    use_doctor_queues: bool = False


def validate_queue_settings(settings: QueueSettings) -> QueueSettings:
    """Reject settings that break the timing invariants. Values are never clamped."""
    if settings.queue_buffer_minutes < 0:
        raise QueueValidationError("queue_buffer_minutes must be >= 0")
    if settings.late_arrival_grace_minutes < settings.queue_buffer_minutes:
        raise QueueValidationError("late_arrival_grace_minutes must be >= queue_buffer_minutes")
    if settings.avg_consultation_minutes <= 0:
        raise QueueValidationError("avg_consultation_minutes must be > 0")
    return settings


def to_utc(moment: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def clinic_day(moment: datetime, timezone_name: str) -> date:
    """Calendar date of ``moment`` in the clinic's timezone. Tokens reset on this boundary."""
    return to_utc(moment).astimezone(ZoneInfo(timezone_name)).date()


# ── Classification ──────────────────────────────────────────────────


@dataclass(frozen=True)
class ArrivalClassification:
    """Result of classifying a check-in."""

    status: ArrivalStatus
    token_type: TokenType
    delta_minutes: float | None  # None for walk-ins without a booking
    admit_at: datetime  # when the entry joins active ordering

    @property
    def demoted(self) -> bool:
        """True when a booked patient lost the slot by exceeding the grace period."""
        return self.delta_minutes is not None and self.status == ArrivalStatus.WALK_IN


def classify_arrival(
    check_in_time: datetime,
    scheduled_time: datetime | None,
    settings: QueueSettings,
) -> ArrivalClassification:
    """Classify a check-in against its scheduled time.

    Rules (delta = check-in minus scheduled, in minutes):
        - no booking: WALK_IN
        - -buffer <= delta <= buffer: ON_TIME
        - buffer < delta <= grace: LATE (keeps the booking)
        - delta > grace: WALK_IN (booking forfeited)
        - delta < -buffer: ON_TIME, but held back until scheduled - buffer
    """
    check_in_time = to_utc(check_in_time)

    if scheduled_time is None:
        return ArrivalClassification(
            status=ArrivalStatus.WALK_IN,
            token_type=TokenType.WALK_IN,
            delta_minutes=None,
            admit_at=check_in_time,
        )

    scheduled_time = to_utc(scheduled_time)
    delta = (check_in_time - scheduled_time).total_seconds() / 60
    buffer = settings.queue_buffer_minutes
    grace = settings.late_arrival_grace_minutes

    if delta > grace:
        return ArrivalClassification(
            status=ArrivalStatus.WALK_IN,
            token_type=TokenType.WALK_IN,
            delta_minutes=delta,
            admit_at=check_in_time,
        )

    if delta > buffer:
        return ArrivalClassification(
            status=ArrivalStatus.LATE,
            token_type=TokenType.SCHEDULED,
            delta_minutes=delta,
            admit_at=check_in_time,
        )

    if delta < -buffer:
        return ArrivalClassification(
            status=ArrivalStatus.ON_TIME,
            token_type=TokenType.SCHEDULED,
            delta_minutes=delta,
            admit_at=scheduled_time - timedelta(minutes=buffer),
        )

    return ArrivalClassification(
        status=ArrivalStatus.ON_TIME,
        token_type=TokenType.SCHEDULED,
        delta_minutes=delta,
        admit_at=check_in_time,
    )


# ── Admission scopes ────────────────────────────────────────────────


@dataclass(frozen=True)
class GlobalScope:
    """One queue for the whole clinic."""

    clinic_id: str

    @property
    def key(self) -> str:
        return f"clinic:{self.clinic_id}"


@dataclass(frozen=True)
class DoctorScope:
    """One queue per doctor."""

    clinic_id: str
    doctor_id: str

    @property
    def key(self) -> str:
        return f"clinic:{self.clinic_id}:doctor:{self.doctor_id}"


AdmissionScope = GlobalScope | DoctorScope


def resolve_scope(settings: QueueSettings, clinic_id: str, doctor_id: str | None) -> AdmissionScope:
    """Pick the admission scope for a check-in.

    Raises QueueValidationError when doctor queues are on but no doctor is known.
    """
    if not settings.use_doctor_queues:
        return GlobalScope(clinic_id=clinic_id)
    if not doctor_id:
        raise QueueValidationError("doctor_id is required when doctor queues are enabled")
    return DoctorScope(clinic_id=clinic_id, doctor_id=doctor_id)


# ── Serving order ───────────────────────────────────────────────────


@dataclass(frozen=True)
class QueueCandidate:
    """A waiting entry as seen by the ordering rules."""

    entry_id: str
    token_number: int
    token_type: TokenType
    arrival_status: ArrivalStatus
    check_in_time: datetime
    scheduled_time: datetime | None
    admit_at: datetime
    priority: int = 0

    def is_due(self, now: datetime) -> bool:
        return to_utc(self.admit_at) <= to_utc(now)

    def in_window(self, now: datetime, buffer_minutes: int) -> bool:
        """Booked slot within ``buffer_minutes`` either side of ``now``."""
        if self.scheduled_time is None:
            return False
        offset = abs((to_utc(self.scheduled_time) - to_utc(now)).total_seconds()) / 60
        return offset <= buffer_minutes


@dataclass
class ServingOrder:
    """Projected order of a scope's waiting entries at one instant."""

    active: list[QueueCandidate]
    pending: list[QueueCandidate]

    def position_of(self, entry_id: str) -> int | None:
        """0-based number of entries ahead, or None if not actively queued."""
        for index, candidate in enumerate(self.active):
            if candidate.entry_id == entry_id:
                return index
        return None


def _slot_sort_key(candidate: QueueCandidate) -> tuple:
    return (-candidate.priority, to_utc(candidate.scheduled_time), candidate.token_number)


def _arrival_sort_key(candidate: QueueCandidate) -> tuple:
    return (-candidate.priority, to_utc(candidate.check_in_time), candidate.token_number)


def order_waiting(candidates: list[QueueCandidate], now: datetime, buffer_minutes: int) -> ServingOrder:
    """Merge the scheduled and walk-in streams into a serving order.

    Three bands, each ordered by priority first:
        1. on-time bookings whose slot is within ``buffer_minutes`` of now, by slot
        2. walk-ins and late arrivals, by arrival
        3. on-time bookings whose slot has slipped past the window, by slot

    A booking only outranks walk-ins while its slot is current; once the
    clinic runs behind, it waits its turn after earlier arrivals. Early
    arrivals whose window has not opened stay pending and are not ordered.
    """
    in_window = []
    arrivals = []
    slipped = []
    pending = []

    for candidate in candidates:
        if candidate.token_type == TokenType.WALK_IN or candidate.arrival_status == ArrivalStatus.LATE:
            arrivals.append(candidate)
        elif not candidate.is_due(now):
            pending.append(candidate)
        elif candidate.in_window(now, buffer_minutes):
            in_window.append(candidate)
        else:
            slipped.append(candidate)

    in_window.sort(key=_slot_sort_key)
    arrivals.sort(key=_arrival_sort_key)
    slipped.sort(key=_slot_sort_key)
    pending.sort(key=lambda c: (to_utc(c.admit_at), c.token_number))

    return ServingOrder(active=in_window + arrivals + slipped, pending=pending)


def next_to_serve(candidates: list[QueueCandidate], now: datetime, buffer_minutes: int) -> QueueCandidate | None:
    """The entry to call next, or None when nothing is admitted yet."""
    order = order_waiting(candidates, now, buffer_minutes)
    return order.active[0] if order.active else None


def estimate_wait_minutes(entries_ahead: int, avg_consultation_minutes: int) -> int:
    """Advisory wait: entries ahead times the configured consultation length."""
    return max(entries_ahead, 0) * avg_consultation_minutes


def estimate_pending_wait_minutes(
    candidate: QueueCandidate,
    order: ServingOrder,
    avg_consultation_minutes: int,
    now: datetime,
) -> int:
    """Wait for an early arrival: the later of its window opening and the current queue draining."""
    until_open = (to_utc(candidate.admit_at) - to_utc(now)).total_seconds() / 60
    queue_wait = estimate_wait_minutes(len(order.active), avg_consultation_minutes)
    return max(math.ceil(until_open), queue_wait)
