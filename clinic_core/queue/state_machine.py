"""Queue entry lifecycle transitions."""

from datetime import UTC, datetime

from clinic_core.core.exceptions import InvalidTransitionError
from clinic_core.queue.schemas import QueueEntryStatus


class QueueEntryStateMachine:
    """Validates and applies queue entry status changes.

    Arrival status (on-time / late / walk-in) is fixed at check-in and is
    not part of this machine; only the serving lifecycle moves.
    """

    TRANSITIONS = {
        QueueEntryStatus.WAITING: [QueueEntryStatus.IN_CONSULTATION, QueueEntryStatus.CANCELLED],
        QueueEntryStatus.IN_CONSULTATION: [QueueEntryStatus.COMPLETED, QueueEntryStatus.NO_SHOW],
        QueueEntryStatus.COMPLETED: [],  # Terminal state
        QueueEntryStatus.NO_SHOW: [],  # Terminal state
        QueueEntryStatus.CANCELLED: [],  # Terminal state
    }

    TERMINAL = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

    @classmethod
    def can_transition(cls, current: QueueEntryStatus, new_status: QueueEntryStatus) -> bool:
        return new_status in cls.TRANSITIONS.get(current, [])

    @classmethod
    def transition(cls, entry, new_status: QueueEntryStatus, now: datetime | None = None) -> QueueEntryStatus:
        """Apply a status change to a queue entry row in place.

        Args:
            entry: QueueEntry model instance
            new_status: Target status
            now: Current time (for deterministic testing)

        Returns:
            The previous status

        Raises:
            InvalidTransitionError: if the move is not allowed
        """
        now = now or datetime.now(UTC)
        current = QueueEntryStatus(entry.status)

        if not cls.can_transition(current, new_status):
            raise InvalidTransitionError(current.value, new_status.value)

        entry.status = new_status.value
        if new_status == QueueEntryStatus.IN_CONSULTATION:
            entry.called_at = now
        elif new_status in cls.TERMINAL:
            entry.completed_at = now

        return current
