"""Re-export all models so Base.metadata sees them."""

from clinic_core.db.models.appointment import Appointment
from clinic_core.db.models.clinic import Clinic
from clinic_core.db.models.queue_entry import QueueEntry
from clinic_core.db.models.token_counter import QueueTokenCounter

__all__ = [
    "Appointment",
    "Clinic",
    "QueueEntry",
    "QueueTokenCounter",
]
