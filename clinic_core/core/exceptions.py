class ClinicCoreError(Exception):
    """Base exception for the clinic core service.

    Subclasses carry the HTTP status the API layer responds with.
    """

    status_code: int = 500

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class NotFoundError(ClinicCoreError):
    """Raised when a clinic, appointment or queue entry does not exist."""

    status_code = 404


class QueueValidationError(ClinicCoreError):
    """Raised for client-correctable queue input (settings, check-in fields)."""

    status_code = 422


class AppointmentNotCheckInnableError(QueueValidationError):
    """Raised when an appointment cannot be checked in (e.g. it was cancelled)."""

    status_code = 400


class AlreadyCheckedInError(ClinicCoreError):
    """Raised when an appointment already has a live queue entry today."""

    status_code = 409

    def __init__(self, appointment_id: str):
        self.appointment_id = appointment_id
        super().__init__("Appointment already checked in")


class InvalidTransitionError(ClinicCoreError):
    """Raised when a queue entry status change is not allowed."""

    status_code = 409

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move queue entry from '{current}' to '{requested}'")


class FeatureAccessDeniedError(ClinicCoreError):
    """Raised when a clinic's subscription does not include a feature."""

    status_code = 403


class InvalidTierError(ClinicCoreError):
    """Raised when a tier name is unknown or not a base tier."""

    status_code = 400


class TokenAssignmentError(ClinicCoreError):
    """Raised when the token counter failed twice; the caller may retry."""

    status_code = 503

    def __init__(self, scope_key: str, attempts: int):
        self.scope_key = scope_key
        self.attempts = attempts
        super().__init__(
            f"Could not assign a queue token for '{scope_key}' after {attempts} attempts, please retry"
        )


class ConcurrentUpdateError(ClinicCoreError):
    """Raised when a queue entry changed underneath a status update."""

    status_code = 409

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__("Queue entry was updated by another request, reload and retry")
