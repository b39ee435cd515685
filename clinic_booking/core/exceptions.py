"""Error kinds raised by the scheduling core.

Every error carries a stable ``code`` that the HTTP layer exposes to
callers, and a ``retryable`` flag. Only ``ConcurrencyConflict`` is
retryable: the whole operation rolled back and may be issued again.
"""
from typing import Optional


class SchedulingError(Exception):
    code = "scheduling_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInterval(SchedulingError):
    code = "invalid_interval"


class InvalidSchedule(SchedulingError):
    code = "invalid_schedule"


class SlotUnavailable(SchedulingError):
    code = "slot_unavailable"


class NotFound(SchedulingError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[int] = None):
        if entity_id is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(SchedulingError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change appointment status from '{current}' to '{requested}'"
        )
        self.current = current
        self.requested = requested


class ConcurrencyConflict(SchedulingError):
    code = "concurrency_conflict"
    retryable = True


class InternalError(SchedulingError):
    code = "internal"
