"""Appointment lifecycle: legal status transitions and their audit values.

``rescheduled`` marks an appointment that was moved at least once. It is
still an active booking, so it can be confirmed, set back to scheduled,
cancelled or moved again. ``attended`` and ``cancelled`` are terminal.
"""
from datetime import datetime
from typing import Dict, FrozenSet, NamedTuple, Optional

from ..core.exceptions import InvalidTransition
from ..models.appointment import AppointmentStatus, HistoryEventType

S = AppointmentStatus

TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.CANCELLED, S.RESCHEDULED}),
    S.CONFIRMED: frozenset({S.ATTENDED, S.CANCELLED, S.RESCHEDULED}),
    S.RESCHEDULED: frozenset({S.SCHEDULED, S.CONFIRMED, S.CANCELLED, S.RESCHEDULED}),
    S.ATTENDED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


class Change(NamedTuple):
    """One history entry worth of change."""
    event_type: HistoryEventType
    old_value: Optional[str]
    new_value: Optional[str]


def _status(value) -> AppointmentStatus:
    return value if isinstance(value, AppointmentStatus) else AppointmentStatus(value)


def can_transition(current, requested) -> bool:
    return _status(requested) in TRANSITIONS[_status(current)]


def check_transition(current, requested) -> None:
    """Raise ``InvalidTransition`` unless ``current -> requested`` is allowed."""
    current, requested = _status(current), _status(requested)
    if requested not in TRANSITIONS[current]:
        raise InvalidTransition(current.value, requested.value)


def check_status_update(current, requested) -> None:
    """Validate a plain status update.

    ``rescheduled`` always comes with new times, so it can only be reached
    through a reschedule, never by setting the status alone.
    """
    if _status(requested) == S.RESCHEDULED:
        raise InvalidTransition(_status(current).value, S.RESCHEDULED.value)
    check_transition(current, requested)


def format_status(status) -> str:
    return f"status={_status(status).value}"


def format_range(start: datetime, end: datetime) -> str:
    return f"start={start.isoformat()};end={end.isoformat()}"


def creation_change(start: datetime, end: datetime) -> Change:
    return Change(
        HistoryEventType.CREATE,
        None,
        f"{format_status(S.SCHEDULED)};{format_range(start, end)}",
    )


def status_change(current, requested, deleting: bool = False) -> Change:
    """Validate and describe a status update.

    Cancellations are recorded as ``cancel`` (``delete`` when the caller
    removes the appointment), everything else as ``status_change``.
    """
    check_status_update(current, requested)
    if _status(requested) == S.CANCELLED:
        event_type = HistoryEventType.DELETE if deleting else HistoryEventType.CANCEL
    else:
        event_type = HistoryEventType.STATUS_CHANGE
    return Change(event_type, format_status(current), format_status(requested))


def reschedule_change(
    current,
    old_start: datetime,
    old_end: datetime,
    new_start: datetime,
    new_end: datetime,
) -> Change:
    check_transition(current, S.RESCHEDULED)
    return Change(
        HistoryEventType.RESCHEDULE,
        format_range(old_start, old_end),
        format_range(new_start, new_end),
    )
