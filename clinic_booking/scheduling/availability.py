"""Slot derivation from a doctor's weekly schedule."""
from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.appointment import Appointment
from ..models.schedule import WeeklySchedule
from ..schemas.schedule import TimeSlot
from .overlap import blocking_appointments_query, intervals_overlap


def schedule_weekday(on_date: date) -> int:
    """Weekday index used by ``WeeklySchedule`` (0 = Sunday)."""
    return on_date.isoweekday() % 7


def iter_slot_bounds(
    on_date: date, schedule: WeeklySchedule
) -> Iterator[Tuple[datetime, datetime]]:
    """Yield consecutive ``(start, end)`` slots inside the schedule window.

    A trailing interval that would run past the window end is dropped.
    """
    step = timedelta(minutes=schedule.slot_duration_minutes)
    current = datetime.combine(on_date, schedule.start_time)
    window_end = datetime.combine(on_date, schedule.end_time)
    while current + step <= window_end:
        yield current, current + step
        current += step


class AvailabilityModel:
    def __init__(self, db: Session):
        self.db = db

    def schedule_for(self, doctor_id: int, on_date: date) -> Optional[WeeklySchedule]:
        return (
            self.db.query(WeeklySchedule)
            .filter(
                WeeklySchedule.doctor_id == doctor_id,
                WeeklySchedule.weekday == schedule_weekday(on_date),
            )
            .first()
        )

    def window_for(self, doctor_id: int, on_date: date) -> Optional[Tuple[datetime, datetime]]:
        """Working window of the doctor on ``on_date``, or None on a day off."""
        schedule = self.schedule_for(doctor_id, on_date)
        if schedule is None:
            return None
        return (
            datetime.combine(on_date, schedule.start_time),
            datetime.combine(on_date, schedule.end_time),
        )

    def list_slots(
        self,
        doctor_id: int,
        on_date: date,
        exclude_appointment_id: Optional[int] = None,
        only_available: bool = False,
    ) -> List[TimeSlot]:
        """Chronological slots for ``on_date``, each flagged available or not.

        An empty list means the doctor does not work that weekday.
        """
        schedule = self.schedule_for(doctor_id, on_date)
        if schedule is None:
            return []

        window_start = datetime.combine(on_date, schedule.start_time)
        window_end = datetime.combine(on_date, schedule.end_time)
        booked = (
            blocking_appointments_query(
                self.db, doctor_id, window_start, window_end, exclude_appointment_id
            )
            .order_by(Appointment.start_datetime)
            .all()
        )

        slots = []
        for slot_start, slot_end in iter_slot_bounds(on_date, schedule):
            taken = any(
                intervals_overlap(slot_start, slot_end, a.start_datetime, a.end_datetime)
                for a in booked
            )
            if only_available and taken:
                continue
            slots.append(
                TimeSlot(
                    date=on_date,
                    start_time=slot_start.time(),
                    end_time=slot_end.time(),
                    available=not taken,
                )
            )
        return slots
