"""Overlap detection between appointment intervals.

All intervals are half-open, ``[start, end)``: an appointment ending at
09:30 does not collide with one starting at 09:30. The same predicate is
used for SQL filtering and for in-memory slot marking.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..models.appointment import Appointment, AppointmentStatus


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    return a_start < b_end and b_start < a_end


def overlap_condition(start: datetime, end: datetime):
    """SQL form of :func:`intervals_overlap` against ``Appointment`` rows."""
    return and_(Appointment.start_datetime < end, start < Appointment.end_datetime)


def blocking_appointments_query(
    db: Session,
    doctor_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: Optional[int] = None,
):
    """Non-cancelled appointments of ``doctor_id`` intersecting ``[start, end)``."""
    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status != AppointmentStatus.CANCELLED,
        overlap_condition(start, end),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query


class OverlapDetector:
    """Answers whether a candidate interval collides with a booked one.

    The answer only holds while the caller is inside the doctor's critical
    section (see :mod:`clinic_booking.scheduling.locking`); outside of it a
    concurrent writer may commit a conflicting interval right after the
    check.
    """

    def __init__(self, db: Session):
        self.db = db

    def has_conflict(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> bool:
        query = blocking_appointments_query(
            self.db, doctor_id, start, end, exclude_appointment_id
        )
        return bool(self.db.query(query.exists()).scalar())

    def conflicts(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[Appointment]:
        return (
            blocking_appointments_query(
                self.db, doctor_id, start, end, exclude_appointment_id
            )
            .order_by(Appointment.start_datetime)
            .all()
        )
