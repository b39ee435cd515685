from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List
import logging

from ..core.exceptions import InvalidSchedule, NotFound
from ..models.doctor import Doctor
from ..models.schedule import WeeklySchedule, MIN_SLOT_MINUTES, MAX_SLOT_MINUTES
from ..schemas.schedule import WeeklyScheduleCreate

logger = logging.getLogger(__name__)

class ScheduleService:
    """Maintains doctors' weekly working windows.

    A window need not be a multiple of the slot duration; slot generation
    simply drops the trailing remainder.
    """

    def __init__(self, db: Session):
        self.db = db

    def list_schedules(self, doctor_id: int) -> List[WeeklySchedule]:
        self._get_doctor(doctor_id)
        return (
            self.db.query(WeeklySchedule)
            .filter(WeeklySchedule.doctor_id == doctor_id)
            .order_by(WeeklySchedule.weekday, WeeklySchedule.start_time)
            .all()
        )

    def create_schedule(self, doctor_id: int, data: WeeklyScheduleCreate) -> WeeklySchedule:
        self._get_doctor(doctor_id)
        self._validate(data)

        existing = self.db.query(WeeklySchedule).filter(
            WeeklySchedule.doctor_id == doctor_id,
            WeeklySchedule.weekday == data.weekday
        ).first()
        if existing:
            raise InvalidSchedule(
                f"Doctor {doctor_id} already has a schedule for weekday {data.weekday}"
            )

        schedule = WeeklySchedule(
            doctor_id=doctor_id,
            weekday=data.weekday,
            start_time=data.start_time,
            end_time=data.end_time,
            slot_duration_minutes=data.slot_duration_minutes,
        )
        self.db.add(schedule)
        try:
            self.db.commit()
        except IntegrityError as e:
            # Lost a race against another insert for the same weekday
            self.db.rollback()
            raise InvalidSchedule(
                f"Doctor {doctor_id} already has a schedule for weekday {data.weekday}"
            ) from e
        self.db.refresh(schedule)

        logger.info(f"Schedule {schedule.id} added for doctor {doctor_id}, weekday {data.weekday}")
        return schedule

    def delete_schedule(self, schedule_id: int) -> None:
        """Delete a weekly window. Existing appointments are left untouched."""
        schedule = self.get_schedule(schedule_id)
        doctor_id = schedule.doctor_id
        self.db.delete(schedule)
        self.db.commit()
        logger.info(f"Schedule {schedule_id} removed for doctor {doctor_id}")

    def get_schedule(self, schedule_id: int) -> WeeklySchedule:
        schedule = self.db.get(WeeklySchedule, schedule_id)
        if schedule is None:
            raise NotFound("Schedule", schedule_id)
        return schedule

    def _get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.get(Doctor, doctor_id)
        if doctor is None:
            raise NotFound("Doctor", doctor_id)
        return doctor

    def _validate(self, data: WeeklyScheduleCreate):
        if data.start_time >= data.end_time:
            raise InvalidSchedule("Schedule start time must be before its end time")
        if not MIN_SLOT_MINUTES <= data.slot_duration_minutes <= MAX_SLOT_MINUTES:
            raise InvalidSchedule(
                f"Slot duration must be between {MIN_SLOT_MINUTES} and "
                f"{MAX_SLOT_MINUTES} minutes"
            )
