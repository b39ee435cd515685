from sqlalchemy import (
    Column, Integer, ForeignKey, Time, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship

from ..core.database import Base

MIN_SLOT_MINUTES = 15
MAX_SLOT_MINUTES = 60

class WeeklySchedule(Base):
    """Recurring working window of a doctor for one weekday.

    Weekdays are numbered 0 (Sunday) to 6 (Saturday).
    """
    __tablename__ = "doctor_schedules"
    __table_args__ = (
        UniqueConstraint("doctor_id", "weekday", name="uq_doctor_schedule_weekday"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_schedule_weekday"),
        CheckConstraint("start_time < end_time", name="ck_schedule_window"),
        CheckConstraint(
            f"slot_duration_minutes >= {MIN_SLOT_MINUTES} "
            f"AND slot_duration_minutes <= {MAX_SLOT_MINUTES}",
            name="ck_schedule_slot_duration",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)

    doctor = relationship("Doctor", back_populates="schedules")

    def __repr__(self):
        return (
            f"<WeeklySchedule(doctor_id={self.doctor_id}, weekday={self.weekday}, "
            f"{self.start_time}-{self.end_time}/{self.slot_duration_minutes}m)>"
        )
