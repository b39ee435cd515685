from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Text, CheckConstraint, Index,
    Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    ATTENDED = "attended"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

class HistoryEventType(str, enum.Enum):
    CREATE = "create"
    STATUS_CHANGE = "status_change"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    DELETE = "delete"

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("start_datetime < end_datetime", name="ck_appointment_interval"),
        Index("ix_appointments_doctor_start", "doctor_id", "start_datetime"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)

    # Appointment details
    start_datetime = Column(DateTime, nullable=False)
    end_datetime = Column(DateTime, nullable=False)
    status = Column(
        SQLEnum(AppointmentStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    reason = Column(Text, nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    channel = Column(String(30), nullable=False, default="web")

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")
    history = relationship(
        "AppointmentHistory",
        back_populates="appointment",
        order_by="AppointmentHistory.id",
    )

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, doctor_id={self.doctor_id}, "
            f"start='{self.start_datetime}', status='{self.status}')>"
        )

class AppointmentHistory(Base):
    """Append-only audit record of one change to an appointment."""
    __tablename__ = "appointment_history"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    event_type = Column(
        SQLEnum(HistoryEventType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    event_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    event_at = Column(DateTime, server_default=func.now(), nullable=False)
    notes = Column(Text, nullable=True)

    appointment = relationship("Appointment", back_populates="history")

    def __repr__(self):
        return f"<AppointmentHistory(appointment_id={self.appointment_id}, event='{self.event_type}')>"
