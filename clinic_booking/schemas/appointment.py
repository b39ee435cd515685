from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from ..models.appointment import AppointmentStatus, HistoryEventType

class AppointmentCreate(BaseModel):
    patient_id: int
    doctor_id: int
    start_datetime: datetime
    end_datetime: datetime
    reason: Optional[str] = Field(None, max_length=2000)
    channel: Optional[str] = Field(None, max_length=30)

class AppointmentCreated(BaseModel):
    appointment_id: int
    message: str = "Appointment created"

class AppointmentReschedule(BaseModel):
    new_start_datetime: datetime
    new_end_datetime: datetime
    notes: Optional[str] = None

class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    notes: Optional[str] = None

class AppointmentCancel(BaseModel):
    notes: Optional[str] = None

class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    start_datetime: datetime
    end_datetime: datetime
    status: AppointmentStatus
    reason: Optional[str] = None
    created_by_user_id: int
    channel: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AppointmentHistoryResponse(BaseModel):
    id: int
    appointment_id: int
    event_type: HistoryEventType
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    event_by_user_id: Optional[int] = None
    event_at: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True
