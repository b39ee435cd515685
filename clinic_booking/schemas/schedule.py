from pydantic import BaseModel, Field
from datetime import date, time
from typing import List

class WeeklyScheduleCreate(BaseModel):
    weekday: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: time
    end_time: time
    slot_duration_minutes: int = 30

class WeeklyScheduleResponse(BaseModel):
    id: int
    doctor_id: int
    weekday: int
    start_time: time
    end_time: time
    slot_duration_minutes: int

    class Config:
        from_attributes = True

class TimeSlot(BaseModel):
    date: date
    start_time: time
    end_time: time
    available: bool

class DaySlotsResponse(BaseModel):
    doctor_id: int
    date: date
    slots: List[TimeSlot]
