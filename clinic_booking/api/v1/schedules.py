from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import date
from typing import List, Optional

from ...core.database import get_db
from ...core.security import Principal
from ...api.deps import (
    get_current_principal, get_doctor_principal, get_scheduling_service,
    get_schedule_service, ensure_doctor_access
)
from ...services.scheduling_service import SchedulingService
from ...services.schedule_service import ScheduleService
from ...schemas.schedule import (
    WeeklyScheduleCreate, WeeklyScheduleResponse, DaySlotsResponse
)

router = APIRouter(prefix="/doctors", tags=["Doctor schedules"])

@router.get("/{doctor_id}/slots", response_model=DaySlotsResponse)
def list_available_slots(
    doctor_id: int,
    on_date: date = Query(..., alias="date"),
    exclude_appointment_id: Optional[int] = None,
    only_available: bool = False,
    _: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Slots of a doctor's working day.

    Pass ``exclude_appointment_id`` when rescheduling so the appointment
    being moved does not block its own slot.
    """
    slots = service.list_available_slots(
        doctor_id, on_date, exclude_appointment_id, only_available
    )
    return DaySlotsResponse(doctor_id=doctor_id, date=on_date, slots=slots)

@router.get("/{doctor_id}/schedules", response_model=List[WeeklyScheduleResponse])
def list_schedules(
    doctor_id: int,
    _: Principal = Depends(get_current_principal),
    service: ScheduleService = Depends(get_schedule_service),
):
    return [WeeklyScheduleResponse.from_orm(s) for s in service.list_schedules(doctor_id)]

@router.post(
    "/{doctor_id}/schedules",
    response_model=WeeklyScheduleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_schedule(
    doctor_id: int,
    data: WeeklyScheduleCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_doctor_principal),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Add the working window for one weekday."""
    ensure_doctor_access(db, principal, doctor_id)
    return WeeklyScheduleResponse.from_orm(service.create_schedule(doctor_id, data))

@router.delete("/schedules/{schedule_id}")
def delete_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_doctor_principal),
    service: ScheduleService = Depends(get_schedule_service),
):
    schedule = service.get_schedule(schedule_id)
    ensure_doctor_access(db, principal, schedule.doctor_id)
    service.delete_schedule(schedule_id)
    return {"message": "Schedule deleted successfully"}
