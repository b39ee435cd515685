from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from datetime import date
from typing import List, Optional

from ...core.database import get_db
from ...core.security import AuthorizationError, Principal, UserRole
from ...api.deps import (
    get_current_principal, get_scheduling_service,
    ensure_appointment_access, ensure_doctor_access, ensure_patient_access
)
from ...models.appointment import AppointmentStatus
from ...services.scheduling_service import SchedulingService
from ...schemas.appointment import (
    AppointmentCreate, AppointmentCreated, AppointmentReschedule,
    AppointmentStatusUpdate, AppointmentCancel, AppointmentResponse,
    AppointmentHistoryResponse
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

# Handlers are plain functions: FastAPI runs them in its threadpool, where
# blocking on the database and on the doctor locks is fine.

@router.post("", response_model=AppointmentCreated, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Book an appointment."""
    ensure_patient_access(db, principal, data.patient_id)
    ensure_doctor_access(db, principal, data.doctor_id)

    appointment_id = service.create_appointment(
        patient_id=data.patient_id,
        doctor_id=data.doctor_id,
        start=data.start_datetime,
        end=data.end_datetime,
        reason=data.reason,
        created_by=principal.user_id,
        channel=data.channel,
    )
    return AppointmentCreated(appointment_id=appointment_id)

@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status: Optional[AppointmentStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """List appointments. Patients and doctors only see their own."""
    if principal.role == UserRole.PATIENT:
        if patient_id is None:
            raise AuthorizationError("Patients must filter by their own patient_id")
        ensure_patient_access(db, principal, patient_id)
    elif principal.role == UserRole.DOCTOR:
        if doctor_id is None:
            raise AuthorizationError("Doctors must filter by their own doctor_id")
        ensure_doctor_access(db, principal, doctor_id)

    appointments = service.list_appointments(
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=min(limit, 500),
    )
    return [AppointmentResponse.from_orm(a) for a in appointments]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    appointment = service.get_appointment(appointment_id)
    ensure_appointment_access(db, principal, appointment)
    return AppointmentResponse.from_orm(appointment)

@router.get("/{appointment_id}/history", response_model=List[AppointmentHistoryResponse])
def get_appointment_history(
    appointment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Audit trail of an appointment, oldest first."""
    ensure_appointment_access(db, principal, service.get_appointment(appointment_id))
    return [AppointmentHistoryResponse.from_orm(h) for h in service.get_history(appointment_id)]

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    ensure_appointment_access(db, principal, service.get_appointment(appointment_id))
    appointment = service.reschedule_appointment(
        appointment_id,
        data.new_start_datetime,
        data.new_end_datetime,
        actor=principal.user_id,
        notes=data.notes,
    )
    return AppointmentResponse.from_orm(appointment)

@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Move an appointment through its lifecycle.

    Patients may only cancel; confirming and marking attendance is up to
    the doctor or an admin.
    """
    ensure_appointment_access(db, principal, service.get_appointment(appointment_id))
    if principal.role == UserRole.PATIENT and data.status != AppointmentStatus.CANCELLED:
        raise AuthorizationError("Patients can only cancel appointments")

    appointment = service.update_status(
        appointment_id, data.status, actor=principal.user_id, notes=data.notes
    )
    return AppointmentResponse.from_orm(appointment)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: Optional[AppointmentCancel] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    ensure_appointment_access(db, principal, service.get_appointment(appointment_id))
    appointment = service.cancel_appointment(
        appointment_id, actor=principal.user_id, notes=data.notes if data else None
    )
    return AppointmentResponse.from_orm(appointment)

@router.delete("/{appointment_id}", response_model=AppointmentResponse)
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Take an appointment off the calendar. The record and its history stay."""
    ensure_appointment_access(db, principal, service.get_appointment(appointment_id))
    appointment = service.delete_appointment(appointment_id, actor=principal.user_id)
    return AppointmentResponse.from_orm(appointment)
