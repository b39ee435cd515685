from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, UserRole, Principal
)
from ..core.exceptions import NotFound
from ..models.appointment import Appointment
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..scheduling.events import build_publisher
from ..scheduling.locking import DoctorLocks
from ..services.scheduling_service import SchedulingService
from ..services.schedule_service import ScheduleService

# Shared by every request of this worker process
doctor_locks = DoctorLocks()

async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Principal:
    """Build the caller's principal from the identity provider's token."""
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    if not token_payload.sub or not token_payload.role:
        raise AuthenticationError("Invalid token payload")

    try:
        return Principal(user_id=int(token_payload.sub), role=UserRole(token_payload.role))
    except ValueError:
        raise AuthenticationError("Invalid token payload")

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        principal: Principal = Depends(get_current_principal)
    ) -> Principal:
        if principal.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return principal

    return role_checker

async def get_doctor_principal(
    principal: Principal = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> Principal:
    """Require doctor or admin role."""
    return principal

def get_doctor_locks() -> DoctorLocks:
    return doctor_locks

def get_scheduling_service(
    db: Session = Depends(get_db),
    locks: DoctorLocks = Depends(get_doctor_locks),
    redis_client = Depends(get_redis),
) -> SchedulingService:
    return SchedulingService(db, locks, build_publisher(redis_client))

def get_schedule_service(db: Session = Depends(get_db)) -> ScheduleService:
    return ScheduleService(db)

# Ownership checks
def ensure_patient_access(db: Session, principal: Principal, patient_id: int) -> None:
    """Patients may only act for their own patient record."""
    if principal.role != UserRole.PATIENT:
        return
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise NotFound("Patient", patient_id)
    if patient.user_id != principal.user_id:
        raise AuthorizationError("Patients can only manage their own appointments")

def ensure_doctor_access(db: Session, principal: Principal, doctor_id: int) -> None:
    """Doctors may only act on their own calendar."""
    if principal.role != UserRole.DOCTOR:
        return
    doctor = db.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFound("Doctor", doctor_id)
    if doctor.user_id != principal.user_id:
        raise AuthorizationError("Doctors can only manage their own calendar")

def ensure_appointment_access(db: Session, principal: Principal, appointment: Appointment) -> None:
    if principal.role == UserRole.PATIENT:
        ensure_patient_access(db, principal, appointment.patient_id)
    elif principal.role == UserRole.DOCTOR:
        ensure_doctor_access(db, principal, appointment.doctor_id)
