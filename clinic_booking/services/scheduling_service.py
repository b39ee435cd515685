from contextlib import ExitStack, contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional
import logging

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConcurrencyConflict, InternalError, InvalidInterval, NotFound,
    SchedulingError, SlotUnavailable
)
from ..models.appointment import Appointment, AppointmentHistory, AppointmentStatus
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..schemas.schedule import TimeSlot
from ..scheduling.availability import AvailabilityModel
from ..scheduling.events import (
    EventPublisher, NoopPublisher, SchedulingEvent, SchedulingEventType
)
from ..scheduling.lifecycle import (
    Change, creation_change, reschedule_change, status_change
)
from ..scheduling.locking import DoctorLocks
from ..scheduling.overlap import OverlapDetector

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
CONCURRENCY_SQLSTATES = {"40001", "40P01", "55P03"}

def is_concurrency_failure(exc: SQLAlchemyError) -> bool:
    """Whether the datastore aborted the transaction because of contention."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in CONCURRENCY_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()

class SchedulingService:
    """Single writer of appointments and their history.

    Every mutating operation runs in one transaction: the appointment row
    and its history entry commit together or not at all. Creating and
    rescheduling additionally run inside the doctor's critical section so
    the overlap check and the write cannot interleave with another booking
    for the same doctor.
    """

    def __init__(
        self,
        db: Session,
        locks: DoctorLocks,
        publisher: Optional[EventPublisher] = None,
        enforce_working_hours: Optional[bool] = None,
        isolation_level: Optional[str] = None,
    ):
        self.db = db
        self.locks = locks
        self.publisher = publisher or NoopPublisher()
        self.enforce_working_hours = (
            settings.ENFORCE_WORKING_HOURS
            if enforce_working_hours is None else enforce_working_hours
        )
        self.isolation_level = isolation_level or settings.SCHEDULING_ISOLATION_LEVEL
        self.overlaps = OverlapDetector(db)
        self.availability = AvailabilityModel(db)

    # Mutating operations

    def create_appointment(
        self,
        patient_id: int,
        doctor_id: int,
        start: datetime,
        end: datetime,
        reason: Optional[str],
        created_by: int,
        channel: Optional[str] = None,
    ) -> int:
        """Book a new appointment and return its id."""
        self._check_interval(start, end)

        with self._atomic("create") as held:
            held.enter_context(self.locks.hold(self.db, doctor_id))
            if self.db.get(Patient, patient_id) is None:
                raise NotFound("Patient", patient_id)
            self._check_bookable(doctor_id, start, end)

            appointment = Appointment(
                patient_id=patient_id,
                doctor_id=doctor_id,
                start_datetime=start,
                end_datetime=end,
                status=AppointmentStatus.SCHEDULED,
                reason=reason,
                created_by_user_id=created_by,
                channel=channel or settings.DEFAULT_CHANNEL,
            )
            self.db.add(appointment)
            self.db.flush()
            self._append_history(appointment, creation_change(start, end), created_by)

            appointment_id = appointment.id
            event = SchedulingEvent.for_appointment(
                SchedulingEventType.CREATED, appointment, created_by
            )

        logger.info(
            f"Appointment {appointment_id} booked with doctor {doctor_id} "
            f"{start.isoformat()} - {end.isoformat()}"
        )
        self.publisher.publish(event)
        return appointment_id

    def reschedule_appointment(
        self,
        appointment_id: int,
        new_start: datetime,
        new_end: datetime,
        actor: Optional[int],
        notes: Optional[str] = None,
    ) -> Appointment:
        """Move an appointment to a new interval and flag it as rescheduled."""
        self._check_interval(new_start, new_end)

        with self._atomic("reschedule") as held:
            doctor_id = self._doctor_of(appointment_id)
            held.enter_context(self.locks.hold(self.db, doctor_id))
            appointment = self._load_for_update(appointment_id)

            change = reschedule_change(
                appointment.status,
                appointment.start_datetime,
                appointment.end_datetime,
                new_start,
                new_end,
            )
            self._check_bookable(doctor_id, new_start, new_end, exclude_appointment_id=appointment_id)

            appointment.start_datetime = new_start
            appointment.end_datetime = new_end
            appointment.status = AppointmentStatus.RESCHEDULED
            self.db.flush()
            self._append_history(appointment, change, actor, notes)

            event = SchedulingEvent.for_appointment(
                SchedulingEventType.RESCHEDULED, appointment, actor
            )

        logger.info(f"Appointment {appointment_id} rescheduled to {new_start.isoformat()}")
        self.publisher.publish(event)
        return appointment

    def update_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        actor: Optional[int],
        notes: Optional[str] = None,
    ) -> Appointment:
        """Apply a lifecycle transition."""
        return self._change_status(appointment_id, new_status, actor, notes)

    def cancel_appointment(
        self,
        appointment_id: int,
        actor: Optional[int],
        notes: Optional[str] = None,
    ) -> Appointment:
        return self._change_status(appointment_id, AppointmentStatus.CANCELLED, actor, notes)

    def delete_appointment(
        self,
        appointment_id: int,
        actor: Optional[int],
        notes: Optional[str] = None,
    ) -> Appointment:
        """Remove an appointment from the calendar.

        The row is kept and cancelled; the history records a ``delete``.
        """
        return self._change_status(
            appointment_id, AppointmentStatus.CANCELLED, actor, notes, deleting=True
        )

    # Read operations

    def list_available_slots(
        self,
        doctor_id: int,
        on_date: date,
        exclude_appointment_id: Optional[int] = None,
        only_available: bool = False,
    ) -> List[TimeSlot]:
        if self.db.get(Doctor, doctor_id) is None:
            raise NotFound("Doctor", doctor_id)
        return self.availability.list_slots(
            doctor_id, on_date, exclude_appointment_id, only_available
        )

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound("Appointment", appointment_id)
        return appointment

    def get_history(self, appointment_id: int) -> List[AppointmentHistory]:
        self.get_appointment(appointment_id)
        return (
            self.db.query(AppointmentHistory)
            .filter(AppointmentHistory.appointment_id == appointment_id)
            .order_by(AppointmentHistory.id)
            .all()
        )

    def list_appointments(
        self,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        """Appointments matching the filters, latest first.

        ``start_date``/``end_date`` are inclusive calendar days compared
        against the appointment start.
        """
        query = self.db.query(Appointment)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        if start_date is not None:
            query = query.filter(
                Appointment.start_datetime >= datetime.combine(start_date, datetime.min.time())
            )
        if end_date is not None:
            query = query.filter(
                Appointment.start_datetime <= datetime.combine(end_date, datetime.max.time())
            )
        return (
            query.order_by(Appointment.start_datetime.desc(), Appointment.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    # Internals

    def _change_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        actor: Optional[int],
        notes: Optional[str],
        deleting: bool = False,
    ) -> Appointment:
        new_status = AppointmentStatus(new_status)

        with self._atomic("status change"):
            appointment = self._load_for_update(appointment_id)
            old_status = appointment.status
            change = status_change(old_status, new_status, deleting=deleting)

            appointment.status = new_status
            self.db.flush()
            self._append_history(appointment, change, actor, notes)

            event_type = (
                SchedulingEventType.CANCELLED
                if new_status == AppointmentStatus.CANCELLED
                else SchedulingEventType.STATUS_CHANGED
            )
            event = SchedulingEvent.for_appointment(event_type, appointment, actor)

        logger.info(
            f"Appointment {appointment_id} status {old_status.value} -> {new_status.value}"
        )
        self.publisher.publish(event)
        return appointment

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[ExitStack]:
        """Run one operation as a transaction.

        Yields an ``ExitStack`` for locks that must outlive the commit or
        rollback; they are released only after the transaction has ended.
        """
        with ExitStack() as held:
            self._begin()
            try:
                yield held
                self.db.commit()
            except SchedulingError as e:
                self.db.rollback()
                logger.warning(f"Rejected {operation}: {e.message}")
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                if is_concurrency_failure(e):
                    logger.warning(f"Concurrent update aborted {operation}: {str(e)}")
                    raise ConcurrencyConflict(
                        "The schedule changed while the request was processed; retry"
                    ) from e
                logger.error(f"Datastore failure during {operation}: {str(e)}")
                raise InternalError(f"Could not complete {operation}") from e
            except Exception:
                self.db.rollback()
                raise

    def _begin(self):
        if not self.isolation_level:
            return
        if self.db.in_transaction():
            if self.db.new or self.db.dirty or self.db.deleted:
                logger.warning(
                    "Session has pending changes; keeping its isolation level"
                )
                return
            # Reads done before the operation (access checks) leave an implicit
            # transaction open; end it so the isolation level takes effect.
            self.db.rollback()
        self.db.connection(execution_options={"isolation_level": self.isolation_level})

    def _check_interval(self, start: datetime, end: datetime):
        if start >= end:
            raise InvalidInterval(
                f"Start {start.isoformat()} must be before end {end.isoformat()}"
            )

    def _check_bookable(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ):
        if self.enforce_working_hours:
            window = self.availability.window_for(doctor_id, start.date())
            if window is None or start < window[0] or end > window[1]:
                raise SlotUnavailable(
                    f"Doctor {doctor_id} does not work between "
                    f"{start.isoformat()} and {end.isoformat()}"
                )

        if self.overlaps.has_conflict(doctor_id, start, end, exclude_appointment_id):
            clash = self.overlaps.conflicts(doctor_id, start, end, exclude_appointment_id)[0]
            raise SlotUnavailable(
                f"Doctor {doctor_id} already has appointment {clash.id} "
                f"from {clash.start_datetime.isoformat()} to {clash.end_datetime.isoformat()}"
            )

    def _doctor_of(self, appointment_id: int) -> int:
        doctor_id = (
            self.db.query(Appointment.doctor_id)
            .filter(Appointment.id == appointment_id)
            .scalar()
        )
        if doctor_id is None:
            raise NotFound("Appointment", appointment_id)
        return doctor_id

    def _load_for_update(self, appointment_id: int) -> Appointment:
        appointment = (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if appointment is None:
            raise NotFound("Appointment", appointment_id)
        return appointment

    def _append_history(
        self,
        appointment: Appointment,
        change: Change,
        actor: Optional[int],
        notes: Optional[str] = None,
    ) -> AppointmentHistory:
        entry = AppointmentHistory(
            appointment_id=appointment.id,
            event_type=change.event_type,
            old_value=change.old_value,
            new_value=change.new_value,
            event_by_user_id=actor,
            notes=notes,
        )
        self.db.add(entry)
        self.db.flush()
        return entry
