"""Doctor-scoped critical section for check-then-write booking logic.

Two layers are held for the whole transaction:

* a process-local lock per doctor, so threads of one worker queue up
  without touching the database;
* a datastore lock released on commit or rollback, so workers in other
  processes queue up as well. PostgreSQL uses a transaction-scoped
  advisory lock keyed by the doctor id; other dialects lock the doctor row
  with ``SELECT ... FOR UPDATE``. That is a no-op on SQLite, so there the
  process-local lock is the only guard and a single worker process is
  required.

Locks for different doctors never contend.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.exceptions import NotFound
from ..models.doctor import Doctor

logger = logging.getLogger(__name__)

# First key of the two-key advisory lock form; keeps our locks apart from
# other users of pg_advisory_xact_lock on the same database.
ADVISORY_LOCK_NAMESPACE = 7301


class DoctorLocks:
    def __init__(self):
        self._guard = threading.Lock()
        # Entries disappear once no thread holds or waits on the lock
        self._locks = weakref.WeakValueDictionary()

    def _local_lock(self, doctor_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(doctor_id)
            if lock is None:
                lock = self._locks[doctor_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, db: Session, doctor_id: int) -> Iterator[Doctor]:
        """Enter the doctor's critical section and yield the doctor row.

        The caller must commit or roll back before leaving the block so
        the datastore lock is released together with the local one.
        Raises ``NotFound`` if the doctor does not exist.
        """
        lock = self._local_lock(doctor_id)
        with lock:
            doctor = self._lock_in_datastore(db, doctor_id)
            if doctor is None:
                raise NotFound("Doctor", doctor_id)
            yield doctor

    def _lock_in_datastore(self, db: Session, doctor_id: int):
        if db.get_bind().dialect.name == "postgresql":
            db.execute(
                select(func.pg_advisory_xact_lock(ADVISORY_LOCK_NAMESPACE, doctor_id))
            )
            logger.debug(f"Advisory lock taken for doctor {doctor_id}")
            return db.query(Doctor).filter(Doctor.id == doctor_id).first()
        return (
            db.query(Doctor)
            .filter(Doctor.id == doctor_id)
            .with_for_update()
            .first()
        )
