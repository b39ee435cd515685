import threading
from itertools import combinations

from clinic_booking.core.database import SessionLocal
from clinic_booking.core.exceptions import SlotUnavailable
from clinic_booking.models.appointment import Appointment, AppointmentStatus
from clinic_booking.services.scheduling_service import SchedulingService

from .factories import RecordingPublisher, at, create_doctor


def run_concurrently(locks, calls):
    """Run each call in its own thread with its own session and service."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, call):
        session = SessionLocal()
        try:
            service = SchedulingService(session, locks, RecordingPublisher())
            barrier.wait()
            results[index] = call(service)
        except Exception as e:
            results[index] = e
        finally:
            session.close()

    threads = [
        threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


def assert_no_double_booking(db, doctor_id):
    active = (
        db.query(Appointment)
        .filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        .all()
    )
    for a, b in combinations(active, 2):
        assert not (a.start_datetime < b.end_datetime and b.start_datetime < a.end_datetime), (a, b)


class TestConcurrentBooking:

    def test_same_slot_is_booked_once(self, db, locks, clinic):
        def book(service):
            return service.create_appointment(
                clinic["patient_id"], clinic["doctor_id"], at(9), at(9, 30), None,
                clinic["patient_user_id"],
            )

        results = run_concurrently(locks, [book] * 8)

        booked = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, SlotUnavailable)]
        assert len(booked) == 1
        assert len(rejected) == 7
        assert_no_double_booking(db, clinic["doctor_id"])

    def test_overlapping_intervals_are_booked_once(self, db, locks, clinic):
        intervals = [
            (at(9), at(10)),
            (at(9, 30), at(10, 30)),
            (at(9, 15), at(9, 45)),
            (at(8, 45), at(9, 15)),
        ]
        calls = [
            (lambda s, start=start, end=end: s.create_appointment(
                clinic["patient_id"], clinic["doctor_id"], start, end, None,
                clinic["patient_user_id"],
            ))
            for start, end in intervals
        ]

        results = run_concurrently(locks, calls)

        assert all(isinstance(r, (int, SlotUnavailable)) for r in results), results
        assert_no_double_booking(db, clinic["doctor_id"])

    def test_reschedules_racing_for_one_slot(self, db, locks, service, clinic):
        first = service.create_appointment(
            clinic["patient_id"], clinic["doctor_id"], at(8), at(8, 30), None,
            clinic["patient_user_id"],
        )
        second = service.create_appointment(
            clinic["patient_id"], clinic["doctor_id"], at(8, 30), at(9), None,
            clinic["patient_user_id"],
        )
        db.commit()

        results = run_concurrently(locks, [
            lambda s: s.reschedule_appointment(first, at(11), at(11, 30), clinic["patient_user_id"]).id,
            lambda s: s.reschedule_appointment(second, at(11), at(11, 30), clinic["patient_user_id"]).id,
        ])

        assert sorted(type(r).__name__ for r in results) == ["SlotUnavailable", "int"]
        db.expire_all()
        assert_no_double_booking(db, clinic["doctor_id"])

    def test_different_doctors_book_in_parallel(self, db, locks, clinic):
        other = create_doctor(db, "second@example.com", "LIC-002")
        doctors = [clinic["doctor_id"], other.id]

        calls = [
            (lambda s, doctor_id=doctor_id: s.create_appointment(
                clinic["patient_id"], doctor_id, at(9), at(9, 30), None,
                clinic["patient_user_id"],
            ))
            for doctor_id in doctors
        ]

        results = run_concurrently(locks, calls)

        assert all(isinstance(r, int) for r in results), results
