from clinic_booking.core.security import UserRole

from .factories import auth_headers, create_patient


def booking(clinic, start="2026-10-19T09:00:00", end="2026-10-19T09:30:00"):
    return {
        "patient_id": clinic["patient_id"],
        "doctor_id": clinic["doctor_id"],
        "start_datetime": start,
        "end_datetime": end,
        "reason": "Annual checkup",
    }


def patient_headers(clinic):
    return auth_headers(clinic["patient_user_id"], UserRole.PATIENT)


def doctor_headers(clinic):
    return auth_headers(clinic["doctor_user_id"], UserRole.DOCTOR)


def admin_headers(clinic):
    return auth_headers(clinic["admin_user_id"], UserRole.ADMIN)


class TestAppointmentsAPI:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_create_appointment(self, client, clinic):
        response = client.post("/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic))
        assert response.status_code == 201

        appointment_id = response.json()["appointment_id"]
        response = client.get(f"/api/v1/appointments/{appointment_id}", headers=patient_headers(clinic))
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "scheduled"
        assert data["channel"] == "web"
        assert data["created_by_user_id"] == clinic["patient_user_id"]

    def test_double_booking_is_a_conflict(self, client, clinic):
        client.post("/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic))

        response = client.post(
            "/api/v1/appointments",
            json=booking(clinic, start="2026-10-19T09:15:00", end="2026-10-19T09:45:00"),
            headers=admin_headers(clinic),
        )

        assert response.status_code == 409
        assert response.json()["error"] == "slot_unavailable"
        assert response.json()["retryable"] is False

    def test_invalid_interval(self, client, clinic):
        response = client.post(
            "/api/v1/appointments",
            json=booking(clinic, start="2026-10-19T10:00:00", end="2026-10-19T09:00:00"),
            headers=patient_headers(clinic),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_interval"

    def test_unknown_doctor(self, client, clinic):
        data = booking(clinic)
        data["doctor_id"] = 999
        response = client.post("/api/v1/appointments", json=data, headers=admin_headers(clinic))
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_invalid_token(self, client, clinic):
        headers = {"Authorization": "Bearer invalid_token"}
        response = client.post("/api/v1/appointments", json=booking(clinic), headers=headers)
        assert response.status_code == 401

    def test_patient_cannot_book_for_someone_else(self, client, db, clinic):
        other = create_patient(db, "other.patient@example.com")
        data = booking(clinic)
        data["patient_id"] = other.id

        response = client.post("/api/v1/appointments", json=data, headers=patient_headers(clinic))

        assert response.status_code == 403

    def test_status_lifecycle(self, client, clinic):
        appointment_id = client.post(
            "/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic)
        ).json()["appointment_id"]

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "confirmed"},
            headers=doctor_headers(clinic),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "attended"},
            headers=doctor_headers(clinic),
        )
        assert response.json()["status"] == "attended"

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "cancelled"},
            headers=admin_headers(clinic),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    def test_patient_can_only_cancel(self, client, clinic):
        appointment_id = client.post(
            "/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic)
        ).json()["appointment_id"]

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "confirmed"},
            headers=patient_headers(clinic),
        )

        assert response.status_code == 403

    def test_reschedule_and_history(self, client, clinic):
        appointment_id = client.post(
            "/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic)
        ).json()["appointment_id"]

        response = client.post(
            f"/api/v1/appointments/{appointment_id}/reschedule",
            json={
                "new_start_datetime": "2026-10-19T11:00:00",
                "new_end_datetime": "2026-10-19T11:30:00",
                "notes": "Patient request",
            },
            headers=patient_headers(clinic),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "rescheduled"

        response = client.get(f"/api/v1/appointments/{appointment_id}/history", headers=doctor_headers(clinic))
        assert response.status_code == 200
        history = response.json()
        assert [h["event_type"] for h in history] == ["create", "reschedule"]
        assert history[1]["old_value"] == "start=2026-10-19T09:00:00;end=2026-10-19T09:30:00"
        assert history[1]["notes"] == "Patient request"

    def test_cancel_and_delete(self, client, clinic):
        first = client.post(
            "/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic)
        ).json()["appointment_id"]
        second = client.post(
            "/api/v1/appointments",
            json=booking(clinic, start="2026-10-19T10:00:00", end="2026-10-19T10:30:00"),
            headers=patient_headers(clinic),
        ).json()["appointment_id"]

        response = client.post(f"/api/v1/appointments/{first}/cancel", headers=patient_headers(clinic))
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = client.delete(f"/api/v1/appointments/{second}", headers=admin_headers(clinic))
        assert response.status_code == 200

        response = client.get(f"/api/v1/appointments/{second}", headers=admin_headers(clinic))
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_list_appointments(self, client, clinic):
        client.post("/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic))

        response = client.get(
            "/api/v1/appointments",
            params={"patient_id": clinic["patient_id"]},
            headers=patient_headers(clinic),
        )
        assert response.status_code == 200
        assert len(response.json()) == 1

        response = client.get("/api/v1/appointments", headers=patient_headers(clinic))
        assert response.status_code == 403

    def test_missing_appointment(self, client, clinic):
        response = client.get("/api/v1/appointments/999", headers=admin_headers(clinic))
        assert response.status_code == 404


class TestDoctorScheduleAPI:

    def test_slots(self, client, clinic):
        client.post("/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic))

        response = client.get(
            f"/api/v1/doctors/{clinic['doctor_id']}/slots",
            params={"date": "2026-10-19"},
            headers=patient_headers(clinic),
        )

        assert response.status_code == 200
        slots = response.json()["slots"]
        assert len(slots) == 8
        assert slots[0]["start_time"] == "08:00:00"
        assert [s["available"] for s in slots].count(False) == 1

    def test_only_available_slots(self, client, clinic):
        appointment_id = client.post(
            "/api/v1/appointments", json=booking(clinic), headers=patient_headers(clinic)
        ).json()["appointment_id"]

        response = client.get(
            f"/api/v1/doctors/{clinic['doctor_id']}/slots",
            params={"date": "2026-10-19", "only_available": True},
            headers=patient_headers(clinic),
        )
        assert len(response.json()["slots"]) == 7

        response = client.get(
            f"/api/v1/doctors/{clinic['doctor_id']}/slots",
            params={
                "date": "2026-10-19",
                "only_available": True,
                "exclude_appointment_id": appointment_id,
            },
            headers=patient_headers(clinic),
        )
        assert len(response.json()["slots"]) == 8

    def test_schedule_management(self, client, clinic):
        url = f"/api/v1/doctors/{clinic['doctor_id']}/schedules"
        payload = {
            "weekday": 3,
            "start_time": "14:00:00",
            "end_time": "18:00:00",
            "slot_duration_minutes": 20,
        }

        response = client.post(url, json=payload, headers=doctor_headers(clinic))
        assert response.status_code == 201
        schedule_id = response.json()["id"]

        response = client.post(url, json=payload, headers=doctor_headers(clinic))
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_schedule"

        response = client.get(url, headers=patient_headers(clinic))
        assert [s["weekday"] for s in response.json()] == [1, 3]

        response = client.delete(f"/api/v1/doctors/schedules/{schedule_id}", headers=doctor_headers(clinic))
        assert response.status_code == 200

        response = client.get(url, headers=patient_headers(clinic))
        assert [s["weekday"] for s in response.json()] == [1]

    def test_invalid_schedule_window(self, client, clinic):
        url = f"/api/v1/doctors/{clinic['doctor_id']}/schedules"
        bad_window = {"weekday": 2, "start_time": "12:00:00", "end_time": "08:00:00"}
        bad_slot = {"weekday": 2, "start_time": "08:00:00", "end_time": "12:00:00", "slot_duration_minutes": 90}

        assert client.post(url, json=bad_window, headers=admin_headers(clinic)).status_code == 400
        assert client.post(url, json=bad_slot, headers=admin_headers(clinic)).status_code == 400

    def test_patients_cannot_edit_schedules(self, client, clinic):
        response = client.post(
            f"/api/v1/doctors/{clinic['doctor_id']}/schedules",
            json={"weekday": 2, "start_time": "08:00:00", "end_time": "12:00:00"},
            headers=patient_headers(clinic),
        )
        assert response.status_code == 403
