from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from appointments import AppointmentScheduler, default_end_time, is_slot_collision
from errors import AccessDenied, NotFound, SlotConflict, ValidationError
from models import AppointmentStatus, Role
from schemas import AppointmentCreate, AppointmentUpdate


def booking(patient_id, doctor_id, day="2024-06-01", time="10:00", **extra):
    payload = {
        "patientId": patient_id,
        "doctorId": doctor_id,
        "date": day,
        "time": time,
        "reason": "Control anual",
    }
    payload.update(extra)
    return payload


@pytest.fixture
def people(make_identity):
    return {
        "alice": make_identity(Role.PATIENT),
        "carol": make_identity(Role.PATIENT),
        "bob": make_identity(Role.DOCTOR),
        "dave": make_identity(Role.DOCTOR),
        "admin": make_identity(Role.ADMIN),
    }


@pytest.fixture
def scheduler(db_session):
    return AppointmentScheduler(db_session)


def test_default_end_time():
    assert default_end_time("10:00") == "10:30"
    assert default_end_time("09:45", minutes=60) == "10:45"
    assert default_end_time("23:50") == "23:59"


def test_is_slot_collision():
    taken = IntegrityError(
        "UPDATE", {}, Exception("UNIQUE constraint failed: appointments.doctor_id, appointments.date, appointments.start_time")
    )
    named = IntegrityError("INSERT", {}, Exception('duplicate key value violates unique constraint "uq_appointments_active_slot"'))
    missing = IntegrityError("UPDATE", {}, Exception("NOT NULL constraint failed: appointments.reason"))
    assert is_slot_collision(taken)
    assert is_slot_collision(named)
    assert not is_slot_collision(missing)


class TestScheduler:
    def test_create_starts_pending(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
        )
        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.start_time == "10:00"
        assert appointment.end_time == "10:30"

    def test_explicit_end_time_must_follow_start(self, scheduler, people):
        payload = booking(people["alice"].user_id, people["bob"].user_id, endTime="09:30")
        with pytest.raises(ValidationError):
            scheduler.create(people["bob"], AppointmentCreate(**payload))
        assert scheduler.list(people["admin"]) == []

    def test_patients_cannot_book(self, scheduler, people):
        with pytest.raises(AccessDenied):
            scheduler.create(
                people["alice"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
            )

    def test_patient_reference_must_be_a_patient(self, scheduler, people):
        with pytest.raises(NotFound) as excinfo:
            scheduler.create(
                people["admin"], AppointmentCreate(**booking(people["dave"].user_id, people["bob"].user_id))
            )
        assert excinfo.value.entity == "paciente"

    def test_doctor_reference_must_be_a_doctor(self, scheduler, people):
        with pytest.raises(NotFound) as excinfo:
            scheduler.create(
                people["admin"], AppointmentCreate(**booking(people["alice"].user_id, people["carol"].user_id))
            )
        assert excinfo.value.entity == "doctor"

    def test_same_slot_conflicts(self, scheduler, people):
        scheduler.create(people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id)))
        with pytest.raises(SlotConflict):
            scheduler.create(
                people["admin"], AppointmentCreate(**booking(people["carol"].user_id, people["bob"].user_id))
            )

    def test_unpadded_time_hits_the_same_slot(self, scheduler, people):
        scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id, time="09:30"))
        )
        with pytest.raises(SlotConflict):
            scheduler.create(
                people["bob"], AppointmentCreate(**booking(people["carol"].user_id, people["bob"].user_id, time="9:30"))
            )

    def test_other_doctor_same_slot_is_free(self, scheduler, people):
        scheduler.create(people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id)))
        other = scheduler.create(
            people["dave"], AppointmentCreate(**booking(people["alice"].user_id, people["dave"].user_id))
        )
        assert other.doctor_id == people["dave"].user_id

    def test_store_index_catches_a_booking_that_raced_past_the_check(self, scheduler, people, monkeypatch):
        scheduler.create(people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id)))
        # simulate a concurrent request whose read happened before the first insert
        monkeypatch.setattr(scheduler, "find_active_in_slot", lambda *args: None)
        with pytest.raises(SlotConflict):
            scheduler.create(
                people["bob"], AppointmentCreate(**booking(people["carol"].user_id, people["bob"].user_id))
            )
        assert len(scheduler.list(people["admin"])) == 1

    def test_list_is_scoped_and_sorted(self, scheduler, people):
        alice, carol, bob, dave = (people[k].user_id for k in ("alice", "carol", "bob", "dave"))
        scheduler.create(people["bob"], AppointmentCreate(**booking(alice, bob, day="2024-06-02", time="08:00")))
        scheduler.create(people["bob"], AppointmentCreate(**booking(alice, bob, day="2024-06-01", time="11:00")))
        scheduler.create(people["dave"], AppointmentCreate(**booking(carol, dave, day="2024-06-01", time="09:00")))
        scheduler.create(people["dave"], AppointmentCreate(**booking(alice, dave, day="2024-06-01", time="10:00")))

        mine = scheduler.list(people["alice"])
        assert [(a.date.isoformat(), a.start_time) for a in mine] == [
            ("2024-06-01", "10:00"),
            ("2024-06-01", "11:00"),
            ("2024-06-02", "08:00"),
        ]
        assert all(a.patient_id == alice for a in mine)
        assert {a.patient_id for a in scheduler.list(people["dave"])} == {alice, carol}
        assert len(scheduler.list(people["admin"])) == 4

    def test_list_filters(self, scheduler, people):
        alice, bob = people["alice"].user_id, people["bob"].user_id
        first = scheduler.create(people["bob"], AppointmentCreate(**booking(alice, bob, day="2024-06-01")))
        scheduler.create(people["bob"], AppointmentCreate(**booking(alice, bob, day="2024-06-10")))
        scheduler.cancel(people["alice"], first.id)

        assert len(scheduler.list(people["admin"], start_date=date(2024, 6, 5))) == 1
        assert len(scheduler.list(people["admin"], end_date=date(2024, 6, 1))) == 1
        cancelled = scheduler.list(people["admin"], status=AppointmentStatus.CANCELLED)
        assert [a.id for a in cancelled] == [first.id]

    def test_get_requires_participation(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
        )
        assert scheduler.get(people["alice"], appointment.id).id == appointment.id
        assert scheduler.get(people["admin"], appointment.id).id == appointment.id
        with pytest.raises(AccessDenied):
            scheduler.get(people["carol"], appointment.id)
        with pytest.raises(AccessDenied):
            scheduler.get(people["dave"], appointment.id)

    def test_get_missing(self, scheduler, people):
        with pytest.raises(NotFound):
            scheduler.get(people["admin"], 999)

    def test_update_is_partial(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id, notes="ayuno"))
        )
        updated = scheduler.update(
            people["bob"], appointment.id, AppointmentUpdate(status="confirmada", diagnosis="Hipertensión leve")
        )
        assert updated.status == AppointmentStatus.CONFIRMED
        assert updated.diagnosis == "Hipertensión leve"
        assert updated.notes == "ayuno"
        assert updated.reason == "Control anual"
        assert updated.start_time == "10:00"

    def test_update_by_other_doctor_is_denied(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
        )
        with pytest.raises(AccessDenied):
            scheduler.update(people["dave"], appointment.id, AppointmentUpdate(notes="x"))
        with pytest.raises(AccessDenied):
            scheduler.update(people["alice"], appointment.id, AppointmentUpdate(notes="x"))

    def test_reschedule_skips_the_conflict_query(self, scheduler, people):
        alice, bob = people["alice"].user_id, people["bob"].user_id
        scheduler.create(people["bob"], AppointmentCreate(**booking(alice, bob, time="10:00")))
        second = scheduler.create(people["bob"], AppointmentCreate(**booking(alice, bob, time="11:00")))
        # free slot: moved without any conflict lookup
        moved = scheduler.update(people["bob"], second.id, AppointmentUpdate(start_time="12:00"))
        assert moved.start_time == "12:00"
        # taken slot: only the store index stops it
        with pytest.raises(SlotConflict):
            scheduler.update(people["bob"], second.id, AppointmentUpdate(start_time="10:00"))

    def test_reschedule_keeps_end_after_start(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
        )
        moved = scheduler.update(people["bob"], appointment.id, AppointmentUpdate(start_time="12:00"))
        assert (moved.start_time, moved.end_time) == ("12:00", "12:30")

        with pytest.raises(ValidationError):
            scheduler.update(people["bob"], appointment.id, AppointmentUpdate(end_time="11:00"))
        with pytest.raises(ValidationError):
            scheduler.update(people["bob"], appointment.id, AppointmentUpdate(start_time="14:00", end_time="13:00"))
        assert (appointment.start_time, appointment.end_time) == ("12:00", "12:30")

    def test_other_integrity_errors_are_not_slot_conflicts(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
        )
        appointment.reason = None
        with pytest.raises(IntegrityError):
            scheduler._commit()

    def test_cancel_is_unconditional(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
        )
        scheduler.update(people["bob"], appointment.id, AppointmentUpdate(status="completada"))
        cancelled = scheduler.cancel(people["admin"], appointment.id)
        assert cancelled.status == AppointmentStatus.CANCELLED
        assert scheduler.cancel(people["alice"], appointment.id).status == AppointmentStatus.CANCELLED

    def test_cancel_by_stranger_is_denied(self, scheduler, people):
        appointment = scheduler.create(
            people["bob"], AppointmentCreate(**booking(people["alice"].user_id, people["bob"].user_id))
        )
        with pytest.raises(AccessDenied):
            scheduler.cancel(people["carol"], appointment.id)


class TestAppointmentEndpoints:
    def test_double_booking_scenario(self, client, register):
        alice, alice_headers = register("patient", email="alice@example.com")
        bob, bob_headers = register("doctor", email="bob@example.com")
        carol, _ = register("patient")

        created = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=bob_headers)
        assert created.status_code == 201
        appointment = created.json()
        assert appointment["status"] == "pendiente"

        conflict = client.post("/api/appointments", json=booking(carol["id"], bob["id"]), headers=bob_headers)
        assert conflict.status_code == 400
        assert conflict.json() == {"message": "El doctor ya tiene una cita programada en ese horario"}

        cancelled = client.patch(f"/api/appointments/{appointment['id']}/cancel", headers=alice_headers)
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelada"

        rebooked = client.post("/api/appointments", json=booking(carol["id"], bob["id"]), headers=bob_headers)
        assert rebooked.status_code == 201

    def test_response_embeds_participants(self, client, register):
        alice, _ = register("patient")
        bob, bob_headers = register("doctor")
        body = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=bob_headers).json()
        assert body["patient"]["id"] == alice["id"]
        assert body["patient"]["name"] == alice["name"]
        assert body["doctor"] == {"id": bob["id"], "name": bob["name"], "specialty": "Cardiología"}
        assert body["startTime"] == "10:00"
        assert body["endTime"] == "10:30"
        assert body["type"] == "presencial"

    def test_patient_cannot_create(self, client, register):
        alice, alice_headers = register("patient")
        bob, _ = register("doctor")
        response = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=alice_headers)
        assert response.status_code == 403

    def test_requires_token(self, client):
        assert client.get("/api/appointments").status_code == 401

    def test_bad_time_format(self, client, register):
        alice, _ = register("patient")
        bob, bob_headers = register("doctor")
        response = client.post(
            "/api/appointments", json=booking(alice["id"], bob["id"], time="25:00"), headers=bob_headers
        )
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "time"

    def test_missing_patient(self, client, register):
        bob, bob_headers = register("doctor")
        response = client.post("/api/appointments", json=booking(9999, bob["id"]), headers=bob_headers)
        assert response.status_code == 404
        assert response.json() == {"message": "Paciente no encontrado"}

    def test_other_patient_cannot_read_or_cancel(self, client, register):
        alice, _ = register("patient")
        _, carol_headers = register("patient")
        bob, bob_headers = register("doctor")
        appointment = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=bob_headers).json()

        assert client.get(f"/api/appointments/{appointment['id']}", headers=carol_headers).status_code == 403
        assert client.patch(f"/api/appointments/{appointment['id']}/cancel", headers=carol_headers).status_code == 403

    def test_list_scoping_and_filters(self, client, register):
        alice, alice_headers = register("patient")
        carol, carol_headers = register("patient")
        bob, bob_headers = register("doctor")
        _, admin_headers = register("admin")
        client.post("/api/appointments", json=booking(alice["id"], bob["id"], day="2024-06-03"), headers=bob_headers)
        client.post("/api/appointments", json=booking(carol["id"], bob["id"], day="2024-06-01"), headers=bob_headers)

        assert len(client.get("/api/appointments", headers=alice_headers).json()) == 1
        assert len(client.get("/api/appointments", headers=carol_headers).json()) == 1
        everything = client.get("/api/appointments", headers=admin_headers).json()
        assert [a["date"] for a in everything] == ["2024-06-01", "2024-06-03"]

        ranged = client.get(
            "/api/appointments", params={"startDate": "2024-06-02", "endDate": "2024-06-30"}, headers=admin_headers
        )
        assert [a["patient"]["id"] for a in ranged.json()] == [alice["id"]]
        assert client.get("/api/appointments", params={"status": "cancelada"}, headers=admin_headers).json() == []
        assert client.get("/api/appointments", params={"status": "bogus"}, headers=admin_headers).status_code == 400

    def test_update_with_prescription(self, client, register):
        alice, _ = register("patient")
        bob, bob_headers = register("doctor")
        appointment = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=bob_headers).json()

        prescription = {
            "medications": [{"name": "Enalapril", "dosage": "10mg", "frequency": "cada 12h", "duration": "30 días"}],
            "instructions": "Tomar con agua",
        }
        response = client.put(
            f"/api/appointments/{appointment['id']}",
            json={"status": "confirmada", "prescription": prescription},
            headers=bob_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "confirmada"
        assert body["prescription"] == prescription
        assert body["reason"] == appointment["reason"]

    def test_null_reason_is_a_validation_error(self, client, register):
        alice, _ = register("patient")
        bob, bob_headers = register("doctor")
        appointment = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=bob_headers).json()

        response = client.put(f"/api/appointments/{appointment['id']}", json={"reason": None}, headers=bob_headers)
        assert response.status_code == 400
        assert [error["field"] for error in response.json()["errors"]] == ["reason"]
        refetched = client.get(f"/api/appointments/{appointment['id']}", headers=bob_headers).json()
        assert refetched["reason"] == appointment["reason"]

    def test_reschedule_moves_end_time(self, client, register):
        alice, _ = register("patient")
        bob, bob_headers = register("doctor")
        appointment = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=bob_headers).json()
        url = f"/api/appointments/{appointment['id']}"

        moved = client.put(url, json={"startTime": "12:00"}, headers=bob_headers)
        assert moved.status_code == 200
        assert (moved.json()["startTime"], moved.json()["endTime"]) == ("12:00", "12:30")

        rejected = client.put(url, json={"endTime": "09:00"}, headers=bob_headers)
        assert rejected.status_code == 400
        assert rejected.json() == {"message": "La hora de fin debe ser posterior a la hora de inicio"}

    def test_patient_cannot_update(self, client, register):
        alice, alice_headers = register("patient")
        bob, bob_headers = register("doctor")
        appointment = client.post("/api/appointments", json=booking(alice["id"], bob["id"]), headers=bob_headers).json()
        response = client.put(f"/api/appointments/{appointment['id']}", json={"notes": "x"}, headers=alice_headers)
        assert response.status_code == 403

    def test_unknown_appointment(self, client, register):
        _, admin_headers = register("admin")
        response = client.get("/api/appointments/12345", headers=admin_headers)
        assert response.status_code == 404
        assert response.json() == {"message": "Cita no encontrada"}
