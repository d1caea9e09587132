"""API tests for the queue routes and their QUEUE_MANAGEMENT gate."""

from datetime import UTC, datetime, timedelta

import pytest

from clinic_core.db.models.appointment import Appointment

pytestmark = pytest.mark.integration


async def test_queue_requires_pro_tier(client, create_clinic):
    clinic_id = await create_clinic("CORE")

    response = await client.get(f"/api/clinics/{clinic_id}/queue")

    assert response.status_code == 403
    assert "PRO tier" in response.json()["detail"]


async def test_upgrade_opens_queue(client, create_clinic):
    clinic_id = await create_clinic("CORE")
    await client.put(f"/api/clinics/{clinic_id}/subscription/tier", json={"tier": "PRO"})

    response = await client.get(f"/api/clinics/{clinic_id}/queue")

    assert response.status_code == 200
    assert response.json() == {"entries": [], "avg_consultation_minutes": 15}


async def test_queue_for_unknown_clinic(client):
    response = await client.get("/api/clinics/missing/queue")

    assert response.status_code == 404


async def test_settings_round_trip(client, create_clinic):
    clinic_id = await create_clinic()

    response = await client.put(
        f"/api/clinics/{clinic_id}/queue/settings",
        json={"queue_buffer_minutes": 5, "late_arrival_grace_minutes": 20},
    )
    assert response.status_code == 200

    response = await client.get(f"/api/clinics/{clinic_id}/queue/settings")
    assert response.json() == {
        "queue_buffer_minutes": 5,
        "late_arrival_grace_minutes": 20,
        "avg_consultation_minutes": 15,
        "use_doctor_queues": False,
    }


async def test_invalid_settings_rejected(client, create_clinic):
    clinic_id = await create_clinic()

    response = await client.put(
        f"/api/clinics/{clinic_id}/queue/settings",
        json={"queue_buffer_minutes": 40},
    )

    assert response.status_code == 422
    assert "late_arrival_grace_minutes" in response.json()["detail"]


async def test_unknown_settings_field_rejected(client, create_clinic):
    clinic_id = await create_clinic()

    response = await client.put(f"/api/clinics/{clinic_id}/queue/settings", json={"max_tokens": 50})

    assert response.status_code == 422


async def test_walk_in_flow(client, create_clinic):
    clinic_id = await create_clinic()

    first = await client.post(f"/api/clinics/{clinic_id}/queue/check-in", json={"patient_id": "p1"})
    second = await client.post(f"/api/clinics/{clinic_id}/queue/check-in", json={"patient_id": "p2"})

    assert first.status_code == 201
    assert first.json()["token_number"] == 1
    assert first.json()["token_type"] == "walk-in"
    assert second.json()["token_number"] == 2
    assert second.json()["estimated_wait_minutes"] == 15

    wait = await client.get(f"/api/clinics/{clinic_id}/queue/{second.json()['id']}/wait-time")
    assert wait.json()["position"] == 1

    called = await client.post(f"/api/clinics/{clinic_id}/queue/call-next")
    assert called.status_code == 200
    assert called.json()["id"] == first.json()["id"]
    assert called.json()["status"] == "in-consultation"

    done = await client.patch(f"/api/clinics/{clinic_id}/queue/{first.json()['id']}", json={"status": "completed"})
    assert done.status_code == 200
    assert done.json()["status"] == "completed"

    stats = await client.get(f"/api/clinics/{clinic_id}/queue/stats")
    assert stats.json()["completed"] == 1
    assert stats.json()["waiting"] == 1


async def test_call_next_on_empty_queue(client, create_clinic):
    clinic_id = await create_clinic()

    response = await client.post(f"/api/clinics/{clinic_id}/queue/call-next")

    assert response.status_code == 204


async def test_invalid_transition_is_409(client, create_clinic):
    clinic_id = await create_clinic()
    entry = (await client.post(f"/api/clinics/{clinic_id}/queue/check-in", json={"patient_id": "p1"})).json()

    response = await client.patch(f"/api/clinics/{clinic_id}/queue/{entry['id']}", json={"status": "no-show"})

    assert response.status_code == 409


async def test_walk_in_without_patient_is_422(client, create_clinic):
    clinic_id = await create_clinic()

    response = await client.post(f"/api/clinics/{clinic_id}/queue/check-in", json={})

    assert response.status_code == 422
    assert "patient_id" in response.json()["detail"]


async def add_appointment(session_factory, clinic_id: str, scheduled_time: datetime, patient_id: str = "p1") -> str:
    async with session_factory() as session:
        appointment = Appointment(
            clinic_id=clinic_id,
            patient_id=patient_id,
            doctor_id="doctor-1",
            scheduled_time=scheduled_time,
        )
        session.add(appointment)
        await session.commit()
        return appointment.id


async def test_awaiting_check_in_lists_todays_bookings(client, create_clinic, session_factory):
    clinic_id = await create_clinic()
    now = datetime.now(UTC)
    today = await add_appointment(session_factory, clinic_id, now)
    await add_appointment(session_factory, clinic_id, now + timedelta(days=2), patient_id="p2")

    response = await client.get(f"/api/clinics/{clinic_id}/queue/awaiting-check-in")

    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == [today]

    await client.post(f"/api/clinics/{clinic_id}/queue/check-in", json={"appointment_id": today})
    response = await client.get(f"/api/clinics/{clinic_id}/queue/awaiting-check-in")
    assert response.json() == []


async def test_awaiting_check_in_requires_pro_tier(client, create_clinic):
    clinic_id = await create_clinic("CORE")

    response = await client.get(f"/api/clinics/{clinic_id}/queue/awaiting-check-in")

    assert response.status_code == 403


async def test_check_in_for_another_day_is_422(client, create_clinic, session_factory):
    clinic_id = await create_clinic()
    appointment_id = await add_appointment(session_factory, clinic_id, datetime.now(UTC) + timedelta(days=2))

    response = await client.post(f"/api/clinics/{clinic_id}/queue/check-in", json={"appointment_id": appointment_id})

    assert response.status_code == 422
    assert "not today" in response.json()["detail"]


async def test_priority_out_of_range_is_422(client, create_clinic):
    clinic_id = await create_clinic()

    response = await client.post(
        f"/api/clinics/{clinic_id}/queue/check-in", json={"patient_id": "p1", "priority": 11}
    )

    assert response.status_code == 422
