"""Tests for appointment endpoints."""

from datetime import time
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.models import notifications


@pytest.mark.asyncio
async def test_create_appointment(
    client: AsyncClient,
    patient_headers: dict,
    directory,
    tomorrow,
    feed,
) -> None:
    """Test booking an appointment."""
    response = await client.post(
        "/api/v1/appointments",
        json={
            "doctor_id": str(directory.doctor_id),
            "clinic_id": str(directory.clinic_id),
            "appointment_date": tomorrow.isoformat(),
            "appointment_time": "09:30:00",
            "is_first_visit": True,
        },
        headers=patient_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["patient_id"] == str(directory.patient_id)
    assert data["is_first_visit"] is True
    assert [(e.table, e.event_type.value) for e in feed.events] == [("appointments", "insert")]


@pytest.mark.asyncio
async def test_create_appointment_slot_taken(
    client: AsyncClient,
    patient_headers: dict,
    directory,
    make_appointment,
    tomorrow,
) -> None:
    await make_appointment(at=time(9, 30), patient_id=directory.other_patient_id)

    response = await client.post(
        "/api/v1/appointments",
        json={
            "doctor_id": str(directory.doctor_id),
            "appointment_date": tomorrow.isoformat(),
            "appointment_time": "09:30:00",
        },
        headers=patient_headers,
    )

    assert response.status_code == 409
    assert response.json()["message"] == "This time slot is already booked"


@pytest.mark.asyncio
async def test_create_appointment_reuses_cancelled_slot(
    client: AsyncClient,
    patient_headers: dict,
    directory,
    make_appointment,
    tomorrow,
) -> None:
    await make_appointment(
        at=time(9, 30),
        status="cancelled",
        patient_id=directory.other_patient_id,
    )

    response = await client.post(
        "/api/v1/appointments",
        json={
            "doctor_id": str(directory.doctor_id),
            "appointment_date": tomorrow.isoformat(),
            "appointment_time": "09:30:00",
        },
        headers=patient_headers,
    )

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_create_appointment_unknown_doctor(
    client: AsyncClient,
    patient_headers: dict,
    tomorrow,
) -> None:
    response = await client.post(
        "/api/v1/appointments",
        json={
            "doctor_id": str(uuid4()),
            "appointment_date": tomorrow.isoformat(),
            "appointment_time": "09:30:00",
        },
        headers=patient_headers,
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_appointment(
    client: AsyncClient,
    patient_headers: dict,
    staff_headers: dict,
    make_appointment,
) -> None:
    appointment = await make_appointment()

    own = await client.get(f"/api/v1/appointments/{appointment['id']}", headers=patient_headers)
    staff = await client.get(f"/api/v1/appointments/{appointment['id']}", headers=staff_headers)

    assert own.status_code == 200
    assert own.json()["id"] == str(appointment["id"])
    assert staff.status_code == 200


@pytest.mark.asyncio
async def test_get_appointment_of_another_patient(
    client: AsyncClient,
    directory,
    headers_for,
    make_appointment,
) -> None:
    appointment = await make_appointment()

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}",
        headers=headers_for(directory.other_patient_user_id),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_staff_confirms_appointment(
    client: AsyncClient,
    staff_headers: dict,
    directory,
    make_appointment,
    db_session,
    feed,
) -> None:
    """Confirmation notifies the patient in the same transaction."""
    appointment = await make_appointment()

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "confirmed"},
        headers=staff_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "confirmed"
    assert data["confirmed_at"] is not None

    result = await db_session.execute(
        select(notifications).where(notifications.c.user_id == directory.patient_user_id)
    )
    rows = result.mappings().all()
    assert len(rows) == 1
    assert rows[0]["type"] == "appointment_confirmed"
    assert rows[0]["data"]["appointment_id"] == str(appointment["id"])

    assert [(e.table, e.event_type.value) for e in feed.events] == [
        ("appointments", "update"),
        ("notifications", "insert"),
    ]


@pytest.mark.asyncio
async def test_staff_cancels_with_default_reason(
    client: AsyncClient,
    staff_headers: dict,
    make_appointment,
) -> None:
    appointment = await make_appointment(status="confirmed")

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "cancelled"},
        headers=staff_headers,
    )

    assert response.status_code == 200
    assert response.json()["cancellation_reason"] == "Cancelled by clinic"
    assert response.json()["cancelled_at"] is not None


@pytest.mark.asyncio
async def test_patient_cannot_change_status(
    client: AsyncClient,
    patient_headers: dict,
    make_appointment,
) -> None:
    appointment = await make_appointment()

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "confirmed"},
        headers=patient_headers,
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_transition(
    client: AsyncClient,
    staff_headers: dict,
    make_appointment,
) -> None:
    appointment = await make_appointment(status="completed")

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "confirmed"},
        headers=staff_headers,
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_status_change_refused_during_checkout(
    client: AsyncClient,
    staff_headers: dict,
    make_appointment,
    make_payment,
) -> None:
    """The webhook is the only writer while a payment is pending."""
    appointment = await make_appointment()
    await make_payment(appointment_id=appointment["id"])

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "confirmed"},
        headers=staff_headers,
    )

    assert response.status_code == 409
    assert response.json()["message"] == "A payment for this appointment is in progress"
