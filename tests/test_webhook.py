"""Tests for the MoneyFusion webhook reconciler."""

import json
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.core.security import compute_webhook_signature
from app.models import appointments, notifications, payments, teleconsultation_sessions
from app.services.notification_service import NotificationService

WEBHOOK_URL = "/api/v1/payments/webhook"


def _completed(payment_id, token: str = "tok-abc", amount: float = 5000, **extra) -> dict:
    return {
        "event": "payin.session.completed",
        "tokenPay": token,
        "Montant": amount,
        "personal_Info": [{"paymentId": str(payment_id)}],
        **extra,
    }


def _cancelled(payment_id, token: str = "tok-abc") -> dict:
    return {
        "event": "payin.session.cancelled",
        "tokenPay": token,
        "personal_Info": [{"paymentId": str(payment_id)}],
    }


async def _status(db_session, table, row_id) -> str:
    result = await db_session.execute(select(table.c.status).where(table.c.id == row_id))
    return result.scalar_one()


async def _notifications(db_session) -> list[dict]:
    result = await db_session.execute(select(notifications).order_by(notifications.c.created_at))
    return [dict(row) for row in result.mappings()]


@pytest.mark.asyncio
async def test_completed_payment_confirms_and_notifies(
    client: AsyncClient,
    directory,
    make_appointment,
    make_payment,
    db_session,
    feed,
) -> None:
    """Success confirms the appointment and notifies patient, doctor and active secretaries."""
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(WEBHOOK_URL, json=_completed(payment["id"]))

    assert response.status_code == 200
    assert response.json() == {"success": True, "applied": True}

    result = await db_session.execute(select(payments).where(payments.c.id == payment["id"]))
    stored = result.mappings().one()
    assert stored["status"] == "success"
    assert stored["paid_at"] is not None
    assert stored["transaction_ref"] == "tok-abc"

    result = await db_session.execute(
        select(appointments).where(appointments.c.id == appointment["id"])
    )
    confirmed = result.mappings().one()
    assert confirmed["status"] == "confirmed"
    assert confirmed["confirmed_at"] is not None

    rows = await _notifications(db_session)
    recipients = {row["user_id"]: row for row in rows}
    assert len(rows) == 4
    assert recipients[directory.patient_user_id]["type"] == "payment_success"
    assert "Rendez-vous confirmé" in recipients[directory.patient_user_id]["message"]
    staff = {directory.doctor_user_id, *directory.secretary_user_ids}
    assert {user_id for user_id in recipients if user_id != directory.patient_user_id} == staff
    assert directory.inactive_secretary_user_id not in recipients
    for user_id in staff:
        assert recipients[user_id]["type"] == "new_appointment"
        assert recipients[user_id]["data"] == {
            "appointment_id": str(appointment["id"]),
            "patient_id": str(directory.patient_id),
            "action": "payment_confirmed",
            "payment_ref": "tok-abc",
        }

    assert [(e.table, e.event_type.value) for e in feed.events] == [
        ("payments", "update"),
        ("appointments", "update"),
        ("notifications", "insert"),
        ("notifications", "insert"),
        ("notifications", "insert"),
        ("notifications", "insert"),
    ]
    assert feed.events[0].old["status"] == "pending"
    assert feed.events[0].new["status"] == "success"


@pytest.mark.asyncio
async def test_payment_for_cancelled_appointment_is_receipt_only(
    client: AsyncClient,
    directory,
    make_appointment,
    make_payment,
    db_session,
) -> None:
    appointment = await make_appointment(status="cancelled")
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(WEBHOOK_URL, json=_completed(payment["id"]))

    assert response.json() == {"success": True, "applied": True}
    assert await _status(db_session, appointments, appointment["id"]) == "cancelled"

    rows = await _notifications(db_session)
    assert [row["user_id"] for row in rows] == [directory.patient_user_id]
    assert rows[0]["message"] == "Votre paiement de 5000 FCFA a été reçu."


@pytest.mark.asyncio
async def test_redelivery_changes_nothing(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
    feed,
) -> None:
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    first = await client.post(WEBHOOK_URL, json=_completed(payment["id"]))
    published = len(feed.events)
    second = await client.post(WEBHOOK_URL, json=_completed(payment["id"]))

    assert first.json()["applied"] is True
    assert second.status_code == 200
    assert second.json() == {"success": True, "applied": False}
    assert len(await _notifications(db_session)) == 4
    assert len(feed.events) == published


@pytest.mark.asyncio
async def test_failure_after_success_is_ignored(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
) -> None:
    """A payment leaves pending once."""
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    await client.post(WEBHOOK_URL, json=_completed(payment["id"]))
    response = await client.post(WEBHOOK_URL, json=_cancelled(payment["id"]))

    assert response.json()["applied"] is False
    assert await _status(db_session, payments, payment["id"]) == "success"
    assert await _status(db_session, appointments, appointment["id"]) == "confirmed"


@pytest.mark.asyncio
async def test_cancelled_payment_cancels_appointment(
    client: AsyncClient,
    directory,
    make_appointment,
    make_payment,
    db_session,
) -> None:
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(WEBHOOK_URL, json=_cancelled(payment["id"]))

    assert response.status_code == 200
    assert response.json()["applied"] is True

    result = await db_session.execute(select(payments).where(payments.c.id == payment["id"]))
    failed = result.mappings().one()
    assert failed["status"] == "failed"
    assert failed["failure_reason"] == "Payment failed"

    result = await db_session.execute(
        select(appointments).where(appointments.c.id == appointment["id"])
    )
    cancelled = result.mappings().one()
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancellation_reason"] == "Payment failed"
    assert cancelled["cancelled_at"] is not None

    rows = await _notifications(db_session)
    assert [(row["user_id"], row["type"]) for row in rows] == [
        (directory.patient_user_id, "appointment_cancelled")
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("statut", ["failure", "failed", "no paid", "cancelled", "FAILED"])
async def test_failure_statuts(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
    statut: str,
) -> None:
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(
        WEBHOOK_URL,
        json={"statut": statut, "personal_Info": [{"paymentId": str(payment["id"])}]},
    )

    assert response.json()["applied"] is True
    assert await _status(db_session, payments, payment["id"]) == "failed"


@pytest.mark.asyncio
async def test_paid_statut_without_event(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
) -> None:
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(
        WEBHOOK_URL,
        json={"statut": "paid", "personal_Info": [{"paymentId": str(payment["id"])}]},
    )

    assert response.json()["applied"] is True
    assert await _status(db_session, payments, payment["id"]) == "success"


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
) -> None:
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(
        WEBHOOK_URL,
        json={
            "event": "payin.session.pending",
            "personal_Info": [{"paymentId": str(payment["id"])}],
        },
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "applied": False}
    assert await _status(db_session, payments, payment["id"]) == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "wrap",
    [
        lambda info: [info],
        lambda info: info,
        lambda info: json.dumps([info]),
        lambda info: json.dumps(info),
    ],
    ids=["array", "object", "json-array", "json-object"],
)
async def test_personal_info_shapes(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
    wrap,
) -> None:
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(
        WEBHOOK_URL,
        json={
            "event": "payin.session.completed",
            "personal_Info": wrap({"payment_id": str(payment["id"])}),
        },
    )

    assert response.status_code == 200
    assert await _status(db_session, payments, payment["id"]) == "success"


@pytest.mark.asyncio
async def test_falls_back_to_token(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
) -> None:
    """Without a usable personal_Info the token is matched against transaction_ref."""
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(
        WEBHOOK_URL,
        json={
            "event": "payin.session.completed",
            "tokenPay": str(payment["id"]),
            "personal_Info": "not json",
        },
    )

    assert response.status_code == 200
    assert response.json()["applied"] is True
    assert await _status(db_session, payments, payment["id"]) == "success"


@pytest.mark.asyncio
async def test_unknown_payment(client: AsyncClient, directory) -> None:
    response = await client.post(WEBHOOK_URL, json=_completed(uuid4(), token="tok-missing"))

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Payment not found"}


@pytest.mark.asyncio
async def test_malformed_body(client: AsyncClient) -> None:
    response = await client.post(
        WEBHOOK_URL,
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_non_object_body(client: AsyncClient) -> None:
    response = await client.post(WEBHOOK_URL, json=["payin.session.completed"])

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_short_amount_is_not_applied(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
) -> None:
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"], amount=5000)

    response = await client.post(WEBHOOK_URL, json=_completed(payment["id"], amount=100))

    assert response.status_code == 200
    assert response.json()["applied"] is False
    assert await _status(db_session, payments, payment["id"]) == "pending"
    assert await _status(db_session, appointments, appointment["id"]) == "pending"


@pytest.mark.asyncio
async def test_store_failure_rolls_back_everything(
    client: AsyncClient,
    make_appointment,
    make_payment,
    db_session,
    feed,
    monkeypatch,
) -> None:
    """A failed write leaves the payment pending so the gateway retries."""
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    async def failing_stage(self, rows):
        raise OperationalError("INSERT INTO notifications", {}, Exception("disk full"))

    monkeypatch.setattr(NotificationService, "stage", failing_stage)

    response = await client.post(WEBHOOK_URL, json=_completed(payment["id"]))

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert await _status(db_session, payments, payment["id"]) == "pending"
    assert await _status(db_session, appointments, appointment["id"]) == "pending"
    assert feed.events == []


@pytest.mark.asyncio
async def test_completed_session_payment(
    client: AsyncClient,
    directory,
    make_session,
    make_payment,
    db_session,
) -> None:
    """A paid session releases its access code to the patient."""
    session = await make_session(access_code="KQ7M2P")
    payment = await make_payment(session_id=session["id"], amount=6000)

    response = await client.post(
        WEBHOOK_URL,
        json={
            "event": "payin.session.completed",
            "tokenPay": "tok-session",
            "Montant": 6000,
            "personal_Info": [{"sessionId": str(session["id"])}],
        },
    )

    assert response.json()["applied"] is True
    assert await _status(db_session, teleconsultation_sessions, session["id"]) == "paid"

    rows = await _notifications(db_session)
    recipients = {row["user_id"]: row for row in rows}
    assert set(recipients) == {directory.patient_user_id, directory.doctor_user_id}
    patient_data = recipients[directory.patient_user_id]["data"]
    assert patient_data["access_code"] == "KQ7M2P"
    assert patient_data["channel_name"] == session["channel_name"]
    assert "access_code" not in recipients[directory.doctor_user_id]["data"]


@pytest.mark.asyncio
async def test_cancelled_session_payment(
    client: AsyncClient,
    make_session,
    make_payment,
    db_session,
) -> None:
    session = await make_session()
    payment = await make_payment(session_id=session["id"], amount=6000)

    response = await client.post(WEBHOOK_URL, json=_cancelled(payment["id"]))

    assert response.json()["applied"] is True
    result = await db_session.execute(
        select(teleconsultation_sessions).where(teleconsultation_sessions.c.id == session["id"])
    )
    cancelled = result.mappings().one()
    assert cancelled["status"] == "cancelled"
    assert cancelled["ended_at"] is not None


@pytest.mark.asyncio
async def test_signed_webhook(
    client: AsyncClient,
    make_appointment,
    make_payment,
    monkeypatch,
) -> None:
    monkeypatch.setattr(settings, "moneyfusion_webhook_secret", "s3cret")
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])
    body = json.dumps(_completed(payment["id"])).encode()

    unsigned = await client.post(
        WEBHOOK_URL,
        content=body,
        headers={"Content-Type": "application/json"},
    )
    forged = await client.post(
        WEBHOOK_URL,
        content=body,
        headers={"Content-Type": "application/json", "X-Webhook-Signature": "sha256=00"},
    )
    signed = await client.post(
        WEBHOOK_URL,
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Webhook-Signature": f"sha256={compute_webhook_signature(body, 's3cret')}",
        },
    )

    assert unsigned.status_code == 401
    assert forged.status_code == 401
    assert signed.status_code == 200
    assert signed.json()["applied"] is True


@pytest.mark.asyncio
async def test_unsigned_webhook_refused_in_production(
    client: AsyncClient,
    make_appointment,
    make_payment,
    monkeypatch,
) -> None:
    monkeypatch.setattr(settings, "environment", "production")
    appointment = await make_appointment()
    payment = await make_payment(appointment_id=appointment["id"])

    response = await client.post(WEBHOOK_URL, json=_completed(payment["id"]))

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_webhook_source_allowlist(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "moneyfusion_allowed_ips_str", "203.0.113.7")

    refused = await client.post(WEBHOOK_URL, json={"event": "payin.session.completed"})
    spoofed = await client.post(
        WEBHOOK_URL,
        json={"event": "payin.session.completed"},
        headers={"X-Forwarded-For": "203.0.113.7"},
    )

    monkeypatch.setattr(settings, "moneyfusion_allowed_ips_str", "203.0.113.7, 127.0.0.1")
    allowed = await client.post(
        WEBHOOK_URL,
        json={"event": "payin.session.completed", "tokenPay": "unknown"},
    )

    assert refused.status_code == 403
    assert spoofed.status_code == 403
    assert allowed.status_code == 404
