"""
Reconcile MoneyFusion notifications with stored payments.

A payment moves once, from pending to success or failed. Everything that
follows from the move (appointment or session status, notifications) is
written in the same transaction as the payment update, and the update only
matches a row that is still pending, so a redelivered or concurrent
notification changes nothing.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.moneyfusion import MoneyFusionClient
from app.core.exceptions import (
    ForbiddenException,
    GatewayException,
    NotFoundException,
    PersistenceException,
)
from app.models.appointments import appointments
from app.models.base import utc_now
from app.models.payments import payments
from app.models.teleconsultation_sessions import teleconsultation_sessions
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed
from app.schemas.appointments import AppointmentStatus
from app.schemas.notifications import (
    AppointmentNotificationData,
    NotificationType,
    PaymentNotificationData,
    TeleconsultationNotificationData,
)
from app.schemas.payments import (
    PaymentCorrelation,
    PaymentStatus,
    PaymentVerifyResponse,
    WebhookOutcome,
    WebhookPayload,
)
from app.schemas.teleconsultations import SessionStatus
from app.services.notification_service import NotificationService, build_notification
from app.services.user_service import UserService

logger = structlog.get_logger(__name__)

FAILED_REASON = "Payment failed"
EXPIRED_REASON = "Payment expired"


@dataclass(frozen=True)
class ReconcileResult:
    """What a notification did to its payment."""

    payment_id: UUID
    outcome: WebhookOutcome
    applied: bool
    reason: str | None = None


class PaymentReconciler:
    """Apply gateway outcomes to payments and everything they settle."""

    def __init__(self, db: AsyncSession, feed: ChangeFeed | None = None):
        """Initialize reconciler with database session and change feed."""
        self.db = db
        self.feed = feed
        self.notifications = NotificationService(db)

    async def process(self, payload: WebhookPayload) -> ReconcileResult:
        """
        Handle one webhook delivery.

        Args:
            payload: Parsed notification

        Returns:
            Whether the payment changed

        Raises:
            NotFoundException: If no payment matches the notification
            PersistenceException: If the store failed; nothing was written
        """
        correlation = payload.correlation
        outcome = payload.outcome

        try:
            payment = await self._lock_payment(correlation, payload.token_pay)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("webhook_payment_lookup_failed", error=str(e))
            raise PersistenceException() from e

        if payment is None:
            await self.db.rollback()
            logger.warning(
                "webhook_payment_not_found",
                payment_id=str(correlation.payment_id) if correlation.payment_id else None,
                session_id=str(correlation.session_id) if correlation.session_id else None,
                token=payload.token_pay,
            )
            raise NotFoundException("Payment not found")

        return await self._reconcile(
            payment,
            outcome,
            token=payload.token_pay,
            reported_amount=payload.amount,
            failure_reason=FAILED_REASON,
            trigger=payload.event or payload.statut,
        )

    async def expire_stale_payments(self, cutoff: datetime) -> int:
        """
        Fail payments still pending since before ``cutoff``.

        Each payment goes through the same failure path as a gateway
        cancellation, in its own transaction.

        Returns:
            Number of payments expired
        """
        result = await self.db.execute(
            select(payments.c.id)
            .where(
                payments.c.status == PaymentStatus.PENDING.value,
                payments.c.created_at < cutoff,
            )
            .order_by(payments.c.created_at)
        )
        stale_ids = [row.id for row in result]
        await self.db.rollback()

        expired = 0
        for payment_id in stale_ids:
            payment = await self._select_payment(payments.c.id == payment_id)
            if payment is None:
                await self.db.rollback()
                continue
            outcome = await self._reconcile(
                payment,
                WebhookOutcome.FAILURE,
                failure_reason=EXPIRED_REASON,
                trigger="expiry",
            )
            if outcome.applied:
                expired += 1

        if stale_ids:
            logger.info("stale_payments_expired", candidates=len(stale_ids), expired=expired)
        return expired

    async def verify(
        self,
        user: dict,
        payment_id: UUID | None = None,
        token: str | None = None,
        gateway: MoneyFusionClient | None = None,
    ) -> PaymentVerifyResponse:
        """
        Report a payment's state, asking the gateway when it is still pending.

        The gateway answer is applied only when its ``personal_Info`` names
        this payment, so a token cannot settle someone else's payment.

        Raises:
            NotFoundException: If the payment does not exist
            ForbiddenException: If the payment belongs to another patient
        """
        if payment_id is not None:
            payment = await self._select_payment(payments.c.id == payment_id, lock=False)
        else:
            payment = await self._select_payment(payments.c.transaction_ref == token, lock=False)

        if payment is None:
            raise NotFoundException("Payment not found")

        if not UserService.is_staff(user):
            patient = await UserService.get_patient_for_user(self.db, user["id"])
            if not patient or patient["id"] != payment["patient_id"]:
                raise ForbiddenException("Access denied to this payment")

        query_token = token or (
            payment["transaction_ref"]
            if payment["transaction_ref"] != str(payment["id"])
            else None
        )

        if payment["status"] == PaymentStatus.PENDING.value and gateway and query_token:
            await self._apply_gateway_status(payment, query_token, gateway)
            payment = await self._select_payment(payments.c.id == payment["id"], lock=False)

        return await self._verify_response(payment)

    async def _apply_gateway_status(
        self,
        payment: dict,
        token: str,
        gateway: MoneyFusionClient,
    ) -> None:
        try:
            data = await gateway.fetch_status(token)
        except GatewayException:
            logger.warning("verify_gateway_unavailable", payment_id=str(payment["id"]))
            return

        payload = WebhookPayload.model_validate(data)
        correlation = payload.correlation
        matches = correlation.payment_id == payment["id"] or (
            correlation.payment_id is None
            and correlation.session_id is not None
            and correlation.session_id == payment["session_id"]
        )
        if not matches:
            logger.warning("verify_token_mismatch", payment_id=str(payment["id"]), token=token)
            return

        await self.process(payload)

    async def _verify_response(self, payment: dict) -> PaymentVerifyResponse:
        appointment_status = None
        session_status = None

        if payment["appointment_id"] is not None:
            result = await self.db.execute(
                select(appointments.c.status).where(
                    appointments.c.id == payment["appointment_id"]
                )
            )
            appointment_status = result.scalar_one_or_none()
        if payment["session_id"] is not None:
            result = await self.db.execute(
                select(teleconsultation_sessions.c.status).where(
                    teleconsultation_sessions.c.id == payment["session_id"]
                )
            )
            session_status = result.scalar_one_or_none()

        return PaymentVerifyResponse(
            payment_id=payment["id"],
            status=PaymentStatus(payment["status"]),
            amount=payment["amount"],
            appointment_id=payment["appointment_id"],
            appointment_status=appointment_status,
            session_id=payment["session_id"],
            session_status=session_status,
        )

    async def _select_payment(self, condition: Any, lock: bool = True) -> dict | None:
        # Most recent pending payment first when a condition matches several
        query = (
            select(payments)
            .where(condition)
            .order_by(
                case((payments.c.status == PaymentStatus.PENDING.value, 0), else_=1),
                payments.c.created_at.desc(),
            )
            .limit(1)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        row = result.mappings().first()
        return dict(row) if row else None

    async def _lock_payment(
        self,
        correlation: PaymentCorrelation,
        token: str | None,
    ) -> dict | None:
        """Find the payment a notification is about: by id, then session, then token."""
        if correlation.payment_id is not None:
            payment = await self._select_payment(payments.c.id == correlation.payment_id)
            if payment is not None:
                return payment

        if correlation.session_id is not None:
            payment = await self._select_payment(payments.c.session_id == correlation.session_id)
            if payment is not None:
                return payment

        if token:
            return await self._select_payment(payments.c.transaction_ref == token)

        return None

    async def _reconcile(
        self,
        payment: dict,
        outcome: WebhookOutcome,
        token: str | None = None,
        reported_amount: float | None = None,
        failure_reason: str = FAILED_REASON,
        trigger: str | None = None,
    ) -> ReconcileResult:
        """Apply ``outcome`` to a locked payment and commit."""
        log = logger.bind(payment_id=str(payment["id"]), outcome=outcome.value, trigger=trigger)

        if payment["status"] != PaymentStatus.PENDING.value:
            await self.db.rollback()
            log.info("payment_already_final", status=payment["status"])
            return ReconcileResult(payment["id"], outcome, False, "already_final")

        if outcome is WebhookOutcome.UNKNOWN:
            await self.db.rollback()
            log.info("payment_notification_ignored")
            return ReconcileResult(payment["id"], outcome, False, "unknown_outcome")

        if (
            outcome is WebhookOutcome.SUCCESS
            and reported_amount is not None
            and reported_amount < payment["amount"]
        ):
            await self.db.rollback()
            log.warning(
                "payment_amount_short",
                expected=payment["amount"],
                reported=reported_amount,
            )
            return ReconcileResult(payment["id"], outcome, False, "amount_short")

        try:
            if outcome is WebhookOutcome.SUCCESS:
                events = await self._apply_success(payment, token)
            else:
                events = await self._apply_failure(payment, token, failure_reason)

            if events is None:
                await self.db.rollback()
                log.info("payment_changed_concurrently")
                return ReconcileResult(payment["id"], outcome, False, "concurrent_update")

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            log.error("payment_reconcile_failed", error=str(e))
            raise PersistenceException() from e

        log.info(
            "payment_reconciled",
            notifications=sum(1 for event in events if event.table == "notifications"),
        )

        if self.feed is not None:
            await self.feed.publish(events)

        return ReconcileResult(payment["id"], outcome, True)

    async def _transition_payment(self, payment: dict, values: dict[str, Any]) -> dict | None:
        result = await self.db.execute(
            update(payments)
            .where(
                payments.c.id == payment["id"],
                payments.c.status == PaymentStatus.PENDING.value,
            )
            .values(**values)
            .returning(payments)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def _apply_success(self, payment: dict, token: str | None) -> list[ChangeEvent] | None:
        now = utc_now()
        values: dict[str, Any] = {
            "status": PaymentStatus.SUCCESS.value,
            "paid_at": now,
            "updated_at": now,
        }
        if token:
            values["transaction_ref"] = token

        updated = await self._transition_payment(payment, values)
        if updated is None:
            return None

        events = [ChangeEvent.update("payments", updated, old=payment)]
        if updated["appointment_id"] is not None:
            events += await self._confirm_appointment(updated)
        elif updated["session_id"] is not None:
            events += await self._mark_session_paid(updated)
        return events

    async def _apply_failure(
        self,
        payment: dict,
        token: str | None,
        reason: str,
    ) -> list[ChangeEvent] | None:
        now = utc_now()
        values: dict[str, Any] = {
            "status": PaymentStatus.FAILED.value,
            "failure_reason": reason,
            "updated_at": now,
        }
        if token:
            values["transaction_ref"] = token

        updated = await self._transition_payment(payment, values)
        if updated is None:
            return None

        events = [ChangeEvent.update("payments", updated, old=payment)]
        if updated["appointment_id"] is not None:
            events += await self._cancel_appointment(updated, reason)
        elif updated["session_id"] is not None:
            events += await self._cancel_session(updated, reason)
        return events

    async def _load_appointment(self, appointment_id: UUID) -> dict | None:
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id).with_for_update()
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def _load_session(self, session_id: UUID) -> dict | None:
        result = await self.db.execute(
            select(teleconsultation_sessions)
            .where(teleconsultation_sessions.c.id == session_id)
            .with_for_update()
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def _patient_user_id(self, patient_id: UUID) -> UUID | None:
        patient = await UserService.get_patient(self.db, patient_id)
        return patient["user_id"] if patient else None

    async def _confirm_appointment(self, payment: dict) -> list[ChangeEvent]:
        appointment = await self._load_appointment(payment["appointment_id"])
        if appointment is None:
            logger.warning("payment_appointment_missing", payment_id=str(payment["id"]))
            return []

        now = utc_now()
        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment["id"],
                appointments.c.status == AppointmentStatus.PENDING.value,
            )
            .values(status=AppointmentStatus.CONFIRMED.value, confirmed_at=now, updated_at=now)
            .returning(appointments)
        )
        confirmed = result.mappings().first()

        events: list[ChangeEvent] = []
        if confirmed is not None:
            events.append(ChangeEvent.update("appointments", confirmed, old=appointment))
        else:
            logger.warning(
                "payment_appointment_not_pending",
                payment_id=str(payment["id"]),
                appointment_id=str(appointment["id"]),
                status=appointment["status"],
            )

        when = f"{appointment['appointment_date']} à {appointment['appointment_time']:%H:%M}"
        rows = []

        receipt = f"Votre paiement de {payment['amount']} FCFA a été reçu."
        if confirmed is not None:
            receipt += f" Rendez-vous confirmé le {when}."

        patient_user_id = await self._patient_user_id(payment["patient_id"])
        if patient_user_id is not None:
            rows.append(
                build_notification(
                    patient_user_id,
                    NotificationType.PAYMENT_SUCCESS,
                    "Paiement confirmé",
                    receipt,
                    PaymentNotificationData(
                        payment_id=payment["id"],
                        amount=payment["amount"],
                        appointment_id=appointment["id"],
                        transaction_ref=payment["transaction_ref"],
                    ),
                )
            )

        if confirmed is not None:
            staff_data = AppointmentNotificationData(
                appointment_id=appointment["id"],
                patient_id=appointment["patient_id"],
                action="payment_confirmed",
                payment_ref=payment["transaction_ref"],
            )
            message = f"Nouveau rendez-vous confirmé le {when}."

            doctor = await UserService.get_doctor(self.db, appointment["doctor_id"])
            if doctor is not None:
                rows.append(
                    build_notification(
                        doctor["user_id"],
                        NotificationType.NEW_APPOINTMENT,
                        "Nouveau rendez-vous",
                        message,
                        staff_data,
                    )
                )

            if appointment["clinic_id"] is not None:
                secretary_ids = await UserService.get_active_secretary_user_ids(
                    self.db, appointment["clinic_id"]
                )
                rows.extend(
                    build_notification(
                        secretary_id,
                        NotificationType.NEW_APPOINTMENT,
                        "Nouveau rendez-vous",
                        message,
                        staff_data,
                    )
                    for secretary_id in secretary_ids
                )

        events += await self.notifications.stage(rows)
        return events

    async def _mark_session_paid(self, payment: dict) -> list[ChangeEvent]:
        session = await self._load_session(payment["session_id"])
        if session is None:
            logger.warning("payment_session_missing", payment_id=str(payment["id"]))
            return []

        result = await self.db.execute(
            update(teleconsultation_sessions)
            .where(
                teleconsultation_sessions.c.id == session["id"],
                teleconsultation_sessions.c.status == SessionStatus.PENDING.value,
            )
            .values(status=SessionStatus.PAID.value, updated_at=utc_now())
            .returning(teleconsultation_sessions)
        )
        paid = result.mappings().first()
        if paid is None:
            logger.warning(
                "payment_session_not_pending",
                payment_id=str(payment["id"]),
                session_id=str(session["id"]),
                status=session["status"],
            )
            return []

        events = [ChangeEvent.update("teleconsultation_sessions", paid, old=session)]
        rows = []

        patient_user_id = await self._patient_user_id(session["patient_id"])
        if patient_user_id is not None:
            rows.append(
                build_notification(
                    patient_user_id,
                    NotificationType.TELECONSULTATION,
                    "Téléconsultation confirmée",
                    f"Paiement reçu. Votre code d'accès : {paid['access_code']}",
                    TeleconsultationNotificationData(
                        session_id=session["id"],
                        channel_name=paid["channel_name"],
                        access_code=paid["access_code"],
                        duration=paid["duration_minutes"],
                        action="payment_confirmed",
                    ),
                )
            )

        doctor = await UserService.get_doctor(self.db, session["doctor_id"])
        if doctor is not None:
            rows.append(
                build_notification(
                    doctor["user_id"],
                    NotificationType.TELECONSULTATION,
                    "Nouvelle téléconsultation",
                    f"Téléconsultation de {paid['duration_minutes']} minutes réglée.",
                    TeleconsultationNotificationData(
                        session_id=session["id"],
                        channel_name=paid["channel_name"],
                        duration=paid["duration_minutes"],
                        action="payment_confirmed",
                    ),
                )
            )

        events += await self.notifications.stage(rows)
        return events

    async def _cancel_appointment(self, payment: dict, reason: str) -> list[ChangeEvent]:
        appointment = await self._load_appointment(payment["appointment_id"])
        if appointment is None:
            return []

        now = utc_now()
        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment["id"],
                appointments.c.status == AppointmentStatus.PENDING.value,
            )
            .values(
                status=AppointmentStatus.CANCELLED.value,
                cancellation_reason=reason,
                cancelled_at=now,
                updated_at=now,
            )
            .returning(appointments)
        )
        cancelled = result.mappings().first()
        if cancelled is None:
            return []

        events = [ChangeEvent.update("appointments", cancelled, old=appointment)]
        patient_user_id = await self._patient_user_id(payment["patient_id"])
        if patient_user_id is not None:
            events += await self.notifications.stage(
                [
                    build_notification(
                        patient_user_id,
                        NotificationType.APPOINTMENT_CANCELLED,
                        "Paiement non abouti",
                        f"Votre rendez-vous du {appointment['appointment_date']} a été annulé "
                        "faute de paiement.",
                        AppointmentNotificationData(
                            appointment_id=appointment["id"],
                            action="payment_failed",
                            reason=reason,
                        ),
                    )
                ]
            )
        return events

    async def _cancel_session(self, payment: dict, reason: str) -> list[ChangeEvent]:
        session = await self._load_session(payment["session_id"])
        if session is None:
            return []

        now = utc_now()
        result = await self.db.execute(
            update(teleconsultation_sessions)
            .where(
                teleconsultation_sessions.c.id == session["id"],
                teleconsultation_sessions.c.status == SessionStatus.PENDING.value,
            )
            .values(status=SessionStatus.CANCELLED.value, ended_at=now, updated_at=now)
            .returning(teleconsultation_sessions)
        )
        cancelled = result.mappings().first()
        if cancelled is None:
            return []

        events = [ChangeEvent.update("teleconsultation_sessions", cancelled, old=session)]
        patient_user_id = await self._patient_user_id(payment["patient_id"])
        if patient_user_id is not None:
            events += await self.notifications.stage(
                [
                    build_notification(
                        patient_user_id,
                        NotificationType.TELECONSULTATION,
                        "Téléconsultation annulée",
                        "Le paiement n'a pas abouti, la téléconsultation a été annulée.",
                        TeleconsultationNotificationData(
                            session_id=session["id"],
                            action="payment_failed",
                        ),
                    )
                ]
            )
        return events
