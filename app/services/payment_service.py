"""Payment settlement: applies gateway outcomes to payments and appointments."""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.exceptions import (
    AccessDeniedException,
    InvalidTransitionException,
    NotFoundException,
)
from app.core.redis_client import CacheManager
from app.models.appointments import appointments
from app.models.payments import payments
from app.schemas.appointments import AppointmentStatus, PaymentStatus
from app.schemas.payments import (
    PaymentRecordStatus,
    PaymentResponse,
    SettlementOutcome,
    SettlementRequest,
    SettlementResponse,
)
from app.services.appointment_service import AppointmentService
from app.services.notification_service import NotificationService
from app.services.slot_service import invalidate_available_slots

logger = structlog.get_logger(__name__)

# Payment states a success notification may still settle
_SETTLEABLE = frozenset(
    {
        PaymentRecordStatus.PENDING.value,
        PaymentRecordStatus.PROCESSING.value,
        PaymentRecordStatus.FAILED.value,
    }
)


class PaymentService:
    """Service for payment settlement."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock | None = None,
        notifier: Any = NotificationService,
        cache: CacheManager | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.clock = clock or system_clock
        self.notifier = notifier
        self.cache = cache
        self.booking = AppointmentService(db, clock=self.clock, notifier=notifier, cache=cache)

    async def _appointment_id_for(self, transaction_id: str) -> UUID:
        result = await self.db.execute(
            select(payments.c.appointment_id).where(payments.c.transaction_id == transaction_id)
        )
        appointment_id = result.scalar_one_or_none()

        if appointment_id is None:
            raise NotFoundException("Payment not found")

        return appointment_id

    async def _lock_payment(self, transaction_id: str) -> dict:
        result = await self.db.execute(
            select(payments).where(payments.c.transaction_id == transaction_id).with_for_update()
        )
        payment = result.mappings().first()

        if not payment:
            raise NotFoundException("Payment not found")

        return dict(payment)

    @staticmethod
    def _response(payment: Mapping[str, Any], appointment: Mapping[str, Any]) -> SettlementResponse:
        return SettlementResponse(
            transaction_id=payment["transaction_id"],
            payment_status=payment["status"],
            appointment_id=appointment["id"],
            appointment_status=appointment["status"],
        )

    async def settle(self, data: SettlementRequest) -> SettlementResponse:
        """
        Apply a settlement notification.

        A success completes the payment and confirms the appointment. A
        failure, or a success for the wrong amount, marks the payment failed
        and leaves the appointment pending with its slot untouched.

        Args:
            data: Settlement notification from the gateway

        Returns:
            Resulting payment and appointment status

        Raises:
            NotFoundException: If the transaction is unknown
            InvalidTransitionException: If the appointment was cancelled or the
                payment is already final
        """
        # Appointment before payment, the order cancellation locks them in
        appointment_id = await self._appointment_id_for(data.transaction_id)
        appointment = await self.booking.lock_appointment(appointment_id)
        payment = await self._lock_payment(data.transaction_id)

        if data.outcome == SettlementOutcome.SUCCESS:
            if payment["status"] == PaymentRecordStatus.COMPLETED.value:
                logger.info("settlement_already_applied", transaction_id=data.transaction_id)
                return self._response(payment, appointment)

            if data.amount is not None and Decimal(data.amount) != Decimal(payment["amount"]):
                return await self._record_failure(
                    payment,
                    appointment,
                    f"amount mismatch: expected {payment['amount']}, received {data.amount}",
                    data,
                )

            return await self._record_success(payment, appointment, data)

        return await self._record_failure(
            payment, appointment, data.failure_reason or "payment failed", data
        )

    def _ensure_settleable(self, payment: Mapping[str, Any], appointment: Mapping[str, Any]) -> None:
        if appointment["status"] == AppointmentStatus.CANCELLED.value:
            raise InvalidTransitionException("Appointment has been cancelled")

        if payment["status"] not in _SETTLEABLE:
            raise InvalidTransitionException(f"Payment is already {payment['status']}")

    async def _record_success(
        self,
        payment: dict,
        appointment: dict,
        data: SettlementRequest,
    ) -> SettlementResponse:
        self._ensure_settleable(payment, appointment)

        values: dict[str, Any] = {
            "status": PaymentRecordStatus.COMPLETED.value,
            "paid_at": self.clock.now(),
            "gateway_transaction_id": data.gateway_transaction_id,
            "gateway_response": data.gateway_response,
            "failure_reason": None,
            "updated_at": func.now(),
        }
        if data.payment_method:
            values["payment_method"] = data.payment_method

        result = await self.db.execute(
            update(payments)
            .where(payments.c.id == payment["id"])
            .values(**values)
            .returning(payments)
        )
        updated_payment = dict(result.mappings().one())

        old_status = appointment["status"]
        confirmed = await self.booking.apply_confirmation(appointment, mark_paid=True)
        await self.db.commit()

        invalidate_available_slots(self.cache, appointment["doctor_id"])

        logger.info(
            "payment_settled",
            transaction_id=payment["transaction_id"],
            appointment_id=str(appointment["id"]),
        )

        await self.booking.notify(
            "send_appointment_status_notification",
            appointment["patient_id"],
            confirmed,
            old_status=old_status,
        )

        return self._response(updated_payment, confirmed)

    async def _record_failure(
        self,
        payment: dict,
        appointment: dict,
        reason: str,
        data: SettlementRequest,
    ) -> SettlementResponse:
        self._ensure_settleable(payment, appointment)

        result = await self.db.execute(
            update(payments)
            .where(payments.c.id == payment["id"])
            .values(
                status=PaymentRecordStatus.FAILED.value,
                failure_reason=reason,
                gateway_transaction_id=data.gateway_transaction_id,
                gateway_response=data.gateway_response,
                updated_at=func.now(),
            )
            .returning(payments)
        )
        updated_payment = dict(result.mappings().one())

        result = await self.db.execute(
            update(appointments)
            .where(appointments.c.id == appointment["id"])
            .values(payment_status=PaymentStatus.FAILED.value, updated_at=func.now())
            .returning(appointments)
        )
        updated_appointment = dict(result.mappings().one())
        await self.db.commit()

        logger.warning(
            "payment_failed",
            transaction_id=payment["transaction_id"],
            appointment_id=str(appointment["id"]),
            reason=reason,
        )

        return self._response(updated_payment, updated_appointment)

    async def get_payment(self, transaction_id: str, actor: Mapping[str, Any]) -> PaymentResponse:
        """
        Get a payment by its transaction reference.

        Raises:
            NotFoundException: If payment not found
            AccessDeniedException: If the actor is not the payer or an admin
        """
        result = await self.db.execute(
            select(payments).where(payments.c.transaction_id == transaction_id)
        )
        payment = result.mappings().first()

        if not payment:
            raise NotFoundException("Payment not found")

        if actor["role"] != "admin" and payment["user_id"] != actor["id"]:
            raise AccessDeniedException("Access denied to this payment")

        return PaymentResponse.model_validate(dict(payment))
