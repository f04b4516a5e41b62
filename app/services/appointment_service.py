"""Appointment booking engine.

Every mutating operation runs in one transaction that locks the rows it
changes, so slot, appointment and payment state move together. The partial
unique index ``uq_appointments_active_slot`` backs the row locks: a second
active appointment on the same slot fails at insert time.
"""

import secrets
import string
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, slot_datetime, system_clock
from app.core.exceptions import (
    AccessDeniedException,
    BadRequestException,
    CancellationWindowClosedException,
    InvalidTransitionException,
    NotFoundException,
    PaymentGatewayException,
    SlotUnavailableException,
)
from app.core.redis_client import CacheManager
from app.models.appointments import appointments
from app.models.doctors import doctors
from app.models.payments import payments
from app.models.time_slots import time_slots
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.schemas.payments import PaymentRecordStatus, RefundQuote
from app.schemas.slots import SlotStatus
from app.services.notification_service import NotificationService
from app.services.payment_gateway import LedgerPaymentGateway, PaymentGateway, new_transaction_id
from app.services.slot_service import active_hold, invalidate_available_slots

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = frozenset(
    {
        AppointmentStatus.PENDING.value,
        AppointmentStatus.CONFIRMED.value,
        AppointmentStatus.RESCHEDULED.value,
    }
)

LATE_CANCELLATION_NOTE = "late cancellation fee applied"

_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_appointment_number() -> str:
    """Generate a human-readable reference such as ``APT-4F7K2Q9X``."""
    return "APT-" + "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(8))


def compute_refund(
    amount: Decimal,
    hours_until: float,
    window_hours: int | None = None,
    late_ratio: Decimal | None = None,
) -> RefundQuote:
    """
    Refund owed when a paid appointment is cancelled.

    Args:
        amount: Amount the patient paid
        hours_until: Hours between now and the appointment start
        window_hours: Free-cancellation window, defaults to the configured one
        late_ratio: Share refunded inside the window, defaults to the configured one

    Returns:
        Full refund at or beyond the window, ``amount * late_ratio`` with a
        note inside it
    """
    if window_hours is None:
        window_hours = settings.cancellation_window_hours
    if late_ratio is None:
        late_ratio = settings.late_cancellation_refund_ratio

    amount = Decimal(amount)
    if hours_until >= window_hours:
        return RefundQuote(amount=amount.quantize(Decimal("0.01")), note=None)

    refund = (amount * Decimal(late_ratio)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return RefundQuote(amount=refund, note=LATE_CANCELLATION_NOTE)


def is_confirmed_equivalent(appointment: Mapping[str, Any]) -> bool:
    """Confirmed, or rescheduled after having been confirmed."""
    status = appointment["status"]
    if status == AppointmentStatus.CONFIRMED.value:
        return True
    return status == AppointmentStatus.RESCHEDULED.value and appointment["confirmed_at"] is not None


def _is_slot_claim_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "uq_appointments_active_slot" in message or "appointments.slot_id" in message


class AppointmentService:
    """Service for booking, confirming, cancelling and rescheduling appointments."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock | None = None,
        notifier: Any = NotificationService,
        payment_gateway: PaymentGateway | None = None,
        cache: CacheManager | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.clock = clock or system_clock
        self.notifier = notifier
        self.gateway = payment_gateway or LedgerPaymentGateway()
        self.cache = cache

    def hours_until(self, appointment: Mapping[str, Any]) -> float:
        """Hours from now until the appointment starts (negative once started)."""
        starts_at = slot_datetime(appointment["appointment_date"], appointment["appointment_time"])
        return (starts_at - self.clock.now()).total_seconds() / 3600

    async def lock_appointment(self, appointment_id: UUID) -> dict:
        """
        Load an appointment with ``SELECT ... FOR UPDATE``.

        The row carries ``doctor_user_id``, the user account of the doctor.

        Raises:
            NotFoundException: If appointment not found
        """
        stmt = (
            select(appointments, doctors.c.user_id.label("doctor_user_id"))
            .join(doctors, doctors.c.id == appointments.c.doctor_id)
            .where(appointments.c.id == appointment_id)
            .with_for_update(of=appointments)
        )
        result = await self.db.execute(stmt)
        appointment = result.mappings().first()

        if not appointment:
            raise NotFoundException("Appointment not found")

        return dict(appointment)

    async def _lock_slot(self, slot_id: UUID) -> dict:
        stmt = (
            select(
                time_slots,
                doctors.c.consultation_fee,
                doctors.c.currency,
                doctors.c.accepts_online_payment,
                doctors.c.is_verified.label("doctor_verified"),
                doctors.c.user_id.label("doctor_user_id"),
            )
            .join(doctors, doctors.c.id == time_slots.c.doctor_id)
            .where(time_slots.c.id == slot_id)
            .with_for_update(of=time_slots)
        )
        result = await self.db.execute(stmt)
        slot = result.mappings().first()

        if not slot:
            raise NotFoundException("Time slot not found")

        return dict(slot)

    async def _ensure_claimable(self, slot: Mapping[str, Any]) -> None:
        """Raise unless the locked slot can be taken by a new appointment."""
        if slot["status"] != SlotStatus.AVAILABLE.value:
            raise SlotUnavailableException()

        held = await self.db.execute(select(active_hold(slot["id"])))
        if held.scalar():
            raise SlotUnavailableException()

        if slot_datetime(slot["date"], slot["start_time"]) <= self.clock.now():
            raise SlotUnavailableException("Time slot is in the past")

    async def _update_appointment(self, appointment_id: UUID, **values: Any) -> dict:
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**values, updated_at=func.now())
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        return dict(result.mappings().one())

    async def _set_slot_status(
        self, slot_id: UUID, status: SlotStatus, only_if: SlotStatus | None = None
    ) -> None:
        stmt = update(time_slots).where(time_slots.c.id == slot_id)
        if only_if is not None:
            stmt = stmt.where(time_slots.c.status == only_if.value)
        await self.db.execute(stmt.values(status=status.value, updated_at=func.now()))

    async def notify(self, method: str, user_id: UUID, appointment: dict, **kwargs: Any) -> None:
        """Fire a notification after commit; failures never reach the caller."""
        try:
            await getattr(self.notifier, method)(
                db=self.db, user_id=user_id, appointment_data=appointment, **kwargs
            )
        except Exception as e:
            logger.warning(
                "failed_to_send_appointment_notification",
                appointment_id=str(appointment.get("id")),
                error=str(e),
            )

    @staticmethod
    def _ensure_participant(appointment: Mapping[str, Any], actor: Mapping[str, Any]) -> None:
        role = actor["role"]
        if role == "admin":
            return
        if role == "patient" and appointment["patient_id"] == actor["id"]:
            return
        if role == "doctor" and appointment["doctor_user_id"] == actor["id"]:
            return
        raise AccessDeniedException("Access denied to this appointment")

    @staticmethod
    def _ensure_treating_doctor(appointment: Mapping[str, Any], actor: Mapping[str, Any]) -> None:
        if actor["role"] == "admin":
            return
        if actor["role"] == "doctor" and appointment["doctor_user_id"] == actor["id"]:
            return
        raise AccessDeniedException("Only the appointment's doctor can do this")

    def _ensure_outside_window(self, appointment: Mapping[str, Any], action: str) -> float:
        hours = self.hours_until(appointment)
        window = settings.cancellation_window_hours
        if hours < window:
            raise CancellationWindowClosedException(
                f"Appointments can only be {action} at least {window} hours in advance"
            )
        return hours

    async def create_appointment(
        self,
        actor: Mapping[str, Any],
        data: AppointmentCreate,
    ) -> AppointmentResponse:
        """
        Book a slot for the acting patient.

        The appointment and its payment stub start ``pending``; the slot stays
        ``available`` until confirmation but is held by the appointment.

        Args:
            actor: ``users`` row of the requester
            data: Appointment creation data

        Returns:
            Created appointment

        Raises:
            AccessDeniedException: If the actor is not a patient
            NotFoundException: If the slot does not exist
            BadRequestException: If the doctor is not verified
            SlotUnavailableException: If the slot is taken, blocked or past
        """
        if actor["role"] != "patient":
            raise AccessDeniedException("Only patients can book appointments")

        slot = await self._lock_slot(data.slot_id)

        if not slot["doctor_verified"]:
            raise BadRequestException("Doctor is not verified")

        await self._ensure_claimable(slot)

        if data.payment_method == PaymentMethod.ONLINE and not slot["accepts_online_payment"]:
            raise BadRequestException("This doctor does not accept online payment")

        try:
            result = await self.db.execute(
                appointments.insert()
                .values(
                    appointment_number=generate_appointment_number(),
                    patient_id=actor["id"],
                    doctor_id=slot["doctor_id"],
                    slot_id=slot["id"],
                    appointment_date=slot["date"],
                    appointment_time=slot["start_time"],
                    status=AppointmentStatus.PENDING.value,
                    payment_method=data.payment_method.value,
                    payment_status=PaymentStatus.PENDING.value,
                    amount=slot["consultation_fee"],
                    reason=data.reason,
                )
                .returning(appointments)
            )
            appointment = dict(result.mappings().one())

            await self.db.execute(
                payments.insert().values(
                    transaction_id=new_transaction_id(),
                    appointment_id=appointment["id"],
                    user_id=actor["id"],
                    amount=slot["consultation_fee"],
                    currency=slot["currency"],
                    payment_method=(
                        "cash" if data.payment_method == PaymentMethod.CASH_AT_CLINIC else None
                    ),
                    status=PaymentRecordStatus.PENDING.value,
                )
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if _is_slot_claim_conflict(e):
                logger.info("slot_claim_lost", slot_id=str(data.slot_id))
                raise SlotUnavailableException() from None
            raise

        invalidate_available_slots(self.cache, slot["doctor_id"])

        logger.info(
            "appointment_created",
            appointment_id=str(appointment["id"]),
            appointment_number=appointment["appointment_number"],
            slot_id=str(slot["id"]),
            patient_id=str(actor["id"]),
        )

        await self.notify(
            "send_appointment_created_notification", slot["doctor_user_id"], appointment
        )

        return AppointmentResponse.model_validate(appointment)

    async def get_appointment(
        self,
        appointment_id: UUID,
        actor: Mapping[str, Any],
    ) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            AccessDeniedException: If the actor is neither party nor admin
        """
        stmt = (
            select(appointments, doctors.c.user_id.label("doctor_user_id"))
            .join(doctors, doctors.c.id == appointments.c.doctor_id)
            .where(appointments.c.id == appointment_id)
        )
        result = await self.db.execute(stmt)
        appointment = result.mappings().first()

        if not appointment:
            raise NotFoundException("Appointment not found")

        self._ensure_participant(appointment, actor)

        return AppointmentResponse.model_validate(dict(appointment))

    async def list_appointments(
        self,
        actor: Mapping[str, Any],
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the actor with filtering and pagination.

        Patients see their own bookings, doctors the bookings made with them,
        admins everything.
        """
        conditions = []

        if actor["role"] == "patient":
            conditions.append(appointments.c.patient_id == actor["id"])
        elif actor["role"] == "doctor":
            conditions.append(doctors.c.user_id == actor["id"])

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        joined = appointments.join(doctors, doctors.c.id == appointments.c.doctor_id)

        count_stmt = select(func.count()).select_from(joined).where(*conditions)
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .select_from(joined)
            .where(*conditions)
            .order_by(
                appointments.c.appointment_date.desc(),
                appointments.c.appointment_time.desc(),
            )
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.db.execute(stmt)

        items = [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def apply_confirmation(self, appointment: dict, mark_paid: bool) -> dict:
        """
        Move a locked appointment to its confirmed state and book its slot.

        Does not commit. Confirming an already confirmed appointment changes
        nothing beyond recording payment.

        Args:
            appointment: Row returned by :meth:`lock_appointment`
            mark_paid: Set ``payment_status`` to ``paid`` (settlement path)

        Returns:
            Updated appointment row

        Raises:
            InvalidTransitionException: If the appointment is not pending or
                rescheduled
        """
        status = appointment["status"]
        values: dict[str, Any] = {}

        if is_confirmed_equivalent(appointment):
            pass
        elif status == AppointmentStatus.PENDING.value:
            values["status"] = AppointmentStatus.CONFIRMED.value
            values["confirmed_at"] = self.clock.now()
        elif status == AppointmentStatus.RESCHEDULED.value:
            # keeps the rescheduled marker; confirmed_at makes it confirmed-equivalent
            values["confirmed_at"] = self.clock.now()
        else:
            raise InvalidTransitionException(f"Cannot confirm a {status} appointment")

        if mark_paid and appointment["payment_status"] != PaymentStatus.PAID.value:
            values["payment_status"] = PaymentStatus.PAID.value

        if not values:
            return appointment

        updated = await self._update_appointment(appointment["id"], **values)
        await self._set_slot_status(appointment["slot_id"], SlotStatus.BOOKED)

        return {**appointment, **updated}

    async def confirm_appointment(
        self,
        appointment_id: UUID,
        actor: Mapping[str, Any],
    ) -> AppointmentResponse:
        """Confirm a cash-at-clinic booking on behalf of the doctor."""
        appointment = await self.lock_appointment(appointment_id)
        self._ensure_treating_doctor(appointment, actor)

        old_status = appointment["status"]
        confirmed = await self.apply_confirmation(appointment, mark_paid=False)
        await self.db.commit()

        if confirmed is not appointment:
            invalidate_available_slots(self.cache, appointment["doctor_id"])
            logger.info("appointment_confirmed", appointment_id=str(appointment_id))
            await self.notify(
                "send_appointment_status_notification",
                appointment["patient_id"],
                confirmed,
                old_status=old_status,
            )

        return AppointmentResponse.model_validate(confirmed)

    async def _refund(
        self,
        payment: Mapping[str, Any],
        quote: RefundQuote,
        reason: str | None,
    ) -> bool:
        """Ask the gateway for a refund and record the outcome on the payment."""
        try:
            response = await self.gateway.refund(payment, quote.amount, reason)
        except PaymentGatewayException as e:
            logger.error(
                "refund_failed",
                transaction_id=payment["transaction_id"],
                amount=str(quote.amount),
                error=e.message,
            )
            await self.db.execute(
                update(payments)
                .where(payments.c.id == payment["id"])
                .values(failure_reason=f"refund failed: {e.message}", updated_at=func.now())
            )
            return False

        metadata = dict(payment["metadata"] or {})
        metadata.update(
            refund_reason=reason,
            refund_note=quote.note,
            refund_id=response.get("refund_id"),
        )
        await self.db.execute(
            update(payments)
            .where(payments.c.id == payment["id"])
            .values(
                status=PaymentRecordStatus.REFUNDED.value,
                refund_amount=quote.amount,
                refunded_at=self.clock.now(),
                metadata=metadata,
                updated_at=func.now(),
            )
        )
        logger.info(
            "refund_processed",
            transaction_id=payment["transaction_id"],
            amount=str(quote.amount),
        )
        return True

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        actor: Mapping[str, Any],
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Cancel an appointment and release its slot.

        A paid appointment is refunded through the payment gateway. A refund
        the gateway rejects is recorded on the payment; the cancellation
        still stands.

        Raises:
            AccessDeniedException: If the actor is neither party nor admin
            InvalidTransitionException: If the appointment is no longer active
            CancellationWindowClosedException: If it starts within the window
        """
        appointment = await self.lock_appointment(appointment_id)
        self._ensure_participant(appointment, actor)

        if appointment["status"] not in ACTIVE_STATUSES:
            raise InvalidTransitionException(
                f"Cannot cancel a {appointment['status']} appointment"
            )

        hours = self._ensure_outside_window(appointment, "cancelled")

        result = await self.db.execute(
            select(payments)
            .where(payments.c.appointment_id == appointment_id)
            .with_for_update()
        )
        payment = result.mappings().first()

        values: dict[str, Any] = {
            "status": AppointmentStatus.CANCELLED.value,
            "cancelled_at": self.clock.now(),
            "cancellation_reason": reason,
            "cancelled_by": actor["id"],
        }

        if payment and appointment["payment_status"] == PaymentStatus.PAID.value:
            quote = compute_refund(appointment["amount"], hours)
            if await self._refund(payment, quote, reason):
                values["payment_status"] = PaymentStatus.REFUNDED.value
        elif payment and payment["status"] in (
            PaymentRecordStatus.PENDING.value,
            PaymentRecordStatus.PROCESSING.value,
        ):
            await self.db.execute(
                update(payments)
                .where(payments.c.id == payment["id"])
                .values(status=PaymentRecordStatus.CANCELLED.value, updated_at=func.now())
            )

        cancelled = await self._update_appointment(appointment_id, **values)
        await self._set_slot_status(
            appointment["slot_id"], SlotStatus.AVAILABLE, only_if=SlotStatus.BOOKED
        )
        await self.db.commit()

        invalidate_available_slots(self.cache, appointment["doctor_id"])

        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            cancelled_by=str(actor["id"]),
            hours_until=round(hours, 2),
        )

        recipient = (
            appointment["doctor_user_id"]
            if actor["id"] == appointment["patient_id"]
            else appointment["patient_id"]
        )
        await self.notify(
            "send_appointment_status_notification",
            recipient,
            cancelled,
            old_status=appointment["status"],
        )

        return AppointmentResponse.model_validate(cancelled)

    async def reschedule_appointment(
        self,
        appointment_id: UUID,
        actor: Mapping[str, Any],
        new_slot_id: UUID,
    ) -> AppointmentResponse:
        """
        Move an appointment to another slot of the same doctor.

        The old slot is released and the new one claimed in one transaction.
        If another booking claims the new slot first, nothing changes.

        Raises:
            AccessDeniedException: If the actor is not the patient or an admin
            InvalidTransitionException: If the appointment is no longer active
            CancellationWindowClosedException: If it starts within the window
            SlotUnavailableException: If the new slot cannot be taken
        """
        appointment = await self.lock_appointment(appointment_id)

        if not (
            actor["role"] == "admin"
            or (actor["role"] == "patient" and appointment["patient_id"] == actor["id"])
        ):
            raise AccessDeniedException("Only the patient can reschedule this appointment")

        if appointment["status"] not in ACTIVE_STATUSES:
            raise InvalidTransitionException(
                f"Cannot reschedule a {appointment['status']} appointment"
            )

        self._ensure_outside_window(appointment, "rescheduled")

        if new_slot_id == appointment["slot_id"]:
            raise BadRequestException("New slot must differ from the current slot")

        new_slot = await self._lock_slot(new_slot_id)

        if new_slot["doctor_id"] != appointment["doctor_id"]:
            raise BadRequestException("New slot belongs to a different doctor")

        await self._ensure_claimable(new_slot)

        confirmed = is_confirmed_equivalent(appointment)

        try:
            await self._set_slot_status(
                appointment["slot_id"], SlotStatus.AVAILABLE, only_if=SlotStatus.BOOKED
            )
            rescheduled = await self._update_appointment(
                appointment_id,
                slot_id=new_slot["id"],
                appointment_date=new_slot["date"],
                appointment_time=new_slot["start_time"],
                status=AppointmentStatus.RESCHEDULED.value,
                reminder_sent=False,
            )
            if confirmed:
                await self._set_slot_status(new_slot["id"], SlotStatus.BOOKED)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if _is_slot_claim_conflict(e):
                logger.info("slot_claim_lost", slot_id=str(new_slot_id))
                raise SlotUnavailableException() from None
            raise

        invalidate_available_slots(self.cache, appointment["doctor_id"])

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            old_slot_id=str(appointment["slot_id"]),
            new_slot_id=str(new_slot_id),
        )

        await self.notify(
            "send_appointment_status_notification",
            appointment["patient_id"],
            rescheduled,
            old_status=appointment["status"],
        )

        return AppointmentResponse.model_validate(rescheduled)

    async def _finish(
        self,
        appointment_id: UUID,
        actor: Mapping[str, Any],
        status: AppointmentStatus,
    ) -> AppointmentResponse:
        appointment = await self.lock_appointment(appointment_id)
        self._ensure_treating_doctor(appointment, actor)

        if not is_confirmed_equivalent(appointment):
            raise InvalidTransitionException(
                f"Cannot mark a {appointment['status']} appointment as {status.value}"
            )

        updated = await self._update_appointment(appointment_id, status=status.value)
        await self.db.commit()

        logger.info(
            "appointment_finished",
            appointment_id=str(appointment_id),
            status=status.value,
        )

        await self.notify(
            "send_appointment_status_notification",
            appointment["patient_id"],
            updated,
            old_status=appointment["status"],
        )

        return AppointmentResponse.model_validate(updated)

    async def complete_appointment(
        self, appointment_id: UUID, actor: Mapping[str, Any]
    ) -> AppointmentResponse:
        """Mark a confirmed appointment as completed."""
        return await self._finish(appointment_id, actor, AppointmentStatus.COMPLETED)

    async def mark_no_show(
        self, appointment_id: UUID, actor: Mapping[str, Any]
    ) -> AppointmentResponse:
        """Mark a confirmed appointment as missed by the patient."""
        return await self._finish(appointment_id, actor, AppointmentStatus.NO_SHOW)
