"""Tests for the appointment booking engine."""

from datetime import time
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from app.core.exceptions import (
    AccessDeniedException,
    BadRequestException,
    CancellationWindowClosedException,
    InvalidTransitionException,
    NotFoundException,
    PaymentGatewayException,
    SlotUnavailableException,
)
from app.models.appointments import appointments
from app.models.doctors import doctors
from app.models.payments import payments
from app.models.time_slots import time_slots
from app.models.users import users
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.schemas.payments import SettlementOutcome, SettlementRequest
from app.services.appointment_service import (
    LATE_CANCELLATION_NOTE,
    AppointmentService,
    compute_refund,
    generate_appointment_number,
    is_confirmed_equivalent,
)
from app.services.payment_service import PaymentService
from conftest import TODAY


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def service(db_session, clock, notifier):
    return AppointmentService(db_session, clock=clock, notifier=notifier)


async def _slot_status(db_session, slot_id) -> str:
    result = await db_session.execute(select(time_slots.c.status).where(time_slots.c.id == slot_id))
    return result.scalar_one()


async def _payment_for(db_session, appointment_id) -> dict:
    result = await db_session.execute(
        select(payments).where(payments.c.appointment_id == appointment_id)
    )
    return dict(result.mappings().one())


async def _book(service, actor, slot, method=PaymentMethod.ONLINE):
    return await service.create_appointment(
        actor, AppointmentCreate(slot_id=slot["id"], payment_method=method)
    )


async def _pay(db_session, clock, appointment):
    payment = await _payment_for(db_session, appointment.id)
    await PaymentService(db_session, clock=clock, notifier=AsyncMock()).settle(
        SettlementRequest(
            transaction_id=payment["transaction_id"],
            outcome=SettlementOutcome.SUCCESS,
            amount=payment["amount"],
            payment_method="cinetpay",
        )
    )


class TestCompute:
    """Pure booking policy helpers."""

    def test_full_refund_outside_window(self):
        quote = compute_refund(Decimal("10000"), 48)

        assert quote.amount == Decimal("10000.00")
        assert quote.note is None

    def test_full_refund_exactly_at_window(self):
        assert compute_refund(Decimal("10000"), 24).amount == Decimal("10000.00")

    def test_late_refund_keeps_eighty_percent(self):
        quote = compute_refund(Decimal("10000"), 10)

        assert quote.amount == Decimal("8000.00")
        assert quote.note == LATE_CANCELLATION_NOTE

    def test_late_refund_rounds_half_up(self):
        assert compute_refund(Decimal("0.05"), 1).amount == Decimal("0.04")
        assert compute_refund(Decimal("99.99"), 1).amount == Decimal("79.99")

    def test_custom_window_and_ratio(self):
        quote = compute_refund(Decimal("200"), 5, window_hours=4, late_ratio=Decimal("0.5"))
        assert quote.amount == Decimal("200.00")

        quote = compute_refund(Decimal("200"), 3, window_hours=4, late_ratio=Decimal("0.5"))
        assert quote.amount == Decimal("100.00")

    def test_appointment_number_format(self):
        number = generate_appointment_number()

        assert number.startswith("APT-")
        assert len(number) == 12

    def test_confirmed_equivalent(self):
        assert is_confirmed_equivalent({"status": "confirmed", "confirmed_at": None})
        assert is_confirmed_equivalent({"status": "rescheduled", "confirmed_at": "2026-03-01"})
        assert not is_confirmed_equivalent({"status": "rescheduled", "confirmed_at": None})
        assert not is_confirmed_equivalent({"status": "pending", "confirmed_at": None})


@pytest.mark.asyncio
async def test_create_appointment_holds_slot(db_session, service, patient, doctor, make_slot, notifier):
    slot = await make_slot()

    appointment = await _book(service, patient, slot)

    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.payment_status == PaymentStatus.PENDING
    assert appointment.amount == Decimal("10000.00")
    assert appointment.appointment_date == slot["date"]
    assert appointment.appointment_time == slot["start_time"]
    # Held, but not booked until confirmation
    assert await _slot_status(db_session, slot["id"]) == "available"

    payment = await _payment_for(db_session, appointment.id)
    assert payment["status"] == "pending"
    assert payment["transaction_id"].startswith("TXN-")
    assert payment["payment_method"] is None

    notifier.send_appointment_created_notification.assert_awaited_once()
    assert notifier.send_appointment_created_notification.await_args.kwargs["user_id"] == doctor["user_id"]


@pytest.mark.asyncio
async def test_cash_booking_records_cash_payment(db_session, service, patient, make_slot):
    slot = await make_slot()

    appointment = await _book(service, patient, slot, PaymentMethod.CASH_AT_CLINIC)

    payment = await _payment_for(db_session, appointment.id)
    assert appointment.payment_method == PaymentMethod.CASH_AT_CLINIC
    assert payment["payment_method"] == "cash"


@pytest.mark.asyncio
async def test_second_booking_of_held_slot_is_rejected(
    db_session, service, patient, other_patient, make_slot
):
    slot = await make_slot()
    await _book(service, patient, slot)

    with pytest.raises(SlotUnavailableException):
        await _book(service, other_patient, slot)

    result = await db_session.execute(select(func.count()).select_from(appointments))
    assert result.scalar() == 1


@pytest.mark.asyncio
async def test_lost_race_surfaces_as_slot_unavailable(
    db_session, service, patient, other_patient, make_slot, monkeypatch
):
    """The unique index rejects a claim that slipped past the availability check."""
    slot = await make_slot()
    await _book(service, patient, slot)

    async def skip_check(slot):
        return None

    monkeypatch.setattr(service, "_ensure_claimable", skip_check)

    with pytest.raises(SlotUnavailableException):
        await _book(service, other_patient, slot)

    result = await db_session.execute(
        select(appointments.c.patient_id).where(appointments.c.slot_id == slot["id"])
    )
    assert result.scalars().all() == [patient["id"]]


@pytest.mark.asyncio
async def test_booking_rules(db_session, service, patient, doctor, doctor_user, make_slot):
    free = await make_slot(start=time(9, 0))
    blocked = await make_slot(start=time(9, 30), status="blocked")

    with pytest.raises(AccessDeniedException):
        await _book(service, doctor_user, free)

    with pytest.raises(SlotUnavailableException):
        await _book(service, patient, blocked)

    with pytest.raises(NotFoundException):
        await service.create_appointment(patient, AppointmentCreate(slot_id=uuid4()))


@pytest.mark.asyncio
async def test_cannot_book_past_slot(db_session, service, patient, make_slot):
    slot = await make_slot(day=TODAY, start=time(7, 30))

    with pytest.raises(SlotUnavailableException):
        await _book(service, patient, slot)


@pytest.mark.asyncio
async def test_online_payment_requires_doctor_support(
    db_session, service, patient, doctor, make_slot
):
    await db_session.execute(
        update(doctors).where(doctors.c.id == doctor["id"]).values(accepts_online_payment=False)
    )
    await db_session.commit()
    slot = await make_slot()

    with pytest.raises(BadRequestException):
        await _book(service, patient, slot, PaymentMethod.ONLINE)

    appointment = await _book(service, patient, slot, PaymentMethod.CASH_AT_CLINIC)
    assert appointment.status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_unverified_doctor_cannot_be_booked(db_session, service, patient, doctor, make_slot):
    slot = await make_slot()
    await db_session.execute(
        update(doctors).where(doctors.c.id == doctor["id"]).values(is_verified=False)
    )
    await db_session.commit()

    with pytest.raises(BadRequestException):
        await _book(service, patient, slot)

    result = await db_session.execute(select(func.count()).select_from(appointments))
    assert result.scalar() == 0


@pytest.mark.asyncio
async def test_confirm_books_slot_and_is_idempotent(
    db_session, service, patient, doctor_user, make_slot, notifier
):
    slot = await make_slot()
    appointment = await _book(service, patient, slot, PaymentMethod.CASH_AT_CLINIC)
    notifier.reset_mock()

    confirmed = await service.confirm_appointment(appointment.id, doctor_user)
    again = await service.confirm_appointment(appointment.id, doctor_user)

    assert confirmed.status == AppointmentStatus.CONFIRMED
    assert confirmed.confirmed_at is not None
    assert again.status == AppointmentStatus.CONFIRMED
    assert await _slot_status(db_session, slot["id"]) == "booked"
    notifier.send_appointment_status_notification.assert_awaited_once()


@pytest.mark.asyncio
async def test_confirm_requires_treating_doctor(
    db_session, service, patient, other_doctor, make_slot
):
    slot = await make_slot()
    appointment = await _book(service, patient, slot)
    result = await db_session.execute(select(users).where(users.c.id == other_doctor["user_id"]))
    stranger = dict(result.mappings().one())

    with pytest.raises(AccessDeniedException):
        await service.confirm_appointment(appointment.id, stranger)

    with pytest.raises(AccessDeniedException):
        await service.confirm_appointment(appointment.id, patient)


@pytest.mark.asyncio
async def test_cancel_exactly_at_window_releases_slot(
    db_session, service, patient, other_patient, doctor_user, make_slot, notifier
):
    """Tomorrow 08:00 is exactly 24 hours away."""
    slot = await make_slot(start=time(8, 0))
    appointment = await _book(service, patient, slot, PaymentMethod.CASH_AT_CLINIC)
    await service.confirm_appointment(appointment.id, doctor_user)
    notifier.reset_mock()

    cancelled = await service.cancel_appointment(appointment.id, patient, "Feeling better")

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == "Feeling better"
    assert cancelled.cancelled_by == patient["id"]
    assert await _slot_status(db_session, slot["id"]) == "available"
    assert (await _payment_for(db_session, appointment.id))["status"] == "cancelled"

    # The doctor hears about a patient cancellation
    kwargs = notifier.send_appointment_status_notification.await_args.kwargs
    assert kwargs["user_id"] == doctor_user["id"]

    rebooked = await _book(service, other_patient, slot)
    assert rebooked.patient_id == other_patient["id"]


@pytest.mark.asyncio
async def test_cancel_inside_window_is_rejected(db_session, service, patient, make_slot, clock):
    slot = await make_slot(start=time(8, 0))
    appointment = await _book(service, patient, slot)
    clock.advance(minutes=1)

    with pytest.raises(CancellationWindowClosedException):
        await service.cancel_appointment(appointment.id, patient)

    current = await service.get_appointment(appointment.id, patient)
    assert current.status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_cancel_twice_is_an_invalid_transition(db_session, service, patient, make_slot):
    slot = await make_slot()
    appointment = await _book(service, patient, slot)
    await service.cancel_appointment(appointment.id, patient)

    with pytest.raises(InvalidTransitionException):
        await service.cancel_appointment(appointment.id, patient)


@pytest.mark.asyncio
async def test_cancel_by_stranger_is_denied(db_session, service, patient, other_patient, make_slot):
    slot = await make_slot()
    appointment = await _book(service, patient, slot)

    with pytest.raises(AccessDeniedException):
        await service.cancel_appointment(appointment.id, other_patient)


@pytest.mark.asyncio
async def test_cancel_paid_appointment_refunds_in_full(
    db_session, service, patient, make_slot, clock
):
    slot = await make_slot(start=time(11, 0))
    appointment = await _book(service, patient, slot)
    await _pay(db_session, clock, appointment)

    cancelled = await service.cancel_appointment(appointment.id, patient, "Travel")

    payment = await _payment_for(db_session, appointment.id)
    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert payment["status"] == "refunded"
    assert Decimal(payment["refund_amount"]) == Decimal("10000.00")
    assert payment["metadata"]["refund_reason"] == "Travel"
    assert payment["metadata"]["refund_id"].startswith("RFD-")
    assert await _slot_status(db_session, slot["id"]) == "available"


@pytest.mark.asyncio
async def test_refund_failure_keeps_cancellation(
    db_session, clock, patient, make_slot, notifier
):
    gateway = AsyncMock()
    gateway.refund.side_effect = PaymentGatewayException("provider unavailable")
    service = AppointmentService(db_session, clock=clock, notifier=notifier, payment_gateway=gateway)
    slot = await make_slot(start=time(11, 0))
    appointment = await _book(service, patient, slot)
    await _pay(db_session, clock, appointment)

    cancelled = await service.cancel_appointment(appointment.id, patient)

    payment = await _payment_for(db_session, appointment.id)
    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.PAID
    assert payment["status"] == "completed"
    assert payment["failure_reason"] == "refund failed: provider unavailable"
    assert await _slot_status(db_session, slot["id"]) == "available"


@pytest.mark.asyncio
async def test_reschedule_moves_confirmed_booking(
    db_session, service, patient, doctor_user, make_slot
):
    old_slot = await make_slot(start=time(9, 0))
    new_slot = await make_slot(start=time(10, 0))
    appointment = await _book(service, patient, old_slot, PaymentMethod.CASH_AT_CLINIC)
    await service.confirm_appointment(appointment.id, doctor_user)

    moved = await service.reschedule_appointment(appointment.id, patient, new_slot["id"])

    assert moved.status == AppointmentStatus.RESCHEDULED
    assert moved.slot_id == new_slot["id"]
    assert moved.appointment_time == time(10, 0)
    assert moved.confirmed_at is not None
    assert await _slot_status(db_session, old_slot["id"]) == "available"
    assert await _slot_status(db_session, new_slot["id"]) == "booked"

    # Still confirmed-equivalent, so the doctor can complete it
    completed = await service.complete_appointment(appointment.id, doctor_user)
    assert completed.status == AppointmentStatus.COMPLETED


@pytest.mark.asyncio
async def test_reschedule_of_pending_booking_then_confirm(
    db_session, service, patient, doctor_user, make_slot
):
    old_slot = await make_slot(start=time(9, 0))
    new_slot = await make_slot(start=time(10, 0))
    appointment = await _book(service, patient, old_slot, PaymentMethod.CASH_AT_CLINIC)

    moved = await service.reschedule_appointment(appointment.id, patient, new_slot["id"])

    assert moved.status == AppointmentStatus.RESCHEDULED
    assert moved.confirmed_at is None
    assert await _slot_status(db_session, new_slot["id"]) == "available"

    confirmed = await service.confirm_appointment(appointment.id, doctor_user)
    assert confirmed.status == AppointmentStatus.RESCHEDULED
    assert confirmed.confirmed_at is not None
    assert await _slot_status(db_session, new_slot["id"]) == "booked"


@pytest.mark.asyncio
async def test_reschedule_to_taken_slot_keeps_original_pairing(
    db_session, service, patient, other_patient, doctor_user, make_slot, monkeypatch
):
    old_slot = await make_slot(start=time(9, 0))
    new_slot = await make_slot(start=time(10, 0))
    appointment = await _book(service, patient, old_slot, PaymentMethod.CASH_AT_CLINIC)
    await service.confirm_appointment(appointment.id, doctor_user)
    await _book(service, other_patient, new_slot)

    async def skip_check(slot):
        return None

    # Simulate the competing claim landing after the availability check
    monkeypatch.setattr(service, "_ensure_claimable", skip_check)

    with pytest.raises(SlotUnavailableException):
        await service.reschedule_appointment(appointment.id, patient, new_slot["id"])

    current = await service.get_appointment(appointment.id, patient)
    assert current.slot_id == old_slot["id"]
    assert current.status == AppointmentStatus.CONFIRMED
    assert await _slot_status(db_session, old_slot["id"]) == "booked"


@pytest.mark.asyncio
async def test_reschedule_rules(
    db_session, service, patient, doctor, doctor_user, other_doctor, make_slot
):
    old_slot = await make_slot(start=time(9, 0))
    foreign_slot = await make_slot(start=time(10, 0), owner=other_doctor)
    appointment = await _book(service, patient, old_slot)

    with pytest.raises(BadRequestException):
        await service.reschedule_appointment(appointment.id, patient, old_slot["id"])

    with pytest.raises(BadRequestException):
        await service.reschedule_appointment(appointment.id, patient, foreign_slot["id"])

    with pytest.raises(AccessDeniedException):
        await service.reschedule_appointment(appointment.id, doctor_user, foreign_slot["id"])


@pytest.mark.asyncio
async def test_complete_and_no_show_require_confirmation(
    db_session, service, patient, doctor_user, make_slot
):
    first = await _book(service, patient, await make_slot(start=time(9, 0)), PaymentMethod.CASH_AT_CLINIC)
    second = await _book(service, patient, await make_slot(start=time(9, 30)), PaymentMethod.CASH_AT_CLINIC)

    with pytest.raises(InvalidTransitionException):
        await service.complete_appointment(first.id, doctor_user)

    await service.confirm_appointment(first.id, doctor_user)
    await service.confirm_appointment(second.id, doctor_user)

    completed = await service.complete_appointment(first.id, doctor_user)
    missed = await service.mark_no_show(second.id, doctor_user)

    assert completed.status == AppointmentStatus.COMPLETED
    assert missed.status == AppointmentStatus.NO_SHOW

    with pytest.raises(InvalidTransitionException):
        await service.cancel_appointment(first.id, patient)

    with pytest.raises(InvalidTransitionException):
        await service.confirm_appointment(second.id, doctor_user)


@pytest.mark.asyncio
async def test_list_appointments_is_scoped_by_role(
    db_session, service, patient, other_patient, doctor_user, admin_user, make_slot
):
    await _book(service, patient, await make_slot(start=time(9, 0)))
    await _book(service, other_patient, await make_slot(start=time(9, 30)))

    filters = AppointmentFilters()

    assert (await service.list_appointments(patient, filters)).total == 1
    assert (await service.list_appointments(doctor_user, filters)).total == 2
    assert (await service.list_appointments(admin_user, filters)).total == 2

    confirmed = await service.list_appointments(
        admin_user, AppointmentFilters(status=AppointmentStatus.CONFIRMED)
    )
    assert confirmed.total == 0


@pytest.mark.asyncio
async def test_get_appointment_access(db_session, service, patient, other_patient, doctor_user, make_slot):
    appointment = await _book(service, patient, await make_slot())

    assert (await service.get_appointment(appointment.id, doctor_user)).id == appointment.id

    with pytest.raises(AccessDeniedException):
        await service.get_appointment(appointment.id, other_patient)

    with pytest.raises(NotFoundException):
        await service.get_appointment(uuid4(), patient)
