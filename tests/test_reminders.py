"""Tests for appointment reminders."""

from datetime import time, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from app.models.appointments import appointments
from app.schemas.appointments import AppointmentCreate, PaymentMethod
from app.services.appointment_service import AppointmentService
from app.services.reminder_service import ReminderService
from conftest import TODAY, TOMORROW


async def _confirmed(db_session, clock, patient, doctor_user, slot):
    service = AppointmentService(db_session, clock=clock, notifier=AsyncMock())
    appointment = await service.create_appointment(
        patient, AppointmentCreate(slot_id=slot["id"], payment_method=PaymentMethod.CASH_AT_CLINIC)
    )
    return await service.confirm_appointment(appointment.id, doctor_user)


@pytest.mark.asyncio
async def test_reminders_target_confirmed_appointments_within_horizon(
    db_session, clock, patient, doctor_user, make_slot
):
    soon = await _confirmed(db_session, clock, patient, doctor_user, await make_slot(day=TODAY, start=time(10, 0)))
    # Exactly at the 24 hour horizon
    edge = await _confirmed(db_session, clock, patient, doctor_user, await make_slot(day=TOMORROW, start=time(8, 0)))
    await _confirmed(
        db_session, clock, patient, doctor_user, await make_slot(day=TOMORROW, start=time(8, 30))
    )
    pending_slot = await make_slot(day=TODAY, start=time(11, 0))
    await AppointmentService(db_session, clock=clock, notifier=AsyncMock()).create_appointment(
        patient, AppointmentCreate(slot_id=pending_slot["id"])
    )

    notifier = AsyncMock()
    sent = await ReminderService(db_session, clock=clock, notifier=notifier).send_due_reminders()

    assert sent == 2
    reminded = {
        call.kwargs["appointment_data"]["id"]
        for call in notifier.send_appointment_reminder.await_args_list
    }
    assert reminded == {soon.id, edge.id}
    for call in notifier.send_appointment_reminder.await_args_list:
        assert call.kwargs["user_id"] == patient["id"]


@pytest.mark.asyncio
async def test_reminders_are_sent_once(db_session, clock, patient, doctor_user, make_slot):
    appointment = await _confirmed(
        db_session, clock, patient, doctor_user, await make_slot(day=TODAY, start=time(10, 0))
    )
    notifier = AsyncMock()
    service = ReminderService(db_session, clock=clock, notifier=notifier)

    assert await service.send_due_reminders() == 1
    assert await service.send_due_reminders() == 0

    result = await db_session.execute(
        select(appointments.c.reminder_sent).where(appointments.c.id == appointment.id)
    )
    assert result.scalar_one() is True
    notifier.send_appointment_reminder.assert_awaited_once()


@pytest.mark.asyncio
async def test_delivery_failure_still_marks_reminder(db_session, clock, patient, doctor_user, make_slot):
    await _confirmed(db_session, clock, patient, doctor_user, await make_slot(day=TODAY, start=time(10, 0)))
    notifier = AsyncMock()
    notifier.send_appointment_reminder.side_effect = RuntimeError("fcm down")
    service = ReminderService(db_session, clock=clock, notifier=notifier)

    assert await service.send_due_reminders() == 1
    assert await service.due_appointments() == []


@pytest.mark.asyncio
async def test_rescheduling_resets_reminder(db_session, clock, patient, doctor_user, make_slot):
    appointment = await _confirmed(
        db_session, clock, patient, doctor_user, await make_slot(day=TOMORROW, start=time(9, 0))
    )
    later_slot = await make_slot(day=TOMORROW + timedelta(days=1), start=time(9, 0))

    # Move the clock into the reminder horizon of the first slot, then back out
    clock.advance(hours=2)
    reminders = ReminderService(db_session, clock=clock, notifier=AsyncMock())
    assert await reminders.send_due_reminders() == 1
    clock.advance(hours=-2)

    moved = await AppointmentService(db_session, clock=clock, notifier=AsyncMock()).reschedule_appointment(
        appointment.id, patient, later_slot["id"]
    )

    assert moved.reminder_sent is False
    clock.advance(days=1, hours=2)
    assert [row["id"] for row in await reminders.due_appointments()] == [appointment.id]
