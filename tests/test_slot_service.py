"""Tests for slot generation and doctor slot management."""

from datetime import date, time, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from app.core.exceptions import (
    AccessDeniedException,
    BadRequestException,
    NotFoundException,
    SlotConflictException,
    SlotUnavailableException,
    ValidationException,
)
from app.models.time_slots import time_slots
from app.schemas.appointments import AppointmentCreate, PaymentMethod
from app.schemas.slots import SlotCreate, SlotStatus
from app.services.appointment_service import AppointmentService
from app.services.slot_service import SlotService
from conftest import TODAY, TOMORROW

# Monday 2 March to Sunday 8 March 2026: five working days
WEEK_END = TODAY + timedelta(days=6)


async def _slot_count(db_session, doctor_id, day: date | None = None) -> int:
    query = select(func.count()).select_from(time_slots).where(time_slots.c.doctor_id == doctor_id)
    if day is not None:
        query = query.where(time_slots.c.date == day)
    result = await db_session.execute(query)
    return result.scalar()


@pytest.mark.asyncio
async def test_generate_for_range_creates_slots_for_working_days(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    created = await service.generate_for_range(doctor, TODAY, WEEK_END)

    assert created == 5 * 8
    assert await _slot_count(db_session, doctor["id"], TODAY) == 8
    assert await _slot_count(db_session, doctor["id"], TODAY + timedelta(days=5)) == 0


@pytest.mark.asyncio
async def test_generate_for_range_is_idempotent(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    first = await service.generate_for_range(doctor, TODAY, WEEK_END)
    second = await service.generate_for_range(doctor, TODAY, WEEK_END)

    assert first == 40
    assert second == 0
    assert await _slot_count(db_session, doctor["id"]) == 40


@pytest.mark.asyncio
async def test_generation_skips_dates_that_already_have_slots(db_session, doctor, clock, make_slot):
    """A single custom slot on a date stops generation for the whole date."""
    await make_slot(day=TOMORROW, start=time(15, 0))
    service = SlotService(db_session, clock=clock)

    created = await service.generate_for_range(doctor, TODAY, TOMORROW)

    assert created == 8
    assert await _slot_count(db_session, doctor["id"], TOMORROW) == 1


@pytest.mark.asyncio
async def test_generated_slots_have_schedule_duration(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)
    await service.generate_for_range(doctor, TOMORROW, TOMORROW)

    result = await db_session.execute(
        select(time_slots)
        .where(time_slots.c.doctor_id == doctor["id"])
        .order_by(time_slots.c.start_time)
    )
    rows = result.mappings().all()

    assert [row["start_time"] for row in rows][:2] == [time(8, 0), time(8, 30)]
    for row in rows:
        assert row["status"] == "available"
        start = row["start_time"].hour * 60 + row["start_time"].minute
        end = row["end_time"].hour * 60 + row["end_time"].minute
        assert end - start == 30


@pytest.mark.asyncio
async def test_generation_range_is_bounded(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    with pytest.raises(ValidationException):
        await service.generate_for_range(doctor, TODAY, TODAY + timedelta(days=120))

    with pytest.raises(ValidationException):
        await service.generate_for_range(doctor, TOMORROW, TODAY)


@pytest.mark.asyncio
async def test_generation_rejects_past_start(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    with pytest.raises(BadRequestException):
        await service.generate_for_range(doctor, TODAY - timedelta(days=1), TODAY)

    assert await _slot_count(db_session, doctor["id"]) == 0


@pytest.mark.asyncio
async def test_rejected_regeneration_keeps_existing_slots(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)
    await service.generate_for_range(doctor, TODAY, WEEK_END)

    with pytest.raises(ValidationException):
        await service.regenerate_range(doctor, TODAY, TODAY + timedelta(days=120))

    with pytest.raises(BadRequestException):
        await service.regenerate_range(doctor, TODAY - timedelta(days=7), WEEK_END)

    assert await _slot_count(db_session, doctor["id"]) == 40


@pytest.mark.asyncio
async def test_failed_generation_rolls_back_regeneration_delete(
    db_session, doctor, clock, monkeypatch
):
    """Deletion and regeneration commit together."""
    service = SlotService(db_session, clock=clock)
    await service.generate_for_range(doctor, TODAY, WEEK_END)

    def broken_insert(rows):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(service, "_insert_ignoring_duplicates", broken_insert)

    with pytest.raises(RuntimeError):
        await service.regenerate_range(doctor, TODAY, WEEK_END)

    assert await _slot_count(db_session, doctor["id"]) == 40


@pytest.mark.asyncio
async def test_regenerate_keeps_booked_blocked_and_held_slots(
    db_session, doctor, patient, clock, make_slot
):
    """Overwrite removes only free slots; dates with kept slots are not refilled."""
    service = SlotService(db_session, clock=clock)
    await service.generate_for_range(doctor, TODAY, TOMORROW)

    result = await db_session.execute(
        select(time_slots.c.id)
        .where(time_slots.c.doctor_id == doctor["id"], time_slots.c.date == TOMORROW)
        .order_by(time_slots.c.start_time)
    )
    held_id, blocked_id = result.scalars().all()[:2]

    await AppointmentService(db_session, clock=clock).create_appointment(
        patient, AppointmentCreate(slot_id=held_id, payment_method=PaymentMethod.ONLINE)
    )
    await db_session.execute(
        update(time_slots).where(time_slots.c.id == blocked_id).values(status="blocked")
    )
    await db_session.commit()

    deleted, generated = await service.regenerate_range(doctor, TODAY, TOMORROW)

    # Today's 8 free slots and tomorrow's 6 free ones go
    assert deleted == 14
    # Today is rebuilt; tomorrow still has the held and blocked slots
    assert generated == 8
    assert await _slot_count(db_session, doctor["id"], TOMORROW) == 2


@pytest.mark.asyncio
async def test_list_available_slots_generates_and_groups_by_date(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    response = await service.list_available_slots(doctor["id"], TOMORROW, TOMORROW + timedelta(days=1))

    assert response.total_slots == 16
    assert [day.date for day in response.days] == [TOMORROW, TOMORROW + timedelta(days=1)]
    assert response.days[0].day_name == "tuesday"
    assert len(response.days[0].slots) == 8


@pytest.mark.asyncio
async def test_list_available_slots_hides_past_held_and_blocked(
    db_session, doctor, patient, clock, make_slot
):
    """At 08:00 today the 08:00 slot has started; held and blocked slots are hidden."""
    service = SlotService(db_session, clock=clock)
    await service.generate_for_range(doctor, TODAY, TODAY)

    result = await db_session.execute(
        select(time_slots)
        .where(time_slots.c.doctor_id == doctor["id"], time_slots.c.date == TODAY)
        .order_by(time_slots.c.start_time)
    )
    slots = result.mappings().all()

    await AppointmentService(db_session, clock=clock).create_appointment(
        patient, AppointmentCreate(slot_id=slots[1]["id"], payment_method=PaymentMethod.ONLINE)
    )
    await service.block_slot(slots[2]["id"], doctor, "Lunch meeting")

    response = await service.list_available_slots(doctor["id"], TODAY, TODAY)

    listed = [slot.start_time for slot in response.days[0].slots]
    assert time(8, 0) not in listed
    assert time(8, 30) not in listed
    assert time(9, 0) not in listed
    assert listed[0] == time(9, 30)
    assert response.total_slots == 5


@pytest.mark.asyncio
async def test_list_available_slots_rejects_past_start(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    with pytest.raises(BadRequestException):
        await service.list_available_slots(doctor["id"], TODAY - timedelta(days=1))


@pytest.mark.asyncio
async def test_list_available_slots_unknown_doctor(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    with pytest.raises(NotFoundException):
        await service.list_available_slots(uuid4())


@pytest.mark.asyncio
async def test_custom_slot_rejects_overlap(db_session, doctor, clock, make_slot):
    await make_slot(day=TOMORROW, start=time(9, 0), end=time(9, 30))
    service = SlotService(db_session, clock=clock)

    with pytest.raises(SlotConflictException):
        await service.create_custom_slot(
            doctor, SlotCreate(date=TOMORROW, start_time=time(9, 15), end_time=time(9, 45))
        )

    # Touching intervals do not overlap
    slot = await service.create_custom_slot(
        doctor, SlotCreate(date=TOMORROW, start_time=time(9, 30), end_time=time(10, 0))
    )
    assert slot.status == SlotStatus.AVAILABLE


@pytest.mark.asyncio
async def test_custom_blocked_slot_and_past_slot(db_session, doctor, clock):
    service = SlotService(db_session, clock=clock)

    blocked = await service.create_custom_slot(
        doctor,
        SlotCreate(
            date=TOMORROW,
            start_time=time(16, 0),
            end_time=time(16, 30),
            status=SlotStatus.BLOCKED,
        ),
    )
    assert blocked.status == SlotStatus.BLOCKED
    assert blocked.block_reason == "Blocked by doctor"

    with pytest.raises(BadRequestException):
        await service.create_custom_slot(
            doctor, SlotCreate(date=TODAY, start_time=time(7, 0), end_time=time(7, 30))
        )


@pytest.mark.asyncio
async def test_block_and_unblock_slot(db_session, doctor, clock, make_slot):
    slot = await make_slot()
    service = SlotService(db_session, clock=clock)

    blocked = await service.block_slot(slot["id"], doctor, None)
    assert blocked.status == SlotStatus.BLOCKED
    assert blocked.block_reason == "Blocked by doctor"

    unblocked = await service.unblock_slot(slot["id"], doctor)
    assert unblocked.status == SlotStatus.AVAILABLE
    assert unblocked.block_reason is None

    with pytest.raises(BadRequestException):
        await service.unblock_slot(slot["id"], doctor)


@pytest.mark.asyncio
async def test_cannot_block_booked_or_held_slot(db_session, doctor, patient, clock, make_slot):
    service = SlotService(db_session, clock=clock)
    booked = await make_slot(start=time(10, 0), status="booked")
    held = await make_slot(start=time(10, 30))
    await AppointmentService(db_session, clock=clock).create_appointment(
        patient, AppointmentCreate(slot_id=held["id"], payment_method=PaymentMethod.ONLINE)
    )

    with pytest.raises(SlotUnavailableException):
        await service.block_slot(booked["id"], doctor)

    with pytest.raises(SlotUnavailableException):
        await service.block_slot(held["id"], doctor)

    with pytest.raises(SlotUnavailableException):
        await service.unblock_slot(booked["id"], doctor)


@pytest.mark.asyncio
async def test_slot_actions_require_ownership(db_session, doctor, other_doctor, clock, make_slot):
    slot = await make_slot()
    service = SlotService(db_session, clock=clock)

    with pytest.raises(AccessDeniedException):
        await service.block_slot(slot["id"], other_doctor)

    with pytest.raises(AccessDeniedException):
        await service.delete_slot(slot["id"], other_doctor)


@pytest.mark.asyncio
async def test_delete_slot(db_session, doctor, patient, clock, make_slot):
    service = SlotService(db_session, clock=clock)
    free = await make_slot(start=time(9, 0))
    booked = await make_slot(start=time(9, 30), status="booked")
    held = await make_slot(start=time(10, 0))
    await AppointmentService(db_session, clock=clock).create_appointment(
        patient, AppointmentCreate(slot_id=held["id"], payment_method=PaymentMethod.ONLINE)
    )

    await service.delete_slot(free["id"], doctor)
    assert await _slot_count(db_session, doctor["id"]) == 2

    with pytest.raises(SlotUnavailableException):
        await service.delete_slot(booked["id"], doctor)

    with pytest.raises(SlotUnavailableException):
        await service.delete_slot(held["id"], doctor)

    with pytest.raises(NotFoundException):
        await service.delete_slot(free["id"], doctor)


@pytest.mark.asyncio
async def test_list_doctor_slots_includes_holding_appointment(
    db_session, doctor, patient, clock, make_slot
):
    service = SlotService(db_session, clock=clock)
    free = await make_slot(start=time(9, 0))
    held = await make_slot(start=time(9, 30))
    appointment = await AppointmentService(db_session, clock=clock).create_appointment(
        patient, AppointmentCreate(slot_id=held["id"], payment_method=PaymentMethod.ONLINE)
    )

    days = await service.list_doctor_slots(doctor, TOMORROW, TOMORROW)

    assert len(days) == 1
    by_id = {slot.id: slot for slot in days[0].slots}
    assert by_id[free["id"]].appointment is None
    summary = by_id[held["id"]].appointment
    assert summary.id == appointment.id
    assert summary.patient_name == patient["full_name"]
    assert summary.status == "pending"


@pytest.mark.asyncio
async def test_statistics(db_session, doctor, clock, make_slot):
    service = SlotService(db_session, clock=clock)
    await make_slot(start=time(9, 0), status="booked")
    await make_slot(start=time(9, 30), status="blocked")
    await make_slot(start=time(10, 0))
    await make_slot(start=time(10, 30))

    stats = await service.get_statistics(doctor, TODAY, WEEK_END)

    assert stats.total_slots == 4
    assert stats.booked_slots == 1
    assert stats.blocked_slots == 1
    assert stats.available_slots == 2
    assert stats.utilization_rate == 25.0


@pytest.mark.asyncio
async def test_statistics_without_slots(db_session, doctor, clock):
    stats = await SlotService(db_session, clock=clock).get_statistics(doctor)

    assert stats.total_slots == 0
    assert stats.utilization_rate == 0.0
