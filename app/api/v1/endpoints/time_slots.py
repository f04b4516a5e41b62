"""Slot management endpoints for doctors."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import SlotServiceDep, VerifiedDoctor
from app.schemas.slots import (
    DoctorSlotDay,
    SlotBlockRequest,
    SlotCreate,
    SlotGenerateRequest,
    SlotGenerateResponse,
    SlotResponse,
    SlotStatistics,
    SlotStatus,
)

router = APIRouter(prefix="/doctor/time-slots", tags=["Time Slots"])


@router.get(
    "/",
    response_model=list[DoctorSlotDay],
    status_code=status.HTTP_200_OK,
    summary="List own slots",
)
async def list_slots(
    doctor: VerifiedDoctor,
    service: SlotServiceDep,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    status_filter: SlotStatus | None = Query(None, alias="status"),
) -> list[DoctorSlotDay]:
    """
    List the doctor's slots grouped by date.

    Each slot carries the appointment holding it, if any.
    """
    return await service.list_doctor_slots(doctor, start_date, end_date, status_filter)


@router.post(
    "/",
    response_model=SlotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create custom slot",
)
async def create_slot(
    data: SlotCreate,
    doctor: VerifiedDoctor,
    service: SlotServiceDep,
) -> SlotResponse:
    """Add a one-off slot; it may not overlap any existing slot."""
    return await service.create_custom_slot(doctor, data)


@router.post(
    "/generate",
    response_model=SlotGenerateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate slots from schedule",
)
async def generate_slots(
    data: SlotGenerateRequest,
    doctor: VerifiedDoctor,
    service: SlotServiceDep,
) -> SlotGenerateResponse:
    """
    Generate slots from the doctor's weekly schedule.

    Dates that already have slots are skipped. With ``overwrite`` the unused
    available slots of the range are deleted first.

    Args:
        data: Date range and overwrite flag
        doctor: Authenticated doctor profile
        service: Slot service

    Returns:
        Number of slots generated and deleted
    """
    deleted = 0
    if data.overwrite:
        deleted, generated = await service.regenerate_range(doctor, data.start_date, data.end_date)
    else:
        generated = await service.generate_for_range(doctor, data.start_date, data.end_date)

    return SlotGenerateResponse(
        generated_slots=generated,
        deleted_slots=deleted,
        start_date=data.start_date,
        end_date=data.end_date,
    )


@router.get(
    "/statistics",
    response_model=SlotStatistics,
    status_code=status.HTTP_200_OK,
    summary="Slot statistics",
)
async def slot_statistics(
    doctor: VerifiedDoctor,
    service: SlotServiceDep,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
) -> SlotStatistics:
    """Slot counts per status and utilisation rate."""
    return await service.get_statistics(doctor, start_date, end_date)


@router.put(
    "/{slot_id}/block",
    response_model=SlotResponse,
    status_code=status.HTTP_200_OK,
    summary="Block slot",
)
async def block_slot(
    slot_id: UUID,
    data: SlotBlockRequest,
    doctor: VerifiedDoctor,
    service: SlotServiceDep,
) -> SlotResponse:
    """Make a free slot unbookable."""
    return await service.block_slot(slot_id, doctor, data.reason)


@router.put(
    "/{slot_id}/unblock",
    response_model=SlotResponse,
    status_code=status.HTTP_200_OK,
    summary="Unblock slot",
)
async def unblock_slot(
    slot_id: UUID,
    doctor: VerifiedDoctor,
    service: SlotServiceDep,
) -> SlotResponse:
    """Make a blocked slot bookable again."""
    return await service.unblock_slot(slot_id, doctor)


@router.delete(
    "/{slot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete slot",
)
async def delete_slot(
    slot_id: UUID,
    doctor: VerifiedDoctor,
    service: SlotServiceDep,
) -> None:
    """Delete a slot that no appointment refers to."""
    await service.delete_slot(slot_id, doctor)
