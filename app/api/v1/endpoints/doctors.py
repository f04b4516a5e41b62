"""Doctor profile, schedule and availability endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.exceptions import AccessDeniedException, NotFoundException
from app.dependencies import (
    AdminUser,
    CurrentUser,
    DatabaseSession,
    DoctorServiceDep,
    SlotServiceDep,
)
from app.schemas.doctors import DoctorCreate, DoctorResponse, ScheduleUpdate, VerificationUpdate
from app.schemas.slots import AvailableSlotsResponse

router = APIRouter()


@router.post(
    "/",
    response_model=DoctorResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create doctor profile (admin only)",
)
async def create_doctor(
    doctor_data: DoctorCreate,
    _admin: AdminUser,
    db: DatabaseSession,
    doctor_service: DoctorServiceDep,
) -> DoctorResponse:
    """
    Create a doctor profile for an existing user.

    - **user_id**: ID of the user account for this doctor
    - **consultation_fee**: Fee charged per appointment
    - **working_days**: Day names, e.g. ``["monday", "wednesday"]``
    - **working_start_time** / **working_end_time**: Daily working hours
    - **appointment_duration**: Slot length in minutes
    """
    doctor = await doctor_service.create_doctor(db, doctor_data)
    return DoctorResponse.model_validate(doctor)


@router.get(
    "/{doctor_id}",
    response_model=DoctorResponse,
    status_code=status.HTTP_200_OK,
    summary="Get doctor by ID",
)
async def get_doctor(
    doctor_id: UUID,
    db: DatabaseSession,
    doctor_service: DoctorServiceDep,
) -> DoctorResponse:
    """Get a doctor profile with its weekly schedule."""
    doctor = await doctor_service.get_doctor_by_id(db, doctor_id)
    if not doctor:
        raise NotFoundException("Doctor not found")
    return DoctorResponse.model_validate(doctor)


@router.put(
    "/{doctor_id}/schedule",
    response_model=DoctorResponse,
    status_code=status.HTTP_200_OK,
    summary="Update doctor schedule",
)
async def update_schedule(
    doctor_id: UUID,
    schedule: ScheduleUpdate,
    current_user: CurrentUser,
    db: DatabaseSession,
    doctor_service: DoctorServiceDep,
) -> DoctorResponse:
    """
    Replace the weekly schedule.

    Allowed for the doctor themselves and admins. Dates that already have
    slots keep them.
    """
    doctor = await doctor_service.get_doctor_by_id(db, doctor_id)
    if not doctor:
        raise NotFoundException("Doctor not found")

    if current_user["role"] != "admin" and doctor["user_id"] != current_user["id"]:
        raise AccessDeniedException("Access denied to this doctor profile")

    updated = await doctor_service.update_schedule(db, doctor_id, schedule)
    if not updated:
        raise NotFoundException("Doctor not found")
    return DoctorResponse.model_validate(updated)


@router.put(
    "/{doctor_id}/verification",
    response_model=DoctorResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify doctor (admin only)",
)
async def set_verification(
    doctor_id: UUID,
    data: VerificationUpdate,
    _admin: AdminUser,
    db: DatabaseSession,
    doctor_service: DoctorServiceDep,
) -> DoctorResponse:
    """
    Verify a doctor profile or revoke its verification.

    Only verified doctors can manage their slots and receive bookings.
    """
    updated = await doctor_service.set_verification(db, doctor_id, data.is_verified)
    if not updated:
        raise NotFoundException("Doctor not found")
    return DoctorResponse.model_validate(updated)


@router.get(
    "/{doctor_id}/available-slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    summary="List bookable slots",
)
async def list_available_slots(
    doctor_id: UUID,
    service: SlotServiceDep,
    start_date: date | None = Query(None, description="Defaults to today"),
    end_date: date | None = Query(None, description="Defaults to 30 days after start"),
) -> AvailableSlotsResponse:
    """
    List the doctor's bookable slots grouped by date.

    Missing dates are generated from the schedule on the fly.
    """
    return await service.list_available_slots(doctor_id, start_date, end_date)
