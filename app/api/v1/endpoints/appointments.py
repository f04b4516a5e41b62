"""Appointment endpoints for patients."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import AppointmentServiceDep, CurrentUser
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book a time slot",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Book a time slot for the authenticated patient.

    The appointment starts ``pending``. Online bookings are confirmed by the
    payment settlement; cash bookings by the doctor.

    Args:
        data: Slot to book, reason and payment method
        current_user: Authenticated user
        service: Booking service

    Returns:
        Created appointment
    """
    return await service.create_appointment(current_user, data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    current_user: CurrentUser,
    service: AppointmentServiceDep,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List the appointments visible to the authenticated user.

    Args:
        current_user: Authenticated user
        service: Booking service
        status_filter: Filter by status
        from_date: Earliest appointment date
        to_date: Latest appointment date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(current_user, filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Get an appointment the authenticated user takes part in."""
    return await service.get_appointment(appointment_id, current_user)


@router.put(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Cancel an appointment at least 24 hours before it starts.

    The slot becomes bookable again and a paid booking is refunded.
    """
    return await service.cancel_appointment(appointment_id, current_user, data.reason)


@router.put(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Move an appointment to another available slot of the same doctor."""
    return await service.reschedule_appointment(appointment_id, current_user, data.new_slot_id)
