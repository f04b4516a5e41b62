"""Appointment actions taken by the treating doctor."""

from uuid import UUID

from fastapi import APIRouter, status

from app.dependencies import AppointmentServiceDep, CurrentDoctor, CurrentUser
from app.schemas.appointments import AppointmentCancel, AppointmentResponse

router = APIRouter(prefix="/doctor/appointments", tags=["Doctor Appointments"])


@router.put(
    "/{appointment_id}/confirm",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm appointment",
)
async def confirm_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    _doctor: CurrentDoctor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Confirm a pending appointment, typically one paid in cash at the clinic.

    The slot is marked ``booked``. Confirming twice is harmless.
    """
    return await service.confirm_appointment(appointment_id, current_user)


@router.put(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark appointment completed",
)
async def complete_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    _doctor: CurrentDoctor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Mark a confirmed appointment as completed."""
    return await service.complete_appointment(appointment_id, current_user)


@router.put(
    "/{appointment_id}/no-show",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark appointment as no-show",
)
async def mark_no_show(
    appointment_id: UUID,
    current_user: CurrentUser,
    _doctor: CurrentDoctor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Record that the patient did not attend."""
    return await service.mark_no_show(appointment_id, current_user)


@router.put(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment as doctor",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    current_user: CurrentUser,
    _doctor: CurrentDoctor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Cancel an appointment; the same 24 hour window applies as for patients."""
    return await service.cancel_appointment(appointment_id, current_user, data.reason)
