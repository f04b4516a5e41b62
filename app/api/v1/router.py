"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1.endpoints import (
    appointments,
    doctor_appointments,
    doctors,
    health,
    notifications,
    payments,
    time_slots,
)

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(doctors.router, prefix="/doctors", tags=["Doctors"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(doctor_appointments.router)
api_router.include_router(time_slots.router)
api_router.include_router(payments.router)
api_router.include_router(notifications.router)
