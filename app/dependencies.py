"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, get_clock
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import token_subject
from app.database import get_db
from app.services.appointment_service import AppointmentService
from app.services.doctor_service import DoctorService
from app.services.payment_service import PaymentService
from app.services.slot_service import SlotService
from app.services.user_service import UserService

# Missing credentials are reported as 401 below, not by HTTPBearer
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from the bearer token.

    Raises:
        HTTPException: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    user_id = token_subject(credentials.credentials)
    if user_id is None:
        raise _unauthorized("Could not validate credentials")

    return user_id


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get current user from database.

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService().get_user_by_id(db, user_id)

    if not user:
        raise _unauthorized("User not found")

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def get_current_doctor(
    current_user: Annotated[dict, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get the doctor profile of the current user.

    Raises:
        HTTPException: If the user is not a doctor or has no profile
    """
    if current_user["role"] != "doctor":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Doctor access required",
        )

    doctor = await DoctorService().get_doctor_by_user_id(db, current_user["id"])
    if not doctor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Doctor profile not found",
        )

    return doctor


async def get_verified_doctor(
    doctor: Annotated[dict, Depends(get_current_doctor)],
) -> dict:
    """Doctor profile of the current user, once an admin has verified it."""
    if not doctor["is_verified"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Doctor profile is awaiting verification",
        )
    return doctor


async def require_admin(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """Ensure the current user has the admin role."""
    if current_user["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_cache_manager() -> CacheManager | None:
    """Cache manager, or None when caching is disabled."""
    if not settings.cache_enabled:
        return None
    return CacheManager(get_redis_client())


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
CurrentDoctor = Annotated[dict, Depends(get_current_doctor)]
VerifiedDoctor = Annotated[dict, Depends(get_verified_doctor)]
AdminUser = Annotated[dict, Depends(require_admin)]
AppClock = Annotated[Clock, Depends(get_clock)]
Cache = Annotated[CacheManager | None, Depends(get_cache_manager)]


def get_appointment_service(db: DatabaseSession, clock: AppClock, cache: Cache) -> AppointmentService:
    """Get appointment service instance."""
    return AppointmentService(db, clock=clock, cache=cache)


def get_slot_service(db: DatabaseSession, clock: AppClock, cache: Cache) -> SlotService:
    """Get slot service instance."""
    return SlotService(db, clock=clock, cache=cache)


def get_payment_service(db: DatabaseSession, clock: AppClock, cache: Cache) -> PaymentService:
    """Get payment service instance."""
    return PaymentService(db, clock=clock, cache=cache)


def get_doctor_service(cache: Cache) -> DoctorService:
    """Get doctor service instance."""
    return DoctorService(cache_manager=cache)


AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
SlotServiceDep = Annotated[SlotService, Depends(get_slot_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
DoctorServiceDep = Annotated[DoctorService, Depends(get_doctor_service)]
