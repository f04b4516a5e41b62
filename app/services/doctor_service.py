"""Doctor service for business logic."""

from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictException, NotFoundException
from app.core.redis_client import CacheManager
from app.models.doctors import doctors
from app.models.users import users
from app.schemas.doctors import DoctorCreate, ScheduleUpdate
from app.services.slot_service import invalidate_available_slots

logger = structlog.get_logger(__name__)


class DoctorService:
    """Service for doctor operations."""

    def __init__(self, cache_manager: CacheManager | None = None):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager

    async def create_doctor(self, db: AsyncSession, doctor_data: DoctorCreate) -> dict:
        """
        Create a doctor profile for an existing user.

        The user's role becomes ``doctor``.

        Raises:
            NotFoundException: If the user does not exist
            ConflictException: If the user already has a profile or the
                license number is taken
        """
        user_result = await db.execute(select(users.c.id).where(users.c.id == doctor_data.user_id))
        if not user_result.first():
            raise NotFoundException("User not found")

        query = (
            doctors.insert()
            .values(
                user_id=doctor_data.user_id,
                full_name=doctor_data.full_name,
                specialization=doctor_data.specialization,
                license_number=doctor_data.license_number,
                consultation_fee=doctor_data.consultation_fee,
                currency=doctor_data.currency,
                clinic_name=doctor_data.clinic_name,
                clinic_address=doctor_data.clinic_address,
                working_days=doctor_data.working_days_mask(),
                working_start_time=doctor_data.working_start_time,
                working_end_time=doctor_data.working_end_time,
                appointment_duration=doctor_data.appointment_duration,
                accepts_online_payment=doctor_data.accepts_online_payment,
            )
            .returning(doctors)
        )

        try:
            result = await db.execute(query)
            doctor = result.mappings().one()
            await db.execute(
                update(users)
                .where(users.c.id == doctor_data.user_id)
                .values(role="doctor", updated_at=func.now())
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictException("Doctor profile already exists") from None

        logger.info("doctor_created", doctor_id=str(doctor["id"]), user_id=str(doctor["user_id"]))

        return dict(doctor)

    async def get_doctor_by_id(self, db: AsyncSession, doctor_id: UUID) -> dict | None:
        """Get doctor by ID."""
        query = select(doctors).where(doctors.c.id == doctor_id)
        result = await db.execute(query)
        doctor = result.mappings().first()

        return dict(doctor) if doctor else None

    async def get_doctor_by_user_id(self, db: AsyncSession, user_id: UUID) -> dict | None:
        """Get doctor by user ID."""
        query = select(doctors).where(doctors.c.user_id == user_id)
        result = await db.execute(query)
        doctor = result.mappings().first()

        return dict(doctor) if doctor else None

    async def update_schedule(
        self, db: AsyncSession, doctor_id: UUID, schedule: ScheduleUpdate
    ) -> dict | None:
        """
        Replace a doctor's recurring schedule.

        Slots already generated are left as they are; only dates without
        slots pick up the new schedule.
        """
        query = (
            update(doctors)
            .where(doctors.c.id == doctor_id)
            .values(
                working_days=schedule.working_days_mask(),
                working_start_time=schedule.working_start_time,
                working_end_time=schedule.working_end_time,
                appointment_duration=schedule.appointment_duration,
                updated_at=func.now(),
            )
            .returning(doctors)
        )

        result = await db.execute(query)
        updated_doctor = result.mappings().first()

        await db.commit()

        if updated_doctor:
            invalidate_available_slots(self.cache, doctor_id)
            logger.info("doctor_schedule_updated", doctor_id=str(doctor_id))

        return dict(updated_doctor) if updated_doctor else None

    async def set_verification(
        self, db: AsyncSession, doctor_id: UUID, is_verified: bool
    ) -> dict | None:
        """
        Verify a doctor profile or revoke its verification.

        Unverified doctors cannot manage slots or receive new bookings;
        existing appointments are unaffected.
        """
        query = (
            update(doctors)
            .where(doctors.c.id == doctor_id)
            .values(is_verified=is_verified, updated_at=func.now())
            .returning(doctors)
        )

        result = await db.execute(query)
        updated_doctor = result.mappings().first()

        await db.commit()

        if updated_doctor:
            invalidate_available_slots(self.cache, doctor_id)
            logger.info(
                "doctor_verification_changed",
                doctor_id=str(doctor_id),
                is_verified=is_verified,
            )

        return dict(updated_doctor) if updated_doctor else None
