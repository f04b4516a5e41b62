"""Time slot service: generation, listing and doctor slot management."""

from datetime import date, timedelta
from itertools import groupby
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, delete, exists, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, clinic_now, slot_datetime, system_clock
from app.core.exceptions import (
    AccessDeniedException,
    BadRequestException,
    NotFoundException,
    SlotConflictException,
    SlotUnavailableException,
    ValidationException,
)
from app.core.redis_client import CacheManager
from app.models.appointments import appointments
from app.models.doctors import doctors
from app.models.time_slots import time_slots
from app.models.users import users
from app.schemas.slots import (
    AvailableSlotsResponse,
    DoctorSlotDay,
    DoctorSlotResponse,
    SlotAppointmentSummary,
    SlotCreate,
    SlotDay,
    SlotResponse,
    SlotStatistics,
    SlotStatus,
)
from app.services.slot_generator import WEEKDAY_NAMES, DoctorSchedule, generate_for_date, iter_dates

logger = structlog.get_logger(__name__)

# Rows per INSERT statement during generation
_INSERT_BATCH_SIZE = 500


def active_hold(slot_id_column: Any):
    """EXISTS clause matching a non-cancelled appointment on the slot."""
    return exists().where(
        appointments.c.slot_id == slot_id_column,
        appointments.c.status != "cancelled",
    )


def available_slots_cache_pattern(doctor_id: UUID) -> str:
    return f"slots:available:{doctor_id}:*"


def invalidate_available_slots(cache: CacheManager | None, doctor_id: UUID) -> None:
    """Drop every cached available-slot listing of a doctor."""
    if cache:
        cache.delete_pattern(available_slots_cache_pattern(doctor_id))


class SlotService:
    """Service for time slot operations."""

    # Cache TTL in seconds (5 minutes for available-slot listings)
    AVAILABLE_SLOTS_CACHE_TTL = 300

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock | None = None,
        cache: CacheManager | None = None,
    ):
        """Initialize service with database session, clock and optional cache."""
        self.db = db
        self.clock = clock or system_clock
        self.cache = cache

    @staticmethod
    def _get_available_cache_key(doctor_id: UUID, start_date: date, end_date: date) -> str:
        """Generate cache key for an available-slot listing."""
        return f"slots:available:{doctor_id}:{start_date}:{end_date}"

    def _today(self) -> date:
        return clinic_now(self.clock).date()

    def _insert_ignoring_duplicates(self, rows: list[dict[str, Any]]):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(time_slots)
        elif dialect == "sqlite":
            stmt = sqlite_insert(time_slots)
        else:
            raise RuntimeError(f"Unsupported database dialect: {dialect}")

        return (
            stmt.values(rows)
            .on_conflict_do_nothing(index_elements=["doctor_id", "date", "start_time"])
            .returning(time_slots.c.id)
        )

    async def _get_doctor(self, doctor_id: UUID) -> dict:
        result = await self.db.execute(select(doctors).where(doctors.c.id == doctor_id))
        doctor = result.mappings().first()
        if not doctor:
            raise NotFoundException("Doctor not found")
        return dict(doctor)

    async def _get_owned_slot(self, slot_id: UUID, doctor: dict) -> dict:
        """Lock a slot and check it belongs to ``doctor``."""
        result = await self.db.execute(
            select(time_slots).where(time_slots.c.id == slot_id).with_for_update()
        )
        slot = result.mappings().first()

        if not slot:
            raise NotFoundException("Time slot not found")

        if slot["doctor_id"] != doctor["id"]:
            raise AccessDeniedException("Access denied to this time slot")

        return dict(slot)

    async def _is_held(self, slot_id: UUID) -> bool:
        result = await self.db.execute(select(active_hold(slot_id)))
        return bool(result.scalar())

    async def _has_appointments(self, slot_id: UUID) -> bool:
        result = await self.db.execute(
            select(exists().where(appointments.c.slot_id == slot_id))
        )
        return bool(result.scalar())

    def _check_generation_range(self, start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise ValidationException("end_date must be on or after start_date")

        if (end_date - start_date).days + 1 > settings.max_slot_horizon_days:
            raise ValidationException(
                f"Cannot generate slots for more than {settings.max_slot_horizon_days} days"
            )

        if start_date < self._today():
            raise BadRequestException("Cannot generate slots in the past")

    async def generate_for_range(
        self, doctor: dict, start_date: date, end_date: date, commit: bool = True
    ) -> int:
        """
        Create slots from the doctor's schedule for every date without slots.

        Args:
            doctor: ``doctors`` row
            start_date: First date, inclusive, not before today
            end_date: Last date, inclusive
            commit: Commit and invalidate cached listings; callers batching
                generation into a larger transaction pass ``False``

        Returns:
            Number of slots actually inserted

        Raises:
            ValidationException: If the range is inverted or too long
            BadRequestException: If the range starts in the past
        """
        self._check_generation_range(start_date, end_date)

        schedule = DoctorSchedule.from_row(doctor)

        existing_result = await self.db.execute(
            select(time_slots.c.date)
            .where(
                time_slots.c.doctor_id == doctor["id"],
                time_slots.c.date >= start_date,
                time_slots.c.date <= end_date,
            )
            .distinct()
        )
        existing_dates = set(existing_result.scalars().all())

        rows = [
            {
                "id": uuid4(),
                "doctor_id": doctor["id"],
                "date": day,
                "start_time": start,
                "end_time": end,
                "status": SlotStatus.AVAILABLE.value,
            }
            for day in iter_dates(start_date, end_date)
            if day not in existing_dates
            for start, end in generate_for_date(schedule, day)
        ]

        if not rows:
            return 0

        created = 0
        for offset in range(0, len(rows), _INSERT_BATCH_SIZE):
            batch = rows[offset : offset + _INSERT_BATCH_SIZE]
            result = await self.db.execute(self._insert_ignoring_duplicates(batch))
            created += len(result.fetchall())

        if commit:
            await self.db.commit()
            invalidate_available_slots(self.cache, doctor["id"])

        logger.info(
            "slots_generated",
            doctor_id=str(doctor["id"]),
            start_date=str(start_date),
            end_date=str(end_date),
            generated=created,
            skipped=len(rows) - created,
        )

        return created

    async def regenerate_range(
        self, doctor: dict, start_date: date, end_date: date
    ) -> tuple[int, int]:
        """
        Replace unused slots in a range with freshly generated ones.

        Only ``available`` slots without any appointment are removed; booked,
        blocked and held slots are kept, so their dates are not regenerated.
        Deletion and generation commit together; a rejected range leaves the
        existing slots untouched.

        Returns:
            Tuple of (deleted_count, generated_count)
        """
        self._check_generation_range(start_date, end_date)

        result = await self.db.execute(
            delete(time_slots).where(
                time_slots.c.doctor_id == doctor["id"],
                time_slots.c.date >= start_date,
                time_slots.c.date <= end_date,
                time_slots.c.status == SlotStatus.AVAILABLE.value,
                ~exists().where(appointments.c.slot_id == time_slots.c.id),
            )
        )
        deleted = result.rowcount or 0

        try:
            generated = await self.generate_for_range(doctor, start_date, end_date, commit=False)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        invalidate_available_slots(self.cache, doctor["id"])

        logger.info(
            "slots_regenerated",
            doctor_id=str(doctor["id"]),
            deleted=deleted,
            generated=generated,
        )

        return deleted, generated

    async def list_available_slots(
        self,
        doctor_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> AvailableSlotsResponse:
        """
        List bookable slots of a doctor, generating missing dates first.

        Args:
            doctor_id: Doctor ID
            start_date: First date, defaults to today
            end_date: Last date, defaults to the configured horizon

        Returns:
            Available, unheld, future slots grouped by date
        """
        today = self._today()
        start_date = start_date or today
        end_date = end_date or start_date + timedelta(days=settings.slot_horizon_days)

        if start_date < today:
            raise BadRequestException("Start date cannot be in the past")

        if end_date < start_date:
            raise BadRequestException("End date must be on or after start date")

        doctor = await self._get_doctor(doctor_id)
        if not doctor["is_verified"]:
            raise BadRequestException("Doctor is not verified")

        cache_key = self._get_available_cache_key(doctor_id, start_date, end_date)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return AvailableSlotsResponse.model_validate(cached)

        await self.generate_for_range(doctor, start_date, end_date)

        query = (
            select(time_slots)
            .where(
                time_slots.c.doctor_id == doctor_id,
                time_slots.c.date >= start_date,
                time_slots.c.date <= end_date,
                time_slots.c.status == SlotStatus.AVAILABLE.value,
                ~active_hold(time_slots.c.id),
            )
            .order_by(time_slots.c.date, time_slots.c.start_time)
        )
        result = await self.db.execute(query)

        now_time = clinic_now(self.clock).time()
        rows = [
            row
            for row in result.mappings().all()
            if not (row["date"] == today and row["start_time"] <= now_time)
        ]

        days = [
            SlotDay(
                date=day,
                day_name=WEEKDAY_NAMES[day.weekday()],
                slots=[SlotResponse.model_validate(dict(row)) for row in day_rows],
            )
            for day, day_rows in groupby(rows, key=lambda row: row["date"])
        ]

        response = AvailableSlotsResponse(
            doctor_id=doctor_id,
            start_date=start_date,
            end_date=end_date,
            total_slots=len(rows),
            days=days,
        )

        if self.cache:
            self.cache.set_json(
                cache_key,
                response.model_dump(mode="json"),
                ttl=self.AVAILABLE_SLOTS_CACHE_TTL,
            )

        return response

    async def list_doctor_slots(
        self,
        doctor: dict,
        start_date: date | None = None,
        end_date: date | None = None,
        status: SlotStatus | None = None,
    ) -> list[DoctorSlotDay]:
        """List a doctor's own slots with the appointment holding each one."""
        start_date = start_date or self._today()
        end_date = end_date or start_date + timedelta(days=settings.slot_horizon_days)

        if end_date < start_date:
            raise BadRequestException("End date must be on or after start date")

        conditions = [
            time_slots.c.doctor_id == doctor["id"],
            time_slots.c.date >= start_date,
            time_slots.c.date <= end_date,
        ]
        if status:
            conditions.append(time_slots.c.status == status.value)

        query = (
            select(
                time_slots,
                appointments.c.id.label("appointment_id"),
                appointments.c.appointment_number,
                appointments.c.patient_id,
                appointments.c.status.label("appointment_status"),
                users.c.full_name.label("patient_name"),
                users.c.phone.label("patient_phone"),
            )
            .select_from(
                time_slots.outerjoin(
                    appointments,
                    and_(
                        appointments.c.slot_id == time_slots.c.id,
                        appointments.c.status != "cancelled",
                    ),
                ).outerjoin(users, users.c.id == appointments.c.patient_id)
            )
            .where(*conditions)
            .order_by(time_slots.c.date, time_slots.c.start_time)
        )
        result = await self.db.execute(query)

        days = []
        for day, day_rows in groupby(result.mappings().all(), key=lambda row: row["date"]):
            slots = []
            for row in day_rows:
                appointment = None
                if row["appointment_id"] is not None:
                    appointment = SlotAppointmentSummary(
                        id=row["appointment_id"],
                        appointment_number=row["appointment_number"],
                        patient_id=row["patient_id"],
                        patient_name=row["patient_name"],
                        patient_phone=row["patient_phone"],
                        status=row["appointment_status"],
                    )
                slots.append(
                    DoctorSlotResponse(
                        id=row["id"],
                        doctor_id=row["doctor_id"],
                        date=row["date"],
                        start_time=row["start_time"],
                        end_time=row["end_time"],
                        status=row["status"],
                        block_reason=row["block_reason"],
                        appointment=appointment,
                    )
                )
            days.append(
                DoctorSlotDay(date=day, day_name=WEEKDAY_NAMES[day.weekday()], slots=slots)
            )

        return days

    async def create_custom_slot(self, doctor: dict, data: SlotCreate) -> SlotResponse:
        """
        Create a one-off slot outside the generated schedule.

        Raises:
            BadRequestException: If the slot starts in the past
            SlotConflictException: If it overlaps another slot of the doctor
        """
        now = self.clock.now()
        if slot_datetime(data.date, data.start_time) <= now:
            raise BadRequestException("Cannot create slots in the past")

        overlap = await self.db.execute(
            select(time_slots.c.id)
            .where(
                time_slots.c.doctor_id == doctor["id"],
                time_slots.c.date == data.date,
                time_slots.c.start_time < data.end_time,
                time_slots.c.end_time > data.start_time,
            )
            .limit(1)
        )
        if overlap.first():
            raise SlotConflictException()

        blocked = data.status == SlotStatus.BLOCKED
        stmt = (
            time_slots.insert()
            .values(
                doctor_id=doctor["id"],
                date=data.date,
                start_time=data.start_time,
                end_time=data.end_time,
                status=data.status.value,
                block_reason="Blocked by doctor" if blocked else None,
                blocked_at=now if blocked else None,
            )
            .returning(time_slots)
        )

        try:
            result = await self.db.execute(stmt)
            slot = result.mappings().one()
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise SlotConflictException() from None

        invalidate_available_slots(self.cache, doctor["id"])

        logger.info(
            "custom_slot_created",
            doctor_id=str(doctor["id"]),
            slot_id=str(slot["id"]),
            date=str(data.date),
        )

        return SlotResponse.model_validate(dict(slot))

    async def block_slot(
        self, slot_id: UUID, doctor: dict, reason: str | None = None
    ) -> SlotResponse:
        """
        Block a slot so it cannot be booked.

        Raises:
            SlotUnavailableException: If the slot is booked or held by an appointment
        """
        slot = await self._get_owned_slot(slot_id, doctor)

        if slot["status"] == SlotStatus.BOOKED.value or await self._is_held(slot_id):
            raise SlotUnavailableException("Cannot block a slot with an appointment")

        stmt = (
            update(time_slots)
            .where(time_slots.c.id == slot_id)
            .values(
                status=SlotStatus.BLOCKED.value,
                block_reason=reason or "Blocked by doctor",
                blocked_at=self.clock.now(),
                updated_at=func.now(),
            )
            .returning(time_slots)
        )
        result = await self.db.execute(stmt)
        updated = result.mappings().one()
        await self.db.commit()

        invalidate_available_slots(self.cache, doctor["id"])
        logger.info("slot_blocked", slot_id=str(slot_id), doctor_id=str(doctor["id"]))

        return SlotResponse.model_validate(dict(updated))

    async def unblock_slot(self, slot_id: UUID, doctor: dict) -> SlotResponse:
        """Return a blocked slot to ``available``."""
        slot = await self._get_owned_slot(slot_id, doctor)

        if slot["status"] == SlotStatus.BOOKED.value:
            raise SlotUnavailableException("Cannot unblock a booked slot")

        if slot["status"] != SlotStatus.BLOCKED.value:
            raise BadRequestException("Time slot is not blocked")

        stmt = (
            update(time_slots)
            .where(time_slots.c.id == slot_id)
            .values(
                status=SlotStatus.AVAILABLE.value,
                block_reason=None,
                blocked_at=None,
                updated_at=func.now(),
            )
            .returning(time_slots)
        )
        result = await self.db.execute(stmt)
        updated = result.mappings().one()
        await self.db.commit()

        invalidate_available_slots(self.cache, doctor["id"])
        logger.info("slot_unblocked", slot_id=str(slot_id), doctor_id=str(doctor["id"]))

        return SlotResponse.model_validate(dict(updated))

    async def delete_slot(self, slot_id: UUID, doctor: dict) -> None:
        """
        Delete a slot.

        Booked slots and slots any appointment refers to are kept.
        """
        slot = await self._get_owned_slot(slot_id, doctor)

        if slot["status"] == SlotStatus.BOOKED.value:
            raise SlotUnavailableException("Cannot delete a booked slot")

        if await self._has_appointments(slot_id):
            raise SlotUnavailableException("Cannot delete a slot with appointments")

        await self.db.execute(delete(time_slots).where(time_slots.c.id == slot_id))
        await self.db.commit()

        invalidate_available_slots(self.cache, doctor["id"])
        logger.info("slot_deleted", slot_id=str(slot_id), doctor_id=str(doctor["id"]))

    async def get_statistics(
        self,
        doctor: dict,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> SlotStatistics:
        """Count slots per status and the booked share over a period."""
        start_date = start_date or self._today()
        end_date = end_date or start_date + timedelta(days=settings.slot_horizon_days)

        query = (
            select(time_slots.c.status, func.count().label("slot_count"))
            .where(
                time_slots.c.doctor_id == doctor["id"],
                time_slots.c.date >= start_date,
                time_slots.c.date <= end_date,
            )
            .group_by(time_slots.c.status)
        )
        result = await self.db.execute(query)
        counts = {row.status: row.slot_count for row in result.fetchall()}

        total = sum(counts.values())
        booked = counts.get(SlotStatus.BOOKED.value, 0)

        return SlotStatistics(
            start_date=start_date,
            end_date=end_date,
            total_slots=total,
            available_slots=counts.get(SlotStatus.AVAILABLE.value, 0),
            booked_slots=booked,
            blocked_slots=counts.get(SlotStatus.BLOCKED.value, 0),
            utilization_rate=round(booked / total * 100, 1) if total else 0.0,
            computed_at=self.clock.now(),
        )
