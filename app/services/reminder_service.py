"""Appointment reminders."""

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, clinic_now, slot_datetime, system_clock
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus
from app.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)


class ReminderService:
    """Sends one reminder per confirmed appointment starting soon."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock | None = None,
        notifier: Any = NotificationService,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.clock = clock or system_clock
        self.notifier = notifier

    async def due_appointments(self) -> list[dict]:
        """Confirmed appointments not yet reminded that start within the horizon."""
        now = clinic_now(self.clock)
        horizon = now + timedelta(hours=settings.reminder_horizon_hours)

        query = select(appointments).where(
            appointments.c.reminder_sent == False,  # noqa: E712
            or_(
                appointments.c.status == AppointmentStatus.CONFIRMED.value,
                and_(
                    appointments.c.status == AppointmentStatus.RESCHEDULED.value,
                    appointments.c.confirmed_at.is_not(None),
                ),
            ),
            appointments.c.appointment_date >= now.date(),
            appointments.c.appointment_date <= horizon.date(),
        )
        result = await self.db.execute(query)

        due = []
        for row in result.mappings().all():
            starts_at = slot_datetime(row["appointment_date"], row["appointment_time"])
            if now < starts_at <= horizon:
                due.append(dict(row))
        return due

    async def send_due_reminders(self) -> int:
        """
        Remind patients of confirmed appointments within the reminder horizon.

        Each appointment is claimed by flipping ``reminder_sent`` before the
        notification goes out, so concurrent runs never remind twice.

        Returns:
            Number of reminders sent
        """
        sent = 0

        for appointment in await self.due_appointments():
            result = await self.db.execute(
                update(appointments)
                .where(
                    appointments.c.id == appointment["id"],
                    appointments.c.reminder_sent == False,  # noqa: E712
                )
                .values(reminder_sent=True, updated_at=func.now())
            )
            await self.db.commit()

            if result.rowcount != 1:
                continue

            try:
                await self.notifier.send_appointment_reminder(
                    db=self.db,
                    user_id=appointment["patient_id"],
                    appointment_data=appointment,
                )
            except Exception as e:
                logger.warning(
                    "failed_to_send_appointment_reminder",
                    appointment_id=str(appointment["id"]),
                    error=str(e),
                )
            sent += 1

        logger.info("appointment_reminders_sent", count=sent)
        return sent
