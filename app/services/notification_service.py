"""Notification service for sending push notifications via FCM."""

from datetime import UTC, date, datetime, time
from typing import Any
from uuid import UUID

import structlog
from firebase_admin import messaging
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.push_tokens import push_tokens

logger = structlog.get_logger(__name__)


def _format_when(appointment_data: dict[str, Any]) -> str:
    """Human-readable appointment date and time."""
    day = appointment_data.get("appointment_date")
    at = appointment_data.get("appointment_time")
    if isinstance(day, date) and isinstance(at, time):
        return datetime.combine(day, at).strftime("%b %d at %H:%M")
    return f"{day} {at}"


class NotificationService:
    """Service for managing push notifications.

    Booking services call the ``send_appointment_*`` helpers only after their
    transaction has committed; a delivery failure never affects booking state.
    """

    @staticmethod
    async def send_push_notification(
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> tuple[int, int]:
        """
        Multicast one notification to the given FCM tokens.

        Returns:
            ``(success_count, failure_count)``; an FCM error counts every
            token as failed instead of raising.
        """
        if not tokens:
            return 0, 0

        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=body),
            data=data or {},
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(sound="default"),
            ),
        )
        try:
            response = messaging.send_each_for_multicast(message)
        except Exception as e:
            logger.error("push_notification_failed", title=title, error=str(e))
            return 0, len(tokens)

        logger.info(
            "push_notification_sent",
            title=title,
            success_count=response.success_count,
            failure_count=response.failure_count,
        )
        return response.success_count, response.failure_count

    @staticmethod
    async def send_to_user(
        db: AsyncSession,
        user_id: str | UUID,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> tuple[int, int]:
        """Push to every active device of a user."""
        user_id = UUID(str(user_id))
        result = await db.execute(
            select(push_tokens.c.fcm_token).where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.is_active.is_(True),
            )
        )
        tokens = list(result.scalars())

        if not tokens:
            logger.info("no_active_tokens_for_user", user_id=str(user_id))
            return 0, 0

        return await NotificationService.send_push_notification(tokens, title, body, data)

    @staticmethod
    async def register_token(
        db: AsyncSession,
        user_id: UUID,
        fcm_token: str,
        platform: str,
    ) -> dict[str, Any]:
        """
        Register or refresh an FCM token for a user.

        Older tokens of the same user and platform are deactivated.
        """
        now = datetime.now(UTC)

        await db.execute(
            update(push_tokens)
            .where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.platform == platform,
                push_tokens.c.fcm_token != fcm_token,
            )
            .values(is_active=False)
        )

        result = await db.execute(
            select(push_tokens).where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.fcm_token == fcm_token,
            )
        )
        existing = result.mappings().first()

        if existing:
            stmt = (
                update(push_tokens)
                .where(push_tokens.c.id == existing["id"])
                .values(is_active=True, last_used_at=now)
                .returning(push_tokens)
            )
        else:
            stmt = (
                push_tokens.insert()
                .values(
                    user_id=user_id,
                    fcm_token=fcm_token,
                    platform=platform,
                    is_active=True,
                    last_used_at=now,
                )
                .returning(push_tokens)
            )

        result = await db.execute(stmt)
        row = result.mappings().one()
        await db.commit()
        return dict(row)

    @staticmethod
    async def send_appointment_created_notification(
        db: AsyncSession,
        user_id: str | UUID,
        appointment_data: dict[str, Any],
    ) -> None:
        """Tell the doctor a new booking request arrived."""
        await NotificationService.send_to_user(
            db=db,
            user_id=user_id,
            title="New Appointment",
            body=(
                f"New appointment {appointment_data.get('appointment_number')} "
                f"on {_format_when(appointment_data)}"
            ),
            data={
                "type": "appointment_created",
                "appointment_id": str(appointment_data.get("id")),
                "screen": "/doctor/appointments",
            },
        )

    @staticmethod
    async def send_appointment_status_notification(
        db: AsyncSession,
        user_id: str | UUID,
        appointment_data: dict[str, Any],
        old_status: str,
    ) -> None:
        """
        Send notification when appointment status changes.

        Args:
            db: Database session
            user_id: Recipient user ID
            appointment_data: Appointment details
            old_status: Previous status
        """
        new_status = appointment_data.get("status")
        number = appointment_data.get("appointment_number")
        when = _format_when(appointment_data)

        status_messages = {
            "confirmed": f"Your appointment {number} on {when} is confirmed",
            "cancelled": f"Appointment {number} on {when} has been cancelled",
            "rescheduled": f"Appointment {number} has been moved to {when}",
            "completed": f"Appointment {number} is completed",
            "no_show": f"Appointment {number} was marked as missed",
        }

        await NotificationService.send_to_user(
            db=db,
            user_id=user_id,
            title="Appointment Update",
            body=status_messages.get(new_status, f"Appointment status updated to {new_status}"),
            data={
                "type": "appointment_status_changed",
                "appointment_id": str(appointment_data.get("id")),
                "old_status": old_status,
                "new_status": str(new_status),
                "screen": f"/appointments/{appointment_data.get('id')}",
            },
        )

    @staticmethod
    async def send_appointment_reminder(
        db: AsyncSession,
        user_id: str | UUID,
        appointment_data: dict[str, Any],
    ) -> None:
        """Remind the patient of an upcoming appointment."""
        await NotificationService.send_to_user(
            db=db,
            user_id=user_id,
            title="Appointment Reminder",
            body=(
                f"Reminder: appointment {appointment_data.get('appointment_number')} "
                f"on {_format_when(appointment_data)}"
            ),
            data={
                "type": "appointment_reminder",
                "appointment_id": str(appointment_data.get("id")),
                "screen": f"/appointments/{appointment_data.get('id')}",
            },
        )
