"""Send reminders for confirmed appointments starting soon.

Run periodically, e.g. every 15 minutes from cron:

    python scripts/send_reminders.py
"""

import argparse
import asyncio

import structlog

from app.config import settings
from app.core.firebase import initialize_firebase
from app.database import AsyncSessionLocal, engine
from app.middleware.logging import configure_logging
from app.services.reminder_service import ReminderService

logger = structlog.get_logger()


async def send_reminders(dry_run: bool) -> int:
    """Run one reminder pass and return the number of reminders sent."""
    async with AsyncSessionLocal() as session:
        service = ReminderService(session)
        if dry_run:
            due = await service.due_appointments()
            for appointment in due:
                print(
                    f"{appointment['appointment_number']}  "
                    f"{appointment['appointment_date']} {appointment['appointment_time']}"
                )
            return len(due)
        return await service.send_due_reminders()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List due appointments without notifying or flagging them",
    )
    args = parser.parse_args()

    configure_logging()

    if not args.dry_run:
        try:
            initialize_firebase(
                settings.firebase_credentials_path or None,
                settings.firebase_config_json or None,
            )
        except Exception as e:
            logger.error("firebase_initialization_failed", error=str(e))
            raise SystemExit(1) from e

    async def run() -> int:
        try:
            return await send_reminders(args.dry_run)
        finally:
            await engine.dispose()

    count = asyncio.run(run())
    print(f"{'Due' if args.dry_run else 'Sent'}: {count}")


if __name__ == "__main__":
    main()
