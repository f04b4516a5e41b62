"""Create all tables directly from the table metadata.

Meant for local development databases; production schemas are managed with
``scripts/migrate.py``.
"""

import asyncio

from app.database import engine
from app.models import metadata


async def init_db() -> None:
    """Create every table that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print("Database initialized")


if __name__ == "__main__":
    asyncio.run(init_db())
