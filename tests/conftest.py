import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

# Settings are read at import time; keep tests off production services
os.environ.setdefault("DATABASE_URL", "sqlite:///./medibook_app.db")
os.environ["CACHE_ENABLED"] = "false"
os.environ.setdefault("LOG_FORMAT", "console")

from app.core.clock import Clock, get_clock  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.database import get_db, to_async_url  # noqa: E402
from app.dependencies import get_cache_manager  # noqa: E402
from app.main import app  # noqa: E402
from app.models import metadata  # noqa: E402
from app.models.doctors import doctors  # noqa: E402
from app.models.time_slots import time_slots  # noqa: E402
from app.models.users import users  # noqa: E402
from app.services.slot_generator import WORKING_WEEK  # noqa: E402

# Test database URL - MUST be different from production.
# Defaults to a local SQLite file; point it at PostgreSQL to exercise row locks.
TEST_DATABASE_URL = to_async_url(
    os.getenv("TEST_DATABASE_URL", "sqlite:///./medibook_test.db")
)

# NullPool avoids event loop issues between tests
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Monday 2 March 2026, 08:00 UTC
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
TODAY = NOW.date()
TOMORROW = TODAY + timedelta(days=1)


class FrozenClock(Clock):
    """Clock stuck at a settable instant."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs: float) -> None:
        self.instant += timedelta(**kwargs)


def is_postgres() -> bool:
    return TEST_DATABASE_URL.startswith("postgresql")


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at ``NOW``."""
    return FrozenClock(NOW)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on freshly created tables."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, clock: FrozenClock) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client sharing the test session and clock."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_cache_manager] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _create_user(db: AsyncSession, role: str, name: str) -> dict:
    user_id = uuid4()
    values = {
        "id": user_id,
        "email": f"{name.lower().replace(' ', '.')}.{user_id.hex[:6]}@example.com",
        "full_name": name,
        "phone": "+22500000000",
        "role": role,
        "is_active": True,
    }
    await db.execute(insert(users).values(**values))
    await db.commit()
    return values


def _headers_for(user: dict) -> dict:
    token = create_access_token(user["id"], expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def patient(db_session: AsyncSession) -> dict:
    """A patient account."""
    return await _create_user(db_session, "patient", "Awa Kone")


@pytest.fixture
async def other_patient(db_session: AsyncSession) -> dict:
    """A second patient competing for the same slots."""
    return await _create_user(db_session, "patient", "Yao Brou")


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> dict:
    """An admin account."""
    return await _create_user(db_session, "admin", "Clinic Admin")


@pytest.fixture
async def doctor_user(db_session: AsyncSession) -> dict:
    """The user account behind the doctor profile."""
    return await _create_user(db_session, "doctor", "Dr Fatou Diallo")


async def _create_doctor(db: AsyncSession, user: dict, **overrides) -> dict:
    values = {
        "id": uuid4(),
        "user_id": user["id"],
        "full_name": user["full_name"],
        "specialization": "General Practice",
        "consultation_fee": Decimal("10000.00"),
        "currency": "XOF",
        "working_days": int(WORKING_WEEK),
        "working_start_time": time(8, 0),
        "working_end_time": time(12, 0),
        "appointment_duration": 30,
        "is_verified": True,
        "accepts_online_payment": True,
    }
    values.update(overrides)
    result = await db.execute(insert(doctors).values(**values).returning(doctors))
    row = dict(result.mappings().one())
    await db.commit()
    return row


@pytest.fixture
async def doctor(db_session: AsyncSession, doctor_user: dict) -> dict:
    """Doctor working Monday to Friday 08:00-12:00 in 30 minute slots."""
    return await _create_doctor(db_session, doctor_user)


@pytest.fixture
async def other_doctor(db_session: AsyncSession) -> dict:
    """A second doctor with the same schedule."""
    user = await _create_user(db_session, "doctor", "Dr Kofi Mensah")
    return await _create_doctor(db_session, user)


SlotFactory = Callable[..., Awaitable[dict]]


@pytest.fixture
def make_slot(db_session: AsyncSession, doctor: dict) -> SlotFactory:
    """Insert a slot directly, bypassing generation."""

    async def factory(
        day: date = TOMORROW,
        start: time = time(9, 0),
        end: time | None = None,
        status: str = "available",
        owner: dict | None = None,
    ) -> dict:
        if end is None:
            end = (datetime.combine(day, start) + timedelta(minutes=30)).time()
        values = {
            "id": uuid4(),
            "doctor_id": (owner or doctor)["id"],
            "date": day,
            "start_time": start,
            "end_time": end,
            "status": status,
        }
        result = await db_session.execute(
            insert(time_slots).values(**values).returning(time_slots)
        )
        row = dict(result.mappings().one())
        await db_session.commit()
        return row

    return factory


@pytest.fixture
def patient_headers(patient: dict) -> dict:
    return _headers_for(patient)


@pytest.fixture
def other_patient_headers(other_patient: dict) -> dict:
    return _headers_for(other_patient)


@pytest.fixture
def doctor_headers(doctor_user: dict, doctor: dict) -> dict:
    return _headers_for(doctor_user)


@pytest.fixture
def admin_headers(admin_user: dict) -> dict:
    return _headers_for(admin_user)
