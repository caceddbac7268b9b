"""Shared fixtures: in-memory database, HTTP client and a seeded directory."""

from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.core.redis_client import RateLimiter
from app.core.security import create_access_token
from app.database import get_db
from app.dependencies import get_change_feed, get_rate_limiter
from app.main import app
from app.models import (
    appointments,
    clinic_secretaries,
    clinics,
    doctors,
    metadata,
    patients,
    payments,
    teleconsultation_sessions,
    users,
)
from app.models.base import utc_now
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed
from app.realtime.subscriptions import SubscriptionManager

TEST_DATABASE_URL = "sqlite+aiosqlite://"

GATEWAY_URL = "https://pay.example.test/checkout"
PUBLIC_API_URL = "https://api.example.test"


class RecordingFeed(ChangeFeed):
    """In-process feed that also keeps every published event."""

    def __init__(self, manager: SubscriptionManager):
        super().__init__(None, manager)
        self.events: list[ChangeEvent] = []

    async def publish(self, events: Iterable[ChangeEvent]) -> None:
        events = list(events)
        self.events.extend(events)
        await super().publish(events)


@dataclass
class Directory:
    """IDs of the seeded users and directory rows."""

    patient_user_id: UUID
    patient_id: UUID
    other_patient_user_id: UUID
    other_patient_id: UUID
    doctor_user_id: UUID
    doctor_id: UUID
    free_doctor_user_id: UUID
    free_doctor_id: UUID
    clinic_id: UUID
    secretary_user_ids: list[UUID] = field(default_factory=list)
    inactive_secretary_user_id: UUID | None = None


@pytest.fixture(autouse=True)
def gateway_settings(monkeypatch):
    """Configured gateway, no webhook secret, development mode."""
    monkeypatch.setattr(settings, "moneyfusion_api_url", GATEWAY_URL)
    monkeypatch.setattr(settings, "public_api_url", PUBLIC_API_URL)
    monkeypatch.setattr(settings, "moneyfusion_webhook_secret", None)
    monkeypatch.setattr(settings, "moneyfusion_allowed_ips_str", "")
    monkeypatch.setattr(settings, "environment", "development")


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with the full schema."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def subscription_manager() -> SubscriptionManager:
    return SubscriptionManager(channel_prefix="test")


@pytest.fixture
def feed(subscription_manager: SubscriptionManager) -> RecordingFeed:
    return RecordingFeed(subscription_manager)


@pytest.fixture
def redis_mock() -> MagicMock:
    """Redis stand-in whose counters never exceed 1."""
    mock = MagicMock()
    mock.incr.return_value = 1
    return mock


@pytest.fixture
def rate_limiter(redis_mock: MagicMock) -> RateLimiter:
    return RateLimiter(redis_mock)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    feed: RecordingFeed,
    rate_limiter: RateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_feed] = lambda: feed
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def _user(role: str, name: str, is_active: bool = True) -> dict:
    user_id = uuid4()
    return {
        "id": user_id,
        "email": f"{name.lower().replace(' ', '.')}.{user_id.hex[:6]}@example.com",
        "full_name": name,
        "phone": "+2250700000000",
        "role": role,
        "is_active": is_active,
        "created_at": utc_now(),
    }


@pytest_asyncio.fixture
async def directory(db_session: AsyncSession) -> Directory:
    """Seed patients, doctors, a clinic and its secretaries."""
    patient_user = _user("patient", "Awa Kone")
    other_patient_user = _user("patient", "Yao Kouassi")
    doctor_user = _user("doctor", "Dr Traore")
    free_doctor_user = _user("doctor", "Dr Bamba")
    secretaries = [_user("secretary", "Secretary One"), _user("secretary", "Secretary Two")]
    inactive_secretary = _user("secretary", "Secretary Gone")

    await db_session.execute(
        insert(users),
        [
            patient_user,
            other_patient_user,
            doctor_user,
            free_doctor_user,
            *secretaries,
            inactive_secretary,
        ],
    )

    patient_id, other_patient_id = uuid4(), uuid4()
    await db_session.execute(
        insert(patients),
        [
            {"id": patient_id, "user_id": patient_user["id"], "created_at": utc_now()},
            {"id": other_patient_id, "user_id": other_patient_user["id"], "created_at": utc_now()},
        ],
    )

    doctor_id, free_doctor_id = uuid4(), uuid4()
    await db_session.execute(
        insert(doctors),
        [
            {
                "id": doctor_id,
                "user_id": doctor_user["id"],
                "specialty": "Pediatrie",
                "teleconsultation_enabled": True,
                "is_teleconsultation_free": False,
                "teleconsultation_price_per_minute": 200,
                "created_at": utc_now(),
            },
            {
                "id": free_doctor_id,
                "user_id": free_doctor_user["id"],
                "specialty": "Medecine generale",
                "teleconsultation_enabled": True,
                "is_teleconsultation_free": True,
                "teleconsultation_price_per_minute": None,
                "created_at": utc_now(),
            },
        ],
    )

    clinic_id = uuid4()
    await db_session.execute(
        insert(clinics).values(id=clinic_id, name="Clinique Cocody", created_at=utc_now())
    )
    await db_session.execute(
        insert(clinic_secretaries),
        [
            {
                "id": uuid4(),
                "clinic_id": clinic_id,
                "secretary_id": secretary["id"],
                "is_active": True,
                "created_at": utc_now(),
            }
            for secretary in secretaries
        ]
        + [
            {
                "id": uuid4(),
                "clinic_id": clinic_id,
                "secretary_id": inactive_secretary["id"],
                "is_active": False,
                "created_at": utc_now(),
            }
        ],
    )
    await db_session.commit()

    return Directory(
        patient_user_id=patient_user["id"],
        patient_id=patient_id,
        other_patient_user_id=other_patient_user["id"],
        other_patient_id=other_patient_id,
        doctor_user_id=doctor_user["id"],
        doctor_id=doctor_id,
        free_doctor_user_id=free_doctor_user["id"],
        free_doctor_id=free_doctor_id,
        clinic_id=clinic_id,
        secretary_user_ids=[secretary["id"] for secretary in secretaries],
        inactive_secretary_user_id=inactive_secretary["id"],
    )


@pytest.fixture
def headers_for() -> Callable[[UUID], dict]:
    """Build bearer headers for any user id."""

    def _headers(user_id: UUID) -> dict:
        token = create_access_token(
            data={"sub": str(user_id)},
            expires_delta=timedelta(minutes=30),
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def patient_headers(directory: Directory, headers_for) -> dict:
    return headers_for(directory.patient_user_id)


@pytest.fixture
def staff_headers(directory: Directory, headers_for) -> dict:
    return headers_for(directory.secretary_user_ids[0])


@pytest.fixture
def tomorrow() -> date:
    return date.today() + timedelta(days=1)


@pytest.fixture
def make_appointment(
    db_session: AsyncSession,
    directory: Directory,
    tomorrow: date,
) -> Callable[..., Awaitable[dict]]:
    """Insert an appointment row directly."""

    async def _make(
        at: time = time(9, 0),
        status: str = "pending",
        day: date | None = None,
        patient_id: UUID | None = None,
        doctor_id: UUID | None = None,
        clinic_id: Any = "default",
        created_at: Any = None,
    ) -> dict:
        now = created_at or utc_now()
        values = {
            "id": uuid4(),
            "patient_id": patient_id or directory.patient_id,
            "doctor_id": doctor_id or directory.doctor_id,
            "clinic_id": directory.clinic_id if clinic_id == "default" else clinic_id,
            "appointment_date": day or tomorrow,
            "appointment_time": at,
            "status": status,
            "is_first_visit": False,
            "created_at": now,
            "updated_at": now,
        }
        await db_session.execute(insert(appointments).values(**values))
        await db_session.commit()
        return values

    return _make


@pytest.fixture
def make_payment(
    db_session: AsyncSession,
    directory: Directory,
) -> Callable[..., Awaitable[dict]]:
    """Insert a payment row directly."""

    async def _make(
        appointment_id: UUID | None = None,
        session_id: UUID | None = None,
        amount: int = 5000,
        status: str = "pending",
        created_at: Any = None,
    ) -> dict:
        payment_id = uuid4()
        now = created_at or utc_now()
        values = {
            "id": payment_id,
            "appointment_id": appointment_id,
            "session_id": session_id,
            "patient_id": directory.patient_id,
            "amount": amount,
            "status": status,
            "payment_type": "deposit",
            "provider": "moneyfusion",
            "transaction_ref": str(payment_id),
            "created_at": now,
            "updated_at": now,
        }
        await db_session.execute(insert(payments).values(**values))
        await db_session.commit()
        return values

    return _make


@pytest.fixture
def make_session(
    db_session: AsyncSession,
    directory: Directory,
) -> Callable[..., Awaitable[dict]]:
    """Insert a teleconsultation session row directly."""

    async def _make(
        access_code: str = "ABC234",
        status: str = "pending",
        amount: int = 6000,
        duration: int = 30,
    ) -> dict:
        now = utc_now()
        values = {
            "id": uuid4(),
            "doctor_id": directory.doctor_id,
            "patient_id": directory.patient_id,
            "channel_name": f"teleconsult-{uuid4().hex[:16]}",
            "access_code": access_code,
            "duration_minutes": duration,
            "amount": amount,
            "status": status,
            "created_at": now,
            "updated_at": now,
        }
        await db_session.execute(insert(teleconsultation_sessions).values(**values))
        await db_session.commit()
        return values

    return _make
