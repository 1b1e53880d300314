import os

# must be set before ehr_access.core.config is imported
os.environ.setdefault("POSTGRES_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EVENT_BUS_PROVIDER", "noop")

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from ehr_access.core.base import Base
from ehr_access.core.clock import get_clock
from ehr_access.core.config import settings
from ehr_access.core.db import get_session, import_models
from ehr_access.core.security import Principal, Role
from ehr_access.platform.adapters.memory import InMemoryDirectory, InMemoryRecordStore
from ehr_access.platform.ports.directory import DirectoryUser
from ehr_access.platform.ports.records import RecordRef
from ehr_access.platform.provider_registry import get_directory, get_record_store
from ehr_access.main import app


# ── Helpers / Fakes ──────────────────────────────────────────────────

START = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

PATIENT = Principal(user_id="pat-1", role=Role.patient, email="pat@example.com")
OTHER_PATIENT = Principal(user_id="pat-2", role=Role.patient, email="other@example.com")
DOCTOR = Principal(user_id="doc-1", role=Role.doctor, email="doc@example.com")
LAB = Principal(user_id="lab-1", role=Role.lab_assistant, email="lab@example.com")
ADMIN = Principal(user_id="adm-1", role=Role.admin, email="admin@example.com")


class FakeClock:
    """Callable clock that only moves when told to."""
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def bearer(principal: Principal, role: str | None = None) -> dict[str, str]:
    claims = {"sub": principal.user_id, "role": role or principal.role.value}
    if principal.email:
        claims["email"] = principal.email
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    return {"Authorization": f"Bearer {token}"}


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    import_models()
    eng = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return InMemoryDirectory([
        DirectoryUser(id="pat-1", role=Role.patient, email="pat@example.com", phone="+15550001",
                      first_name="Pat", last_name="Lee"),
        DirectoryUser(id="pat-2", role=Role.patient, email="other@example.com", first_name="Ola", last_name="Berg"),
        DirectoryUser(id="doc-1", role=Role.doctor, email="doc@example.com", first_name="Dana", last_name="Ruiz"),
        DirectoryUser(id="lab-1", role=Role.lab_assistant, email="lab@example.com"),
        DirectoryUser(id="adm-1", role=Role.admin, email="admin@example.com"),
    ])


@pytest.fixture
def records():
    return InMemoryRecordStore([
        RecordRef(id="rec-1", patient_id="pat-1", data={"_id": "rec-1", "patientId": "pat-1", "title": "Blood panel", "recordType": "labtest"}),
        RecordRef(id="rec-2", patient_id="pat-1", data={"_id": "rec-2", "patientId": "pat-1", "title": "Amoxicillin", "recordType": "prescription"}),
        RecordRef(id="rec-3", patient_id="pat-2", data={"_id": "rec-3", "patientId": "pat-2", "title": "Chest X-ray", "recordType": "scan"}),
    ])


@pytest_asyncio.fixture
async def client(session_factory, clock, directory, records):
    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_record_store] = lambda: records
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def api():
    return settings.API_PREFIX
