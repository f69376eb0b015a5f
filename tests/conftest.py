from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api import deps
from app.clients.directory_client import PractitionerProfile
from app.clients.room_provisioner import Room
from app.core.exceptions import PaymentFailed, ProvisioningFailed
from app.db.session import get_session, init_db
from app.main import app
from app.services.auth_service import AuthService
from app.services.consultation_service import ConsultationService

T0 = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeDirectory:
    def __init__(self):
        self.practitioners = {}

    def add(self, fee="500", available=True, enabled=True) -> PractitionerProfile:
        profile = PractitionerProfile(
            id=uuid4(),
            full_name="Dr. Sita Sharma",
            fee=Decimal(fee),
            telemedicine_enabled=enabled,
            available_now=available,
        )
        self.practitioners[profile.id] = profile
        return profile

    async def get_practitioner(self, practitioner_id):
        return self.practitioners.get(practitioner_id)


class FakePayments:
    def __init__(self):
        self.charges = []
        self.refunds = []
        self.decline = False
        # Runs after a charge succeeds, before the caller records it
        self.on_charge = None

    async def charge(self, consultation_id, amount, method):
        if self.decline:
            raise PaymentFailed("Card declined")
        reference = f"ch_{len(self.charges) + 1}"
        self.charges.append((consultation_id, amount, method, reference))
        if self.on_charge is not None:
            await self.on_charge()
        return reference

    async def refund(self, reference):
        self.refunds.append(reference)


class FakeRooms:
    def __init__(self):
        self.provisioned = []
        self.released = []
        self.fail = False
        # Set to hand out the same room id on every call
        self.fixed_room_id = None
        # Runs once, before the next room is allocated
        self.on_provision = None

    async def provision(self, consultation):
        if self.fail:
            raise ProvisioningFailed()
        if self.on_provision is not None:
            hook, self.on_provision = self.on_provision, None
            await hook()
        room = Room(
            room_id=self.fixed_room_id or f"room-{len(self.provisioned) + 1}",
            room_url=f"/dashboard/consultations/{consultation.id}/call",
        )
        self.provisioned.append(room)
        return room

    async def release(self, room_id):
        self.released.append(room_id)


class FakeTokenStore:
    def __init__(self):
        self.tokens = {}

    async def set_token(self, token, value, expire):
        self.tokens[token] = value

    async def get_token(self, token):
        return self.tokens.get(token)

    async def delete_token(self, token):
        self.tokens.pop(token, None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_clock():
    return FakeClock


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def rooms():
    return FakeRooms()


@pytest.fixture
def token_store():
    return FakeTokenStore()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'consultations.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def make_service(session_factory, directory, payments, rooms, clock):
    """Each call gets its own session, like two concurrent API requests."""
    sessions = []

    def factory(clock_override=None):
        session = session_factory()
        sessions.append(session)
        return ConsultationService(session, directory, payments, rooms, clock_override or clock)

    yield factory

    for session in sessions:
        await session.close()


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def patient_id():
    return uuid4()


@pytest.fixture
def practitioner(directory):
    return directory.add(fee="500")


@pytest.fixture
def free_practitioner(directory):
    return directory.add(fee="0")


@pytest_asyncio.fixture
async def client(session_factory, directory, payments, rooms, clock, token_store):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[deps.get_directory] = lambda: directory
    app.dependency_overrides[deps.get_payments] = lambda: payments
    app.dependency_overrides[deps.get_rooms] = lambda: rooms
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_token_store] = lambda: token_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(token_store):
    auth = AuthService(token_store)

    async def make(caller_id, role="patient"):
        token = await auth.issue_token(caller_id, role)
        return {"Authorization": f"Bearer {token}"}

    return make
