import os
import tempfile
from types import SimpleNamespace

# Configure before any bookingchat import reads the environment
_TMP_DIR = tempfile.mkdtemp(prefix="bookingchat-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["DATABASE_POOL"] = "null"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["MEDIA_BACKEND"] = "local"
os.environ["REALTIME_RELAY"] = "off"
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["SECRET_KEY"] = "test-secret"

import httpx
import pytest

from bookingchat.core.security import Actor, token_for
from bookingchat.db.database import AsyncSessionLocal, Base, engine, load_models
from bookingchat.db.models.user import User
from bookingchat.main import app
from bookingchat.realtime.relay import EventBus
from bookingchat.realtime.room_registry import RoomRegistry
from bookingchat.services import booking_service


@pytest.fixture(autouse=True)
async def schema():
    load_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def fresh_realtime():
    """Each test gets an empty registry and a local-only bus."""
    app.state.registry = RoomRegistry()
    app.state.relay = None
    app.state.bus = EventBus(app.state.registry)
    yield app.state.registry
    app.dependency_overrides.clear()


@pytest.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def users(db):
    rows = {
        "customer": User(email="customer@example.com", name="Carla Customer", role="customer"),
        "other_customer": User(email="other@example.com", name="Oscar Other", role="customer"),
        "staff": User(email="staff@example.com", name="Sam Staff", role="staff"),
        "other_staff": User(email="staff2@example.com", name="Tina Tech", role="staff"),
        "admin": User(email="admin@example.com", name="Ada Admin", role="admin"),
    }
    db.add_all(rows.values())
    await db.commit()
    return SimpleNamespace(**rows)


def actor_of(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user.id, user.role)}"}


@pytest.fixture
async def booking(db, users):
    return await booking_service.create_booking(
        db, customer_id=users.customer.id, title="Laptop repair", assigned_staff_id=users.staff.id
    )


@pytest.fixture
async def chat(db, booking):
    from bookingchat.repositories.message_repository import ChatRepository

    return await ChatRepository.get_by_booking(db, booking.id)


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
