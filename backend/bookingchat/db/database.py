import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from bookingchat.core import config

logger = logging.getLogger(__name__)

engine_kwargs = {"echo": config.SQL_ECHO}
if config.DATABASE_POOL == "null":
    engine_kwargs["poolclass"] = NullPool
else:
    engine_kwargs["pool_pre_ping"] = True

engine = create_async_engine(config.DATABASE_URL, **engine_kwargs)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def load_models():
    # Registers every table on Base.metadata
    from bookingchat.db.models import booking, chat, internal_chat, user  # noqa: F401


async def init_db():
    """
    Creates missing tables at startup and, when SEED_DEMO_DATA is set,
    seeds one admin, one staff member, one customer and a booking with its chat.
    """
    load_models()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if config.SEED_DEMO_DATA:
        async with AsyncSessionLocal() as session:
            await seed_demo_data(session)


async def seed_demo_data(session: AsyncSession):
    from sqlalchemy import select

    from bookingchat.db.models.user import User
    from bookingchat.services import booking_service

    async def ensure_user(email, name, role):
        result = await session.execute(select(User).where(User.email == email))
        user_obj = result.scalar_one_or_none()
        if not user_obj:
            logger.info("Creating demo user %s (%s)", email, role)
            user_obj = User(email=email, name=name, role=role)
            session.add(user_obj)
            await session.flush()
        return user_obj

    admin = await ensure_user("admin@example.com", "Demo Admin", "admin")
    staff = await ensure_user("staff@example.com", "Demo Staff", "staff")
    customer = await ensure_user("customer@example.com", "Demo Customer", "customer")
    await session.commit()

    existing = await booking_service.list_customer_bookings(session, customer.id)
    if not existing:
        await booking_service.create_booking(
            session,
            customer_id=customer.id,
            title="Laptop repair",
            assigned_staff_id=staff.id,
        )
    logger.info("Demo data ready (admin=%s, staff=%s, customer=%s)", admin.id, staff.id, customer.id)
