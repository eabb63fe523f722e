import asyncio
import os
import sys

# Add backend directory to path so we can import bookingchat modules
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from bookingchat.db.database import AsyncSessionLocal, Base, engine, load_models, seed_demo_data


async def reset_database():
    load_models()
    print("Dropping all tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    print("Tables re-created.")

    print("Seeding demo users and a booking chat...")
    async with AsyncSessionLocal() as session:
        await seed_demo_data(session)
    print("Seeding complete.")


if __name__ == "__main__":
    try:
        asyncio.run(reset_database())
    except Exception as e:
        print(f"Error during reset: {e}")
        sys.exit(1)
