import asyncio

from backend.app.core.database import Base, engine
from backend.app.models import assignment, courier, fulfillment, order, sector, slot, vendor  # noqa: F401


async def reset():
    """Drop and recreate every scheduler table. Development databases only."""
    print("Dropping tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print("Database schema recreated.")


if __name__ == "__main__":
    asyncio.run(reset())
