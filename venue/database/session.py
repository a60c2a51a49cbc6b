from datetime import time
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from venue.database.models import Base, Station, TimeSlot


DEFAULT_STATIONS = [
    ("pool-1", "pool", "Pool Table 1", 4),
    ("pool-2", "pool", "Pool Table 2", 4),
    ("pool-3", "pool", "Pool Table 3", 4),
    ("pool-4", "pool", "Pool Table 4", 4),
    ("snooker-1", "snooker", "Snooker Table", 2),
    ("ps5-1", "ps5", "PS5 Console", 4),
]

# Hourly slots from 14:00 until midnight
DEFAULT_TIME_SLOTS = [
    (f"slot-{i}", time(hour), time((hour + 1) % 24))
    for i, hour in enumerate(range(14, 24), start=1)
]


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for a database URL."""
    return create_async_engine(database_url, echo=False)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    seed: bool = True,
):
    """Initialize database and create tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if not seed:
        return

    # Seed the default venue catalog
    async with session_factory() as session:
        result = await session.execute(select(Station))
        if not result.scalars().first():
            for station_id, game_type, name, capacity in DEFAULT_STATIONS:
                session.add(
                    Station(
                        id=station_id,
                        game_type=game_type,
                        name=name,
                        capacity=capacity,
                    )
                )

        result = await session.execute(select(TimeSlot))
        if not result.scalars().first():
            for slot_id, start, end in DEFAULT_TIME_SLOTS:
                session.add(TimeSlot(id=slot_id, start=start, end=end))

        await session.commit()
