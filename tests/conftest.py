import pytest
import pytest_asyncio
from datetime import date, datetime, time, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import Base, Station, TimeSlot
from venue.database.session import create_engine, create_session_factory
from venue.services.engine import StationEngine
from venue.services.locks import BucketLocks
from venue.services.matches import MatchCoordinator
from venue.services.notifications import NotificationDispatcher
from venue.services.queue import QueueManager
from venue.services.registry import ResourceRegistry
from venue.services.reservations import ReservationLedger


DAY = date(2024, 6, 1)
NOW = datetime(2024, 6, 1, 10, 0)


class FrozenClock:
    """Settable stand-in for the venue wall clock."""

    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create test database engine.

    A file database so that concurrent sessions see each other's commits.
    """
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'venue.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession):
    """Two pool tables, one snooker table and two afternoon slots."""
    stations = [
        Station(id="pool-1", game_type="pool", name="Pool Table 1", capacity=4),
        Station(id="pool-2", game_type="pool", name="Pool Table 2", capacity=4),
        Station(id="snooker-1", game_type="snooker", name="Snooker Table", capacity=2),
    ]
    slots = [
        TimeSlot(id="slot-1", start=time(14, 0), end=time(15, 0)),
        TimeSlot(id="slot-2", start=time(15, 0), end=time(16, 0)),
    ]
    db_session.add_all(stations + slots)
    await db_session.commit()
    return {"stations": stations, "slots": slots}


@pytest.fixture
def locks():
    return BucketLocks()


@pytest.fixture
def registry(db_session):
    return ResourceRegistry(db_session)


@pytest.fixture
def notifications(db_session, clock):
    return NotificationDispatcher(db_session, clock=clock)


@pytest.fixture
def ledger(db_session, locks, registry, clock):
    return ReservationLedger(db_session, locks, registry, clock=clock)


@pytest.fixture
def queue(db_session, locks, ledger, notifications, clock):
    """Queue manager hooked into the ledger's cancellations."""
    return QueueManager(db_session, locks, ledger, notifications, clock=clock)


@pytest_asyncio.fixture
async def pool_full(ledger, catalog):
    """Both pool tables taken for slot-1 on DAY, so the slot-1 pool bucket queues."""
    return [
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "host-1"),
        await ledger.reserve("pool-2", "pool", DAY, "slot-1", "host-2"),
    ]


@pytest.fixture
def matches(db_session, locks, registry, notifications, clock):
    return MatchCoordinator(db_session, locks, registry, notifications, clock=clock)


@pytest.fixture
def engine(session_factory, catalog, clock):
    return StationEngine(
        session_factory, clock=clock, queue_entry_ttl=timedelta(hours=4)
    )
