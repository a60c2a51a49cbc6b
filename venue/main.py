import asyncio
import logging
import sys

from venue.config import config
from venue.database.session import create_engine, create_session_factory, init_db
from venue.services.engine import StationEngine
from venue.services.scheduler import setup_scheduler, shutdown_scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def main():
    """Main entry point."""
    db_engine = create_engine(config.database_url)
    session_factory = create_session_factory(db_engine)

    # Initialize database
    await init_db(db_engine, session_factory, seed=config.seed_catalog)
    logger.info("Database initialized")

    engine = StationEngine(session_factory)

    # Catch up on anything that elapsed while the engine was down
    await engine.sweep()

    setup_scheduler(engine)
    logger.info("Scheduler started")

    logger.info("Station engine started")
    try:
        await asyncio.Event().wait()
    finally:
        shutdown_scheduler()
        await db_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
