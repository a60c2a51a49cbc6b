import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    database_url: str
    timezone: str
    queue_entry_ttl_hours: int
    sweep_interval_minutes: int
    seed_catalog: bool
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./venue.db")

        # Hosted Postgres hands out plain postgresql:// URLs
        if database_url.startswith("postgresql://"):
            database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

        return cls(
            database_url=database_url,
            timezone=os.getenv("TIMEZONE", "Africa/Casablanca"),
            queue_entry_ttl_hours=int(os.getenv("QUEUE_ENTRY_TTL_HOURS", "4")),
            sweep_interval_minutes=int(os.getenv("SWEEP_INTERVAL_MINUTES", "5")),
            seed_catalog=os.getenv("SEED_CATALOG", "true").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


config = Config.from_env()
