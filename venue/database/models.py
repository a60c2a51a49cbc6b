import datetime as dt
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


GAME_TYPES = ("pool", "snooker", "ps5")
STATION_STATUSES = ("available", "reserved", "occupied", "maintenance")
SKILL_LEVELS = ("beginner", "casual", "competitive")
RESERVATION_STATUSES = ("active", "completed", "cancelled", "no_show")
TIME_RANGES = ("now", "30min", "60min", "today")


class Base(DeclarativeBase):
    pass


class Station(Base):
    __tablename__ = "stations"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    game_type: Mapped[str] = mapped_column(String(20), nullable=False)  # "pool" / "snooker" / "ps5"
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="available", nullable=False
    )  # "available" / "reserved" / "occupied" / "maintenance"
    maintenance: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=2, nullable=False)


class TimeSlot(Base):
    __tablename__ = "time_slots"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    start: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end: Mapped[dt.time] = mapped_column(Time, nullable=False)  # 00:00 is midnight


class Reservation(Base):
    __tablename__ = "reservations"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        # One active reservation per station slot, whatever the caller does
        Index(
            "uq_reservations_active_station_slot",
            "station_id",
            "date",
            "time_slot_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    station_id: Mapped[str] = mapped_column(ForeignKey("stations.id"), nullable=False)
    game_type: Mapped[str] = mapped_column(String(20), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time_slot_id: Mapped[str] = mapped_column(ForeignKey("time_slots.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    player_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes
    status: Mapped[str] = mapped_column(
        String(20), default="active", nullable=False
    )  # "active" / "completed" / "cancelled" / "no_show"
    queue_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("queue_entries.id"), nullable=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    game_type: Mapped[str] = mapped_column(String(20), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time_slot_id: Mapped[str | None] = mapped_column(String(50), nullable=True)  # None: any slot that day
    player_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    joined_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="waiting", nullable=False
    )  # "waiting" / "promoted" / "cancelled"
    resolved_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)

    # Filled in by the queue manager on read, never persisted
    position = None


class Match(Base):
    __tablename__ = "matches"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    game_type: Mapped[str] = mapped_column(String(20), nullable=False)
    creator_id: Mapped[str] = mapped_column(String(100), nullable=False)
    max_players: Mapped[int] = mapped_column(Integer, nullable=False)
    skill_level: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="open", nullable=False
    )  # "open" / "in_progress" / "completed" / "cancelled"
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time_slot_id: Mapped[str] = mapped_column(ForeignKey("time_slots.id"), nullable=False)
    station_id: Mapped[str | None] = mapped_column(ForeignKey("stations.id"), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    participants: Mapped[list["MatchPlayer"]] = relationship(
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="MatchPlayer.id",
        lazy="selectin",
    )

    @property
    def players(self) -> list[str]:
        return [p.user_id for p in self.participants]


class MatchPlayer(Base):
    __tablename__ = "match_players"
    __table_args__ = (UniqueConstraint("match_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    match: Mapped["Match"] = relationship(back_populates="participants")


class Notification(Base):
    __tablename__ = "notifications"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class WaitingPlayer(Base):
    """A player on the looking-for-game board."""

    __tablename__ = "waiting_players"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (UniqueConstraint("user_id", "game_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    game_type: Mapped[str] = mapped_column(String(20), nullable=False)
    skill_level: Mapped[str] = mapped_column(String(20), nullable=False)
    time_range: Mapped[str] = mapped_column(
        String(20), default="now", nullable=False
    )  # "now" / "30min" / "60min" / "today"
    match_id: Mapped[int | None] = mapped_column(ForeignKey("matches.id"), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
