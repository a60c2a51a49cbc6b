from datetime import date, datetime, time
from sqlalchemy import select, and_, or_, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import (
    Station,
    TimeSlot,
    Reservation,
    QueueEntry,
    Match,
    MatchPlayer,
    Notification,
    WaitingPlayer,
)


class StationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self, station_id: str, game_type: str, name: str, capacity: int = 2
    ) -> Station:
        station = Station(
            id=station_id,
            game_type=game_type,
            name=name,
            capacity=capacity,
            status="available",
            maintenance=False,
        )
        self.session.add(station)
        await self.session.flush()
        return station

    async def get_by_id(self, station_id: str) -> Station | None:
        result = await self.session.execute(
            select(Station).where(Station.id == station_id)
        )
        return result.scalar_one_or_none()

    async def get_all(self, game_type: str | None = None) -> list[Station]:
        query = select(Station).order_by(Station.id)
        if game_type:
            query = query.where(Station.game_type == game_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_bookable(self, game_type: str) -> list[Station]:
        result = await self.session.execute(
            select(Station)
            .where(
                and_(
                    Station.game_type == game_type,
                    Station.maintenance == False,  # noqa: E712
                )
            )
            .order_by(Station.id)
        )
        return list(result.scalars().all())

    async def update_status(self, station_id: str, status: str):
        await self.session.execute(
            update(Station).where(Station.id == station_id).values(status=status)
        )

    async def update_maintenance(self, station_id: str, enabled: bool):
        await self.session.execute(
            update(Station)
            .where(Station.id == station_id)
            .values(maintenance=enabled)
        )


class TimeSlotRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, slot_id: str, start: time, end: time) -> TimeSlot:
        slot = TimeSlot(id=slot_id, start=start, end=end)
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def get_by_id(self, slot_id: str) -> TimeSlot | None:
        result = await self.session.execute(
            select(TimeSlot).where(TimeSlot.id == slot_id)
        )
        return result.scalar_one_or_none()

    async def get_all(self) -> list[TimeSlot]:
        result = await self.session.execute(select(TimeSlot).order_by(TimeSlot.start))
        return list(result.scalars().all())


class ReservationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        station_id: str,
        game_type: str,
        day: date,
        time_slot_id: str,
        user_id: str,
        player_count: int,
        duration: int,
        queue_entry_id: int | None = None,
        created_at: datetime | None = None,
    ) -> Reservation:
        reservation = Reservation(
            station_id=station_id,
            game_type=game_type,
            date=day,
            time_slot_id=time_slot_id,
            user_id=user_id,
            player_count=player_count,
            duration=duration,
            queue_entry_id=queue_entry_id,
            status="active",
        )
        if created_at is not None:
            reservation.created_at = created_at
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get_by_id(self, reservation_id: int) -> Reservation | None:
        result = await self.session.execute(
            select(Reservation).where(Reservation.id == reservation_id)
        )
        return result.scalar_one_or_none()

    async def get_active_for_slot(
        self, station_id: str, day: date, time_slot_id: str
    ) -> Reservation | None:
        result = await self.session.execute(
            select(Reservation).where(
                and_(
                    Reservation.station_id == station_id,
                    Reservation.date == day,
                    Reservation.time_slot_id == time_slot_id,
                    Reservation.status == "active",
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_reserved_station_ids(self, day: date, time_slot_id: str) -> set[str]:
        result = await self.session.execute(
            select(Reservation.station_id).where(
                and_(
                    Reservation.date == day,
                    Reservation.time_slot_id == time_slot_id,
                    Reservation.status == "active",
                )
            )
        )
        return set(result.scalars().all())

    async def get_active_for_station(
        self, station_id: str, day: date
    ) -> list[Reservation]:
        result = await self.session.execute(
            select(Reservation).where(
                and_(
                    Reservation.station_id == station_id,
                    Reservation.date == day,
                    Reservation.status == "active",
                )
            )
        )
        return list(result.scalars().all())

    async def get_active_until(self, day: date) -> list[Reservation]:
        result = await self.session.execute(
            select(Reservation)
            .where(and_(Reservation.date <= day, Reservation.status == "active"))
            .order_by(Reservation.date, Reservation.id)
        )
        return list(result.scalars().all())

    async def get_by_user(self, user_id: str) -> list[Reservation]:
        result = await self.session.execute(
            select(Reservation)
            .where(Reservation.user_id == user_id)
            .order_by(Reservation.date, Reservation.id)
        )
        return list(result.scalars().all())

    async def get_filtered(
        self,
        game_type: str | None = None,
        day: date | None = None,
        status: str | None = None,
    ) -> list[Reservation]:
        query = select(Reservation).order_by(Reservation.date, Reservation.id)
        if game_type:
            query = query.where(Reservation.game_type == game_type)
        if day:
            query = query.where(Reservation.date == day)
        if status:
            query = query.where(Reservation.status == status)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def average_duration(self, game_type: str) -> float | None:
        result = await self.session.execute(
            select(func.avg(Reservation.duration)).where(
                and_(
                    Reservation.game_type == game_type,
                    Reservation.status != "cancelled",
                )
            )
        )
        return result.scalar_one_or_none()

    async def update_status(self, reservation_id: int, status: str):
        await self.session.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id)
            .values(status=status)
        )

    async def delete(self, reservation_id: int):
        await self.session.execute(
            delete(Reservation).where(Reservation.id == reservation_id)
        )


class QueueRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: str,
        game_type: str,
        day: date,
        time_slot_id: str | None,
        player_count: int,
        duration: int | None,
        joined_at: datetime,
    ) -> QueueEntry:
        entry = QueueEntry(
            user_id=user_id,
            game_type=game_type,
            date=day,
            time_slot_id=time_slot_id,
            player_count=player_count,
            duration=duration,
            joined_at=joined_at,
            status="waiting",
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_by_id(self, entry_id: int) -> QueueEntry | None:
        result = await self.session.execute(
            select(QueueEntry).where(QueueEntry.id == entry_id)
        )
        return result.scalar_one_or_none()

    async def get_bucket(
        self, game_type: str, day: date, time_slot_id: str | None
    ) -> list[QueueEntry]:
        """Waiting entries of one bucket in FIFO order."""
        if time_slot_id is None:
            slot_filter = QueueEntry.time_slot_id.is_(None)
        else:
            slot_filter = QueueEntry.time_slot_id == time_slot_id

        result = await self.session.execute(
            select(QueueEntry)
            .where(
                and_(
                    QueueEntry.game_type == game_type,
                    QueueEntry.date == day,
                    slot_filter,
                    QueueEntry.status == "waiting",
                )
            )
            .order_by(QueueEntry.joined_at, QueueEntry.id)
        )
        return list(result.scalars().all())

    async def get_candidates(
        self, game_type: str, day: date, time_slot_id: str
    ) -> list[QueueEntry]:
        """Waiting entries that a freed station in this slot can serve."""
        result = await self.session.execute(
            select(QueueEntry)
            .where(
                and_(
                    QueueEntry.game_type == game_type,
                    QueueEntry.date == day,
                    or_(
                        QueueEntry.time_slot_id == time_slot_id,
                        QueueEntry.time_slot_id.is_(None),
                    ),
                    QueueEntry.status == "waiting",
                )
            )
            .order_by(QueueEntry.joined_at, QueueEntry.id)
        )
        return list(result.scalars().all())

    async def get_user_waiting(
        self, user_id: str, game_type: str, day: date, time_slot_id: str | None
    ) -> QueueEntry | None:
        for entry in await self.get_bucket(game_type, day, time_slot_id):
            if entry.user_id == user_id:
                return entry
        return None

    async def get_filtered(
        self,
        game_type: str | None = None,
        day: date | None = None,
        status: str | None = None,
        user_id: str | None = None,
    ) -> list[QueueEntry]:
        query = select(QueueEntry).order_by(QueueEntry.joined_at, QueueEntry.id)
        if game_type:
            query = query.where(QueueEntry.game_type == game_type)
        if day:
            query = query.where(QueueEntry.date == day)
        if status:
            query = query.where(QueueEntry.status == status)
        if user_id:
            query = query.where(QueueEntry.user_id == user_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update_status(self, entry_id: int, status: str, resolved_at: datetime):
        await self.session.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry_id)
            .values(status=status, resolved_at=resolved_at)
        )


class MatchRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        creator_id: str,
        game_type: str,
        day: date,
        time_slot_id: str,
        max_players: int,
        skill_level: str,
        station_id: str | None,
        created_at: datetime | None = None,
    ) -> Match:
        match = Match(
            creator_id=creator_id,
            game_type=game_type,
            date=day,
            time_slot_id=time_slot_id,
            max_players=max_players,
            skill_level=skill_level,
            station_id=station_id,
            status="open",
        )
        if created_at is not None:
            match.created_at = created_at
        match.participants.append(MatchPlayer(user_id=creator_id))
        self.session.add(match)
        await self.session.flush()
        return match

    async def get_by_id(self, match_id: int) -> Match | None:
        result = await self.session.execute(select(Match).where(Match.id == match_id))
        return result.scalar_one_or_none()

    async def get_open(self, game_type: str | None = None) -> list[Match]:
        query = select(Match).where(Match.status == "open").order_by(Match.id)
        if game_type:
            query = query.where(Match.game_type == game_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_by_user(self, user_id: str) -> list[Match]:
        result = await self.session.execute(
            select(Match)
            .join(MatchPlayer, MatchPlayer.match_id == Match.id)
            .where(MatchPlayer.user_id == user_id)
            .order_by(Match.id)
        )
        return list(result.scalars().unique().all())

    async def get_unfinished_until(self, day: date) -> list[Match]:
        result = await self.session.execute(
            select(Match)
            .where(
                and_(
                    Match.date <= day,
                    Match.status.in_(("open", "in_progress")),
                )
            )
            .order_by(Match.id)
        )
        return list(result.scalars().all())


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, user_id: str, message: str, created_at: datetime | None = None
    ) -> Notification:
        notification = Notification(user_id=user_id, message=message, read=False)
        if created_at is not None:
            notification.created_at = created_at
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def get_by_id(self, notification_id: int) -> Notification | None:
        result = await self.session.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        return result.scalar_one_or_none()

    async def get_by_user(self, user_id: str) -> list[Notification]:
        result = await self.session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.id)
        )
        return list(result.scalars().all())

    async def count_unread(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count(Notification.id)).where(
                and_(
                    Notification.user_id == user_id,
                    Notification.read == False,  # noqa: E712
                )
            )
        )
        return result.scalar_one()

    async def mark_read(self, notification_id: int):
        await self.session.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .values(read=True)
        )

    async def delete_by_user(self, user_id: str) -> int:
        result = await self.session.execute(
            delete(Notification).where(Notification.user_id == user_id)
        )
        return result.rowcount


class WaitingPlayerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: str,
        name: str,
        game_type: str,
        skill_level: str,
        time_range: str,
        created_at: datetime,
    ) -> WaitingPlayer:
        player = WaitingPlayer(
            user_id=user_id,
            name=name,
            game_type=game_type,
            skill_level=skill_level,
            time_range=time_range,
            created_at=created_at,
        )
        self.session.add(player)
        await self.session.flush()
        return player

    async def get_by_id(self, player_id: int) -> WaitingPlayer | None:
        result = await self.session.execute(
            select(WaitingPlayer).where(WaitingPlayer.id == player_id)
        )
        return result.scalar_one_or_none()

    async def get_for_user(self, user_id: str, game_type: str) -> WaitingPlayer | None:
        result = await self.session.execute(
            select(WaitingPlayer).where(
                and_(
                    WaitingPlayer.user_id == user_id,
                    WaitingPlayer.game_type == game_type,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_all(self, game_type: str | None = None) -> list[WaitingPlayer]:
        query = select(WaitingPlayer).order_by(WaitingPlayer.created_at, WaitingPlayer.id)
        if game_type:
            query = query.where(WaitingPlayer.game_type == game_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def delete(self, player_id: int):
        await self.session.execute(
            delete(WaitingPlayer).where(WaitingPlayer.id == player_id)
        )

    async def delete_created_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(WaitingPlayer).where(WaitingPlayer.created_at < cutoff)
        )
        return result.rowcount
