"""
Station Engine: the boundary the request layer talks to.

Each call opens its own AsyncSession, builds the components on it and closes
it again. The lock registry and the wait-time policy live on the engine, so
every call made through one engine instance shares them; hand the instance
to whatever layer serves requests instead of reaching for a global.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from venue.config import config
from venue.database.models import (
    Match,
    Notification,
    QueueEntry,
    Reservation,
    Station,
    TimeSlot,
    WaitingPlayer,
)
from venue.services.availability import AvailabilityCalculator, AvailabilitySnapshot
from venue.services.locks import BucketLocks
from venue.services.matches import MatchCoordinator
from venue.services.notifications import NotificationDispatcher
from venue.services.queue import (
    BookingResult,
    QueueManager,
    QueueStatistics,
    WaitEstimate,
    WaitTimePolicy,
)
from venue.services.registry import ResourceRegistry
from venue.services.reservations import CancellationResult, ReservationLedger
from venue.utils.time_utils import local_now, parse_date

logger = logging.getLogger(__name__)


@dataclass
class Components:
    registry: ResourceRegistry
    availability: AvailabilityCalculator
    notifications: NotificationDispatcher
    ledger: ReservationLedger
    queue: QueueManager
    matches: MatchCoordinator


@dataclass
class SweepResult:
    expired_entries: int
    completed_reservations: int
    finished_matches: int
    cleared_waiting_players: int = 0


class StationEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        wait_policy: WaitTimePolicy | None = None,
        clock: Callable[[], datetime] = local_now,
        queue_entry_ttl: timedelta | None = None,
    ):
        self.session_factory = session_factory
        self.locks = BucketLocks()
        self.wait_policy = wait_policy
        self.clock = clock
        if queue_entry_ttl is None:
            queue_entry_ttl = timedelta(hours=config.queue_entry_ttl_hours)
        self.queue_entry_ttl = queue_entry_ttl

    def _components(self, db: AsyncSession) -> Components:
        registry = ResourceRegistry(db)
        notifications = NotificationDispatcher(db, clock=self.clock)
        ledger = ReservationLedger(db, self.locks, registry, clock=self.clock)
        queue = QueueManager(
            db,
            self.locks,
            ledger,
            notifications,
            wait_policy=self.wait_policy,
            clock=self.clock,
        )
        matches = MatchCoordinator(
            db, self.locks, registry, notifications, clock=self.clock
        )
        return Components(
            registry=registry,
            availability=ledger.availability,
            notifications=notifications,
            ledger=ledger,
            queue=queue,
            matches=matches,
        )

    # Queries

    async def list_stations(self, game_type: str | None = None) -> list[Station]:
        async with self.session_factory() as db:
            return await self._components(db).registry.list_stations(game_type)

    async def list_time_slots(self) -> list[TimeSlot]:
        async with self.session_factory() as db:
            return await self._components(db).registry.get_time_slots()

    async def available_stations(
        self, game_type: str, day: str | date, time_slot_id: str
    ) -> list[Station]:
        async with self.session_factory() as db:
            return await self._components(db).availability.available_stations(
                game_type, parse_date(day), time_slot_id
            )

    async def should_queue(
        self, game_type: str, day: str | date, time_slot_id: str
    ) -> bool:
        async with self.session_factory() as db:
            return await self._components(db).availability.should_queue(
                game_type, parse_date(day), time_slot_id
            )

    async def availability_snapshot(
        self, game_type: str, day: str | date, time_slot_id: str
    ) -> AvailabilitySnapshot:
        async with self.session_factory() as db:
            return await self._components(db).availability.snapshot(
                game_type, parse_date(day), time_slot_id
            )

    async def availability_by_slot(
        self, game_type: str, day: str | date
    ) -> list[tuple[TimeSlot, int]]:
        async with self.session_factory() as db:
            return await self._components(db).availability.availability_by_slot(
                game_type, parse_date(day)
            )

    async def estimated_wait_time(self, game_type: str) -> int:
        async with self.session_factory() as db:
            return await self._components(db).queue.estimated_wait_time(game_type)

    async def wait_estimate(self, game_type: str) -> WaitEstimate:
        async with self.session_factory() as db:
            return await self._components(db).queue.wait_estimate(game_type)

    async def statistics(self) -> QueueStatistics:
        async with self.session_factory() as db:
            return await self._components(db).queue.statistics()

    async def active_queue_entries(self) -> list[QueueEntry]:
        async with self.session_factory() as db:
            return await self._components(db).queue.active_entries()

    async def user_queue_entries(self, user_id: str) -> list[QueueEntry]:
        async with self.session_factory() as db:
            return await self._components(db).queue.user_entries(user_id)

    async def get_queue_entry(self, entry_id: int) -> QueueEntry:
        async with self.session_factory() as db:
            return await self._components(db).queue.get(entry_id)

    async def get_reservation(self, reservation_id: int) -> Reservation:
        async with self.session_factory() as db:
            return await self._components(db).ledger.get(reservation_id)

    async def user_reservations(self, user_id: str) -> list[Reservation]:
        async with self.session_factory() as db:
            return await self._components(db).ledger.user_reservations(user_id)

    async def reservations_for_date(self, day: str | date) -> list[Reservation]:
        async with self.session_factory() as db:
            return await self._components(db).ledger.reservations_for_date(parse_date(day))

    async def open_matches(self, game_type: str | None = None) -> list[Match]:
        async with self.session_factory() as db:
            return await self._components(db).matches.open_matches(game_type)

    async def get_match(self, match_id: int) -> Match:
        async with self.session_factory() as db:
            return await self._components(db).matches.get(match_id)

    async def user_matches(self, user_id: str) -> list[Match]:
        async with self.session_factory() as db:
            return await self._components(db).matches.user_matches(user_id)

    # Commands

    async def reserve(
        self,
        station_id: str,
        game_type: str,
        day: str | date,
        time_slot_id: str,
        user_id: str,
        player_count: int = 1,
        duration: int | None = None,
    ) -> Reservation:
        async with self.session_factory() as db:
            return await self._components(db).ledger.reserve(
                station_id,
                game_type,
                parse_date(day),
                time_slot_id,
                user_id,
                player_count,
                duration,
            )

    async def book(
        self,
        game_type: str,
        day: str | date,
        time_slot_id: str,
        user_id: str,
        player_count: int = 1,
        duration: int | None = None,
        preferred_station_id: str | None = None,
        join_queue: bool = False,
    ) -> BookingResult:
        """Book any free station.

        When none is free the result reports the queue path, or with
        join_queue the user is queued right away.
        """
        async with self.session_factory() as db:
            return await self._components(db).queue.book(
                game_type,
                parse_date(day),
                time_slot_id,
                user_id,
                player_count,
                duration,
                preferred_station_id=preferred_station_id,
                join_queue=join_queue,
            )

    async def cancel_reservation(self, reservation_id: int) -> CancellationResult:
        async with self.session_factory() as db:
            return await self._components(db).ledger.cancel(reservation_id)

    async def update_reservation_status(
        self, reservation_id: int, status: str
    ) -> CancellationResult:
        """Front desk outcome for an active booking: completed, cancelled or no_show."""
        async with self.session_factory() as db:
            return await self._components(db).ledger.update_status(reservation_id, status)

    async def delete_reservation(self, reservation_id: int) -> CancellationResult:
        async with self.session_factory() as db:
            return await self._components(db).ledger.delete(reservation_id)

    async def join_queue(
        self,
        user_id: str,
        game_type: str,
        day: str | date,
        time_slot_id: str | None = None,
        player_count: int = 1,
        duration: int | None = None,
    ) -> QueueEntry:
        async with self.session_factory() as db:
            return await self._components(db).queue.join(
                user_id, game_type, parse_date(day), time_slot_id, player_count, duration
            )

    async def cancel_queue_entry(self, entry_id: int) -> QueueEntry:
        async with self.session_factory() as db:
            return await self._components(db).queue.cancel(entry_id)

    async def promote_next(
        self, game_type: str, day: str | date, time_slot_id: str
    ):
        async with self.session_factory() as db:
            return await self._components(db).queue.promote_next(
                game_type, parse_date(day), time_slot_id
            )

    async def set_maintenance(self, station_id: str, enabled: bool) -> Station:
        async with self.session_factory() as db:
            return await self._components(db).ledger.set_maintenance(station_id, enabled)

    async def create_match(
        self,
        creator_id: str,
        game_type: str,
        day: str | date,
        time_slot_id: str,
        max_players: int | None = None,
        skill_level: str = "casual",
    ) -> Match:
        async with self.session_factory() as db:
            return await self._components(db).matches.create_match(
                creator_id, game_type, parse_date(day), time_slot_id, max_players, skill_level
            )

    async def join_match(self, match_id: int, user_id: str) -> Match:
        async with self.session_factory() as db:
            return await self._components(db).matches.join(match_id, user_id)

    async def leave_match(self, match_id: int, user_id: str) -> Match:
        async with self.session_factory() as db:
            return await self._components(db).matches.leave(match_id, user_id)

    async def complete_match(self, match_id: int, user_id: str) -> Match:
        async with self.session_factory() as db:
            return await self._components(db).matches.complete(match_id, user_id)

    async def cancel_match(self, match_id: int, user_id: str) -> Match:
        async with self.session_factory() as db:
            return await self._components(db).matches.cancel(match_id, user_id)

    async def add_waiting_player(
        self,
        user_id: str,
        name: str,
        game_type: str,
        skill_level: str = "casual",
        time_range: str = "now",
    ) -> WaitingPlayer:
        async with self.session_factory() as db:
            return await self._components(db).matches.add_waiting_player(
                user_id, name, game_type, skill_level, time_range
            )

    async def remove_waiting_player(self, player_id: int) -> WaitingPlayer:
        async with self.session_factory() as db:
            return await self._components(db).matches.remove_waiting_player(player_id)

    async def waiting_players(self, game_type: str | None = None) -> list[WaitingPlayer]:
        async with self.session_factory() as db:
            return await self._components(db).matches.waiting_players(game_type)

    # Notifications

    async def notify(self, user_id: str, message: str) -> Notification:
        async with self.session_factory() as db:
            notification = await self._components(db).notifications.notify(user_id, message)
            await db.commit()
            return notification

    async def list_notifications(self, user_id: str) -> list[Notification]:
        async with self.session_factory() as db:
            return await self._components(db).notifications.list_for(user_id)

    async def unread_count(self, user_id: str) -> int:
        async with self.session_factory() as db:
            return await self._components(db).notifications.unread_count(user_id)

    async def mark_read(self, notification_id: int) -> Notification:
        async with self.session_factory() as db:
            return await self._components(db).notifications.mark_read(notification_id)

    async def clear_all(self, user_id: str) -> int:
        async with self.session_factory() as db:
            return await self._components(db).notifications.clear_all(user_id)

    # Maintenance

    async def sweep(self) -> SweepResult:
        """Periodic hook: expire stale queue entries, close elapsed slots, clear old board posts."""
        async with self.session_factory() as db:
            components = self._components(db)
            result = SweepResult(
                expired_entries=await components.queue.expire_stale(self.queue_entry_ttl),
                completed_reservations=await components.ledger.complete_elapsed(),
                finished_matches=await components.matches.finish_elapsed(),
                cleared_waiting_players=await components.matches.clear_stale_waiting_players(),
            )

        logger.info(
            f"Sweep: {result.expired_entries} expired, "
            f"{result.completed_reservations} completed, "
            f"{result.finished_matches} matches closed, "
            f"{result.cleared_waiting_players} board posts cleared"
        )
        return result
