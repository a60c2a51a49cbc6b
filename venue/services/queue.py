import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import QueueEntry, Reservation, TimeSlot
from venue.database.repositories import QueueRepository, ReservationRepository
from venue.services.exceptions import (
    AlreadyJoinedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
)
from venue.services.locks import BucketLocks
from venue.services.notifications import (
    NotificationDispatcher,
    expired_message,
    promotion_message,
    queued_message,
)
from venue.services.registry import ResourceRegistry, validate_game_type
from venue.services.reservations import ReservationLedger
from venue.utils.time_utils import format_time_range, local_now, slot_has_ended, slot_length

logger = logging.getLogger(__name__)


@dataclass
class WaitEstimate:
    minutes: int
    unavailable: bool = False  # no bookable station of this game type


@dataclass
class GameTypeCount:
    game_type: str
    count: int


@dataclass
class QueueStatistics:
    total_waiting: int
    average_wait_time: float
    queues_by_game_type: list[GameTypeCount] = field(default_factory=list)


@dataclass
class BookingResult:
    success: bool
    message: str
    reservation: Reservation | None = None
    queue_entry: QueueEntry | None = None

    @property
    def is_waitlist(self) -> bool:
        return self.queue_entry is not None


@dataclass
class PromotionResult:
    entry: QueueEntry
    reservation: Reservation
    skipped: list[int] = field(default_factory=list)  # stale or conflicting entry ids


class WaitTimePolicy(Protocol):
    async def estimate(
        self, queue: "QueueManager", game_type: str, waiting: int
    ) -> WaitEstimate:
        ...


class ProportionalWaitTime:
    """Average booking length times queue length per bookable station."""

    async def estimate(
        self, queue: "QueueManager", game_type: str, waiting: int
    ) -> WaitEstimate:
        stations = await queue.registry.bookable_stations(game_type)
        if not stations:
            return WaitEstimate(minutes=0, unavailable=True)
        if waiting == 0:
            return WaitEstimate(minutes=0)

        average = await queue.reservation_repo.average_duration(game_type)
        if average is None:
            slots = await queue.registry.get_time_slots()
            if not slots:
                return WaitEstimate(minutes=0)
            average = sum(slot_length(s.start, s.end) for s in slots) / len(slots)

        return WaitEstimate(minutes=round(average * waiting / len(stations)))


class QueueManager:
    """FIFO waitlists per (game_type, date, time_slot_id) bucket.

    Only writer of queue entry status. Entries move waiting -> promoted or
    waiting -> cancelled and never leave a terminal state. Positions are
    computed from (joined_at, id) order on every read.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        locks: BucketLocks,
        ledger: ReservationLedger,
        notifications: NotificationDispatcher | None = None,
        wait_policy: WaitTimePolicy | None = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.db = db_session
        self.locks = locks
        self.ledger = ledger
        self.registry: ResourceRegistry = ledger.registry
        self.notifications = notifications or NotificationDispatcher(db_session, clock)
        self.wait_policy = wait_policy or ProportionalWaitTime()
        self.clock = clock
        self.repo = QueueRepository(db_session)
        self.reservation_repo = ReservationRepository(db_session)

        ledger.on_release(self.promote_next)

    async def join(
        self,
        user_id: str,
        game_type: str,
        day: date,
        time_slot_id: str | None = None,
        player_count: int = 1,
        duration: int | None = None,
    ) -> QueueEntry:
        """Append a user to the tail of a bucket.

        A slot bucket only takes new entries while every station of that
        slot is taken. Raises InvalidStateError when one is free.
        """
        await self._check_entry(game_type, time_slot_id, player_count)

        async with self.locks.queue(game_type, day):
            entry = await self._join_locked(
                user_id, game_type, day, time_slot_id, player_count, duration
            )

        logger.info(
            f"Queue entry {entry.id}: user {user_id} joined {game_type} {day} "
            f"slot {time_slot_id or 'any'} at position {entry.position}"
        )
        return entry

    async def book(
        self,
        game_type: str,
        day: date,
        time_slot_id: str,
        user_id: str,
        player_count: int = 1,
        duration: int | None = None,
        preferred_station_id: str | None = None,
        join_queue: bool = False,
    ) -> BookingResult:
        """Book any free station; with join_queue, queue the user when none is.

        The queue lock covers both the booking attempt and the join, so a
        station freed in between is either booked here or promoted to the
        new entry once the lock is released.
        """
        await self._check_entry(game_type, time_slot_id, player_count)

        async with self.locks.queue(game_type, day):
            while True:
                try:
                    reservation = await self.ledger.reserve_any(
                        game_type,
                        day,
                        time_slot_id,
                        user_id,
                        player_count,
                        duration,
                        preferred_station_id=preferred_station_id,
                    )
                except ConflictError:
                    if not join_queue:
                        return BookingResult(
                            success=False,
                            message=f"No {game_type} station is free for this slot. Join the queue to wait for one.",
                        )
                else:
                    return BookingResult(
                        success=True,
                        message=f"Booked {reservation.station_id}.",
                        reservation=reservation,
                    )

                try:
                    entry = await self._join_locked(
                        user_id, game_type, day, time_slot_id, player_count, duration
                    )
                except InvalidStateError:
                    logger.info(f"{game_type} station freed while {user_id} was queueing, retrying")
                    continue

                logger.info(
                    f"Queue entry {entry.id}: no {game_type} station free for {user_id}, "
                    f"queued at position {entry.position}"
                )
                return BookingResult(
                    success=True,
                    message=f"Added to the {game_type} queue at position {entry.position}.",
                    queue_entry=entry,
                )

    async def _check_entry(self, game_type: str, time_slot_id: str | None, player_count: int):
        validate_game_type(game_type)
        if time_slot_id is not None:
            await self.registry.get_time_slot(time_slot_id)
        if player_count < 1:
            raise ValueError("Player count must be at least 1")

    async def _join_locked(
        self,
        user_id: str,
        game_type: str,
        day: date,
        time_slot_id: str | None,
        player_count: int,
        duration: int | None,
    ) -> QueueEntry:
        if time_slot_id is not None and await self.ledger.availability.available_stations(
            game_type, day, time_slot_id
        ):
            raise InvalidStateError(
                f"A {game_type} station is free for slot {time_slot_id}, book it instead"
            )

        existing = await self.repo.get_user_waiting(user_id, game_type, day, time_slot_id)
        if existing:
            raise AlreadyJoinedError(
                f"User {user_id} is already waiting in the {game_type} queue"
            )

        entry = await self.repo.create(
            user_id=user_id,
            game_type=game_type,
            day=day,
            time_slot_id=time_slot_id,
            player_count=player_count,
            duration=duration,
            joined_at=self.clock(),
        )
        bucket = await self.repo.get_bucket(game_type, day, time_slot_id)
        self._assign_positions(bucket)

        await self.notifications.notify(user_id, queued_message(game_type, entry.position))
        await self.db.commit()
        return entry

    async def cancel(self, entry_id: int) -> QueueEntry:
        """Leave the queue."""
        entry = await self._get(entry_id)

        async with self.locks.queue(entry.game_type, entry.date):
            await self.db.refresh(entry)
            self._transition(entry, "cancelled")
            await self.repo.update_status(entry.id, "cancelled", entry.resolved_at)
            await self.db.commit()

        logger.info(f"Queue entry {entry_id} cancelled")
        return entry

    async def promote_next(
        self, game_type: str, day: date, time_slot_id: str
    ) -> PromotionResult | None:
        """Give a freed station in this bucket to the longest-waiting viable entry.

        Stale entries and entries whose reservation attempt loses a race are
        skipped; the next entry in line is tried. Returns None when nobody
        could be promoted, which leaves the station open for direct booking.
        """
        skipped: list[int] = []

        async with self.locks.queue(game_type, day):
            slot = await self._find_slot(time_slot_id)
            if slot is not None and not await self.ledger.availability.available_stations(
                game_type, day, time_slot_id
            ):
                return None

            while True:
                candidates = [
                    e for e in await self.repo.get_candidates(game_type, day, time_slot_id)
                    if e.id not in skipped
                ]
                if not candidates:
                    return None

                entry = candidates[0]
                if slot is None or self._is_stale(entry, slot):
                    logger.info(f"Skipping stale queue entry {entry.id}")
                    skipped.append(entry.id)
                    continue

                try:
                    reservation = await self.ledger.reserve_any(
                        game_type=game_type,
                        day=day,
                        time_slot_id=time_slot_id,
                        user_id=entry.user_id,
                        player_count=entry.player_count,
                        duration=entry.duration,
                        queue_entry_id=entry.id,
                    )
                except (ConflictError, InvalidStateError, ValueError) as e:
                    # Refresh from the database: a failed insert rolls back the session
                    logger.warning(f"Promotion of queue entry {entry.id} failed: {e}")
                    skipped.append(entry.id)
                    slot = await self._find_slot(time_slot_id)
                    continue

                await self.db.refresh(entry)
                self._transition(entry, "promoted")
                await self.repo.update_status(entry.id, "promoted", entry.resolved_at)

                station = await self.registry.get_station(reservation.station_id)
                await self.notifications.notify(
                    entry.user_id,
                    promotion_message(
                        game_type, station.name, day, format_time_range(slot.start, slot.end)
                    ),
                )
                await self.db.commit()

                logger.info(
                    f"Queue entry {entry.id} promoted to reservation {reservation.id}"
                )
                return PromotionResult(entry=entry, reservation=reservation, skipped=skipped)

    async def expire_stale(self, max_age: timedelta | None = None) -> int:
        """Sweep hook: cancel waiting entries that can no longer be served.

        An entry expires when its day or slot is over, or when it has been
        waiting longer than max_age. Returns the number of expired entries.
        """
        current = self.clock()
        slots = {slot.id: slot for slot in await self.registry.get_time_slots()}

        expired = 0
        for entry in await self.repo.get_filtered(status="waiting"):
            slot = slots.get(entry.time_slot_id) if entry.time_slot_id else None
            too_old = max_age is not None and current - entry.joined_at > max_age
            if entry.time_slot_id and slot is None:
                stale = True
            else:
                stale = self._is_stale(entry, slot)

            if not (stale or too_old):
                continue

            async with self.locks.queue(entry.game_type, entry.date):
                await self.db.refresh(entry)
                if entry.status != "waiting":
                    continue
                self._transition(entry, "cancelled")
                await self.repo.update_status(entry.id, "cancelled", entry.resolved_at)
                await self.notifications.notify(
                    entry.user_id, expired_message(entry.game_type, entry.date)
                )
                await self.db.commit()
            expired += 1

        if expired:
            logger.info(f"Expired {expired} stale queue entries")
        return expired

    async def wait_estimate(self, game_type: str) -> WaitEstimate:
        validate_game_type(game_type)
        waiting = await self.repo.get_filtered(game_type=game_type, status="waiting")
        return await self.wait_policy.estimate(self, game_type, len(waiting))

    async def estimated_wait_time(self, game_type: str) -> int:
        """Estimated wait in minutes for a new arrival of this game type."""
        estimate = await self.wait_estimate(game_type)
        return estimate.minutes

    async def statistics(self) -> QueueStatistics:
        waiting = await self.repo.get_filtered(status="waiting")

        counts: dict[str, int] = {}
        for entry in waiting:
            counts[entry.game_type] = counts.get(entry.game_type, 0) + 1

        total = len(waiting)
        weighted = 0
        for game_type, count in counts.items():
            estimate = await self.wait_policy.estimate(self, game_type, count)
            weighted += estimate.minutes * count

        return QueueStatistics(
            total_waiting=total,
            average_wait_time=weighted / total if total else 0,
            queues_by_game_type=[
                GameTypeCount(game_type=g, count=c) for g, c in counts.items()
            ],
        )

    async def active_entries(self) -> list[QueueEntry]:
        """All waiting entries in FIFO order, positions filled in."""
        return await self._with_positions(await self.repo.get_filtered(status="waiting"))

    async def user_entries(self, user_id: str) -> list[QueueEntry]:
        return await self._with_positions(await self.repo.get_filtered(user_id=user_id))

    async def entries_for(
        self,
        game_type: str | None = None,
        day: date | None = None,
        status: str | None = None,
    ) -> list[QueueEntry]:
        return await self._with_positions(
            await self.repo.get_filtered(game_type=game_type, day=day, status=status)
        )

    async def get(self, entry_id: int) -> QueueEntry:
        entry = await self._get(entry_id)
        await self._with_positions([entry])
        return entry

    async def _get(self, entry_id: int) -> QueueEntry:
        entry = await self.repo.get_by_id(entry_id)
        if not entry:
            raise NotFoundError("Queue entry", entry_id)
        return entry

    async def _with_positions(self, entries: list[QueueEntry]) -> list[QueueEntry]:
        buckets = {
            (e.game_type, e.date, e.time_slot_id) for e in entries if e.status == "waiting"
        }
        for game_type, day, time_slot_id in buckets:
            self._assign_positions(await self.repo.get_bucket(game_type, day, time_slot_id))

        for entry in entries:
            if entry.status != "waiting":
                entry.position = None
        return entries

    @staticmethod
    def _assign_positions(bucket: list[QueueEntry]):
        for position, entry in enumerate(bucket, start=1):
            entry.position = position

    def _transition(self, entry: QueueEntry, status: str):
        if entry.status != "waiting":
            raise InvalidStateError(
                f"Queue entry {entry.id} is {entry.status}, cannot become {status}"
            )
        entry.status = status
        entry.resolved_at = self.clock()

    def _is_stale(self, entry: QueueEntry, slot: TimeSlot | None) -> bool:
        current = self.clock()
        if entry.date < current.date():
            return True
        return slot is not None and slot_has_ended(entry.date, slot.end, current)

    async def _find_slot(self, time_slot_id: str) -> TimeSlot | None:
        try:
            return await self.registry.get_time_slot(time_slot_id)
        except NotFoundError:
            return None
