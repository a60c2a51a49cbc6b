import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import RESERVATION_STATUSES, Reservation, Station, TimeSlot
from venue.database.repositories import ReservationRepository
from venue.services.availability import AvailabilityCalculator
from venue.services.exceptions import ConflictError, InvalidStateError, NotFoundError
from venue.services.locks import BucketLocks
from venue.services.registry import ResourceRegistry, validate_game_type
from venue.utils.time_utils import (
    local_now,
    slot_contains,
    slot_has_ended,
    slot_has_started,
    slot_length,
)

logger = logging.getLogger(__name__)

ReleaseHook = Callable[[str, date, str], Awaitable[Any]]


@dataclass
class CancellationResult:
    reservation: Reservation
    promotion: Any = None  # PromotionResult when the freed station went to the queue


class ReservationLedger:
    """Only writer of reservation status and, through the registry, station status."""

    def __init__(
        self,
        db_session: AsyncSession,
        locks: BucketLocks,
        registry: ResourceRegistry | None = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.db = db_session
        self.locks = locks
        self.clock = clock
        self.registry = registry or ResourceRegistry(db_session)
        self.availability = AvailabilityCalculator(db_session, self.registry)
        self.repo = ReservationRepository(db_session)
        self._release_hooks: list[ReleaseHook] = []

    def on_release(self, hook: ReleaseHook):
        """Register a coroutine called with (game_type, date, time_slot_id) once a station slot is freed."""
        self._release_hooks.append(hook)

    async def reserve(
        self,
        station_id: str,
        game_type: str,
        day: date,
        time_slot_id: str,
        user_id: str,
        player_count: int = 1,
        duration: int | None = None,
        queue_entry_id: int | None = None,
    ) -> Reservation:
        """Reserve one station for a slot.

        Raises:
            NotFoundError: unknown station or time slot
            ConflictError: the station slot is already taken
            InvalidStateError: the station is under maintenance
            ValueError: game type mismatch or bad player count / duration
        """
        validate_game_type(game_type)
        slot = await self.registry.get_time_slot(time_slot_id)

        async with self.locks.reservation(game_type, day, time_slot_id):
            station = await self.registry.get_station(station_id)
            await self.db.refresh(station)
            if station.game_type != game_type:
                raise ValueError(f"Station {station.id} is not a {game_type} station")
            return await self._reserve_locked(
                station, slot, day, user_id, player_count, duration, queue_entry_id
            )

    async def reserve_any(
        self,
        game_type: str,
        day: date,
        time_slot_id: str,
        user_id: str,
        player_count: int = 1,
        duration: int | None = None,
        preferred_station_id: str | None = None,
        queue_entry_id: int | None = None,
    ) -> Reservation:
        """Instant booking: take the preferred station if free, else the first free one."""
        validate_game_type(game_type)
        slot = await self.registry.get_time_slot(time_slot_id)

        async with self.locks.reservation(game_type, day, time_slot_id):
            free = await self.availability.available_stations(game_type, day, time_slot_id)
            if not free:
                raise ConflictError(preferred_station_id or "*", day, time_slot_id)

            station = free[0]
            for candidate in free:
                if candidate.id == preferred_station_id:
                    station = candidate
                    break

            return await self._reserve_locked(
                station, slot, day, user_id, player_count, duration, queue_entry_id
            )

    async def _reserve_locked(
        self,
        station: Station,
        slot: TimeSlot,
        day: date,
        user_id: str,
        player_count: int,
        duration: int | None,
        queue_entry_id: int | None,
    ) -> Reservation:
        if station.maintenance:
            raise InvalidStateError(f"Station {station.id} is under maintenance")

        if player_count < 1 or player_count > station.capacity:
            raise ValueError(
                f"Player count must be between 1 and {station.capacity} for {station.name}"
            )

        if duration is None:
            duration = slot_length(slot.start, slot.end)
        elif duration <= 0:
            raise ValueError("Duration must be positive")

        existing = await self.repo.get_active_for_slot(station.id, day, slot.id)
        if existing:
            raise ConflictError(station.id, day, slot.id)

        try:
            reservation = await self.repo.create(
                station_id=station.id,
                game_type=station.game_type,
                day=day,
                time_slot_id=slot.id,
                user_id=user_id,
                player_count=player_count,
                duration=duration,
                queue_entry_id=queue_entry_id,
                created_at=self.clock(),
            )
            await self.refresh_station_status(station)
            await self.db.commit()
        except IntegrityError:
            # Another process won the race for the same station slot
            await self.db.rollback()
            logger.warning(f"Lost reservation race for {station.id} on {day} slot {slot.id}")
            raise ConflictError(station.id, day, slot.id) from None

        logger.info(
            f"Reservation {reservation.id}: user {user_id} on {station.id} "
            f"{day} slot {slot.id}"
        )
        return reservation

    async def cancel(self, reservation_id: int) -> CancellationResult:
        """Cancel an active reservation and hand the freed station to the queue."""
        return await self.update_status(reservation_id, "cancelled")

    async def update_status(self, reservation_id: int, status: str) -> CancellationResult:
        """Operator status change on an active reservation.

        Every target status ends the booking, so the station slot goes back
        to the queue whatever the outcome was.

        Raises:
            NotFoundError: no active reservation with that id
            ValueError: unknown or non-final status
        """
        if status not in RESERVATION_STATUSES or status == "active":
            raise ValueError(f"Cannot move a reservation to {status!r}")

        reservation = await self.repo.get_by_id(reservation_id)
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)

        async with self.locks.reservation(
            reservation.game_type, reservation.date, reservation.time_slot_id
        ):
            await self.db.refresh(reservation)
            if reservation.status != "active":
                raise NotFoundError("Active reservation", reservation_id)

            await self.repo.update_status(reservation.id, status)
            reservation.status = status

            station = await self.registry.get_station(reservation.station_id)
            await self.refresh_station_status(station)
            await self.db.commit()

        logger.info(f"Reservation {reservation_id} {status}, {station.id} freed")
        promotion = await self._released(
            reservation.game_type, reservation.date, reservation.time_slot_id
        )
        return CancellationResult(reservation=reservation, promotion=promotion)

    async def delete(self, reservation_id: int) -> CancellationResult:
        """Remove a reservation row; an active one frees its station first."""
        reservation = await self.repo.get_by_id(reservation_id)
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)

        async with self.locks.reservation(
            reservation.game_type, reservation.date, reservation.time_slot_id
        ):
            await self.db.refresh(reservation)
            was_active = reservation.status == "active"
            await self.repo.delete(reservation.id)

            station = await self.registry.get_station(reservation.station_id)
            await self.refresh_station_status(station)
            await self.db.commit()

        logger.info(f"Reservation {reservation_id} deleted")
        promotion = None
        if was_active:
            promotion = await self._released(
                reservation.game_type, reservation.date, reservation.time_slot_id
            )
        return CancellationResult(reservation=reservation, promotion=promotion)

    async def _released(self, game_type: str, day: date, time_slot_id: str):
        # The release is already committed, hook failures stay with the hook
        promotion = None
        for hook in self._release_hooks:
            try:
                promotion = await hook(game_type, day, time_slot_id)
            except Exception:
                logger.exception(
                    f"Release hook failed for {game_type} {day} slot {time_slot_id}"
                )
        return promotion

    async def refresh_station_status(self, station: Station) -> str:
        """Recompute a station's status from the maintenance flag and today's reservations."""
        if station.maintenance:
            status = "maintenance"
        else:
            current = self.clock()
            status = "available"
            for reservation in await self.repo.get_active_for_station(
                station.id, current.date()
            ):
                slot = await self.registry.get_time_slot(reservation.time_slot_id)
                if slot_contains(slot.start, slot.end, current.time()):
                    status = "occupied"
                    break
                if not slot_has_started(reservation.date, slot.start, current):
                    status = "reserved"

        await self.registry.set_station_status(station.id, status)
        return status

    async def set_maintenance(self, station_id: str, enabled: bool) -> Station:
        """Operator toggle; the derived status is recomputed in the same transaction."""
        station = await self.registry.set_maintenance(station_id, enabled)
        await self.refresh_station_status(station)
        await self.db.commit()
        logger.info(f"Station {station_id} maintenance {'on' if enabled else 'off'}")
        return station

    async def complete_elapsed(self) -> int:
        """Mark reservations whose slot is over as completed. Returns how many."""
        current = self.clock()
        slots = {slot.id: slot for slot in await self.registry.get_time_slots()}

        completed = 0
        for reservation in await self.repo.get_active_until(current.date()):
            slot = slots.get(reservation.time_slot_id)
            if slot is None or slot_has_ended(reservation.date, slot.end, current):
                await self.repo.update_status(reservation.id, "completed")
                reservation.status = "completed"
                completed += 1

        # Time moves statuses too (reserved -> occupied -> available)
        for station in await self.registry.list_stations():
            await self.refresh_station_status(station)

        await self.db.commit()
        if completed:
            logger.info(f"Completed {completed} elapsed reservations")
        return completed

    async def get(self, reservation_id: int) -> Reservation:
        reservation = await self.repo.get_by_id(reservation_id)
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    async def user_reservations(self, user_id: str) -> list[Reservation]:
        return await self.repo.get_by_user(user_id)

    async def reservations_for_date(self, day: date) -> list[Reservation]:
        """Active reservations of a day."""
        return await self.repo.get_filtered(day=day, status="active")

    async def filtered(
        self,
        game_type: str | None = None,
        day: date | None = None,
        status: str | None = None,
    ) -> list[Reservation]:
        return await self.repo.get_filtered(game_type, day, status)
