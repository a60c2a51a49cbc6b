from datetime import time
from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import Station, TimeSlot, GAME_TYPES, STATION_STATUSES
from venue.database.repositories import StationRepository, TimeSlotRepository
from venue.services.exceptions import NotFoundError
from venue.utils.time_utils import is_valid_time_range, parse_time, to_minutes


def validate_game_type(game_type: str) -> str:
    if game_type not in GAME_TYPES:
        raise ValueError(f"Unknown game type: {game_type!r}")
    return game_type


def _as_time(value: time | str) -> time:
    if isinstance(value, time):
        return value
    parsed = parse_time(value)
    if parsed is None:
        raise ValueError(f"Invalid time: {value!r}")
    return parsed


class ResourceRegistry:
    """Stations and the time slot catalog."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self.station_repo = StationRepository(db_session)
        self.slot_repo = TimeSlotRepository(db_session)

    async def list_stations(self, game_type: str | None = None) -> list[Station]:
        """Get all stations, optionally of one game type."""
        if game_type:
            validate_game_type(game_type)
        return await self.station_repo.get_all(game_type)

    async def get_station(self, station_id: str) -> Station:
        station = await self.station_repo.get_by_id(station_id)
        if not station:
            raise NotFoundError("Station", station_id)
        return station

    async def bookable_stations(self, game_type: str) -> list[Station]:
        """Stations of a game type that are not under maintenance."""
        return await self.station_repo.get_bookable(validate_game_type(game_type))

    async def get_time_slots(self) -> list[TimeSlot]:
        return await self.slot_repo.get_all()

    async def get_time_slot(self, slot_id: str) -> TimeSlot:
        slot = await self.slot_repo.get_by_id(slot_id)
        if not slot:
            raise NotFoundError("Time slot", slot_id)
        return slot

    async def set_station_status(self, station_id: str, status: str) -> Station:
        """Write a station status. Bookings go through the reservation ledger."""
        if status not in STATION_STATUSES:
            raise ValueError(f"Unknown station status: {status!r}")

        station = await self.get_station(station_id)
        if station.status != status:
            await self.station_repo.update_status(station_id, status)
            station.status = status
        return station

    async def set_maintenance(self, station_id: str, enabled: bool) -> Station:
        """Toggle the maintenance flag.

        Turning maintenance off leaves the station "available"; the ledger
        recomputes the reservation-derived status right after.
        """
        station = await self.get_station(station_id)
        await self.station_repo.update_maintenance(station_id, enabled)
        station.maintenance = enabled
        return await self.set_station_status(
            station_id, "maintenance" if enabled else "available"
        )

    async def add_station(
        self, station_id: str, game_type: str, name: str, capacity: int = 2
    ) -> Station:
        validate_game_type(game_type)
        if capacity < 1:
            raise ValueError("Station capacity must be at least 1")
        return await self.station_repo.add(station_id, game_type, name, capacity)

    async def add_time_slot(
        self, slot_id: str, start: time | str, end: time | str
    ) -> TimeSlot:
        """Add a catalog slot. Bounds may be given as "HH:MM", "24:00" meaning midnight."""
        start = _as_time(start)
        end = _as_time(end)
        if not is_valid_time_range(start, end):
            raise ValueError(f"Slot {slot_id} ends before it starts")

        start_minutes = to_minutes(start)
        end_minutes = to_minutes(end, is_end=True)
        for slot in await self.slot_repo.get_all():
            if (
                start_minutes < to_minutes(slot.end, is_end=True)
                and to_minutes(slot.start) < end_minutes
            ):
                raise ValueError(f"Slot {slot_id} overlaps slot {slot.id}")

        return await self.slot_repo.add(slot_id, start, end)
