from dataclasses import dataclass
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import Station, TimeSlot
from venue.database.repositories import ReservationRepository
from venue.services.registry import ResourceRegistry


@dataclass
class AvailabilitySnapshot:
    game_type: str
    date: date
    time_slot_id: str
    stations: list[Station]  # free stations
    total: int  # bookable stations of this game type

    @property
    def free(self) -> int:
        return len(self.stations)

    @property
    def should_queue(self) -> bool:
        return not self.stations


class AvailabilityCalculator:
    def __init__(self, db_session: AsyncSession, registry: ResourceRegistry | None = None):
        self.db = db_session
        self.registry = registry or ResourceRegistry(db_session)
        self.reservation_repo = ReservationRepository(db_session)

    async def snapshot(
        self, game_type: str, day: date, time_slot_id: str
    ) -> AvailabilitySnapshot:
        """Free stations and counts for one bucket, read once."""
        await self.registry.get_time_slot(time_slot_id)

        # Type filter and reservation filter stay separate predicates
        candidates = await self.registry.bookable_stations(game_type)
        reserved = await self.reservation_repo.get_reserved_station_ids(day, time_slot_id)
        free = [s for s in candidates if s.id not in reserved]

        return AvailabilitySnapshot(
            game_type=game_type,
            date=day,
            time_slot_id=time_slot_id,
            stations=free,
            total=len(candidates),
        )

    async def available_stations(
        self, game_type: str, day: date, time_slot_id: str
    ) -> list[Station]:
        """Get stations of a game type that are free for a date and slot."""
        snapshot = await self.snapshot(game_type, day, time_slot_id)
        return snapshot.stations

    async def should_queue(self, game_type: str, day: date, time_slot_id: str) -> bool:
        """True when no station of this game type is free for the slot."""
        snapshot = await self.snapshot(game_type, day, time_slot_id)
        return snapshot.should_queue

    async def availability_by_slot(
        self, game_type: str, day: date
    ) -> list[tuple[TimeSlot, int]]:
        """Free station count for every slot of a day."""
        candidates = await self.registry.bookable_stations(game_type)
        candidate_ids = {s.id for s in candidates}

        result = []
        for slot in await self.registry.get_time_slots():
            reserved = await self.reservation_repo.get_reserved_station_ids(day, slot.id)
            result.append((slot, len(candidate_ids - reserved)))
        return result
