import logging
from datetime import date, datetime, time
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import (
    Match,
    MatchPlayer,
    SKILL_LEVELS,
    TIME_RANGES,
    WaitingPlayer,
)
from venue.database.repositories import MatchRepository, WaitingPlayerRepository
from venue.services.availability import AvailabilityCalculator
from venue.services.exceptions import (
    AlreadyJoinedError,
    FullError,
    InvalidStateError,
    NotFoundError,
)
from venue.services.locks import BucketLocks
from venue.services.notifications import NotificationDispatcher
from venue.services.registry import ResourceRegistry, validate_game_type
from venue.utils.time_utils import local_now, slot_has_ended

logger = logging.getLogger(__name__)

# Allowed moves; cancellation is the only way out of the forward path
TRANSITIONS = {
    "open": ("in_progress", "cancelled"),
    "in_progress": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}

DEFAULT_MAX_PLAYERS = {"ps5": 4}


class MatchCoordinator:
    def __init__(
        self,
        db_session: AsyncSession,
        locks: BucketLocks | None = None,
        registry: ResourceRegistry | None = None,
        notifications: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.db = db_session
        self.locks = locks if locks is not None else BucketLocks()
        self.registry = registry or ResourceRegistry(db_session)
        self.availability = AvailabilityCalculator(db_session, self.registry)
        self.notifications = notifications or NotificationDispatcher(db_session, clock)
        self.clock = clock
        self.repo = MatchRepository(db_session)
        self.board = WaitingPlayerRepository(db_session)

    async def create_match(
        self,
        creator_id: str,
        game_type: str,
        day: date,
        time_slot_id: str,
        max_players: int | None = None,
        skill_level: str = "casual",
    ) -> Match:
        """Open a match with the creator as its only player."""
        validate_game_type(game_type)
        if skill_level not in SKILL_LEVELS:
            raise ValueError(f"Unknown skill level: {skill_level!r}")
        if max_players is None:
            max_players = DEFAULT_MAX_PLAYERS.get(game_type, 2)
        if max_players < 2:
            raise ValueError("A match needs room for at least 2 players")

        # Station is a hint for the front desk, nothing is reserved here
        free = await self.availability.available_stations(game_type, day, time_slot_id)

        match = await self.repo.create(
            creator_id=creator_id,
            game_type=game_type,
            day=day,
            time_slot_id=time_slot_id,
            max_players=max_players,
            skill_level=skill_level,
            station_id=free[0].id if free else None,
            created_at=self.clock(),
        )
        await self._link_board_entry(match, creator_id, match.id)
        await self.db.commit()

        logger.info(f"Match {match.id} created by {creator_id} ({game_type}, {day})")
        return match

    async def join(self, match_id: int, user_id: str) -> Match:
        async with self.locks.match(match_id):
            return await self._join_locked(match_id, user_id)

    async def _join_locked(self, match_id: int, user_id: str) -> Match:
        match = await self._load_fresh(match_id)

        if len(match.participants) >= match.max_players:
            raise FullError(match.id, match.max_players)
        if user_id in match.players:
            raise AlreadyJoinedError(f"User {user_id} already plays in match {match.id}")
        if match.status != "open":
            raise InvalidStateError(f"Match {match.id} is {match.status}")

        match.participants.append(MatchPlayer(user_id=user_id))
        await self._link_board_entry(match, user_id, match.id)
        await self.notifications.notify(
            match.creator_id, f"{user_id} joined your {match.game_type} match."
        )

        if len(match.participants) == match.max_players:
            self._transition(match, "in_progress")
            for player_id in match.players:
                await self.notifications.notify(
                    player_id,
                    f"Your {match.game_type} match on {match.date.isoformat()} is full and about to start.",
                )

        await self.db.commit()
        logger.info(
            f"User {user_id} joined match {match.id} "
            f"({len(match.participants)}/{match.max_players})"
        )
        return match

    async def leave(self, match_id: int, user_id: str) -> Match:
        """Remove a player. The creator hands over to the oldest remaining player."""
        async with self.locks.match(match_id):
            return await self._leave_locked(match_id, user_id)

    async def _leave_locked(self, match_id: int, user_id: str) -> Match:
        match = await self._load_fresh(match_id)

        if match.status not in ("open", "in_progress"):
            raise InvalidStateError(f"Match {match.id} is {match.status}")

        player = next((p for p in match.participants if p.user_id == user_id), None)
        if player is None:
            raise NotFoundError(f"Player in match {match.id}", user_id)

        match.participants.remove(player)
        await self._link_board_entry(match, user_id, None)

        if not match.participants:
            self._transition(match, "cancelled")
            logger.info(f"Match {match.id} cancelled, last player left")
        else:
            if match.creator_id == user_id:
                match.creator_id = match.participants[0].user_id
                await self.notifications.notify(
                    match.creator_id,
                    f"You are now the host of the {match.game_type} match on {match.date.isoformat()}.",
                )
            else:
                await self.notifications.notify(
                    match.creator_id, f"{user_id} left your {match.game_type} match."
                )

        await self.db.commit()
        return match

    async def complete(self, match_id: int, user_id: str) -> Match:
        match = await self._get_hosted(match_id, user_id)
        self._transition(match, "completed")
        await self.db.commit()
        logger.info(f"Match {match.id} completed")
        return match

    async def cancel(self, match_id: int, user_id: str) -> Match:
        match = await self._get_hosted(match_id, user_id)
        self._transition(match, "cancelled")
        for player_id in match.players:
            if player_id != user_id:
                await self.notifications.notify(
                    player_id,
                    f"The {match.game_type} match on {match.date.isoformat()} was cancelled.",
                )
        await self.db.commit()
        logger.info(f"Match {match.id} cancelled by host")
        return match

    async def finish_elapsed(self) -> int:
        """Close matches whose slot is over: played ones complete, open ones cancel."""
        current = self.clock()
        slots = {slot.id: slot for slot in await self.registry.get_time_slots()}

        finished = 0
        for match in await self.repo.get_unfinished_until(current.date()):
            slot = slots.get(match.time_slot_id)
            if slot is not None and not slot_has_ended(match.date, slot.end, current):
                continue
            self._transition(
                match, "completed" if match.status == "in_progress" else "cancelled"
            )
            finished += 1

        await self.db.commit()
        if finished:
            logger.info(f"Closed {finished} elapsed matches")
        return finished

    async def get(self, match_id: int) -> Match:
        match = await self.repo.get_by_id(match_id)
        if not match:
            raise NotFoundError("Match", match_id)
        return match

    async def open_matches(self, game_type: str | None = None) -> list[Match]:
        return await self.repo.get_open(game_type)

    async def user_matches(self, user_id: str) -> list[Match]:
        return await self.repo.get_by_user(user_id)

    # Looking-for-game board

    async def add_waiting_player(
        self,
        user_id: str,
        name: str,
        game_type: str,
        skill_level: str = "casual",
        time_range: str = "now",
    ) -> WaitingPlayer:
        """Post a player looking for opponents. One post per user and game type."""
        validate_game_type(game_type)
        if skill_level not in SKILL_LEVELS:
            raise ValueError(f"Unknown skill level: {skill_level!r}")
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range: {time_range!r}")

        if await self.board.get_for_user(user_id, game_type):
            raise AlreadyJoinedError(f"User {user_id} is already on the {game_type} board")

        try:
            player = await self.board.create(
                user_id=user_id,
                name=name,
                game_type=game_type,
                skill_level=skill_level,
                time_range=time_range,
                created_at=self.clock(),
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyJoinedError(
                f"User {user_id} is already on the {game_type} board"
            ) from None

        logger.info(f"User {user_id} looking for a {game_type} game ({time_range})")
        return player

    async def remove_waiting_player(self, player_id: int) -> WaitingPlayer:
        player = await self.board.get_by_id(player_id)
        if not player:
            raise NotFoundError("Waiting player", player_id)
        await self.board.delete(player_id)
        await self.db.commit()
        return player

    async def waiting_players(self, game_type: str | None = None) -> list[WaitingPlayer]:
        """Board entries, oldest first."""
        if game_type is not None:
            validate_game_type(game_type)
        return await self.board.get_all(game_type)

    async def clear_stale_waiting_players(self) -> int:
        """Drop board posts from earlier days. Returns how many."""
        start_of_day = datetime.combine(self.clock().date(), time.min)
        cleared = await self.board.delete_created_before(start_of_day)
        await self.db.commit()
        if cleared:
            logger.info(f"Cleared {cleared} stale board posts")
        return cleared

    async def _link_board_entry(self, match: Match, user_id: str, match_id: int | None):
        player = await self.board.get_for_user(user_id, match.game_type)
        if player is not None and (match_id is not None or player.match_id == match.id):
            player.match_id = match_id

    async def _load_fresh(self, match_id: int) -> Match:
        match = await self.get(match_id)
        # Row lock for engines in other processes; SQLite ignores it
        await self.db.refresh(
            match, ["status", "creator_id", "participants"], with_for_update=True
        )
        return match

    async def _get_hosted(self, match_id: int, user_id: str) -> Match:
        match = await self.get(match_id)
        if match.creator_id != user_id:
            raise InvalidStateError(f"Only the host can change match {match.id}")
        return match

    @staticmethod
    def _transition(match: Match, status: str):
        if status not in TRANSITIONS[match.status]:
            raise InvalidStateError(
                f"Match {match.id} cannot go from {match.status} to {status}"
            )
        match.status = status
