import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from venue.database.models import Notification
from venue.database.repositories import NotificationRepository
from venue.services.exceptions import NotFoundError
from venue.utils.time_utils import local_now

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Only writer of notification rows; other services ask it to notify."""

    def __init__(
        self, db_session: AsyncSession, clock: Callable[[], datetime] = local_now
    ):
        self.db = db_session
        self.clock = clock
        self.repo = NotificationRepository(db_session)

    async def notify(self, user_id: str, message: str) -> Notification:
        """Queue a message for a user. Committed with the caller's transaction."""
        notification = await self.repo.create(user_id, message, created_at=self.clock())
        logger.info(f"Notification {notification.id} for user {user_id}")
        return notification

    async def mark_read(self, notification_id: int) -> Notification:
        """Mark a notification as read. Marking it twice is fine."""
        notification = await self.repo.get_by_id(notification_id)
        if not notification:
            raise NotFoundError("Notification", notification_id)

        if not notification.read:
            await self.repo.mark_read(notification_id)
            notification.read = True
            await self.db.commit()
        return notification

    async def clear_all(self, user_id: str) -> int:
        """Delete every notification of a user."""
        deleted = await self.repo.delete_by_user(user_id)
        await self.db.commit()
        return deleted

    async def unread_count(self, user_id: str) -> int:
        return await self.repo.count_unread(user_id)

    async def list_for(self, user_id: str) -> list[Notification]:
        return await self.repo.get_by_user(user_id)


def promotion_message(game_type: str, station_name: str, day, time_range: str) -> str:
    return (
        f"Good news! A {game_type} station opened up. "
        f"You are booked on {station_name} on {day.isoformat()} ({time_range})."
    )


def queued_message(game_type: str, position: int) -> str:
    return f"You have been added to the {game_type} queue at position {position}."


def expired_message(game_type: str, day) -> str:
    return f"Your {game_type} queue entry for {day.isoformat()} has expired."
