"""Tests for the notification dispatcher."""
import pytest

from venue.services.exceptions import NotFoundError


pytestmark = pytest.mark.asyncio


class TestNotifications:
    """Tests for per-user notifications."""

    async def test_notify(self, notifications, db_session, clock):
        notification = await notifications.notify("guest-a", "Hello")
        await db_session.commit()

        assert notification.id is not None
        assert notification.read is False
        assert notification.created_at == clock.current
        assert await notifications.unread_count("guest-a") == 1

    async def test_list_oldest_first(self, notifications, db_session):
        await notifications.notify("guest-a", "first")
        await notifications.notify("guest-b", "other")
        await notifications.notify("guest-a", "second")
        await db_session.commit()

        messages = [n.message for n in await notifications.list_for("guest-a")]
        assert messages == ["first", "second"]

    async def test_mark_read(self, notifications, db_session):
        notification = await notifications.notify("guest-a", "Hello")
        await db_session.commit()

        marked = await notifications.mark_read(notification.id)

        assert marked.read is True
        assert await notifications.unread_count("guest-a") == 0

    async def test_mark_read_twice(self, notifications, db_session):
        """Marking a read notification again changes nothing."""
        notification = await notifications.notify("guest-a", "Hello")
        await db_session.commit()

        await notifications.mark_read(notification.id)
        again = await notifications.mark_read(notification.id)

        assert again.read is True
        assert len(await notifications.list_for("guest-a")) == 1
        assert await notifications.unread_count("guest-a") == 0

    async def test_mark_read_unknown(self, notifications):
        with pytest.raises(NotFoundError):
            await notifications.mark_read(404)

    async def test_clear_all(self, notifications, db_session):
        await notifications.notify("guest-a", "one")
        await notifications.notify("guest-a", "two")
        await notifications.notify("guest-b", "keep")
        await db_session.commit()

        assert await notifications.clear_all("guest-a") == 2
        assert await notifications.list_for("guest-a") == []
        assert await notifications.unread_count("guest-b") == 1
