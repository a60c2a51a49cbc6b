"""Tests for the reservation ledger."""
import pytest
from datetime import date, datetime
from sqlalchemy.exc import IntegrityError

from venue.database.repositories import ReservationRepository
from venue.services.exceptions import ConflictError, InvalidStateError, NotFoundError


pytestmark = pytest.mark.asyncio

DAY = date(2024, 6, 1)


class TestReserve:
    """Tests for reserving a specific station."""

    async def test_reserve_success(self, ledger, clock, catalog):
        reservation = await ledger.reserve(
            "pool-1", "pool", DAY, "slot-1", "guest-a", player_count=3
        )

        assert reservation.id is not None
        assert reservation.status == "active"
        assert reservation.station_id == "pool-1"
        assert reservation.player_count == 3
        assert reservation.duration == 60  # slot length by default
        assert reservation.queue_entry_id is None
        assert reservation.created_at == clock.current

    async def test_explicit_duration(self, ledger, catalog):
        reservation = await ledger.reserve(
            "pool-1", "pool", DAY, "slot-1", "guest-a", duration=45
        )
        assert reservation.duration == 45

    async def test_same_station_slot_conflicts(self, ledger, catalog):
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        with pytest.raises(ConflictError) as exc:
            await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-b")
        assert exc.value.station_id == "pool-1"

    async def test_same_station_other_slot_allowed(self, ledger, catalog):
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-2", "guest-b")
        assert reservation.status == "active"

    async def test_game_type_mismatch(self, ledger, catalog):
        with pytest.raises(ValueError):
            await ledger.reserve("snooker-1", "pool", DAY, "slot-1", "guest-a")

    async def test_player_count_over_capacity(self, ledger, catalog):
        with pytest.raises(ValueError):
            await ledger.reserve("snooker-1", "snooker", DAY, "slot-1", "guest-a", player_count=3)

    async def test_player_count_zero(self, ledger, catalog):
        with pytest.raises(ValueError):
            await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a", player_count=0)

    async def test_non_positive_duration(self, ledger, catalog):
        with pytest.raises(ValueError):
            await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a", duration=0)

    async def test_station_under_maintenance(self, ledger, catalog):
        await ledger.set_maintenance("pool-1", True)

        with pytest.raises(InvalidStateError):
            await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

    async def test_unknown_station(self, ledger, catalog):
        with pytest.raises(NotFoundError):
            await ledger.reserve("pool-9", "pool", DAY, "slot-1", "guest-a")

    async def test_unknown_slot(self, ledger, catalog):
        with pytest.raises(NotFoundError):
            await ledger.reserve("pool-1", "pool", DAY, "slot-9", "guest-a")

    async def test_index_rejects_second_active_reservation(self, db_session, catalog):
        """The partial unique index holds even when the ledger is bypassed."""
        repo = ReservationRepository(db_session)
        await repo.create("pool-1", "pool", DAY, "slot-1", "guest-a", 1, 60)
        await db_session.commit()

        with pytest.raises(IntegrityError):
            await repo.create("pool-1", "pool", DAY, "slot-1", "guest-b", 1, 60)
        await db_session.rollback()

    async def test_lost_race_reports_conflict(self, ledger, catalog, monkeypatch):
        """Another writer taking the slot first surfaces as a conflict, not a crash."""
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        async def nothing_active(*args):
            return None

        monkeypatch.setattr(ledger.repo, "get_active_for_slot", nothing_active)

        with pytest.raises(ConflictError):
            await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-b")
        assert [r.user_id for r in await ledger.reservations_for_date(DAY)] == ["guest-a"]


class TestReserveAny:
    """Tests for instant booking."""

    async def test_first_free_station(self, ledger, catalog):
        reservation = await ledger.reserve_any("pool", DAY, "slot-1", "guest-a")
        assert reservation.station_id == "pool-1"

    async def test_preferred_station(self, ledger, catalog):
        reservation = await ledger.reserve_any(
            "pool", DAY, "slot-1", "guest-a", preferred_station_id="pool-2"
        )
        assert reservation.station_id == "pool-2"

    async def test_preferred_station_taken(self, ledger, catalog):
        await ledger.reserve("pool-2", "pool", DAY, "slot-1", "guest-a")

        reservation = await ledger.reserve_any(
            "pool", DAY, "slot-1", "guest-b", preferred_station_id="pool-2"
        )
        assert reservation.station_id == "pool-1"

    async def test_nothing_free(self, ledger, catalog):
        await ledger.reserve_any("snooker", DAY, "slot-1", "guest-a")

        with pytest.raises(ConflictError):
            await ledger.reserve_any("snooker", DAY, "slot-1", "guest-b")


class TestCancel:
    """Tests for cancelling reservations."""

    async def test_cancel(self, ledger, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        result = await ledger.cancel(reservation.id)

        assert result.reservation.status == "cancelled"
        assert result.promotion is None

    async def test_cancel_twice(self, ledger, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        await ledger.cancel(reservation.id)

        with pytest.raises(NotFoundError):
            await ledger.cancel(reservation.id)

    async def test_cancel_unknown(self, ledger, catalog):
        with pytest.raises(NotFoundError):
            await ledger.cancel(12345)

    async def test_rebook_after_cancel(self, ledger, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        await ledger.cancel(reservation.id)

        again = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-b")
        assert again.id != reservation.id
        assert again.status == "active"

    async def test_release_hook_called(self, ledger, catalog):
        released = []

        async def hook(game_type, day, time_slot_id):
            released.append((game_type, day, time_slot_id))

        ledger.on_release(hook)
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        await ledger.cancel(reservation.id)

        assert released == [("pool", DAY, "slot-1")]

    async def test_failing_hook_keeps_cancellation(self, ledger, catalog):
        released = []

        async def broken(game_type, day, time_slot_id):
            raise RuntimeError("queue unavailable")

        async def hook(game_type, day, time_slot_id):
            released.append(time_slot_id)

        ledger.on_release(broken)
        ledger.on_release(hook)
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        result = await ledger.cancel(reservation.id)

        assert result.reservation.status == "cancelled"
        assert result.promotion is None
        assert released == ["slot-1"]
        assert await ledger.reservations_for_date(DAY) == []


class TestUpdateStatus:
    """Tests for front desk outcomes on active reservations."""

    async def test_no_show(self, ledger, registry, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        result = await ledger.update_status(reservation.id, "no_show")

        assert result.reservation.status == "no_show"
        assert (await ledger.get(reservation.id)).status == "no_show"
        assert (await registry.get_station("pool-1")).status == "available"

    async def test_completed_frees_station(self, ledger, catalog):
        released = []

        async def hook(game_type, day, time_slot_id):
            released.append((game_type, time_slot_id))

        ledger.on_release(hook)
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        await ledger.update_status(reservation.id, "completed")

        assert released == [("pool", "slot-1")]
        again = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-b")
        assert again.status == "active"

    async def test_back_to_active_rejected(self, ledger, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        with pytest.raises(ValueError):
            await ledger.update_status(reservation.id, "active")
        with pytest.raises(ValueError):
            await ledger.update_status(reservation.id, "confirmed")

    async def test_only_active_reservations(self, ledger, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        await ledger.cancel(reservation.id)

        with pytest.raises(NotFoundError):
            await ledger.update_status(reservation.id, "no_show")


class TestDelete:
    """Tests for removing reservation rows."""

    async def test_delete_active(self, ledger, registry, catalog):
        released = []

        async def hook(game_type, day, time_slot_id):
            released.append(time_slot_id)

        ledger.on_release(hook)
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        await ledger.delete(reservation.id)

        with pytest.raises(NotFoundError):
            await ledger.get(reservation.id)
        assert released == ["slot-1"]
        assert (await registry.get_station("pool-1")).status == "available"

    async def test_delete_cancelled_does_not_release(self, ledger, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        await ledger.cancel(reservation.id)
        released = []

        async def hook(game_type, day, time_slot_id):
            released.append(time_slot_id)

        ledger.on_release(hook)

        result = await ledger.delete(reservation.id)

        assert result.promotion is None
        assert released == []
        assert await ledger.user_reservations("guest-a") == []

    async def test_delete_unknown(self, ledger, catalog):
        with pytest.raises(NotFoundError):
            await ledger.delete(999)


class TestStationStatus:
    """Station status follows the ledger."""

    async def test_reserved_before_slot(self, ledger, registry, catalog):
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        assert (await registry.get_station("pool-1")).status == "reserved"
        assert (await registry.get_station("pool-2")).status == "available"

    async def test_occupied_during_slot(self, ledger, registry, clock, catalog):
        clock.current = datetime(2024, 6, 1, 14, 30)
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")

        assert (await registry.get_station("pool-1")).status == "occupied"

    async def test_available_after_cancel(self, ledger, registry, catalog):
        reservation = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        await ledger.cancel(reservation.id)

        assert (await registry.get_station("pool-1")).status == "available"

    async def test_other_day_does_not_change_status(self, ledger, registry, catalog):
        await ledger.reserve("pool-1", "pool", date(2024, 6, 2), "slot-1", "guest-a")

        assert (await registry.get_station("pool-1")).status == "available"

    async def test_maintenance_wins(self, ledger, registry, catalog):
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        station = await ledger.set_maintenance("pool-1", True)
        assert station.status == "maintenance"

        station = await ledger.set_maintenance("pool-1", False)
        assert station.status == "reserved"

    async def test_complete_elapsed(self, ledger, registry, clock, catalog):
        first = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        second = await ledger.reserve("pool-2", "pool", DAY, "slot-2", "guest-b")

        clock.current = datetime(2024, 6, 1, 15, 30)
        completed = await ledger.complete_elapsed()

        assert completed == 1
        assert (await ledger.get(first.id)).status == "completed"
        assert (await ledger.get(second.id)).status == "active"
        assert (await registry.get_station("pool-1")).status == "available"
        assert (await registry.get_station("pool-2")).status == "occupied"


class TestLookups:
    async def test_user_reservations(self, ledger, catalog):
        await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        await ledger.reserve("pool-2", "pool", DAY, "slot-1", "guest-b")
        await ledger.reserve("pool-1", "pool", DAY, "slot-2", "guest-a")

        mine = await ledger.user_reservations("guest-a")
        assert [(r.station_id, r.time_slot_id) for r in mine] == [
            ("pool-1", "slot-1"),
            ("pool-1", "slot-2"),
        ]

    async def test_reservations_for_date_active_only(self, ledger, catalog):
        kept = await ledger.reserve("pool-1", "pool", DAY, "slot-1", "guest-a")
        dropped = await ledger.reserve("pool-2", "pool", DAY, "slot-1", "guest-b")
        await ledger.cancel(dropped.id)

        reservations = await ledger.reservations_for_date(DAY)
        assert [r.id for r in reservations] == [kept.id]

    async def test_get_unknown(self, ledger, catalog):
        with pytest.raises(NotFoundError):
            await ledger.get(999)
