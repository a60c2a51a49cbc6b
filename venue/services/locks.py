"""
Bucket-level locking.

Check-then-write sequences on one bucket (an availability check followed by an
insert, or a queue position read followed by an append) must not interleave.
Each bucket gets its own asyncio.Lock, created on first use and dropped once
no caller holds or waits on it; writes on unrelated buckets never wait on each
other and reads take no lock at all.

Lock order is always queue bucket first, reservation bucket second:

    async with locks.queue(game_type, day):
        async with locks.reservation(game_type, day, time_slot_id):
            ...

The partial unique index on active reservations and the row lock on matches
stay the last line of protection when several engine processes share one
database.
"""
import asyncio
import weakref
from contextlib import asynccontextmanager
from datetime import date


class BucketLocks:
    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def _get(self, key: tuple) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _hold(self, key: tuple):
        # Holders and waiters keep the lock alive through this frame
        lock = self._get(key)
        async with lock:
            yield

    def reservation(self, game_type: str, day: date, time_slot_id: str):
        """Serialize writes on one (game_type, date, time_slot_id) bucket."""
        return self._hold(("reservation", game_type, day, time_slot_id))

    def match(self, match_id: int):
        """Serialize roster changes of one match."""
        return self._hold(("match", match_id))

    def queue(self, game_type: str, day: date):
        """Serialize queue writes for one game type and day, any slot included."""
        return self._hold(("queue", game_type, day))

    def active_keys(self) -> list[tuple]:
        return list(self._locks.keys())
