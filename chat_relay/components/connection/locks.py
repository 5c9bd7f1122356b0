"""
Lock Manager for the chat relay.

Manages one asyncio lock per room. A room's lock is held across a
membership or message-log mutation *and* the fan-out it triggers, which
linearizes Join/Leave/AppendMessage on the same room so that member-count
notifications and message order match the commit order. Different rooms
never contend.

LOCK ORDERING CONSTRAINTS:
==========================
When several room locks are needed (disconnect of a member of many rooms),
they are acquired in ascending room id order through ``hold_rooms()`` and
released in reverse order.

The _meta_lock only guards the lock dictionary itself and is NON-REENTRANT.
Methods holding _meta_lock must not call other methods that acquire it.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from shared.config.logging import get_logger
from chat_relay.components.core.constants import RelayConstants

if TYPE_CHECKING:
    from collections.abc import Iterable, Set

logger = get_logger(__name__)


class LockManager:
    """
    Manages asyncio locks for room operations.

    Locks are created on demand. Locks of deleted rooms are discarded once
    they are no longer held, and a bulk cleanup drops unheld locks of
    inactive rooms when the cache grows past a threshold.
    """

    def __init__(
        self,
        cleanup_threshold: int = RelayConstants.LOCK_CLEANUP_THRESHOLD,
    ) -> None:
        self._cleanup_threshold = cleanup_threshold
        self._room_locks: dict[str, asyncio.Lock] = {}

        # Meta-lock for managing the lock dictionary itself
        self._meta_lock = asyncio.Lock()

        self._locks_cleaned = 0

    @property
    def room_lock_count(self) -> int:
        """Number of room locks currently cached."""
        return len(self._room_locks)

    @property
    def locks_cleaned_total(self) -> int:
        """Total number of locks cleaned since startup."""
        return self._locks_cleaned

    async def get_room_lock(self, room_id: str) -> asyncio.Lock:
        """
        Get or create the lock for a room.

        Always acquires meta_lock so cleanup cannot mutate the dictionary
        while it is being read.
        """
        async with self._meta_lock:
            lock = self._room_locks.get(room_id)
            if lock is None:
                lock = asyncio.Lock()
                self._room_locks[room_id] = lock
            return lock

    @asynccontextmanager
    async def hold_room(self, room_id: str) -> AsyncIterator[None]:
        """Hold a single room's lock."""
        lock = await self.get_room_lock(room_id)
        async with lock:
            yield

    @asynccontextmanager
    async def hold_rooms(self, room_ids: "Iterable[str]") -> AsyncIterator[list[str]]:
        """
        Hold several room locks, acquired in ascending room id order.

        Yields the sorted room ids. Locks are released in reverse order.
        """
        ordered = sorted(set(room_ids))
        async with AsyncExitStack() as stack:
            for room_id in ordered:
                lock = await self.get_room_lock(room_id)
                await stack.enter_async_context(lock)
            yield ordered

    async def discard_room_lock(self, room_id: str) -> bool:
        """
        Drop the lock of a deleted room if nobody holds or waits on it.

        Returns:
            True if the lock was removed.
        """
        async with self._meta_lock:
            lock = self._room_locks.get(room_id)
            if lock is None or lock.locked():
                return False
            del self._room_locks[room_id]
            self._locks_cleaned += 1
            return True

    async def cleanup_stale_locks(self, active_rooms: "Set[str]") -> int:
        """
        Remove unheld locks for rooms that no longer exist.

        Only runs once the cache has reached the cleanup threshold.

        Returns:
            Number of locks cleaned up.
        """
        async with self._meta_lock:
            if len(self._room_locks) < self._cleanup_threshold:
                return 0

            cleaned = 0
            for room_id in [rid for rid in self._room_locks if rid not in active_rooms]:
                lock = self._room_locks.get(room_id)
                if lock is not None and not lock.locked():
                    del self._room_locks[room_id]
                    cleaned += 1

            if cleaned > 0:
                self._locks_cleaned += cleaned
                logger.info("Cleaned up stale room locks", cleaned=cleaned)
            return cleaned

    def get_stats(self) -> dict[str, int]:
        """Get lock manager statistics."""
        return {
            "room_locks_count": len(self._room_locks),
            "locks_cleaned_total": self._locks_cleaned,
            "cleanup_threshold": self._cleanup_threshold,
        }
