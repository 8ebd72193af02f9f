"""Per-entity mutual exclusion.

Every caller that touches the same entity id shares one ``asyncio.Lock``;
distinct ids never block each other. Locks are created on first use and
dropped once no holder or waiter remains.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Lazily created, reference-counted locks keyed by entity id."""

    def __init__(self, name: str = "entity") -> None:
        self.name = name
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                # No holder or waiter left; safe to drop (single event loop).
                del self._users[key]
                del self._locks[key]
                logger.debug("Released idle %s lock: %s", self.name, key)
