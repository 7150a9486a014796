"""Per-user locks for serializing context mutations."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class UserLockRegistry:
    """
    One asyncio.Lock per user id, created on demand.

    Entries are reference-counted: a lock is dropped once no request holds or
    waits on it, so the registry does not grow with the number of users ever
    seen. Requests for different users never contend.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = self._entries[user_id] = _Entry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._entries.get(user_id) is entry:
                del self._entries[user_id]

    def is_locked(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
