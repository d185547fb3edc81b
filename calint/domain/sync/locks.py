import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it"""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide: serializes notifications for the same booking URI
booking_locks = KeyedLock()
