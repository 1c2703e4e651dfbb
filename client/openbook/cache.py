import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple


class OpenOrdersCache:
    """One entry per owner, replaced on every refresh.

    Concurrent refreshes of the same owner may both hit the network; the last
    one to finish wins. Refreshes of different owners never wait on each other.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, owner: Hashable) -> bool:
        return owner in self._entries

    def get(self, owner: Hashable, max_age: float):
        entry = self._entries.get(owner)
        if entry is None:
            return None
        ts, value = entry
        if self.clock() - ts < max_age:
            return value
        return None

    def put(self, owner: Hashable, value):
        self._entries[owner] = (self.clock(), value)

    def invalidate(self, owner: Hashable):
        self._entries.pop(owner, None)

    async def get_or_refresh(self, owner: Hashable, max_age: float, refresh: Callable[[], Awaitable[Any]]):
        entry = self._entries.get(owner)
        if entry is not None and self.clock() - entry[0] < max_age:
            return entry[1]
        value = await refresh()
        self.put(owner, value)
        return value
