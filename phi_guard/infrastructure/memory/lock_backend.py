"""Single-process LockBackend with the same SET NX EX semantics as the Redis client."""

import time
from typing import Callable, Dict, Optional, Tuple


class InMemoryLockBackend:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: Dict[str, Tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool:
        if self._live(key) is not None:
            return False
        self._values[key] = (value, self._clock() + ttl)
        return True

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def delete_if_value(self, key: str, value: str) -> bool:
        if self._live(key) != value:
            return False
        del self._values[key]
        return True
