"""Redis-style distributed lock. SET NX EX with a holder token; keeps one retention scanner per cluster."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol


class LockBackend(Protocol):
    """Minimal key/value operations for the lock. Injected; no global state."""

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool: ...
    async def get(self, key: str) -> str | None: ...
    async def delete_if_value(self, key: str, value: str) -> bool: ...


LOCK_PREFIX = "phi_guard:lock:"


class DistributedLock:
    """
    Lock with a unique token per acquire so only the holder can release.
    TTL bounds how long a crashed holder can block the next scan.
    """

    def __init__(self, backend: LockBackend, key_prefix: str = LOCK_PREFIX) -> None:
        self._backend = backend
        self._prefix = key_prefix
        self._tokens: dict[str, str] = {}

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def acquire(self, key: str, ttl: int) -> bool:
        """Returns True if acquired, False if another holder has it."""
        token = str(uuid.uuid4())
        acquired = await self._backend.set_nx_ex(self._key(key), token, ttl)
        if acquired:
            self._tokens[key] = token
        return acquired

    async def release(self, key: str) -> None:
        """Release only if we hold it (atomic compare-and-delete)."""
        token = self._tokens.pop(key, None)
        if token is not None:
            await self._backend.delete_if_value(self._key(key), token)

    @asynccontextmanager
    async def hold(self, key: str, ttl: int) -> AsyncIterator[bool]:
        """Yields whether the lock was acquired; releases on exit if it was."""
        acquired = await self.acquire(key, ttl)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(key)
