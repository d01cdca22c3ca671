"""DistributedLock over the in-memory backend: single holder, token release, TTL expiry."""

import pytest

from phi_guard.infrastructure.memory.lock_backend import InMemoryLockBackend
from phi_guard.scalability.distributed_lock import LOCK_PREFIX, DistributedLock


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return InMemoryLockBackend(clock=clock)


@pytest.fixture
def lock(backend):
    return DistributedLock(backend)


@pytest.mark.asyncio
async def test_acquire_release(lock):
    assert await lock.acquire("retention-scan", ttl=60) is True
    await lock.release("retention-scan")
    assert await lock.acquire("retention-scan", ttl=60) is True


@pytest.mark.asyncio
async def test_second_node_cannot_acquire_while_held(backend, lock):
    other_node = DistributedLock(backend)
    assert await lock.acquire("retention-scan", ttl=60) is True
    assert await other_node.acquire("retention-scan", ttl=60) is False


@pytest.mark.asyncio
async def test_release_only_by_holder(backend, lock):
    other_node = DistributedLock(backend)
    await lock.acquire("retention-scan", ttl=60)
    await other_node.release("retention-scan")
    assert await backend.get(f"{LOCK_PREFIX}retention-scan") is not None

    await lock.release("retention-scan")
    assert await backend.get(f"{LOCK_PREFIX}retention-scan") is None


@pytest.mark.asyncio
async def test_ttl_frees_lock_of_crashed_holder(clock, backend, lock):
    other_node = DistributedLock(backend)
    await lock.acquire("retention-scan", ttl=30)
    clock.now += 31
    assert await other_node.acquire("retention-scan", ttl=30) is True


@pytest.mark.asyncio
async def test_hold_context_reports_and_releases(backend, lock):
    other_node = DistributedLock(backend)
    async with lock.hold("retention-scan", 60) as acquired:
        assert acquired is True
        async with other_node.hold("retention-scan", 60) as second:
            assert second is False
    assert await backend.get(f"{LOCK_PREFIX}retention-scan") is None
