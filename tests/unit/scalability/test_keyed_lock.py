"""KeyedLocks: mutual exclusion per key, no contention across keys, idle locks dropped."""

import asyncio

import pytest

from phi_guard.scalability.keyed_lock import KeyedLocks


@pytest.mark.asyncio
async def test_same_key_is_serialised():
    locks = KeyedLocks()
    inside = 0
    peak = 0

    async def worker():
        nonlocal inside, peak
        async with locks.hold("patient:p-1"):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0)
            inside -= 1

    await asyncio.gather(*(worker() for _ in range(10)))
    assert peak == 1


@pytest.mark.asyncio
async def test_different_keys_do_not_contend():
    locks = KeyedLocks()
    async with locks.hold("patient:p-1"):
        await asyncio.wait_for(_enter(locks, "patient:p-2"), timeout=1.0)


async def _enter(locks, key):
    async with locks.hold(key):
        pass


@pytest.mark.asyncio
async def test_idle_locks_are_dropped():
    locks = KeyedLocks()
    await asyncio.gather(*(_enter(locks, f"patient:p-{i % 5}") for i in range(50)))
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_kept_while_a_waiter_remains():
    locks = KeyedLocks()
    async with locks.hold("patient:p-1"):
        waiter = asyncio.create_task(_enter(locks, "patient:p-1"))
        await asyncio.sleep(0)
        assert len(locks) == 1
    await waiter
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_when_body_raises():
    locks = KeyedLocks()
    with pytest.raises(RuntimeError):
        async with locks.hold("patient:p-1"):
            raise RuntimeError("boom")
    assert len(locks) == 0
