"""Unit tests for KeyedLock (mindbloom/utils/locks.py)"""
import asyncio
import pytest

from mindbloom.utils.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    events = []

    async def worker(name):
        async with locks.hold("user-1"):
            events.append(f"{name}-start")
            await asyncio.sleep(0.01)
            events.append(f"{name}-end")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (
        ["a-start", "a-end", "b-start", "b-end"],
        ["b-start", "b-end", "a-start", "a-end"],
    )


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def first():
        async with locks.hold("user-1"):
            await asyncio.wait_for(inside.wait(), timeout=1.0)

    async def second():
        async with locks.hold("user-2"):
            inside.set()

    await asyncio.gather(first(), second())


@pytest.mark.asyncio
async def test_locks_are_released_when_idle():
    locks = KeyedLock()

    async with locks.hold("user-1"):
        assert len(locks) == 1

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("user-1"):
            raise RuntimeError("boom")

    async with locks.hold("user-1"):
        pass
    assert len(locks) == 0
