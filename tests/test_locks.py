"""Tests for the per-booking keyed lock."""

import asyncio

import pytest

from calint.domain.sync.locks import KeyedLock


async def test_same_key_is_serialized_and_released():
    locks = KeyedLock()
    order: list[str] = []

    async def work(name: str):
        async with locks.hold("evt-1"):
            order.append(f"{name} start")
            await asyncio.sleep(0.01)
            order.append(f"{name} end")

    first = asyncio.ensure_future(work("a"))
    second = asyncio.ensure_future(work("b"))
    await asyncio.sleep(0)
    assert len(locks) == 1

    await asyncio.gather(first, second)

    assert order == ["a start", "a end", "b start", "b end"]
    assert len(locks) == 0


async def test_different_keys_do_not_wait_for_each_other():
    locks = KeyedLock()

    async with locks.hold("evt-1"):
        async with locks.hold("evt-2"):
            assert len(locks) == 2

    assert len(locks) == 0


async def test_key_is_released_when_the_holder_fails():
    locks = KeyedLock()

    with pytest.raises(ValueError):
        async with locks.hold("evt-1"):
            raise ValueError("boom")

    assert len(locks) == 0
